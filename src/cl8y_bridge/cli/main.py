"""
CL8Y bridge CLI main entry point.

Usage:
    cl8y-bridge [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import click

from ..config import BridgeSettings, build_default_config
from ..logging_utils import setup_logging
from . import actions, chains, views
from .runtime import console


@click.group()
@click.version_option(package_name="cl8y-bridge", message="%(prog)s %(version)s")
@click.option("--chain", "default_chain", type=int, envvar="CL8Y_DEFAULT_CHAIN_ID",
              help="Default chain id")
@click.option("--log-level", envvar="CL8Y_LOG_LEVEL", default=None, help="Log level")
@click.option("--json-logs", is_flag=True, envvar="CL8Y_LOG_JSON", help="Emit JSON log lines")
@click.pass_context
def cli(ctx, default_chain: int | None, log_level: str | None, json_logs: bool):
    """CL8Y bridge operator console."""
    ctx.ensure_object(dict)

    settings = BridgeSettings()
    if default_chain is not None:
        settings.default_chain_id = default_chain
    if log_level:
        settings.log_level = log_level
    if json_logs:
        settings.log_json = True

    setup_logging(settings.log_level, settings.log_json)

    ctx.obj["settings"] = settings
    ctx.obj["config"] = build_default_config(settings)


@cli.command()
@click.pass_context
def status(ctx):
    """Show current configuration."""
    settings = ctx.obj["settings"]
    config = ctx.obj["config"]

    console.print("\n[bold blue]CL8Y Bridge Status[/bold blue]\n")
    default = config.chains[config.default_chain_id]
    console.print(f"Default Chain: [cyan]{default.display_name} ({default.chain_id})[/cyan]")
    console.print(f"Chains: [cyan]{', '.join(str(c) for c in config.chains)}[/cyan]")

    token_list = config.metadata.token_list_url or "Not configured"
    console.print(f"Token List: [cyan]{token_list}[/cyan]")

    if settings.signer_private_key:
        console.print("Signer: [green]configured[/green]")
    else:
        console.print("Signer: [yellow]Not configured[/yellow]")
    console.print()


# Register commands
cli.add_command(chains.chains)
cli.add_command(views.deposits)
cli.add_command(views.withdraws)
cli.add_command(views.watch)
cli.add_command(actions.approve)
cli.add_command(actions.withdraw)
