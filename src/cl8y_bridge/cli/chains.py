"""Chain commands."""
from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from .runtime import console, open_service, run


@click.command()
@click.option("--registered", "registered_on", type=int, default=None,
              help="Also list chain keys registered on this chain's ChainRegistry")
@click.pass_context
def chains(ctx, registered_on: Optional[int]):
    """List configured chains and their keys."""
    config = ctx.obj["config"]

    async def _main():
        async with open_service(config) as service:
            registry = service.registry

            table = Table(title="Configured Chains")
            table.add_column("Chain", style="cyan")
            table.add_column("Chain ID", justify="right")
            table.add_column("Network")
            table.add_column("Chain Key")
            table.add_column("Bridge")
            table.add_column("Status")

            for d in registry.descriptors:
                contracts = registry.contracts(d.chain_id)
                available = registry.resolve_client(d.chain_id) is not None and contracts.bridge
                status = "[green]Available[/green]" if available else "[yellow]Unavailable[/yellow]"
                table.add_row(
                    d.display_name,
                    str(d.chain_id),
                    "testnet" if d.is_testnet else "mainnet",
                    "0x" + d.chain_key.hex(),
                    contracts.bridge or "-",
                    status,
                )
            console.print(table)

            if registered_on is not None:
                keys = await registry.registered_chain_keys(registered_on)
                reg_table = Table(title=f"ChainRegistry keys on {registered_on}")
                reg_table.add_column("Chain Key")
                reg_table.add_column("Chain")
                for key in keys:
                    reg_table.add_row(
                        "0x" + key.hex(),
                        registry.friendly_name_for_key(key) or "[dim]unknown[/dim]",
                    )
                console.print(reg_table)

    run(_main())
