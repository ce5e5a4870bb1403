"""Mutating commands: approve, withdraw."""
from __future__ import annotations

import sys
from typing import Optional

import click

from ..actions import ActionResult, BridgeActions
from ..exceptions import BridgeActionError, ConfigurationError
from ..signer import signer_from_settings
from .runtime import console, open_service, parse_hash, run, short_hex


def _signer(ctx):
    settings = ctx.obj["settings"]
    try:
        signer = signer_from_settings(settings.signer_private_key)
    except ValueError as e:
        raise click.UsageError(f"Invalid signer key: {e}") from e
    if signer is None:
        raise click.UsageError("Set CL8Y_SIGNER_PRIVATE_KEY to submit transactions")
    return signer


def _print_result(result: ActionResult) -> None:
    console.print(f"[green]Confirmed[/green] {result.tx_hash} in block {result.block_number}")
    console.print(f"[dim]Invalidated {len(result.invalidated)} cache prefixes[/dim]")


def _fail(error: BridgeActionError) -> None:
    console.print(f"[red]{error.user_message}[/red]")
    if error.tx_hash:
        console.print(f"[dim]tx: {error.tx_hash}[/dim]")
    sys.exit(1)


@click.command()
@click.option("--chain", "chain_id", type=int, default=None, help="Chain the deposit was made on")
@click.option("--hash", "record_hash", required=True, help="Deposit hash (0x-prefixed bytes32)")
@click.pass_context
def approve(ctx, chain_id: Optional[int], record_hash: str):
    """Approve on the destination chain the withdraw matching a deposit."""
    config = ctx.obj["config"]
    chain_id = chain_id or config.default_chain_id
    wanted = parse_hash(record_hash)
    signer = _signer(ctx)

    async def _main():
        async with open_service(config) as service:
            view = await service.deposits_view(chain_id, signer.address)
            if not view.available:
                raise click.ClickException(view.reason)
            match = next((d for d in view.items if d.record_hash == wanted), None)
            if match is None:
                raise click.ClickException(f"Deposit {short_hex(wanted)} not found on chain {chain_id}")
            actions = BridgeActions(service, signer, chain_id)
            try:
                _print_result(await actions.approve_withdraw_for_deposit(match))
            except BridgeActionError as e:
                _fail(e)

    try:
        run(_main())
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e


@click.command()
@click.option("--chain", "chain_id", type=int, default=None, help="Chain the withdraw is due on")
@click.option("--hash", "record_hash", required=True, help="Withdraw hash (0x-prefixed bytes32)")
@click.pass_context
def withdraw(ctx, chain_id: Optional[int], record_hash: str):
    """Execute an approved withdraw once its delay has elapsed."""
    config = ctx.obj["config"]
    chain_id = chain_id or config.default_chain_id
    wanted = parse_hash(record_hash)
    signer = _signer(ctx)

    async def _main():
        async with open_service(config) as service:
            view = await service.withdraws_view(chain_id, signer.address)
            if not view.available:
                raise click.ClickException(view.reason)
            match = next((w for w in view.items if w.record_hash == wanted), None)
            if match is None:
                raise click.ClickException(f"Withdraw {short_hex(wanted)} not found on chain {chain_id}")
            actions = BridgeActions(service, signer, chain_id)
            try:
                _print_result(await actions.execute_withdraw(chain_id, match))
            except BridgeActionError as e:
                _fail(e)

    try:
        run(_main())
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e
