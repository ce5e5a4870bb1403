"""Read-model commands: deposits, withdraws, watch."""
from __future__ import annotations

import asyncio
from typing import Optional

import click
from rich.table import Table

from ..correlator import describe_opaque
from ..identifiers import EvmChain
from ..metadata import format_amount
from ..models import CorrelatedDeposit, ViewResult, WithdrawView
from ..refresh import DEPOSITS, WITHDRAWS, RefreshController
from ..service import BridgeViewService
from .runtime import chain_label, console, open_service, run, short_hex


def _deposit_status(item: CorrelatedDeposit) -> str:
    if item.cross_ecosystem:
        return "[magenta]cross-ecosystem[/magenta]"
    if item.approved_and_matched:
        return "[green]approved & matched[/green]"
    approval = item.approval
    if approval is None:
        return "[dim]unknown[/dim]"
    if approval.executed:
        return "[green]executed[/green]"
    if approval.cancelled:
        return "[red]cancelled[/red]"
    if approval.is_approved:
        return "[cyan]approved[/cyan]"
    return "[yellow]pending[/yellow]"


def _amount(amount: int, meta) -> str:
    if meta is None:
        return str(amount)
    return f"{format_amount(amount, meta.decimals)} {meta.symbol}"


def render_deposits(service: BridgeViewService, result: ViewResult[CorrelatedDeposit]) -> None:
    title = f"Deposits on {chain_label(service, result.chain_id)}"
    if not result.available:
        console.print(f"[yellow]{title}: unavailable ({result.reason})[/yellow]")
        return

    table = Table(title=title)
    table.add_column("Hash", style="cyan")
    table.add_column("Destination")
    table.add_column("Token")
    table.add_column("Amount", justify="right")
    table.add_column("Recipient")
    table.add_column("Status")
    table.add_column("Can Approve")

    for item in result.items:
        if isinstance(item.dest_chain, EvmChain):
            destination = chain_label(service, item.dest_chain.chain_id)
        else:
            destination = short_hex(item.dest_chain.raw)
        if item.can_approve is None:
            can_approve = "-"
        elif item.can_approve.immediate:
            can_approve = "[green]yes[/green]"
        else:
            can_approve = f"[yellow]no (delay {item.can_approve.delay}s)[/yellow]"
        table.add_row(
            short_hex(item.record_hash),
            destination,
            item.token_meta.symbol if item.token_meta else describe_opaque(item.dest_token),
            _amount(item.deposit.amount, item.token_meta),
            describe_opaque(item.dest_account),
            _deposit_status(item),
            can_approve,
        )
    console.print(table)


def _withdraw_status(view: WithdrawView) -> str:
    approval = view.approval
    if approval is None:
        return "[dim]unknown[/dim]"
    if approval.executed:
        return "[green]executed[/green]"
    if approval.cancelled:
        return "[red]cancelled[/red]"
    if not approval.is_approved:
        return "[yellow]awaiting approval[/yellow]"
    eligibility = view.eligibility
    if eligibility is None:
        return "[cyan]approved[/cyan]"
    if eligibility.actionable_now:
        return "[green]ready[/green]"
    if eligibility.remaining_seconds:
        return f"[cyan]approved, {eligibility.remaining_seconds}s left[/cyan]"
    return "[cyan]approved[/cyan]"


def render_withdraws(service: BridgeViewService, result: ViewResult[WithdrawView]) -> None:
    title = f"Withdraws on {chain_label(service, result.chain_id)}"
    if not result.available:
        console.print(f"[yellow]{title}: unavailable ({result.reason})[/yellow]")
        return

    table = Table(title=title)
    table.add_column("Hash", style="cyan")
    table.add_column("Source")
    table.add_column("Token")
    table.add_column("Amount", justify="right")
    table.add_column("To")
    table.add_column("Status")

    for view in result.items:
        w = view.withdraw
        if isinstance(view.source_chain, EvmChain):
            source = chain_label(service, view.source_chain.chain_id)
        elif view.source_chain is not None:
            source = short_hex(view.source_chain.raw)
        else:
            source = "-"
        table.add_row(
            short_hex(view.record_hash),
            source,
            (view.token_meta.symbol if view.token_meta else w.token) if w else "-",
            _amount(w.amount, view.token_meta) if w else "-",
            w.to if w else "-",
            _withdraw_status(view),
        )
    console.print(table)


@click.command()
@click.option("--chain", "chain_id", type=int, default=None, help="Source chain id")
@click.option("--actor", default=None, help="Address whose approve permission is checked")
@click.pass_context
def deposits(ctx, chain_id: Optional[int], actor: Optional[str]):
    """Show deposits of a chain with their destination-side state."""
    config = ctx.obj["config"]
    chain_id = chain_id or config.default_chain_id

    async def _main():
        async with open_service(config) as service:
            render_deposits(service, await service.deposits_view(chain_id, actor))

    run(_main())


@click.command()
@click.option("--chain", "chain_id", type=int, default=None, help="Chain id to view")
@click.option("--actor", default=None, help="Address that would execute the withdraws")
@click.pass_context
def withdraws(ctx, chain_id: Optional[int], actor: Optional[str]):
    """Show withdraws due on a chain with their eligibility."""
    config = ctx.obj["config"]
    chain_id = chain_id or config.default_chain_id

    async def _main():
        async with open_service(config) as service:
            render_withdraws(service, await service.withdraws_view(chain_id, actor))

    run(_main())


@click.command()
@click.option("--chain", "chain_id", type=int, default=None, help="Chain id to watch")
@click.option("--view", "view_name", type=click.Choice([DEPOSITS, WITHDRAWS]), default=DEPOSITS)
@click.option("--actor", default=None, help="Actor address")
@click.option("--cycles", type=int, default=0, help="Stop after this many refreshes (0 = forever)")
@click.pass_context
def watch(ctx, chain_id: Optional[int], view_name: str, actor: Optional[str], cycles: int):
    """Keep a view refreshed and print every update."""
    config = ctx.obj["config"]
    chain_id = chain_id or config.default_chain_id

    async def _main():
        async with open_service(config) as service:
            controller = RefreshController(service)
            done = asyncio.Event()
            seen = 0

            async def on_update(view: str, result: ViewResult) -> None:
                nonlocal seen
                if view == DEPOSITS:
                    render_deposits(service, result)
                else:
                    render_withdraws(service, result)
                seen += 1
                if cycles and seen >= cycles:
                    done.set()

            controller.on_update(on_update)
            controller.select_chain(view_name, chain_id, actor)
            await controller.start()
            try:
                await done.wait()
            finally:
                await controller.shutdown()

    try:
        run(_main())
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")
