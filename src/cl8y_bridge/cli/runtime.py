"""Shared plumbing for CLI commands."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional

import click
from rich.console import Console

from ..config import BridgeReconConfig, set_config
from ..exceptions import DecodeError
from ..identifiers import to_bytes32
from ..registry import ChainRegistry
from ..service import BridgeViewService

console = Console()


def run(coro: Awaitable[Any]) -> Any:
    """Run a coroutine to completion from a synchronous click command."""
    return asyncio.run(coro)


@asynccontextmanager
async def open_service(config: BridgeReconConfig):
    """View service over fresh RPC clients, closed on exit."""
    set_config(config)
    registry = ChainRegistry(config)
    try:
        yield BridgeViewService(registry)
    finally:
        await registry.aclose()


def parse_hash(value: str) -> bytes:
    try:
        return to_bytes32(value)
    except DecodeError as e:
        raise click.BadParameter(str(e)) from e


def short_hex(value: bytes, keep: int = 6) -> str:
    text = "0x" + bytes(value).hex()
    return f"{text[:keep + 2]}…{text[-4:]}"


def chain_label(service: BridgeViewService, chain_id: Optional[int]) -> str:
    if chain_id is None:
        return "?"
    descriptor = service.registry.descriptor(chain_id)
    return descriptor.display_name if descriptor else str(chain_id)
