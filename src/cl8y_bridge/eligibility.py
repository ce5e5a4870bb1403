"""
Withdraw eligibility.

An approved withdraw becomes executable once ``approved_at + delay`` has
passed in chain time. Chain time comes from the latest block timestamp of
the viewed chain, refreshed on a fixed interval by ``BlockClock``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from .models import ApprovalState, Eligibility
from .rpc_client import RPCClientError, RPCError
from .registry import ChainRegistry

logger = logging.getLogger(__name__)


def compute_eligibility(
    approval: ApprovalState,
    current_block_time: int,
    execution_delay: int,
    actor_present: bool = True,
) -> Eligibility:
    """
    Eligibility of an approval at ``current_block_time``.

    remaining = max(0, approved_at + delay - now); actionable only when
    approved, not executed, not cancelled, no time remains and an actor is
    present.
    """
    allowed_at = approval.approved_at + execution_delay
    remaining = max(0, allowed_at - current_block_time)
    actionable = (
        approval.is_approved
        and not approval.executed
        and not approval.cancelled
        and remaining == 0
        and actor_present
    )
    return Eligibility(
        remaining_seconds=remaining,
        actionable_now=actionable,
        allowed_at=allowed_at,
    )


class BlockClock:
    """
    Latest block timestamp per chain.

    ``now(chain_id)`` reads through to the chain when the cached value is
    older than ``max_age`` seconds (loop clock). The refresh controller also
    schedules ``refresh`` on the ``block_time`` interval.
    """

    def __init__(self, registry: ChainRegistry, max_age: Optional[float] = None):
        self._registry = registry
        self._max_age = (
            max_age if max_age is not None
            else registry.config.refresh.interval("block_time", 10.0)
        )
        self._timestamps: Dict[int, int] = {}
        self._fetched_at: Dict[int, float] = {}

    def cached(self, chain_id: int) -> Optional[int]:
        return self._timestamps.get(chain_id)

    async def refresh(self, chain_id: int) -> Optional[int]:
        """Fetch the latest block timestamp; keeps the old value on failure."""
        client = self._registry.resolve_client(chain_id)
        if client is None:
            return None
        try:
            timestamp = await client.get_latest_block_timestamp()
        except (RPCError, RPCClientError, KeyError, ValueError) as e:
            logger.warning(f"Block time refresh failed on chain {chain_id}: {e}")
            return self._timestamps.get(chain_id)
        self._timestamps[chain_id] = timestamp
        self._fetched_at[chain_id] = asyncio.get_running_loop().time()
        return timestamp

    async def now(self, chain_id: int) -> Optional[int]:
        """Latest known block timestamp, refreshed when stale."""
        fetched_at = self._fetched_at.get(chain_id)
        loop_time = asyncio.get_running_loop().time()
        if fetched_at is None or loop_time - fetched_at >= self._max_age:
            return await self.refresh(chain_id)
        return self._timestamps[chain_id]

