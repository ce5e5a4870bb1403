"""
Cross-chain correlation.

A deposit on a source chain names its destination chain by key. For every
destination chain that appears among the deposits, the correlator reads the
approvals of the deposit hashes on the destination ledger, enumerates the
destination's withdraw hashes and checks whether the actor may approve
there. The fan-out is one concurrent task per distinct destination chain.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from . import abi
from .access import can_call
from .cache import ViewCache
from .identifiers import EvmChain, ForeignBytes, NativeAddress, decode_opaque32
from .logging_utils import OperationType, get_recon_logger
from .models import ApprovalState, CorrelatedDeposit, DepositRecord, PermissionCheck
from .multicall import fetch_approvals, fetch_deposits
from .paginator import DEPOSIT_HASHES, WITHDRAW_HASHES, LedgerPaginator, get_paginator
from .registry import ChainRegistry

logger = logging.getLogger(__name__)


class _DestinationState:
    """What was read from one destination chain."""

    def __init__(self) -> None:
        self.approvals: Dict[bytes, Optional[ApprovalState]] = {}
        self.withdraw_hashes: Set[bytes] = set()
        self.permission: Optional[PermissionCheck] = None


class CrossChainCorrelator:
    """Joins deposits with destination-side approvals and withdraw sets."""

    def __init__(
        self,
        registry: ChainRegistry,
        paginator: Optional[LedgerPaginator] = None,
        cache: Optional[ViewCache] = None,
    ):
        self._registry = registry
        self._paginator = paginator or get_paginator()
        self._cache = cache or ViewCache()
        self._schedule = registry.config.refresh

    def _decode(self, source_chain_id: int, record_hash: bytes, deposit: DepositRecord) -> CorrelatedDeposit:
        dest_chain = self._registry.decode_chain_key(deposit.dest_chain_key)
        dest_token = decode_opaque32(deposit.dest_token_address)
        dest_account = decode_opaque32(deposit.dest_account)
        resolvable = (
            isinstance(dest_chain, EvmChain)
            and isinstance(dest_token, NativeAddress)
            and isinstance(dest_account, NativeAddress)
        )
        return CorrelatedDeposit(
            source_chain_id=source_chain_id,
            record_hash=bytes(record_hash),
            deposit=deposit,
            dest_chain=dest_chain,
            dest_token=dest_token,
            dest_account=dest_account,
            cross_ecosystem=not resolvable,
        )

    async def _read_destination(
        self,
        dest_chain_id: int,
        hashes: Sequence[bytes],
        actor: Optional[str],
    ) -> _DestinationState:
        state = _DestinationState()
        client = self._registry.resolve_client(dest_chain_id)
        contracts = self._registry.contracts(dest_chain_id)
        if client is None or not contracts.bridge:
            logger.debug(f"Destination chain {dest_chain_id} has no client or bridge")
            return state

        bridge = contracts.bridge

        async def approvals():
            return await self._cache.get_or_load(
                ("xchain", dest_chain_id, "approvals", tuple(hashes)),
                lambda: fetch_approvals(client, bridge, hashes),
                self._schedule.interval("xchain_approvals"),
            )

        async def withdraw_hashes():
            return await self._cache.get_or_load(
                ("bridge", dest_chain_id, bridge, "withdraw-hashes"),
                lambda: self._paginator.enumerate_record_ids(client, bridge, WITHDRAW_HASHES),
                self._schedule.interval("xchain_withdraw_hashes"),
            )

        async def permission():
            if not actor or not contracts.access_manager:
                return None
            return await self._cache.get_or_load(
                ("xchain", dest_chain_id, "can-approve", actor),
                lambda: can_call(
                    client,
                    contracts.access_manager,
                    actor,
                    bridge,
                    abi.APPROVE_WITHDRAW.selector,
                ),
                self._schedule.interval("can_approve"),
            )

        approval_rows, withdraw_ids, state.permission = await asyncio.gather(
            approvals(), withdraw_hashes(), permission()
        )
        state.approvals = dict(approval_rows)
        state.withdraw_hashes = {bytes(h) for h in withdraw_ids}
        return state

    async def correlate_deposits(
        self,
        source_chain_id: int,
        deposits: Sequence[Tuple[bytes, DepositRecord]],
        actor: Optional[str] = None,
    ) -> List[CorrelatedDeposit]:
        """
        Correlate ``(hash, deposit)`` pairs of ``source_chain_id`` with their
        destination chains. Output order follows input order.
        """
        async with get_recon_logger().operation_context(
            OperationType.CORRELATION, source_chain_id, count=len(deposits)
        ) as ctx:
            items = [self._decode(source_chain_id, h, d) for h, d in deposits]

            groups: "OrderedDict[int, List[bytes]]" = OrderedDict()
            for item in items:
                if not item.cross_ecosystem:
                    groups.setdefault(item.dest_chain_id, []).append(item.record_hash)
            ctx.metadata["destinations"] = list(groups)

            states = await asyncio.gather(
                *(self._read_destination(cid, hashes, actor) for cid, hashes in groups.items())
            )
            by_chain = dict(zip(groups, states))

            for item in items:
                if item.cross_ecosystem:
                    continue
                state = by_chain[item.dest_chain_id]
                item.approval = state.approvals.get(item.record_hash)
                item.in_dest_withdraw_set = item.record_hash in state.withdraw_hashes
                item.approved_and_matched = bool(
                    item.approval is not None
                    and item.approval.is_approved
                    and item.in_dest_withdraw_set
                )
                item.can_approve = state.permission
            return items

    async def deposits_on(self, chain_id: int) -> List[Tuple[bytes, DepositRecord]]:
        """Readable deposits on the ledger of ``chain_id``, in ledger order."""
        client = self._registry.resolve_client(chain_id)
        bridge = self._registry.contracts(chain_id).bridge
        if client is None or not bridge:
            return []

        hashes = await self._cache.get_or_load(
            ("bridge", chain_id, bridge, "deposit-hashes"),
            lambda: self._paginator.enumerate_record_ids(client, bridge, DEPOSIT_HASHES),
            self._schedule.interval("deposit_hashes"),
        )
        rows = await self._cache.get_or_load(
            ("bridge", chain_id, bridge, "deposits", len(hashes)),
            lambda: fetch_deposits(client, bridge, [bytes(h) for h in hashes]),
            self._schedule.interval("deposits"),
        )
        return [(h, d) for h, d in rows if d is not None]

    async def relevant_deposit_hashes(self, view_chain_id: int) -> List[bytes]:
        """
        Deposit hashes on peer chains whose destination is ``view_chain_id``.

        Peer chains are scanned concurrently; the result is deduplicated in
        first-seen order following the configured chain order.
        """
        view_key = self._registry.derive_key(self._registry.config.chain_key_tag, view_chain_id)

        async def scan(chain_id: int) -> List[bytes]:
            rows = await self.deposits_on(chain_id)
            return [h for h, d in rows if d.dest_chain_key == view_key]

        peers = self._registry.peer_chains(view_chain_id)
        results = await asyncio.gather(*(scan(p.chain_id) for p in peers))

        seen: Set[bytes] = set()
        out: List[bytes] = []
        for hashes in results:
            for h in hashes:
                if h not in seen:
                    seen.add(h)
                    out.append(h)
        return out


def describe_opaque(value) -> str:
    """Display form of a decoded 32-byte value."""
    if isinstance(value, NativeAddress):
        return value.address
    if isinstance(value, ForeignBytes):
        return value.hex()
    return str(value)
