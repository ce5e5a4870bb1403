"""
The bridge read model.

``BridgeViewService`` binds the registry, paginator, batch fetcher,
correlator, eligibility and metadata resolver into the two views an operator
works with: deposits made on a chain, and withdraws due on a chain.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Set

from . import abi
from .access import execution_delay
from .cache import ViewCache
from .correlator import CrossChainCorrelator
from .eligibility import BlockClock, compute_eligibility
from .logging_utils import OperationType, log_operation
from .metadata import MetadataResolver
from .models import CorrelatedDeposit, ViewResult, WithdrawView
from .multicall import fetch_records_and_approvals
from .paginator import WITHDRAW_HASHES, LedgerPaginator, get_paginator
from .registry import ChainRegistry

logger = logging.getLogger(__name__)


class BridgeViewService:
    """Produces deposit and withdraw views for a chain."""

    def __init__(
        self,
        registry: ChainRegistry,
        cache: Optional[ViewCache] = None,
        paginator: Optional[LedgerPaginator] = None,
        metadata: Optional[MetadataResolver] = None,
        clock: Optional[BlockClock] = None,
    ):
        self.registry = registry
        self.cache = cache or ViewCache()
        self.paginator = paginator or get_paginator()
        self.correlator = CrossChainCorrelator(registry, self.paginator, self.cache)
        self.metadata = metadata or MetadataResolver(registry, self.cache)
        self.clock = clock or BlockClock(registry)
        self._schedule = registry.config.refresh

    def _unavailable_reason(self, chain_id: int) -> Optional[str]:
        if self.registry.descriptor(chain_id) is None:
            return f"chain {chain_id} is not configured"
        if self.registry.resolve_client(chain_id) is None:
            return f"no RPC endpoint for chain {chain_id}"
        if not self.registry.contracts(chain_id).bridge:
            return f"no bridge deployment on chain {chain_id}"
        return None

    @log_operation(OperationType.VIEW_BUILD)
    async def deposits_view(
        self, chain_id: int, actor: Optional[str] = None
    ) -> ViewResult[CorrelatedDeposit]:
        """Deposits on ``chain_id`` correlated with their destination chains."""
        reason = self._unavailable_reason(chain_id)
        if reason:
            return ViewResult.unavailable(chain_id, reason)

        deposits = await self.correlator.deposits_on(chain_id)
        items = await self.correlator.correlate_deposits(chain_id, deposits, actor)

        metas = await self.metadata.resolve_many([
            (item.dest_chain_id, item.dest_token_address)
            for item in items
            if not item.cross_ecosystem
        ])
        for item in items:
            if not item.cross_ecosystem:
                item.token_meta = metas.get((item.dest_chain_id, item.dest_token_address.lower()))

        return ViewResult(chain_id=chain_id, items=items)

    async def withdraw_hashes(self, chain_id: int) -> List[bytes]:
        """Withdraw hashes of the chain's own ledger."""
        client = self.registry.resolve_client(chain_id)
        bridge = self.registry.contracts(chain_id).bridge
        if client is None or not bridge:
            return []
        hashes = await self.cache.get_or_load(
            ("bridge", chain_id, bridge, "withdraw-hashes"),
            lambda: self.paginator.enumerate_record_ids(client, bridge, WITHDRAW_HASHES),
            self._schedule.interval("withdraw_hashes"),
        )
        return [bytes(h) for h in hashes]

    async def withdraw_delay(self, chain_id: int, actor: Optional[str]) -> int:
        """Execution delay of the router's withdraw for ``actor``."""
        client = self.registry.resolve_client(chain_id)
        contracts = self.registry.contracts(chain_id)
        if client is None or not actor or not contracts.router:
            return 0
        return await self.cache.get_or_load(
            ("bridge", chain_id, contracts.router, "withdraw-delay", actor),
            lambda: execution_delay(
                client,
                contracts.access_manager,
                actor,
                contracts.router,
                abi.ROUTER_WITHDRAW.selector,
            ),
            self._schedule.interval("withdraw_delay"),
        )

    @log_operation(OperationType.VIEW_BUILD)
    async def withdraws_view(
        self, chain_id: int, actor: Optional[str] = None
    ) -> ViewResult[WithdrawView]:
        """
        Withdraws due on ``chain_id``.

        Candidates are the chain's own withdraw hashes plus deposit hashes on
        peer chains addressed to it. An entry is kept when it has a withdraw
        record or an approved approval.
        """
        reason = self._unavailable_reason(chain_id)
        if reason:
            return ViewResult.unavailable(chain_id, reason)

        client = self.registry.resolve_client(chain_id)
        bridge = self.registry.contracts(chain_id).bridge

        own = await self.withdraw_hashes(chain_id)
        relevant = await self.cache.get_or_load(
            ("xchain", chain_id, "relevant-deposit-hashes"),
            lambda: self.correlator.relevant_deposit_hashes(chain_id),
            self._schedule.interval("deposit_hashes"),
        )

        seen: Set[bytes] = set()
        ids: List[bytes] = []
        for h in list(own) + list(relevant):
            if h not in seen:
                seen.add(h)
                ids.append(h)

        details = await self.cache.get_or_load(
            ("bridge", chain_id, bridge, "withdraws", tuple(ids)),
            lambda: fetch_records_and_approvals(client, bridge, ids),
            self._schedule.interval("withdraws"),
        )

        delay = await self.withdraw_delay(chain_id, actor)
        now = await self.clock.now(chain_id)

        views: List[WithdrawView] = []
        for detail in details:
            approval = detail.approval
            if detail.record is None and not (approval and approval.is_approved):
                continue
            view = WithdrawView(
                record_hash=detail.record_hash,
                withdraw=detail.record,
                approval=approval,
            )
            if detail.record is not None:
                view.source_chain = self.registry.decode_chain_key(detail.record.src_chain_key)
            if approval is not None and now is not None:
                view.eligibility = compute_eligibility(
                    approval, now, delay, actor_present=bool(actor)
                )
            views.append(view)

        metas = await self.metadata.resolve_many([
            (chain_id, v.withdraw.token) for v in views if v.withdraw is not None
        ])
        for view in views:
            if view.withdraw is not None:
                view.token_meta = metas.get((chain_id, view.withdraw.token.lower()))

        return ViewResult(chain_id=chain_id, items=views)
