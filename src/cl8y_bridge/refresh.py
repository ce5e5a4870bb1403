"""
Periodic refresh of the read model.

Each (view, chain) selection registers APScheduler interval jobs: the view
itself and, for withdraws, the block clock. Selecting another chain for a
view bumps that view's epoch; a cycle that finishes under an older epoch is
discarded instead of being published.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import RefreshSchedule
from .logging_utils import OperationType, get_recon_logger
from .models import ViewResult
from .service import BridgeViewService

logger = logging.getLogger(__name__)

DEPOSITS = "deposits"
WITHDRAWS = "withdraws"
VIEWS = (DEPOSITS, WITHDRAWS)

UpdateCallback = Callable[[str, ViewResult], Awaitable[None]]


@dataclass
class _Selection:
    chain_id: int
    actor: Optional[str] = None
    epoch: int = 0
    job_ids: List[str] = field(default_factory=list)


class RefreshController:
    """Keeps deposit and withdraw views fresh for the selected chains."""

    def __init__(
        self,
        service: BridgeViewService,
        schedule: Optional[RefreshSchedule] = None,
    ):
        self._service = service
        self._schedule = schedule or service.registry.config.refresh
        self._selections: Dict[str, _Selection] = {}
        self._epochs: Dict[str, int] = {view: 0 for view in VIEWS}
        self._callbacks: List[UpdateCallback] = []
        self._started = False
        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60 * 5,
            },
            timezone="UTC",
        )

    def on_update(self, callback: UpdateCallback) -> None:
        """Register a callback for published view results."""
        self._callbacks.append(callback)

    def epoch(self, view: str) -> int:
        return self._epochs[view]

    def selection(self, view: str) -> Optional[_Selection]:
        return self._selections.get(view)

    def snapshot(self, view: str) -> Optional[ViewResult]:
        """Last published result for the current selection of ``view``."""
        selection = self._selections.get(view)
        if selection is None:
            return None
        return self._service.cache.get(("bridge-view", selection.chain_id, view))

    def select_chain(self, view: str, chain_id: int, actor: Optional[str] = None) -> int:
        """
        Point ``view`` at ``chain_id``.

        Bumps the view's epoch and replaces its jobs. Returns the new epoch.
        """
        if view not in VIEWS:
            raise ValueError(f"Unknown view: {view}")

        previous = self._selections.get(view)
        if previous is not None:
            for job_id in previous.job_ids:
                self._remove_job(job_id)

        self._epochs[view] += 1
        selection = _Selection(chain_id=chain_id, actor=actor, epoch=self._epochs[view])
        self._selections[view] = selection

        view_job = f"{view}:{chain_id}"
        self._add_job(
            view_job,
            self._refresh_view,
            view,
            self._schedule.interval(view),
        )
        selection.job_ids.append(view_job)

        if view == WITHDRAWS:
            clock_job = f"block_time:{chain_id}"
            self._add_job(
                clock_job,
                self._service.clock.refresh,
                chain_id,
                self._schedule.interval("block_time", 10.0),
            )
            selection.job_ids.append(clock_job)

        logger.info(f"Selected chain {chain_id} for {view} view (epoch {selection.epoch})")
        return selection.epoch

    async def _compute(self, view: str, selection: _Selection) -> ViewResult:
        if view == DEPOSITS:
            return await self._service.deposits_view(selection.chain_id, selection.actor)
        return await self._service.withdraws_view(selection.chain_id, selection.actor)

    async def run_cycle(self, view: str) -> Optional[ViewResult]:
        """
        Recompute ``view`` for its current selection.

        Returns the published result, or None when the selection changed
        while the cycle ran.
        """
        selection = self._selections.get(view)
        if selection is None:
            return None
        epoch = selection.epoch

        async with get_recon_logger().operation_context(
            OperationType.REFRESH, selection.chain_id, view=view, epoch=epoch
        ) as ctx:
            result = await self._compute(view, selection)

            if self._epochs[view] != epoch:
                ctx.metadata["discarded"] = True
                logger.debug(
                    f"Discarding {view} cycle for chain {selection.chain_id}: "
                    f"epoch {epoch} superseded by {self._epochs[view]}"
                )
                return None

            self._service.cache.set(("bridge-view", selection.chain_id, view), result)
            for callback in self._callbacks:
                await callback(view, result)
            return result

    async def _refresh_view(self, view: str) -> None:
        try:
            await self.run_cycle(view)
        except Exception as e:
            # Retried on the next tick
            logger.error(f"Refresh job failed: {view} - {type(e).__name__}: {e}")

    def _add_job(
        self, job_id: str, func: Callable[..., Awaitable[Any]], arg: Any, seconds: float
    ) -> None:
        self._scheduler.add_job(
            func,
            "interval",
            args=[arg],
            id=job_id,
            seconds=seconds,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        logger.debug(f"Registered refresh job: {job_id} (every {seconds}s)")

    def _remove_job(self, job_id: str) -> None:
        # An in-flight cycle finishes; its result is dropped by the epoch check
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    def job_ids(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    async def start(self) -> None:
        """Start the scheduler."""
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        logger.info("Refresh controller started")

    async def shutdown(self) -> None:
        """Stop the scheduler; running cycles are cancelled."""
        if not self._started:
            return
        self._scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Refresh controller stopped")

    @property
    def is_running(self) -> bool:
        return self._started and bool(self._scheduler.running)
