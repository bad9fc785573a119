"""
Broadcast Service — wires settings, flags, queue, planner and sender.

Usage:
    service = BroadcastService(load_settings())
    service.start()
    await service.plan(segment=user_ids, text="Hello VIPs")
    await service.drain()
    await service.stop()
"""
from __future__ import annotations

import inspect
import structlog
from typing import Any, Optional

from broadcast.dispatcher import ResultHook, make_send_batch_processor
from broadcast.planner import SEND_BATCH, BroadcastPlanner
from channels.base import MessageSender, SendMetrics
from channels.telegram import TelegramSender
from config.flags import FeatureFlags
from config.settings import Settings, get_settings
from database.store_base import BaseJobStore
from database.store_factory import create_job_store
from job_queue.job_queue import JobQueue, ProcessorMap
from models.schemas import BroadcastPlan, DispatchResult, Job, PlanResult

logger = structlog.get_logger()

_UNSET = object()


class BroadcastService:
    """One worker process: a queue, its single worker, and the Telegram sender."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        flags: Optional[Any] = None,
        sender: Optional[MessageSender] = None,
        job_store: Any = _UNSET,
        on_result: Optional[ResultHook] = None,
    ):
        self.settings = settings or get_settings()
        self.flags = flags if flags is not None else FeatureFlags(self.settings.flags)
        self.job_store: Optional[BaseJobStore] = (
            create_job_store(self.settings.database) if job_store is _UNSET else job_store
        )
        self.sender = sender or TelegramSender.from_settings(
            self.settings.telegram, self.settings.broadcast,
        )
        self.queue = JobQueue.from_settings(self.settings.queue, job_store=self.job_store)
        self.planner = BroadcastPlanner(
            self.queue, self.flags, max_attempts=self.settings.queue.default_max_attempts,
        )
        self.results: dict[int, DispatchResult] = {}
        self._on_result = on_result

    def processors(self) -> ProcessorMap:
        return {
            SEND_BATCH: make_send_batch_processor(
                self.sender,
                self.settings.broadcast.rate_per_second,
                on_result=self._record_result,
            ),
        }

    async def _record_result(self, job: Job, result: DispatchResult) -> None:
        self.results[job.id] = result
        if self._on_result is not None:
            outcome = self._on_result(job, result)
            if inspect.isawaitable(outcome):
                await outcome

    # ── Lifecycle ─────────────────────────────────────────

    def start(self) -> None:
        self.queue.start(self.processors())

    async def stop(self) -> None:
        await self.queue.stop()
        await self.sender.close()
        if self.job_store is not None:
            await self.job_store.close()
        logger.info("broadcast_service_stopped", batches=len(self.results))

    async def drain(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until every queued chunk has finished (completed or failed)."""
        return await self.queue.join(timeout_s)

    # ── Operations ────────────────────────────────────────

    async def plan(self, plan: Optional[BroadcastPlan] = None, **kwargs: Any) -> PlanResult:
        if plan is None:
            kwargs.setdefault("chunk_size", self.settings.broadcast.chunk_size)
            kwargs.setdefault("pause_ms", self.settings.broadcast.pause_ms)
            plan = BroadcastPlan(**kwargs)
        return await self.planner.plan(plan)

    def summary(self) -> DispatchResult:
        return DispatchResult(
            success=sum(r.success for r in self.results.values()),
            failed=sum(r.failed for r in self.results.values()),
        )

    def sender_metrics(self) -> dict[str, Any]:
        """Per-recipient delivery counters from the sender, empty if it keeps none."""
        metrics = getattr(self.sender, "metrics", None)
        return metrics.to_dict() if isinstance(metrics, SendMetrics) else {}
