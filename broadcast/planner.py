"""
Broadcast Planner — splits a resolved audience into sendBatch jobs.

The planner is the producer side of a broadcast. It never sends anything
itself; each chunk becomes one `broadcast:sendBatch` job that the
dispatcher executes under the global rate limit.

Rejections (flag off, bad chunk size, queue too small) happen before the
first enqueue, so a rejected plan leaves the queue untouched.
"""
from __future__ import annotations

import asyncio
import inspect
import math
import structlog
from typing import Any, Awaitable, Callable, Optional, Union

from config.flags import FeatureFlags
from job_queue.job_queue import JobQueue
from models.schemas import (
    BroadcastPlan, BroadcastsDisabledError, EnqueueOptions, InvalidChunkSizeError,
    PlanResult, QueueFullError, Segment, SegmentRef,
)

logger = structlog.get_logger()

SEND_BATCH = "broadcast:sendBatch"
BROADCASTS_ENABLED = "broadcasts_enabled"

Resolver = Callable[[Segment], Union[list[int], Awaitable[list[int]]]]


def resolve_targets(segment: Segment) -> list[int]:
    """
    Normalize an audience segment to a list of recipient ids.

    Accepts a plain list of ids or anything carrying a `userIds` list
    (dict key, SegmentRef, or attribute). Any other shape is an empty audience.
    """
    if isinstance(segment, (list, tuple)):
        return list(segment)
    if isinstance(segment, SegmentRef):
        return list(segment.user_ids)
    if isinstance(segment, dict):
        ids = segment.get("userIds")
        return list(ids) if isinstance(ids, (list, tuple)) else []
    ids = getattr(segment, "userIds", getattr(segment, "user_ids", None))
    if isinstance(ids, (list, tuple)):
        return list(ids)
    return []


def _valid_chunk_size(chunk_size: Any) -> bool:
    return isinstance(chunk_size, int) and not isinstance(chunk_size, bool) and chunk_size > 0


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class BroadcastPlanner:
    """
    Usage:
        planner = BroadcastPlanner(queue, flags)
        result = await planner.plan(segment=[1, 2, 3], text="hi", chunk_size=25, pause_ms=0)
    """

    def __init__(
        self,
        queue: JobQueue,
        flags: Optional[Any] = None,           # anything with get_flag(name, default), sync or async
        resolver: Resolver = resolve_targets,
        max_attempts: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.queue = queue
        self.flags = flags if flags is not None else FeatureFlags()
        self.resolver = resolver
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def plan(self, plan: Optional[BroadcastPlan] = None, **kwargs: Any) -> PlanResult:
        if plan is None:
            plan = BroadcastPlan(**kwargs)

        enabled = await _maybe_await(self.flags.get_flag(BROADCASTS_ENABLED, True))
        if not enabled:
            logger.warning("broadcast_rejected", reason="broadcasts_disabled")
            raise BroadcastsDisabledError()

        if not _valid_chunk_size(plan.chunk_size):
            logger.warning("broadcast_rejected", reason="invalid_chunk_size", chunk_size=plan.chunk_size)
            raise InvalidChunkSizeError(plan.chunk_size)

        targets = list(await _maybe_await(self.resolver(plan.segment)) or [])
        chunks = [targets[i:i + plan.chunk_size] for i in range(0, len(targets), plan.chunk_size)]

        depth = self.queue.max_depth
        if depth and len(self.queue) + len(chunks) > depth:
            logger.warning("broadcast_rejected", reason="queue_full",
                           chunks=len(chunks), queued=len(self.queue), max_depth=depth)
            raise QueueFullError(depth)

        media = plan.media.model_dump(mode="json") if plan.media else None
        options = EnqueueOptions(max_attempts=self.max_attempts)
        job_ids = []
        for index, chunk in enumerate(chunks):
            if index and plan.pause_ms > 0:
                await self._sleep(plan.pause_ms / 1000)
            job_id = self.queue.enqueue(
                SEND_BATCH,
                {"userIds": chunk, "text": plan.text, "media": media},
                options,
            )
            job_ids.append(job_id)
            logger.debug("broadcast_chunk_enqueued", job_id=job_id, chunk=index, size=len(chunk))

        result = PlanResult(
            total=len(targets),
            chunks=math.ceil(len(targets) / plan.chunk_size),
            job_ids=job_ids,
        )
        logger.info("broadcast_planned", total=result.total, chunks=result.chunks,
                    chunk_size=plan.chunk_size, has_media=media is not None)
        return result
