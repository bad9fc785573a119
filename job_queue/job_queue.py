"""
Job Queue — In-process job store, ready queue and single cooperative worker.

Topology:
  enqueue() ──▶ job store (id → Job)          ┌──────────────┐
            └─▶ ready heap (next_run_at, seq) ──▶│ worker task  │──▶ processor(payload, job)
                         ▲                       └──────┬───────┘
                         └──────── retry (backoff) ─────┘
                                                        │
                                   job store mirror ◀───┘ (best-effort, ordered)

Guarantees:
  - One worker task per queue; jobs never run in parallel, including across
    a stop() / start() restart.
  - Eligible jobs run in next_run_at order; ties keep insertion order.
  - A job leaves the ready heap exactly once, at completed or terminal failed,
    and stays queryable in the job store afterwards.
  - stop() is cooperative: an in-flight processor finishes, nothing new starts.
  - The mirror never moves a job back to an older snapshot.

All state lives on the JobQueue instance, so independent queues (and tests)
never share state. Producers must call enqueue() on the worker's event loop.
"""
from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import time
import structlog
from typing import Any, Awaitable, Callable, Optional, Union

from config.settings import QueueConfig
from models.schemas import (
    EnqueueOptions, Job, JobStatus, ProcessorMissingError, QueueFullError,
)

logger = structlog.get_logger()

Processor = Callable[[Any, Job], Union[Awaitable[None], None]]
ProcessorMap = dict[str, Processor]

BACKOFF_CAP_MS = 30000


def compute_backoff(attempt: int, base_ms: int = 1000, cap_ms: int = BACKOFF_CAP_MS) -> int:
    """Delay before retry number `attempt`: base × 2^(attempt-1), capped."""
    attempt = max(1, attempt)
    return min(base_ms * (2 ** (attempt - 1)), cap_ms)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class JobQueue:
    """
    Owned job queue: create one per worker process and pass it by handle.

    Usage:
        queue = JobQueue.from_settings(settings.queue, job_store=store)
        job_id = queue.enqueue("broadcast:sendBatch", {"userIds": [1, 2], "text": "hi"})
        queue.start({"broadcast:sendBatch": processor})
        ...
        await queue.stop()
    """

    def __init__(
        self,
        backoff_base_ms: int = 1000,
        backoff_cap_ms: int = BACKOFF_CAP_MS,
        poll_interval_ms: int = 50,
        default_max_attempts: int = 5,
        max_depth: int = 0,
        job_store=None,  # type: database.store_base.BaseJobStore
        clock: Callable[[], int] = _epoch_ms,
    ):
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.poll_interval_ms = poll_interval_ms
        self.default_max_attempts = default_max_attempts
        self.max_depth = max_depth
        self.job_store = job_store
        self._clock = clock

        self._ids = itertools.count(1)
        self._seq = itertools.count()
        self._jobs: dict[int, Job] = {}
        self._heap: list[tuple[int, int, Job]] = []     # (next_run_at, seq, job)

        self._processors: ProcessorMap = {}
        self._running = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._in_flight: Optional[int] = None

        self._persist_lock = asyncio.Lock()
        self._versions = itertools.count(1)
        self._persisted: dict[int, int] = {}            # job id → last version handed to the store
        self._persist_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, config: QueueConfig, job_store=None, **kwargs) -> JobQueue:
        return cls(
            backoff_base_ms=config.backoff_base_ms,
            backoff_cap_ms=config.backoff_cap_ms,
            poll_interval_ms=config.poll_interval_ms,
            default_max_attempts=config.default_max_attempts,
            max_depth=config.max_depth,
            job_store=job_store,
            **kwargs,
        )

    # ── Backoff ───────────────────────────────────────────

    def set_backoff_base(self, ms: int) -> None:
        self.backoff_base_ms = ms

    def backoff(self, attempt: int) -> int:
        return compute_backoff(attempt, self.backoff_base_ms, self.backoff_cap_ms)

    # ── Producers ─────────────────────────────────────────

    def enqueue(
        self,
        job_type: str,
        payload: Any = None,
        options: Optional[EnqueueOptions] = None,
        **overrides: Any,
    ) -> int:
        """
        Create a pending job and make it eligible at now + delay_ms.
        Returns the new job id. Raises QueueFullError when max_depth is reached.
        """
        if options is None:
            overrides.setdefault("max_attempts", self.default_max_attempts)
            options = EnqueueOptions(**overrides)
        elif overrides:
            options = EnqueueOptions(**{**options.model_dump(), **overrides})

        if self.max_depth and len(self._heap) >= self.max_depth:
            raise QueueFullError(self.max_depth)

        job = Job(
            id=next(self._ids),
            type=job_type,
            payload=payload,
            max_attempts=options.max_attempts,
            backoff=options.backoff,
            next_run_at=self._clock() + options.delay_ms,
        )
        self._jobs[job.id] = job
        self._push(job)
        logger.info("job_enqueued",
                    job_id=job.id,
                    type=job_type,
                    max_attempts=job.max_attempts,
                    next_run_at=job.next_run_at)
        self._persist_in_background(job)
        return job.id

    def _push(self, job: Job) -> None:
        heapq.heappush(self._heap, (job.next_run_at, next(self._seq), job))
        self._wakeup.set()

    def _is_current(self, job: Job) -> bool:
        # False once clear() has dropped the job, even if a new job reuses its id.
        return self._jobs.get(job.id) is job

    # ── Inspection ────────────────────────────────────────

    def pending_jobs(self) -> list[Job]:
        """Snapshot of jobs still waiting in the ready queue, in run order."""
        return [
            job.model_copy(deep=True)
            for _, _, job in sorted(self._heap, key=lambda entry: entry[:2])
            if self._is_current(job) and not job.is_terminal
        ]

    def get_job(self, job_id: int) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def all_jobs(self) -> list[Job]:
        return [j.model_copy(deep=True) for j in self._jobs.values()]

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_idle(self) -> bool:
        return not self._heap and self._in_flight is None

    def clear(self) -> None:
        """Reset ids, job store and ready queue. Bootstrap and tests only."""
        self._ids = itertools.count(1)
        self._seq = itertools.count()
        self._jobs.clear()
        self._heap.clear()
        self._wakeup.set()
        logger.info("job_queue_cleared")

    # ── Lifecycle ─────────────────────────────────────────

    def start(self, processors: ProcessorMap) -> None:
        """
        Install the processor map (replacing any previous one) and launch the worker.

        Calling start() while a stop() is still waiting for the old worker is
        allowed: the new worker only begins once the old one has exited.
        """
        self._processors = dict(processors)
        if self._running:
            return
        previous = self._task if self._task is not None and not self._task.done() else None
        self._running = True
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(
            self._worker_loop(self._generation, previous)
        )

    async def stop(self) -> None:
        """Stop dispatching new jobs and wait for the worker to exit."""
        self._running = False
        self._generation += 1
        self._wakeup.set()
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            if self._task is task:
                self._task = None
            if not task.cancelled() and task.exception() is not None:
                logger.error("worker_crashed", error=repr(task.exception()))
        await self.flush_persistence()

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until no job is queued or running. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_idle:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval_ms / 1000)
        return True

    # ── Worker ────────────────────────────────────────────

    async def _sleep(self, ms: float) -> None:
        # Any enqueue / stop / clear wakes the worker early so it re-reads the head.
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=max(ms, 0) / 1000)
        except asyncio.TimeoutError:
            pass

    def _owns_loop(self, generation: int) -> bool:
        return self._running and self._generation == generation

    async def _worker_loop(self, generation: int, previous: Optional[asyncio.Task] = None) -> None:
        if previous is not None:
            await asyncio.wait({previous})

        logger.info("worker_started", generation=generation, processors=sorted(self._processors))
        try:
            while self._owns_loop(generation):
                if not self._heap:
                    await self._sleep(self.poll_interval_ms)
                    continue

                run_at, _, job = self._heap[0]
                if not self._is_current(job) or job.is_terminal:
                    heapq.heappop(self._heap)
                    continue

                now = self._clock()
                if run_at > now:
                    await self._sleep(run_at - now)
                    continue

                heapq.heappop(self._heap)
                self._in_flight = job.id
                try:
                    await self.process_job(job)
                except BaseException:
                    # Cancellation or interpreter exit mid-job: the job stays pending.
                    if self._is_current(job) and not job.is_terminal:
                        self._push(job)
                    raise
                finally:
                    self._in_flight = None
        finally:
            if self._generation == generation:
                self._running = False
            logger.info("worker_stopped", generation=generation)

    async def process_job(self, job: Job) -> None:
        """Run one job and record its outcome: completed, retry or failed."""
        processor = self._processors.get(job.type)
        if processor is None:
            job.status = JobStatus.FAILED
            job.last_error = str(ProcessorMissingError(job.type))
            logger.error("job_processor_missing", job_id=job.id, type=job.type)
            await self._persist_current(job)
            return

        job.attempts += 1
        try:
            result = processor(job.payload, job.model_copy(deep=True))
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            job.last_error = str(e) or type(e).__name__
            if job.attempts < job.max_attempts:
                delay = self.backoff(job.attempts)
                job.next_run_at = max(self._clock() + delay, job.next_run_at + 1)
                if self._is_current(job):
                    self._push(job)
                logger.warning("job_retry_scheduled",
                               job_id=job.id,
                               type=job.type,
                               attempt=job.attempts,
                               delay_ms=delay,
                               error=job.last_error)
            else:
                job.status = JobStatus.FAILED
                logger.error("job_failed",
                             job_id=job.id,
                             type=job.type,
                             attempts=job.attempts,
                             error=job.last_error)
            await self._persist_current(job)
            return

        job.status = JobStatus.COMPLETED
        logger.info("job_completed", job_id=job.id, type=job.type, attempts=job.attempts)
        await self._persist_current(job)

    # ── Persistence mirror (best-effort, ordered) ─────────

    async def _persist(self, snapshot: Job, version: int) -> None:
        if self.job_store is None:
            return
        async with self._persist_lock:
            if self._persisted.get(snapshot.id, 0) >= version:
                logger.debug("job_persist_superseded", job_id=snapshot.id, status=snapshot.status.value)
                return
            self._persisted[snapshot.id] = version
            try:
                await self.job_store.upsert_job(snapshot)
            except Exception as e:
                logger.warning("job_persist_failed", job_id=snapshot.id, error=str(e))

    async def _persist_current(self, job: Job) -> None:
        # A job detached by clear() must not overwrite the record of its id's new owner.
        if self._is_current(job):
            await self._persist(job.model_copy(deep=True), next(self._versions))

    def _persist_in_background(self, job: Job) -> None:
        if self.job_store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("job_persist_skipped", job_id=job.id, reason="no_running_loop")
            return
        task = loop.create_task(self._persist(job.model_copy(deep=True), next(self._versions)))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def flush_persistence(self) -> None:
        """Wait for outstanding fire-and-forget mirror writes."""
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)
