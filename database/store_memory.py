"""
InMemoryJobStore — Dict-backed job mirror for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlJobStore
  - All data lost on process restart
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from database.store_base import BaseJobStore
from models.schemas import Job, JobStatus

logger = structlog.get_logger()


class InMemoryJobStore(BaseJobStore):
    """Keeps the latest record of every job as a plain dict."""

    def __init__(self):
        self._jobs: dict[str, dict[str, Any]] = {}      # str(id) → record
        logger.info("inmemory_job_store_initialized")

    async def upsert_job(self, job: Job) -> None:
        self._jobs[str(job.id)] = job.to_record()

    async def get_job(self, job_id: int) -> Optional[Job]:
        data = self._jobs.get(str(job_id))
        return Job.model_validate(data) if data else None

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> list[Job]:
        rows = sorted(self._jobs.values(), key=lambda r: r["id"])
        if status is not None:
            rows = [r for r in rows if r["status"] == JobStatus(status).value]
        return [Job.model_validate(r) for r in rows[:limit]]
