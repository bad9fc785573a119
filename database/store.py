"""
SqlJobStore — Portable job mirror for PostgreSQL, MySQL, SQLite.

Upsert is done as get-then-update/insert inside one session so the same
code runs on every dialect (no ON CONFLICT / ON DUPLICATE KEY variants).
"""
from __future__ import annotations

import structlog
from typing import Optional

from sqlalchemy import select

from database.models import JobRow, from_epoch_ms
from database.session import close_db, get_session, init_db
from database.store_base import BaseJobStore
from models.schemas import Job, JobStatus

logger = structlog.get_logger()


class SqlJobStore(BaseJobStore):
    """
    Persistent job mirror backed by any SQLAlchemy-supported database.
    Tables are created lazily on first write.
    """

    def __init__(self, db_url: Optional[str] = None):
        self._db_url = db_url
        self._ready = False

    async def _ensure_schema(self):
        if not self._ready:
            await init_db(self._db_url)
            self._ready = True

    async def upsert_job(self, job: Job) -> None:
        await self._ensure_schema()
        async with get_session(self._db_url) as db:
            row = await db.get(JobRow, job.id)
            if row is None:
                row = JobRow(id=job.id)
                db.add(row)
            row.type = job.type
            row.payload = job.payload
            row.status = job.status.value
            row.attempts = job.attempts
            row.max_attempts = job.max_attempts
            row.next_run_at = from_epoch_ms(job.next_run_at)
            row.last_error = job.last_error

    async def get_job(self, job_id: int) -> Optional[Job]:
        await self._ensure_schema()
        async with get_session(self._db_url) as db:
            row = await db.get(JobRow, job_id)
            return Job.model_validate(row.to_dict()) if row else None

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> list[Job]:
        await self._ensure_schema()
        async with get_session(self._db_url) as db:
            stmt = select(JobRow).order_by(JobRow.id).limit(limit)
            if status is not None:
                stmt = stmt.where(JobRow.status == JobStatus(status).value)
            result = await db.execute(stmt)
            return [Job.model_validate(row.to_dict()) for row in result.scalars()]

    async def close(self) -> None:
        await close_db(self._db_url)
        self._ready = False
