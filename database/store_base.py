"""
Abstract Job Store — Interface for the job persistence mirror.

Implementations:
  - SqlJobStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryJobStore (dict-based, single-process, no persistence)
  - FileJobStore     (JSON file on disk, single-process, durable)

The mirror is best-effort: the JobQueue remains the authority on job
state and swallows (logs) any error raised here.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import Job, JobStatus


class BaseJobStore(ABC):
    """Interface that all job store backends must implement."""

    @abstractmethod
    async def upsert_job(self, job: Job) -> None:
        """Insert or replace the row keyed by job.id."""
        ...

    @abstractmethod
    async def get_job(self, job_id: int) -> Optional[Job]:
        ...

    @abstractmethod
    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> list[Job]:
        """Rows ordered by job id, optionally filtered by status."""
        ...

    async def close(self) -> None:
        pass
