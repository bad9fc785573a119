"""
Core data models for the broadcast dispatch service.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffStrategy(str, Enum):
    EXPONENTIAL = "exp"


class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


# ──────────────────────────────────────────────────────────────
#  Job — a unit of deferred work owned by the JobQueue
# ──────────────────────────────────────────────────────────────

class EnqueueOptions(BaseModel):
    max_attempts: int = Field(default=5, ge=1)
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    delay_ms: int = Field(default=0, ge=0)


class Job(BaseModel):
    """
    A queued unit of work.

    Only JobQueue.enqueue() creates jobs and only the worker loop mutates
    status / attempts / next_run_at / last_error afterwards.
    """
    id: int
    type: str
    payload: Any = None
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 5
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    next_run_at: int = 0                      # epoch ms
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def to_record(self) -> dict[str, Any]:
        """Flat, JSON-safe row used by the persistence mirror."""
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_run_at": self.next_run_at,
            "last_error": self.last_error,
        }


# ──────────────────────────────────────────────────────────────
#  Broadcast
# ──────────────────────────────────────────────────────────────

class MediaRef(BaseModel):
    """Attachment sent alongside the broadcast text (text becomes the caption)."""
    url: str
    kind: MediaKind = MediaKind.PHOTO


class SegmentRef(BaseModel):
    """Pre-resolved audience segment."""
    user_ids: list[int] = Field(default_factory=list, alias="userIds")

    model_config = {"populate_by_name": True}


class BroadcastPlan(BaseModel):
    """Input to BroadcastPlanner.plan(); lives only for the duration of the call."""
    segment: Any = None                       # list of ids | {"userIds": [...]} | SegmentRef
    text: str
    media: Optional[MediaRef] = None
    chunk_size: int = 25
    pause_ms: int = 500


class PlanResult(BaseModel):
    total: int
    chunks: int
    job_ids: list[int] = Field(default_factory=list)


class DispatchResult(BaseModel):
    success: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failed


Segment = Union[list, dict, SegmentRef, None]


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class BroadcastError(Exception):
    """Base exception for broadcast and queue operations."""


class ValidationError(BroadcastError):
    """An invalid request rejected before anything is enqueued."""


class BroadcastsDisabledError(ValidationError):
    def __init__(self):
        super().__init__("Broadcasts disabled")


class InvalidChunkSizeError(ValidationError):
    def __init__(self, chunk_size: Any):
        self.chunk_size = chunk_size
        super().__init__(f"chunk_size must be a positive integer, got {chunk_size!r}")


class ProcessorMissingError(BroadcastError):
    """No processor registered for a job type. Never retried."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__("no processor")


class QueueFullError(BroadcastError):
    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        super().__init__(f"Ready queue is full ({max_depth} jobs)")
