"""
Outbound send infrastructure shared by every messaging channel.

Provides:
- SendError: structured error hierarchy (transient vs permanent)
- SendMetrics: per-sender send/fail/retry/latency tracking
- MessageSender: protocol the broadcast dispatcher sends through
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from models.schemas import MediaRef


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class SendError(Exception):
    """Base exception for a failed outbound send."""

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        self.status = status
        self.retryable = retryable
        super().__init__(message)


class TransientSendError(SendError):
    """Rate limited (429), server error (5xx) or transport failure — retry."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status, retryable=True)


class PermanentSendError(SendError):
    """Any other non-2xx (blocked bot, chat not found, bad request) — never retried."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message, status, retryable=False)


def classify_status(status: int) -> Optional[type[SendError]]:
    """Map an HTTP status to the error class it represents, None on success."""
    if 200 <= status < 300:
        return None
    if status == 429 or status >= 500:
        return TransientSendError
    return PermanentSendError


# ══════════════════════════════════════════════════════════════
#  METRICS
# ══════════════════════════════════════════════════════════════

class SendMetrics:
    """Tracks send, failure, retry and latency counts for one sender."""

    def __init__(self, channel: str):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self.retries: int = 0
        self._latencies: list[float] = []
        self._errors: list[str] = []

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)

    def record_retry(self):
        self.retries += 1

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "retries": self.retries,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": self._errors[-10:],
        }


# ══════════════════════════════════════════════════════════════
#  SENDER PROTOCOL
# ══════════════════════════════════════════════════════════════

@runtime_checkable
class MessageSender(Protocol):
    """
    Delivers one message to one recipient.

    send() returns True on delivery and False on a per-recipient failure;
    retry policy lives inside the implementation.
    """

    async def send(self, chat_id: int, text: str, media: Optional[MediaRef] = None) -> bool:
        ...

    async def close(self) -> None:
        ...
