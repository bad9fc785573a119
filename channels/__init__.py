"""Outbound messaging channels used by the broadcast dispatcher."""
from channels.base import (
    MessageSender,
    SendError,
    TransientSendError,
    PermanentSendError,
    SendMetrics,
    classify_status,
)
from channels.telegram import TelegramSender

__all__ = [
    "MessageSender", "SendError", "TransientSendError", "PermanentSendError",
    "SendMetrics", "classify_status", "TelegramSender",
]
