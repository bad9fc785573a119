"""
Broadcast pipeline — plan a message into chunk jobs, dispatch each chunk
sequentially under the provider's global rate limit.
"""
from broadcast.planner import BroadcastPlanner, resolve_targets, SEND_BATCH, BROADCASTS_ENABLED
from broadcast.dispatcher import dispatch_audience, make_send_batch_processor
from broadcast.service import BroadcastService

__all__ = [
    "BroadcastPlanner", "resolve_targets", "SEND_BATCH", "BROADCASTS_ENABLED",
    "dispatch_audience", "make_send_batch_processor",
    "BroadcastService",
]
