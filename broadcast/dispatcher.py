"""
Broadcast Dispatcher — executes one sendBatch chunk.

Recipients are sent to one at a time: the messaging provider enforces its
rate limit across the whole bot, so a single sequential sender paced at
`rate_per_second` is the only thing that keeps us under it. A failing
recipient is counted and skipped; it never aborts the batch.
"""
from __future__ import annotations

import asyncio
import inspect
import structlog
from typing import Any, Awaitable, Callable, Iterable, Optional

from channels.base import MessageSender
from models.schemas import DispatchResult, Job, MediaRef

logger = structlog.get_logger()

SendOne = Callable[[int, str], Awaitable[bool]]
ResultHook = Callable[[Job, DispatchResult], Any]


async def dispatch_audience(
    ids: Iterable[int],
    text: str,
    rate_per_second: float,
    send_one: SendOne,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DispatchResult:
    """Send `text` to every id in order and return the success/failed tally."""
    delay = 1.0 / rate_per_second if rate_per_second and rate_per_second > 0 else 0.0
    success = failed = 0

    for recipient in ids:
        try:
            ok = await send_one(recipient, text)
        except Exception as e:
            logger.warning("dispatch_recipient_error", recipient=recipient, error=str(e))
            ok = False

        if ok:
            success += 1
        else:
            failed += 1
            logger.info("dispatch_recipient_failed", recipient=recipient)

        if delay:
            await sleep(delay)

    logger.info("dispatch_complete", success=success, failed=failed, rps=rate_per_second)
    return DispatchResult(success=success, failed=failed)


def make_send_batch_processor(
    sender: MessageSender,
    rate_per_second: float,
    on_result: Optional[ResultHook] = None,
):
    """Build the `broadcast:sendBatch` processor bound to one sender."""

    async def process(payload: Any, job: Job) -> None:
        if not isinstance(payload, dict) or not isinstance(payload.get("userIds"), list):
            raise ValueError("sendBatch payload requires a userIds list")

        text = payload.get("text") or ""
        media = MediaRef.model_validate(payload["media"]) if payload.get("media") else None

        async def send_one(chat_id: int, message: str) -> bool:
            return await sender.send(chat_id, message, media)

        result = await dispatch_audience(payload["userIds"], text, rate_per_second, send_one)
        logger.info("broadcast_batch_sent",
                    job_id=job.id,
                    attempt=job.attempts,
                    recipients=len(payload["userIds"]),
                    success=result.success,
                    failed=result.failed)

        if on_result is not None:
            outcome = on_result(job, result)
            if inspect.isawaitable(outcome):
                await outcome

    return process
