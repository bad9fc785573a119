"""
Tests for dispatch_audience and the sendBatch processor.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from broadcast.dispatcher import dispatch_audience, make_send_batch_processor
from broadcast.planner import SEND_BATCH, BroadcastPlanner
from conftest import FakeSender
from models.schemas import DispatchResult, Job, JobStatus, MediaKind


def _job(job_id: int = 1, attempts: int = 1) -> Job:
    return Job(id=job_id, type=SEND_BATCH, attempts=attempts)


class TestDispatchAudience:
    @pytest.mark.asyncio
    async def test_unlimited_rate_never_sleeps(self):
        sleep = AsyncMock()
        send_one = AsyncMock(return_value=True)

        result = await dispatch_audience([1, 2, 3], "hi", 0, send_one, sleep=sleep)

        assert (result.success, result.failed) == (3, 0)
        assert send_one.await_count == 3
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paced_after_every_send(self):
        sleep = AsyncMock()
        send_one = AsyncMock(return_value=True)

        await dispatch_audience([1, 2, 3, 4], "hi", 4, send_one, sleep=sleep)

        assert sleep.await_count == 4
        sleep.assert_awaited_with(0.25)

    @pytest.mark.asyncio
    async def test_failed_recipient_counted(self):
        async def send_one(chat_id, text):
            return chat_id != 2

        result = await dispatch_audience([1, 2, 3], "hi", 0, send_one)
        assert (result.success, result.failed) == (2, 1)
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_raising_recipient_counted_as_failed(self):
        async def send_one(chat_id, text):
            if chat_id == 1:
                raise ConnectionError("reset by peer")
            return True

        result = await dispatch_audience([1, 2], "hi", 0, send_one)
        assert (result.success, result.failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_empty_audience(self):
        send_one = AsyncMock()
        result = await dispatch_audience([], "hi", 10, send_one)
        assert result == DispatchResult(success=0, failed=0)
        send_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_sequential_in_order(self):
        order = []
        active = 0
        peak = 0

        async def send_one(chat_id, text):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            order.append(chat_id)
            active -= 1
            return True

        await dispatch_audience([5, 3, 9, 1], "hi", 0, send_one)
        assert order == [5, 3, 9, 1]
        assert peak == 1


class TestSendBatchProcessor:
    @pytest.mark.asyncio
    async def test_sends_text_to_every_id(self, sender):
        process = make_send_batch_processor(sender, 0)
        await process({"userIds": [1, 2], "text": "promo", "media": None}, _job())

        assert sender.sent == [(1, "promo", None), (2, "promo", None)]

    @pytest.mark.asyncio
    async def test_media_passed_to_sender(self, sender):
        process = make_send_batch_processor(sender, 0)
        payload = {"userIds": [1], "text": "look", "media": {"url": "https://x/y.jpg", "kind": "photo"}}
        await process(payload, _job())

        _, text, media = sender.sent[0]
        assert text == "look"
        assert media.url == "https://x/y.jpg"
        assert media.kind == MediaKind.PHOTO

    @pytest.mark.asyncio
    async def test_result_hook(self):
        hook = MagicMock()
        process = make_send_batch_processor(FakeSender(failing={2}), 0, on_result=hook)
        job = _job(7)
        await process({"userIds": [1, 2, 3], "text": "x"}, job)

        hook.assert_called_once()
        seen_job, result = hook.call_args.args
        assert seen_job.id == 7
        assert (result.success, result.failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_async_result_hook(self, sender):
        hook = AsyncMock()
        process = make_send_batch_processor(sender, 0, on_result=hook)
        await process({"userIds": [1], "text": "x"}, _job())
        hook.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, {}, {"userIds": "1,2"}, ["not", "a", "dict"]])
    async def test_malformed_payload_raises(self, sender, payload):
        process = make_send_batch_processor(sender, 0)
        with pytest.raises(ValueError):
            await process(payload, _job())
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_recipient_failures_do_not_fail_job(self, queue, flags):
        sender = FakeSender(failing={3}, raising={4})
        planner = BroadcastPlanner(queue, flags)
        plan = await planner.plan(segment=[1, 2, 3, 4, 5], text="x", chunk_size=2, pause_ms=0)

        queue.start({SEND_BATCH: make_send_batch_processor(sender, 0)})
        assert await queue.join(timeout=2)
        await queue.stop()

        jobs = [queue.get_job(i) for i in plan.job_ids]
        assert all(j.status == JobStatus.COMPLETED and j.attempts == 1 for j in jobs)
        assert [c for c, _, _ in sender.sent] == [1, 2, 3, 5]
