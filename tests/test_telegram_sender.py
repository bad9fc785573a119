"""
Tests for TelegramSender against an httpx.MockTransport.

No network: every request is answered by a scripted handler.
"""
import json

import httpx
import pytest

from channels.base import PermanentSendError, SendMetrics, TransientSendError, classify_status
from channels.telegram import TelegramSender
from config.settings import BroadcastConfig, TelegramConfig
from models.schemas import MediaKind, MediaRef


class ScriptedBotApi:
    """Replays `responses` in order (the last one repeats) and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(step, Exception):
            raise step
        status, body = step
        return httpx.Response(status, json=body)

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


OK = (200, {"ok": True, "result": {"message_id": 1}})


def _sender(api: ScriptedBotApi, **config) -> TelegramSender:
    return TelegramSender(
        TelegramConfig(bot_token="123:ABC", **config),
        max_attempts=3,
        backoff_ms=0,
        transport=httpx.MockTransport(api),
    )


class TestClassifyStatus:
    def test_success(self):
        assert classify_status(200) is None
        assert classify_status(204) is None

    def test_retryable(self):
        assert classify_status(429) is TransientSendError
        assert classify_status(500) is TransientSendError
        assert classify_status(503) is TransientSendError

    def test_permanent(self):
        assert classify_status(400) is PermanentSendError
        assert classify_status(403) is PermanentSendError


class TestSendMetrics:
    def test_counters_and_rates(self):
        metrics = SendMetrics("telegram")
        metrics.record_send(10.0)
        metrics.record_send(30.0)
        metrics.record_send()
        metrics.record_failure("Forbidden")
        metrics.record_retry()

        assert metrics.avg_latency_ms == 20.0
        assert metrics.failure_rate == 0.25
        assert metrics.to_dict() == {
            "channel": "telegram",
            "sent": 3,
            "failed": 1,
            "retries": 1,
            "avg_latency_ms": 20.0,
            "failure_rate": 0.25,
            "recent_errors": ["Forbidden"],
        }

    def test_empty(self):
        metrics = SendMetrics("telegram")
        assert metrics.avg_latency_ms == 0.0
        assert metrics.failure_rate == 0.0


class TestTelegramSender:
    @pytest.mark.asyncio
    async def test_text_message(self):
        api = ScriptedBotApi(OK)
        sender = _sender(api)

        assert await sender.send(42, "hello") is True
        await sender.close()

        assert api.requests[0].url.path == "/bot123:ABC/sendMessage"
        assert api.bodies() == [{"chat_id": 42, "text": "hello"}]
        assert sender.metrics.messages_sent == 1

    @pytest.mark.asyncio
    async def test_parse_mode_forwarded(self):
        api = ScriptedBotApi(OK)
        sender = _sender(api, parse_mode="HTML")
        await sender.send(1, "<b>hi</b>")
        await sender.close()
        assert api.bodies()[0]["parse_mode"] == "HTML"

    @pytest.mark.asyncio
    async def test_photo_uses_caption(self):
        api = ScriptedBotApi(OK)
        sender = _sender(api)
        media = MediaRef(url="https://cdn.example.com/a.jpg")

        assert await sender.send(7, "sale!", media) is True
        await sender.close()

        assert api.requests[0].url.path.endswith("/sendPhoto")
        assert api.bodies() == [{"chat_id": 7, "photo": "https://cdn.example.com/a.jpg", "caption": "sale!"}]

    @pytest.mark.asyncio
    async def test_video(self):
        api = ScriptedBotApi(OK)
        sender = _sender(api)
        await sender.send(7, "watch", MediaRef(url="https://cdn.example.com/a.mp4", kind=MediaKind.VIDEO))
        await sender.close()

        assert api.requests[0].url.path.endswith("/sendVideo")
        assert api.bodies()[0]["video"] == "https://cdn.example.com/a.mp4"

    @pytest.mark.asyncio
    async def test_rate_limited_then_ok(self):
        too_many = (429, {"ok": False, "description": "Too Many Requests", "parameters": {"retry_after": 1}})
        api = ScriptedBotApi(too_many, too_many, OK)
        sender = _sender(api)

        assert await sender.send(1, "x") is True
        await sender.close()

        assert len(api.requests) == 3
        assert sender.metrics.retries == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_attempts(self):
        api = ScriptedBotApi((502, {"ok": False, "description": "Bad Gateway"}))
        sender = _sender(api)

        assert await sender.send(1, "x") is False
        await sender.close()

        assert len(api.requests) == 3
        assert sender.metrics.messages_failed == 1

    @pytest.mark.asyncio
    async def test_forbidden_not_retried(self):
        api = ScriptedBotApi((403, {"ok": False, "description": "Forbidden: bot was blocked by the user"}))
        sender = _sender(api)

        assert await sender.send(1, "x") is False
        await sender.close()

        assert len(api.requests) == 1
        assert "blocked" in sender.metrics.to_dict()["recent_errors"][-1]

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        api = ScriptedBotApi(httpx.ConnectError("connection refused"), OK)
        sender = _sender(api)

        assert await sender.send(1, "x") is True
        await sender.close()
        assert len(api.requests) == 2

    @pytest.mark.asyncio
    async def test_from_settings(self):
        api = ScriptedBotApi((500, {"ok": False}))
        sender = TelegramSender.from_settings(
            TelegramConfig(bot_token="t"),
            BroadcastConfig(send_max_attempts=2, send_backoff_ms=0),
            transport=httpx.MockTransport(api),
        )
        assert await sender.send(1, "x") is False
        await sender.close()
        assert len(api.requests) == 2
