"""Shared test fixtures for the broadcast dispatch service."""
import asyncio
import time
from typing import Any, Optional

import pytest

from config.flags import FeatureFlags
from config.settings import (
    BroadcastConfig, DatabaseConfig, QueueConfig, Settings, TelegramConfig, reset_settings,
)
from job_queue.job_queue import JobQueue
from models.schemas import MediaRef


class FakeSender:
    """Records every send; chat ids in `failing` get False back."""

    def __init__(self, failing: Optional[set[int]] = None, raising: Optional[set[int]] = None):
        self.failing = failing or set()
        self.raising = raising or set()
        self.sent: list[tuple[int, str, Optional[MediaRef]]] = []
        self.closed = False

    async def send(self, chat_id: int, text: str, media: Optional[MediaRef] = None) -> bool:
        if chat_id in self.raising:
            raise RuntimeError(f"socket closed for {chat_id}")
        self.sent.append((chat_id, text, media))
        return chat_id not in self.failing

    async def close(self) -> None:
        self.closed = True


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll `predicate` until it is truthy or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def queue() -> JobQueue:
    """Fast queue: 10ms base backoff, 5ms idle poll."""
    return JobQueue(backoff_base_ms=10, backoff_cap_ms=200, poll_interval_ms=5)


@pytest.fixture
def flags() -> FeatureFlags:
    return FeatureFlags({"broadcasts_enabled": True})


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        queue=QueueConfig(backoff_base_ms=10, backoff_cap_ms=100, poll_interval_ms=5),
        broadcast=BroadcastConfig(chunk_size=25, pause_ms=0, rate_per_second=0),
        telegram=TelegramConfig(bot_token="TEST"),
        database=DatabaseConfig(job_store_backend="memory"),
        flags={"broadcasts_enabled": True},
    )


@pytest.fixture
def user_ids() -> list[int]:
    return list(range(1000, 1200))
