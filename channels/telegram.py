"""
Telegram Sender — Bot API client used by the broadcast dispatcher.

Outbound only:
- Text → sendMessage (chat_id, text)
- Photo / video → sendPhoto / sendVideo with the text as caption
- Retries only on 429 / 5xx / transport errors with exponential backoff;
  every other non-2xx is a permanent per-recipient failure.

API Docs: https://core.telegram.org/bots/api
"""
from __future__ import annotations

import time
import structlog
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying, RetryCallState,
    retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from channels.base import (
    PermanentSendError, SendMetrics, TransientSendError, classify_status,
)
from config.settings import BroadcastConfig, TelegramConfig
from models.schemas import MediaKind, MediaRef

logger = structlog.get_logger()

_MEDIA_METHODS = {
    MediaKind.PHOTO: ("sendPhoto", "photo"),
    MediaKind.VIDEO: ("sendVideo", "video"),
}


class TelegramSender:
    """Bot API sender with bounded per-recipient retry."""

    def __init__(
        self,
        config: TelegramConfig,
        max_attempts: int = 3,
        backoff_ms: int = 500,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.max_attempts = max(1, max_attempts)
        self.backoff_ms = backoff_ms
        self.metrics = SendMetrics("telegram")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, telegram: TelegramConfig, broadcast: BroadcastConfig,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> TelegramSender:
        return cls(
            telegram,
            max_attempts=broadcast.send_max_attempts,
            backoff_ms=broadcast.send_backoff_ms,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.config.api_base.rstrip('/')}/bot{self.config.bot_token}",
                timeout=httpx.Timeout(self.config.timeout_s, connect=10.0),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    def _build_request(self, chat_id: int, text: str, media: Optional[MediaRef]) -> tuple[str, dict[str, Any]]:
        if media is None:
            method, body = "sendMessage", {"chat_id": chat_id, "text": text}
        else:
            method, field = _MEDIA_METHODS[media.kind]
            body = {"chat_id": chat_id, field: media.url, "caption": text}
        if self.config.parse_mode:
            body["parse_mode"] = self.config.parse_mode
        return method, body

    async def _post_once(self, method: str, body: dict[str, Any]) -> None:
        client = await self._get_client()
        try:
            resp = await client.post(f"/{method}", json=body)
        except httpx.TransportError as e:
            raise TransientSendError(f"{type(e).__name__}: {e}") from e

        error_cls = classify_status(resp.status_code)
        if error_cls is None:
            return

        description = ""
        retry_after = None
        try:
            data = resp.json()
            description = data.get("description", "")
            retry_after = (data.get("parameters") or {}).get("retry_after")
        except ValueError:
            description = resp.text[:200]

        if error_cls is TransientSendError:
            raise TransientSendError(description or f"HTTP {resp.status_code}",
                                     status=resp.status_code, retry_after=retry_after)
        raise PermanentSendError(description or f"HTTP {resp.status_code}", status=resp.status_code)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self.metrics.record_retry()
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("telegram_send_retry",
                       attempt=retry_state.attempt_number,
                       status=getattr(exc, "status", None),
                       retry_after=getattr(exc, "retry_after", None),
                       error=str(exc))

    async def send(self, chat_id: int, text: str, media: Optional[MediaRef] = None) -> bool:
        """Deliver one message. Returns False instead of raising on failure."""
        method, body = self._build_request(chat_id, text, media)
        start = time.monotonic()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_ms / 1000.0, min=0, max=30),
            retry=retry_if_exception_type(TransientSendError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._post_once(method, body)
        except PermanentSendError as e:
            self.metrics.record_failure(str(e))
            logger.info("telegram_send_rejected", chat_id=chat_id, status=e.status, error=str(e))
            return False
        except TransientSendError as e:
            self.metrics.record_failure(str(e))
            logger.warning("telegram_send_exhausted",
                           chat_id=chat_id,
                           attempts=self.max_attempts,
                           error=str(e))
            return False

        self.metrics.record_send((time.monotonic() - start) * 1000)
        return True

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
