from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from common.config import CallbackSettings
from common.schemas import CallbackPayload, CompletedCallback, FailedCallback, TranscriptSegment

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Callback-Secret"


class CallbackDeliveryClient:
    """Reports the meeting outcome to the callback endpoint.

    Delivery is retried with exponential backoff (1s, 2s) and then abandoned:
    ``send`` never raises. Requests carry no idempotency key, so a retry after a
    slow but successful attempt can deliver the same status twice.
    """

    def __init__(
        self,
        settings: CallbackSettings,
        meeting_id: str,
        user_id: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.meeting_id = meeting_id
        self.user_id = user_id
        self._transport = transport
        self._sleep = sleep

    async def send_success(
        self,
        transcript: str,
        segments: list[TranscriptSegment],
        word_count: int,
        duration_seconds: int,
    ) -> bool:
        logger.info(
            "Sending completed callback for meeting %s (%d words, %ds)",
            self.meeting_id, word_count, duration_seconds,
        )
        return await self.send(
            CompletedCallback(
                meeting_id=self.meeting_id,
                user_id=self.user_id,
                transcript=transcript,
                speaker_segments=segments,
                word_count=word_count,
                duration_seconds=duration_seconds,
            )
        )

    async def send_failure(self, error_message: str) -> bool:
        logger.info("Sending failure callback for meeting %s: %s", self.meeting_id, error_message)
        return await self.send(
            FailedCallback(
                meeting_id=self.meeting_id,
                user_id=self.user_id,
                error_message=error_message,
            )
        )

    async def send(self, payload: CallbackPayload) -> bool:
        """POST ``payload``. Returns True once delivered, False after all attempts fail."""
        body = payload.model_dump(mode="json", by_alias=True)
        headers = {"Content-Type": "application/json", SECRET_HEADER: self.settings.secret}
        attempts = self.settings.max_attempts
        last_error = ""

        async with httpx.AsyncClient(timeout=self.settings.timeout_s, transport=self._transport) as client:
            for attempt in range(attempts):
                try:
                    resp = await client.post(self.settings.url, json=body, headers=headers)
                    if resp.is_success:
                        logger.info("Callback delivered (attempt %d)", attempt + 1)
                        return True
                    last_error = f"status {resp.status_code}: {resp.text[:200]}"
                    logger.error("Callback attempt %d failed with %s", attempt + 1, last_error)
                except (httpx.HTTPError, httpx.InvalidURL) as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                    logger.error("Callback attempt %d error: %s", attempt + 1, last_error)

                if attempt < attempts - 1:
                    await self._sleep(2 ** attempt)

        logger.error(
            "All %d callback attempts failed for meeting %s (last error: %s)",
            attempts, self.meeting_id, last_error,
        )
        return False
