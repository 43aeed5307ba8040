from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, Optional

from common.config import BotSettings
from common.schemas import SessionState, ShutdownReason
from asr_service.diarizer import DiarizationAggregator
from asr_service.transcriber import TranscriptionBridge
from bot.callback import CallbackDeliveryClient
from bot.platform import MeetingPlatform, PlatformEvents

logger = logging.getLogger(__name__)

REJECTED_MESSAGE = "Bot was denied access by the meeting host"


class BotSessionController:
    """One bot lifecycle: join, transcribe, shut down exactly once, report.

    Every trigger (platform events, the runtime deadline, process signals and
    stream errors) ends up in ``shutdown``; only the first call runs it.
    """

    def __init__(
        self,
        platform: MeetingPlatform,
        transcriber: TranscriptionBridge,
        aggregator: DiarizationAggregator,
        callback_client: CallbackDeliveryClient,
        settings: Optional[BotSettings] = None,
    ) -> None:
        self.platform = platform
        self.transcriber = transcriber
        self.aggregator = aggregator
        self.callback_client = callback_client
        # field defaults only, without reading the environment
        self.settings = settings if settings is not None else BotSettings.model_construct()

        self.state = SessionState.idle
        self.shutdown_reason: Optional[ShutdownReason] = None
        self.exit_code = 0
        self.callback_delivered = False

        self.events = PlatformEvents(
            on_audio_data=self._on_audio_data,
            on_meeting_end=self._on_meeting_end,
            on_error=self._on_error,
            on_bot_rejected=self._on_bot_rejected,
        )
        self._shutting_down = False
        self._terminated = asyncio.Event()
        self._timers: list[asyncio.TimerHandle] = []
        self._transcribe_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    async def start(self, settings: Optional[BotSettings] = None) -> int:
        """Run the session until it terminates. Returns the process exit code."""
        if settings is not None:
            self.settings = settings
        logger.info(
            "Starting bot for meeting %s (meeting_id=%s, user_id=%s)",
            self.settings.meeting_url, self.settings.meeting_id, self.settings.user_id,
        )

        self._arm_timers()
        self.platform.subscribe(self.events)

        if not self._shutting_down:
            self._set_state(SessionState.joining)
            try:
                await self.platform.join_meeting(self.settings.meeting_url)
            except Exception as exc:
                logger.exception("Failed to join meeting")
                await self.shutdown(ShutdownReason.error, str(exc) or type(exc).__name__)
            else:
                if self.state is SessionState.joining:
                    logger.info("Joined meeting")
                    self._set_state(SessionState.active)
                    self._transcribe_task = asyncio.create_task(self.transcriber.run())
                    self._transcribe_task.add_done_callback(self._on_transcription_done)

        await self._terminated.wait()
        return self.exit_code

    async def wait_terminated(self) -> None:
        await self._terminated.wait()

    def request_shutdown(self, reason: ShutdownReason, message: Optional[str] = None) -> None:
        """Schedule ``shutdown`` from sync code (signal handlers, timers, events)."""
        if self._shutting_down:
            logger.debug("Shutdown already in progress, ignoring %s", reason.value)
            return
        self._spawn(self.shutdown(reason, message))

    async def shutdown(self, reason: ShutdownReason, message: Optional[str] = None) -> None:
        if self._shutting_down:
            logger.debug("Shutdown already in progress, ignoring %s", reason.value)
            return
        self._shutting_down = True
        self.shutdown_reason = reason
        self._set_state(SessionState.shutting_down)
        logger.info("Shutting down bot. Reason: %s%s", reason.value, f" ({message})" if message else "")

        try:
            await self._stop_transcription()
            await self._leave_meeting()

            if self.settings.map_speaker_roles:
                transcript = self.aggregator.map_speaker_labels()
            else:
                transcript = self.aggregator.get_formatted_transcript()

            if reason.is_failure:
                self.exit_code = 1
                self.callback_delivered = await self.callback_client.send_failure(message or reason.value)
            else:
                self.callback_delivered = await self.callback_client.send_success(
                    transcript=transcript,
                    segments=self.aggregator.segments,
                    word_count=self.aggregator.word_count(),
                    duration_seconds=self.aggregator.duration_seconds(),
                )
        except Exception as exc:
            logger.exception("Shutdown error")
            self.exit_code = 1
            try:
                await self.callback_client.send_failure(f"Shutdown error: {exc}")
            except Exception:
                logger.debug("Last-resort failure callback raised", exc_info=True)
        finally:
            self._cancel_timers()
            self._set_state(SessionState.terminated)
            self._terminated.set()

    # --- platform events ---

    def _on_audio_data(self, chunk: bytes) -> None:
        self.transcriber.send_audio(chunk)

    def _on_meeting_end(self) -> None:
        logger.info("Meeting ended")
        self.request_shutdown(ShutdownReason.meeting_ended)

    def _on_error(self, error: BaseException) -> None:
        logger.error("Meeting platform error: %s", error)
        self.request_shutdown(ShutdownReason.error, str(error) or type(error).__name__)

    def _on_bot_rejected(self) -> None:
        logger.info("Bot was rejected by host")
        self.request_shutdown(ShutdownReason.rejected, REJECTED_MESSAGE)

    # --- internals ---

    def _on_transcription_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Transcription stream failed: %s", exc, exc_info=exc)
            self.request_shutdown(ShutdownReason.error, str(exc) or type(exc).__name__)

    async def _stop_transcription(self) -> None:
        self.transcriber.stop()
        task = self._transcribe_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.settings.drain_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Transcription did not drain within %.1fs, cancelling", self.settings.drain_timeout_s)
            task.cancel()
        except Exception as exc:
            # already reported through _on_transcription_done
            logger.warning("Transcription ended with error during drain: %s", exc)

    async def _leave_meeting(self) -> None:
        try:
            await self.platform.leave_meeting()
        except Exception:
            logger.warning("Failed to leave meeting cleanly", exc_info=True)

    def _arm_timers(self) -> None:
        loop = asyncio.get_running_loop()
        max_runtime = self.settings.max_runtime_s
        self._timers.append(loop.call_later(max_runtime, self._on_deadline))

        warn_at = max_runtime - self.settings.runtime_warning_s
        if warn_at > 0:
            self._timers.append(loop.call_later(warn_at, self._on_runtime_warning))

    def _on_deadline(self) -> None:
        logger.info("Maximum runtime reached (%.0fs). Shutting down...", self.settings.max_runtime_s)
        self.request_shutdown(ShutdownReason.max_runtime)

    def _on_runtime_warning(self) -> None:
        logger.warning(
            "%.0f minutes remaining before auto-disconnect", self.settings.runtime_warning_s / 60
        )

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def _set_state(self, state: SessionState) -> None:
        logger.info("Session state %s -> %s", self.state.value, state.value)
        self.state = state

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
