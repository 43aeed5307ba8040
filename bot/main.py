from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Optional

import uvicorn
from fastapi import FastAPI

from common.config import BotSettings, CallbackSettings, TranscribeSettings
from common.schemas import ShutdownReason, TranscriptSegment
from asr_service.diarizer import DiarizationAggregator
from asr_service.transcriber import TranscriptionBridge
from bot.callback import CallbackDeliveryClient
from bot.platform import MeetingPlatform, load_platform
from bot.session import BotSessionController

logger = logging.getLogger(__name__)


def create_app(controller: BotSessionController, meeting_id: str) -> FastAPI:
    app = FastAPI(title="Meeting Bot")

    @app.get("/health")
    async def health():
        return {"status": "ok", "meeting_id": meeting_id, "state": controller.state.value}

    return app


class HealthServer(uvicorn.Server):
    """uvicorn server that leaves SIGTERM/SIGINT to the bot session."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def missing_settings(bot: BotSettings, callback: CallbackSettings) -> list[str]:
    required = {
        "BOT_MEETING_URL": bot.meeting_url,
        "BOT_MEETING_ID": bot.meeting_id,
        "BOT_USER_ID": bot.user_id,
        "CALLBACK_URL": callback.url,
    }
    return [name for name, value in required.items() if not value]


async def run_bot(
    platform: MeetingPlatform,
    settings: Optional[BotSettings] = None,
    transcribe_settings: Optional[TranscribeSettings] = None,
    callback_settings: Optional[CallbackSettings] = None,
    serve_health: bool = True,
) -> int:
    settings = settings or BotSettings()
    transcribe_settings = transcribe_settings or TranscribeSettings()
    callback_settings = callback_settings or CallbackSettings()

    aggregator = DiarizationAggregator()

    def on_segment(segment: TranscriptSegment) -> None:
        aggregator.append(segment)
        logger.info("[%s]: %s", segment.speaker, segment.text)

    transcriber = TranscriptionBridge(transcribe_settings, on_segment=on_segment)
    callback_client = CallbackDeliveryClient(callback_settings, settings.meeting_id, settings.user_id)
    controller = BotSessionController(platform, transcriber, aggregator, callback_client, settings)

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, controller.request_shutdown, ShutdownReason.sigterm)
    loop.add_signal_handler(signal.SIGINT, controller.request_shutdown, ShutdownReason.sigint)

    server: Optional[HealthServer] = None
    server_task: Optional[asyncio.Task] = None
    if serve_health:
        config = uvicorn.Config(
            create_app(controller, settings.meeting_id),
            host=settings.health_host,
            port=settings.health_port,
            log_level=settings.log_level.lower(),
        )
        server = HealthServer(config)
        server_task = asyncio.create_task(server.serve())
        logger.info("Health check server listening on port %d", settings.health_port)

    try:
        return await controller.start(settings)
    except Exception as exc:
        logger.exception("Fatal error")
        await controller.shutdown(ShutdownReason.fatal, str(exc) or "Fatal error")
        await controller.wait_terminated()
        return controller.exit_code or 1
    finally:
        loop.remove_signal_handler(signal.SIGTERM)
        loop.remove_signal_handler(signal.SIGINT)
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task


def main() -> None:
    settings = BotSettings()
    callback_settings = CallbackSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    missing = missing_settings(settings, callback_settings)
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        raise SystemExit(1)
    if not settings.platform:
        logger.error("BOT_PLATFORM is not set (expected 'module:factory')")
        raise SystemExit(1)

    platform = load_platform(settings.platform, settings)
    code = asyncio.run(run_bot(platform, settings, callback_settings=callback_settings))
    raise SystemExit(code)


if __name__ == "__main__":
    main()
