from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from common.config import BotSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformEvents:
    """Callbacks a meeting platform adapter reports into.

    All four must be invoked on the session's event loop. Adapters driven by
    native threads should hop over with ``loop.call_soon_threadsafe``.
    """

    on_audio_data: Callable[[bytes], None]
    on_meeting_end: Callable[[], None]
    on_error: Callable[[BaseException], None]
    on_bot_rejected: Callable[[], None]


class MeetingPlatform(Protocol):
    """What the session needs from a Zoom / Google Meet adapter.

    Audio handed to ``on_audio_data`` is 16 kHz mono 16-bit PCM.
    """

    def subscribe(self, events: PlatformEvents) -> None: ...

    async def join_meeting(self, meeting_url: str) -> None: ...

    async def leave_meeting(self) -> None: ...


def load_platform(path: str, settings: BotSettings) -> MeetingPlatform:
    """Build an adapter from a ``"package.module:factory"`` path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Platform must look like 'module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    logger.info("Loading meeting platform %s", path)
    return factory(settings)
