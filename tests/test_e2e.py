"""End-to-end tests: require Google Cloud credentials or are skipped."""

import asyncio
import os

import pytest

E2E = os.environ.get("RUN_E2E", "").lower() in ("1", "true", "yes")
pytestmark = pytest.mark.skipif(not E2E, reason="E2E tests disabled (set RUN_E2E=1)")


@pytest.mark.asyncio
async def test_google_stream_of_silence():
    from asr_service.transcriber import TranscriptionBridge
    from common.config import TranscribeSettings

    segments = []
    bridge = TranscriptionBridge(TranscribeSettings(), on_segment=segments.append)
    task = asyncio.create_task(bridge.run())

    # 2 seconds of silence in 100ms frames
    frame = b"\x00\x00" * 1600
    for _ in range(20):
        bridge.send_audio(frame)
        await asyncio.sleep(0.1)
    bridge.stop()

    await asyncio.wait_for(task, timeout=30)
    assert bridge.streams_opened == 1
    assert all(s.confidence >= 0.7 for s in segments)
