from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable

from google.cloud import speech_v1p1beta1 as speech

from common.config import TranscribeSettings
from common.schemas import TranscriptSegment
from asr_service.bridge import END_OF_STREAM, AudioStreamBridge
from asr_service.interpreter import ResultInterpreter
from asr_service.models import RecognitionResult, RecognizedWord

logger = logging.getLogger(__name__)

BYTES_PER_SAMPLE = 2  # 16-bit PCM

_client: speech.SpeechAsyncClient | None = None


def get_client() -> speech.SpeechAsyncClient:
    global _client
    if _client is None:
        logger.info("Creating Google Cloud Speech streaming client")
        _client = speech.SpeechAsyncClient()
    return _client


def to_recognition_result(result) -> RecognitionResult:
    """Convert a ``StreamingRecognitionResult`` into the neutral model."""
    if not result.alternatives:
        return RecognitionResult(is_final=result.is_final)
    alternative = result.alternatives[0]
    words = [
        RecognizedWord(
            content=w.word,
            start_time=w.start_time.total_seconds(),
            end_time=w.end_time.total_seconds(),
            # proto3 reports unset confidence as 0.0
            confidence=w.confidence if w.confidence else None,
            speaker=w.speaker_tag or None,
        )
        for w in alternative.words
    ]
    return RecognitionResult(
        is_final=result.is_final,
        words=words,
        transcript=alternative.transcript,
    )


def drop_consumed_words(
    result: RecognitionResult, consumed_until: float | None
) -> tuple[RecognitionResult, float | None]:
    """Keep only words ending after ``consumed_until``.

    With speaker diarization enabled, every final result carries all words
    since the stream began. Returns the trimmed result and the new mark.
    """
    words = result.words
    if consumed_until is not None:
        words = [w for w in words if w.end_time > consumed_until]
    if words:
        consumed_until = max(w.end_time for w in words)
    return replace(result, words=words), consumed_until


@dataclass
class _StreamStats:
    bytes_sent: int = 0
    chunks_sent: int = 0


class TranscriptionBridge:
    """Streams pushed meeting audio to Google Cloud Speech.

    Audio arrives via ``send_audio`` (push) and is pulled by the streaming
    request generator. Final results become segments passed to ``on_segment``
    in the order the service finalizes them.
    """

    def __init__(
        self,
        settings: TranscribeSettings,
        on_segment: Callable[[TranscriptSegment], None],
        client: speech.SpeechAsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._on_segment = on_segment
        self._client = client
        self._audio = AudioStreamBridge()
        self._interpreter = ResultInterpreter(min_confidence=settings.min_confidence)
        self.segments_emitted = 0
        self.streams_opened = 0

    @property
    def stopped(self) -> bool:
        return self._audio.stopped

    def send_audio(self, chunk: bytes) -> None:
        self._audio.send_audio(chunk)

    def stop(self) -> None:
        self._audio.stop()

    async def run(self) -> None:
        """Stream until stopped and drained. Raises on transport errors while live."""
        client = self._client or get_client()
        offset = 0.0
        try:
            while True:
                stats = await self._stream_once(client, offset)
                offset += stats.bytes_sent / (self.settings.sample_rate * BYTES_PER_SAMPLE)
                if self._audio.exhausted:
                    break
        except Exception as exc:
            if self._audio.stopped:
                logger.info("Transcription stream closed after stop: %s", exc)
                return
            raise
        logger.info(
            "Transcription finished: %d segments over %d stream(s), %.1fs of audio",
            self.segments_emitted, self.streams_opened, offset,
        )

    async def _stream_once(self, client: speech.SpeechAsyncClient, offset: float) -> _StreamStats:
        stats = _StreamStats()
        self.streams_opened += 1
        logger.info("Opening recognition stream #%d at offset=%.1fs", self.streams_opened, offset)

        # word times restart at zero on every stream
        consumed_until: float | None = None
        requests = self._requests(stats)
        try:
            responses = await client.streaming_recognize(requests=requests)
            async for response in responses:
                for result in response.results:
                    recognized = to_recognition_result(result)
                    if recognized.is_final:
                        recognized, consumed_until = drop_consumed_words(recognized, consumed_until)
                    self._handle_result(recognized, offset)
        finally:
            try:
                await requests.aclose()
            except RuntimeError:
                # still being pulled by the transport, which cancels it on teardown
                logger.debug("Request stream for #%d still in use at close", self.streams_opened)

        logger.info("Recognition stream #%d closed after %d chunks", self.streams_opened, stats.chunks_sent)
        return stats

    async def _requests(self, stats: _StreamStats):
        yield speech.StreamingRecognizeRequest(streaming_config=self._streaming_config())

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.stream_limit_s
        while True:
            chunk = await self._audio.next_chunk()
            if chunk is END_OF_STREAM:
                return
            stats.bytes_sent += len(chunk)
            stats.chunks_sent += 1
            yield speech.StreamingRecognizeRequest(audio_content=chunk)
            if loop.time() >= deadline:
                # half-close; run() reopens and carries on from the queue
                return

    def _streaming_config(self) -> speech.StreamingRecognitionConfig:
        s = self.settings
        config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=s.sample_rate,
            audio_channel_count=1,
            language_code=s.language_code,
            enable_word_confidence=True,
            enable_word_time_offsets=True,
            diarization_config=speech.SpeakerDiarizationConfig(
                enable_speaker_diarization=s.diarization,
                min_speaker_count=s.min_speakers,
                max_speaker_count=s.max_speakers,
            ),
        )
        return speech.StreamingRecognitionConfig(config=config, interim_results=s.interim_results)

    def _handle_result(self, result: RecognitionResult, offset: float) -> None:
        for segment in self._interpreter.interpret(result, offset):
            self.segments_emitted += 1
            self._on_segment(segment)
