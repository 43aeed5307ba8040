from __future__ import annotations

import logging
from dataclasses import dataclass, field

from common.schemas import TranscriptSegment
from asr_service.models import RecognitionResult

logger = logging.getLogger(__name__)

DEFAULT_SPEAKER = "Speaker 0"


def speaker_label(index: int) -> str:
    return f"Speaker {index}"


@dataclass
class _OpenSegment:
    speaker: str
    parts: list[str] = field(default_factory=list)
    confidences: list[float] = field(default_factory=list)
    start_time: float = 0.0
    end_time: float = 0.0

    def close(self, offset: float) -> TranscriptSegment:
        return TranscriptSegment(
            speaker=self.speaker,
            text="".join(self.parts).strip(),
            start_time=round(offset + self.start_time, 3),
            end_time=round(offset + self.end_time, 3),
            is_partial=False,
            confidence=round(sum(self.confidences) / len(self.confidences), 4),
        )


class ResultInterpreter:
    """Turns final recognition results into speaker-split transcript segments.

    Words below ``min_confidence`` are skipped entirely: they add no text or
    confidence and never open or close a segment.
    """

    def __init__(self, min_confidence: float = 0.7) -> None:
        self.min_confidence = min_confidence
        self.skipped_words = 0

    def interpret(self, result: RecognitionResult, offset: float = 0.0) -> list[TranscriptSegment]:
        if not result.is_final:
            return []

        segments: list[TranscriptSegment] = []
        current: _OpenSegment | None = None
        speaker = DEFAULT_SPEAKER

        for word in result.words:
            if word.is_punctuation:
                if current is not None and current.parts:
                    current.parts.append(word.content)
                continue

            confidence = 1.0 if word.confidence is None else word.confidence
            if confidence < self.min_confidence:
                self.skipped_words += 1
                continue

            if word.speaker is not None:
                speaker = speaker_label(word.speaker)

            if current is None or current.speaker != speaker:
                if current is not None:
                    segments.append(current.close(offset))
                current = _OpenSegment(speaker=speaker, start_time=word.start_time)

            current.parts.append(f" {word.content}" if current.parts else word.content)
            current.confidences.append(confidence)
            current.end_time = word.end_time

        if current is not None:
            segments.append(current.close(offset))
        elif result.words:
            logger.debug("Dropped final result with no confident words: %r", result.transcript)
        return segments
