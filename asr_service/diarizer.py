from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from common.schemas import TranscriptSegment

logger = logging.getLogger(__name__)

HOST_ROLE = "Flow_Engineer"
GUEST_ROLE = "Client"


class DiarizationAggregator:
    """Collects finalized segments and renders a speaker-tagged transcript.

    Output format::

        [Speaker 0]: Thanks for joining today. Let's walk through your process.

        [Speaker 1]: Sure. Right now we manage everything through spreadsheets.
    """

    def __init__(self) -> None:
        self._segments: list[TranscriptSegment] = []
        self._speaker_order: list[str] = []
        self.min_start: Optional[float] = None
        self.max_end: Optional[float] = None

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def segments(self) -> list[TranscriptSegment]:
        return list(self._segments)

    def append(self, segment: TranscriptSegment) -> None:
        self._segments.append(segment)
        if segment.speaker not in self._speaker_order:
            self._speaker_order.append(segment.speaker)
        if self.min_start is None or segment.start_time < self.min_start:
            self.min_start = segment.start_time
        if self.max_end is None or segment.end_time > self.max_end:
            self.max_end = segment.end_time

    def get_formatted_transcript(self) -> str:
        return self._render(lambda speaker: speaker)

    def get_speakers(self) -> list[str]:
        return sorted(self._speaker_order)

    def speakers_in_order(self) -> list[str]:
        return list(self._speaker_order)

    def duration_seconds(self) -> int:
        if self.min_start is None or self.max_end is None:
            return 0
        # halves round up
        return math.floor(self.max_end - self.min_start + 0.5)

    def word_count(self) -> int:
        return sum(len(seg.text.split()) for seg in self._segments)

    def map_speaker_labels(self, label_map: Optional[dict[str, str]] = None) -> str:
        """Render the transcript with speaker tags replaced.

        Without an explicit map the first speaker heard is taken to be the host
        engineer and the second the client; anyone else keeps the raw label.
        Only whole tags are replaced, never text inside a paragraph.
        """
        if label_map is None:
            label_map = {}
            roles = (HOST_ROLE, GUEST_ROLE)
            for speaker, role in zip(self._speaker_order, roles):
                label_map[speaker] = role
            logger.debug("Default speaker mapping: %s", label_map)
        return self._render(lambda speaker: label_map.get(speaker, speaker))

    def _render(self, label: Callable[[str], str]) -> str:
        paragraphs: list[list[str]] = []
        current_speaker: Optional[str] = None
        for seg in self._segments:
            if seg.speaker != current_speaker:
                current_speaker = seg.speaker
                paragraphs.append([f"[{label(seg.speaker)}]:", seg.text])
            else:
                paragraphs[-1].append(seg.text)
        return "\n\n".join(" ".join(p) for p in paragraphs)
