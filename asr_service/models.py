"""Vendor-neutral recognition results consumed by the interpreter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RecognizedWord:
    """One recognized item.

    ``is_punctuation`` is for services that emit punctuation as separate
    items; Google attaches it to the word text and never sets the flag.
    """

    content: str
    start_time: float = 0.0
    end_time: float = 0.0
    confidence: Optional[float] = None
    speaker: Optional[int] = None
    is_punctuation: bool = False


@dataclass
class RecognitionResult:
    is_final: bool
    words: list[RecognizedWord] = field(default_factory=list)
    transcript: str = ""
