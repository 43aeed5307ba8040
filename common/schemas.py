from __future__ import annotations

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# --- Transcript ---

class TranscriptSegment(BaseModel):
    # camelCase on the wire, matching what the callback receiver already parses
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    speaker: str
    text: str
    start_time: float
    end_time: float
    is_partial: bool = False
    confidence: float = 0.0


# --- Session lifecycle ---

class SessionState(str, Enum):
    idle = "idle"
    joining = "joining"
    active = "active"
    shutting_down = "shutting_down"
    terminated = "terminated"


class ShutdownReason(str, Enum):
    meeting_ended = "meeting_ended"
    max_runtime = "max_runtime"
    sigterm = "sigterm"
    sigint = "sigint"
    error = "error"
    rejected = "rejected"
    fatal = "fatal"

    @property
    def is_failure(self) -> bool:
        return self in _FAILURE_REASONS


_FAILURE_REASONS = frozenset({ShutdownReason.error, ShutdownReason.rejected, ShutdownReason.fatal})


# --- Callback payloads: bot -> callback endpoint ---

class CompletedCallback(BaseModel):
    meeting_id: str
    user_id: str
    status: Literal["completed"] = "completed"
    transcript: str
    speaker_segments: list[TranscriptSegment]
    word_count: int
    duration_seconds: int


class FailedCallback(BaseModel):
    meeting_id: str
    user_id: str
    status: Literal["failed"] = "failed"
    error_message: str


CallbackPayload = Union[CompletedCallback, FailedCallback]
