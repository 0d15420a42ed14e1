"""Call session models."""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.services.speech.capture import CaptureHandle


class CallState(str, Enum):
    """Lifecycle states of an emergency call."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_GREETING_PLAYBACK = "awaiting_greeting_playback"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ENDED = "ended"

    def __str__(self) -> str:
        """Return the string value of the state."""
        return self.value


class Role(str, Enum):
    """Speaker of a turn."""

    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One utterance in the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    text: str
    sequence: int


class PlaybackHandle(BaseModel):
    """Marks the audio output as owned by the session while it speaks."""

    model_config = ConfigDict(frozen=True)

    text: str
    generation: int
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)


class CallSession:
    """Aggregate root of one emergency call. Owns the conversation history."""

    def __init__(self, generation: int = 0):
        self.id = uuid.uuid4().hex
        self.generation = generation
        self.state = CallState.IDLE
        self.history: List[Turn] = []
        self.started_at: Optional[datetime] = None
        self.ended_at: Optional[datetime] = None
        self.active_recording: Optional[CaptureHandle] = None
        self.active_playback: Optional[PlaybackHandle] = None
        self.transcript = ""
        self.response_text = ""
        self.error: Optional[str] = None

    def append_turn(self, role: Role, text: str) -> Turn:
        """Append a turn with the next sequence number."""
        sequence = self.history[-1].sequence + 1 if self.history else 1
        turn = Turn(role=role, text=text, sequence=sequence)
        self.history.append(turn)
        return turn

    def clear_history(self) -> None:
        self.history = []

    @property
    def turn_count(self) -> int:
        return len(self.history)


class CallSnapshot(BaseModel):
    """Read-only view of a call for the UI."""

    session_id: str
    state: CallState
    transcript: str = ""
    response_text: str = ""
    elapsed_seconds: int = 0
    elapsed_display: str = "00:00"
    history: List[Turn] = []
    error: Optional[str] = None
    primary_action: Optional[str] = None
    primary_action_enabled: bool = False
    recording: bool = False
    speaking: bool = False
