"""Completion events delivered to the call state machine.

Every event carries the session generation it was started under; the engine
discards events whose generation no longer matches the live session.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CallEvent:
    generation: int


@dataclass(frozen=True)
class ConnectElapsed(CallEvent):
    """The simulated connection delay finished."""


@dataclass(frozen=True)
class PlaybackStarted(CallEvent):
    """Audio output began."""

    playback_id: str = ""


@dataclass(frozen=True)
class PlaybackFinished(CallEvent):
    """Playback reported completion or failure."""

    playback_id: str = ""
    failed: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class CaptureCompleted(CallEvent):
    """Speech capture reported the end of the utterance."""

    handle_id: str = ""


@dataclass(frozen=True)
class ProcessingFinished(CallEvent):
    """Transcription and reasoning produced a turn pair (real or fallback)."""

    user_text: str = ""
    reply_text: str = ""
    used_fallback: bool = False
