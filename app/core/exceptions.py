"""Error taxonomy for the emergency call engine."""


class CallError(Exception):
    """Base class for call engine errors."""


class PermissionDenied(CallError):
    """Microphone permission was not granted."""


class DeviceBusy(CallError):
    """A capture is already holding the microphone."""


class CaptureClosed(CallError):
    """Audio was written to a capture handle that is no longer recording."""


class EmptyRecording(CallError):
    """Capture finished without any audio."""


class TranscriptionFailed(CallError):
    """Speech-to-text request failed or returned nothing usable."""


class ReasoningFailed(CallError):
    """Language model request failed or returned a malformed reply."""


class PlaybackFailed(CallError):
    """Speech synthesis or audio output failed."""


class InvalidTransition(CallError):
    """The call state machine was asked to make an illegal transition."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Illegal call state transition: {current} -> {target}")


class PlaybackStopped(PlaybackFailed):
    """Audio output was stopped before the clip finished."""
