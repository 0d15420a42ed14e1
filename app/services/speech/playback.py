"""Speech playback with on-device fallback."""
import logging
from enum import Enum
from typing import AsyncIterator, Optional

from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import CallError, PlaybackStopped
from app.services.speech.output import AudioOutput, PlaybackClip
from app.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)


class PlaybackEventType(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class PlaybackEvent(BaseModel):
    type: PlaybackEventType
    source: Optional[str] = None  # "remote" or "device"
    error: Optional[str] = None


class FallbackVoice(BaseModel):
    """Parameters for the on-device synthesizer: a calm, lower-pitched voice."""

    language: str = "en-US"
    pitch: float = 0.85
    rate: float = 0.9


class SpeechPlayback:
    """Speaks replies through the loudspeaker.

    Uses the remote voice-synthesis service first and falls back to the
    on-device synthesizer. Each `speak` call ends with exactly one
    completed or failed event.
    """

    def __init__(
        self,
        tts: TextToSpeechService,
        output: AudioOutput,
        fallback_voice: Optional[FallbackVoice] = None,
    ):
        self.tts = tts
        self.output = output
        self.fallback_voice = fallback_voice or FallbackVoice(
            language=settings.fallback_voice_language,
            pitch=settings.fallback_voice_pitch,
            rate=settings.fallback_voice_rate,
        )

    async def speak(self, text: str) -> AsyncIterator[PlaybackEvent]:
        started = False

        try:
            audio = await self.tts.synthesize(text)
            clip = PlaybackClip.from_audio(text, audio.content, audio.format)
            yield PlaybackEvent(type=PlaybackEventType.STARTED, source="remote")
            started = True
            await self.output.play(clip)
            yield PlaybackEvent(type=PlaybackEventType.COMPLETED, source="remote")
            return
        except PlaybackStopped as e:
            logger.info(f"[PLAYBACK] Remote voice stopped: {e}")
            yield PlaybackEvent(type=PlaybackEventType.FAILED, source="remote", error=str(e))
            return
        except CallError as e:
            logger.warning(f"[PLAYBACK] Remote voice failed, using device synthesizer: {e}")

        clip = PlaybackClip.device_speech(
            text,
            language=self.fallback_voice.language,
            pitch=self.fallback_voice.pitch,
            rate=self.fallback_voice.rate,
        )
        try:
            if not started:
                yield PlaybackEvent(type=PlaybackEventType.STARTED, source="device")
            await self.output.play(clip)
        except CallError as e:
            logger.error(f"[PLAYBACK] Device synthesizer failed: {e}")
            yield PlaybackEvent(type=PlaybackEventType.FAILED, source="device", error=str(e))
            return

        yield PlaybackEvent(type=PlaybackEventType.COMPLETED, source="device")

    def cancel(self) -> None:
        """Stop audio output immediately."""
        self.output.stop()
