"""Audio output port shared with the mobile client."""
import asyncio
import base64
import logging
import uuid
from typing import Literal, Optional, Protocol

from pydantic import BaseModel, Field

from app.core.exceptions import DeviceBusy, PlaybackFailed, PlaybackStopped

logger = logging.getLogger(__name__)


class PlaybackClip(BaseModel):
    """One unit of output for the client to play.

    Either synthesized audio or a request for the on-device synthesizer.
    Output is always routed to the loudspeaker at full, non-ducked volume.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: Literal["audio", "device_speech"]
    text: str
    audio_base64: Optional[str] = None
    format: Optional[str] = None
    language: Optional[str] = None
    pitch: Optional[float] = None
    rate: Optional[float] = None
    route: Literal["speaker"] = "speaker"
    volume: float = 1.0
    duck_others: bool = False

    @classmethod
    def from_audio(cls, text: str, audio: bytes, audio_format: str) -> "PlaybackClip":
        return cls(
            kind="audio",
            text=text,
            audio_base64=base64.b64encode(audio).decode("ascii"),
            format=audio_format,
        )

    @classmethod
    def device_speech(
        cls, text: str, language: str, pitch: float, rate: float
    ) -> "PlaybackClip":
        return cls(kind="device_speech", text=text, language=language, pitch=pitch, rate=rate)


class AudioOutput(Protocol):
    """Plays clips. `play` returns once the clip finished playing."""

    async def play(self, clip: PlaybackClip) -> None:
        ...

    def stop(self) -> None:
        ...


class ClientAudioChannel:
    """Hands clips to the mobile client and waits for its completion report."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._clip: Optional[PlaybackClip] = None
        self._done: Optional[asyncio.Future] = None

    @property
    def pending(self) -> Optional[PlaybackClip]:
        return self._clip

    async def play(self, clip: PlaybackClip) -> None:
        """
        Publish a clip and wait for the client to finish playing it.

        Raises:
            DeviceBusy: another clip is still playing
            PlaybackFailed: the client reported an error or never reported back
        """
        if self._done is not None and not self._done.done():
            raise DeviceBusy(f"Audio output is busy with clip {self._clip.id if self._clip else '?'}")

        done = asyncio.get_running_loop().create_future()
        self._done = done
        self._clip = clip
        logger.info(f"[AUDIO OUT] Clip published - Clip: {clip.id}, Kind: {clip.kind}")
        try:
            await asyncio.wait_for(done, self.timeout)
        except asyncio.TimeoutError as e:
            raise PlaybackFailed(f"Client did not finish clip {clip.id} in time") from e
        finally:
            if self._done is done:
                self._done = None
                self._clip = None

    def report(self, clip_id: str, completed: bool, error: Optional[str] = None) -> bool:
        """Record the client's playback outcome. Returns False for unknown or stale clips."""
        if self._clip is None or self._clip.id != clip_id:
            return False
        done = self._done
        if done is None or done.done():
            return False
        if completed:
            done.set_result(None)
        else:
            done.set_exception(PlaybackFailed(error or f"Client failed to play clip {clip_id}"))
        self._clip = None
        logger.info(
            f"[AUDIO OUT] Client report - Clip: {clip_id}, Completed: {completed}, Error: {error}"
        )
        return True

    def stop(self) -> None:
        """Abandon the pending clip immediately; its `play` raises PlaybackStopped."""
        if self._done is not None and not self._done.done():
            self._done.set_exception(PlaybackStopped("Playback stopped"))
            logger.info(f"[AUDIO OUT] Playback stopped - Clip: {self._clip.id if self._clip else '?'}")
        self._done = None
        self._clip = None
