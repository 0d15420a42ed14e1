"""Microphone capture for the emergency call."""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel

from app.core.exceptions import CaptureClosed, DeviceBusy, EmptyRecording, PermissionDenied

logger = logging.getLogger(__name__)


class PermissionProvider(Protocol):
    """Source of the device's microphone permission."""

    async def request_microphone_permission(self) -> bool:
        ...


class DevicePermissions:
    """Permission status as reported by the mobile client.

    The client owns the OS permission prompt; it reports the outcome here
    before starting a call and whenever the status changes.
    """

    def __init__(self, status: str = "undetermined"):
        self.status = status

    def update(self, status: str) -> None:
        """Record a new permission status (granted, denied, undetermined)."""
        self.status = status

    async def request_microphone_permission(self) -> bool:
        return self.status == "granted"


class AudioArtifact(BaseModel):
    """A finalized recording ready for transcription."""

    content: bytes
    format: str
    chunk_count: int = 0
    recorded_at: datetime

    @property
    def size(self) -> int:
        return len(self.content)


class CaptureHandle:
    """One outstanding recording. Holds the microphone until stopped or released."""

    def __init__(self, audio_format: str):
        self.id = uuid.uuid4().hex
        self.format = audio_format
        self.started_at = datetime.utcnow()
        self.closed = False
        self._chunks: List[bytes] = []
        self._complete = asyncio.Event()

    def write(self, chunk: bytes, audio_format: Optional[str] = None) -> None:
        """Append a chunk of recorded audio."""
        if self.closed:
            raise CaptureClosed(f"Capture {self.id} is no longer recording")
        if audio_format:
            self.format = audio_format
        if chunk:
            self._chunks.append(chunk)

    def mark_complete(self) -> None:
        """Signal that the speaker has finished the utterance."""
        self._complete.set()

    @property
    def is_complete(self) -> bool:
        return self._complete.is_set()

    async def wait_complete(self, timeout: Optional[float] = None) -> None:
        """Wait until the capture reports completion or the timeout elapses."""
        try:
            await asyncio.wait_for(self._complete.wait(), timeout)
        except asyncio.TimeoutError:
            logger.info(f"[CAPTURE] Max recording time reached - Handle: {self.id}")

    @property
    def byte_count(self) -> int:
        return sum(len(chunk) for chunk in self._chunks)

    def _drain(self) -> bytes:
        content = b"".join(self._chunks)
        self._chunks = []
        return content


class SpeechCapture:
    """Exclusive owner of the microphone for a single device."""

    def __init__(self, permissions: PermissionProvider, audio_format: str = "m4a"):
        self.permissions = permissions
        self.audio_format = audio_format
        self._active: Optional[CaptureHandle] = None

    @property
    def active(self) -> Optional[CaptureHandle]:
        return self._active

    async def acquire(self) -> CaptureHandle:
        """
        Acquire the microphone and begin a recording.

        Raises:
            PermissionDenied: microphone permission is not granted
            DeviceBusy: another capture already holds the microphone
        """
        granted = await self.permissions.request_microphone_permission()
        if not granted:
            raise PermissionDenied("Microphone permission is required for the emergency call")
        if self._active is not None:
            raise DeviceBusy(f"Capture {self._active.id} already holds the microphone")

        handle = CaptureHandle(self.audio_format)
        self._active = handle
        logger.info(f"[CAPTURE] Microphone acquired - Handle: {handle.id}")
        return handle

    def stop(self, handle: CaptureHandle) -> AudioArtifact:
        """
        Finalize a recording and release the microphone.

        Raises:
            EmptyRecording: nothing was captured
        """
        chunk_count = len(handle._chunks)
        content = handle._drain()
        self.release(handle)

        if not content:
            raise EmptyRecording(f"Capture {handle.id} finished without audio")

        logger.info(
            f"[CAPTURE] Recording finalized - Handle: {handle.id}, "
            f"Bytes: {len(content)}, Chunks: {chunk_count}, Format: {handle.format}"
        )
        return AudioArtifact(
            content=content,
            format=handle.format,
            chunk_count=chunk_count,
            recorded_at=handle.started_at,
        )

    def release(self, handle: Optional[CaptureHandle]) -> None:
        """Discard a recording and release the microphone. Safe to call repeatedly."""
        if handle is None:
            return
        if not handle.closed:
            handle.closed = True
            handle._chunks = []
            handle.mark_complete()
        if self._active is handle:
            self._active = None
            logger.info(f"[CAPTURE] Microphone released - Handle: {handle.id}")
