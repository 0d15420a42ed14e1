"""Unit tests for microphone capture."""
import pytest

from app.core.exceptions import CaptureClosed, DeviceBusy, EmptyRecording, PermissionDenied
from app.services.speech.capture import DevicePermissions, SpeechCapture


class TestSpeechCapture:
    """Test microphone acquisition and release."""

    @pytest.mark.asyncio
    async def test_acquire_requires_permission(self):
        """Test acquire fails without a granted permission."""
        capture = SpeechCapture(DevicePermissions("undetermined"))

        with pytest.raises(PermissionDenied):
            await capture.acquire()
        assert capture.active is None

    @pytest.mark.asyncio
    async def test_acquire_twice_is_busy(self, permissions):
        """Test a second acquire while recording fails."""
        capture = SpeechCapture(permissions)
        handle = await capture.acquire()

        with pytest.raises(DeviceBusy):
            await capture.acquire()
        assert capture.active is handle

    @pytest.mark.asyncio
    async def test_stop_returns_recording(self, permissions):
        """Test stop joins the chunks and releases the microphone."""
        capture = SpeechCapture(permissions, "m4a")
        handle = await capture.acquire()
        handle.write(b"abc")
        handle.write(b"def", "wav")

        artifact = capture.stop(handle)

        assert artifact.content == b"abcdef"
        assert artifact.format == "wav"
        assert artifact.chunk_count == 2
        assert capture.active is None
        assert handle.closed is True

    @pytest.mark.asyncio
    async def test_stop_empty_recording(self, permissions):
        """Test stop without audio raises but still releases the microphone."""
        capture = SpeechCapture(permissions)
        handle = await capture.acquire()

        with pytest.raises(EmptyRecording):
            capture.stop(handle)
        assert capture.active is None

        # The microphone can be acquired again
        assert await capture.acquire() is not handle

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, permissions):
        """Test releasing twice, or releasing nothing, is safe."""
        capture = SpeechCapture(permissions)
        handle = await capture.acquire()

        capture.release(handle)
        capture.release(handle)
        capture.release(None)

        assert capture.active is None
        with pytest.raises(CaptureClosed):
            handle.write(b"late")

    @pytest.mark.asyncio
    async def test_wait_complete(self, permissions):
        """Test completion wakes waiters and a timeout returns quietly."""
        capture = SpeechCapture(permissions)
        handle = await capture.acquire()

        await handle.wait_complete(timeout=0.01)
        assert handle.is_complete is False

        handle.mark_complete()
        await handle.wait_complete(timeout=1)
        assert handle.is_complete is True
