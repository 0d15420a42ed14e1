"""Unit tests for speech playback and the client audio channel."""
import asyncio
import base64

import pytest

from app.core.exceptions import DeviceBusy, PlaybackFailed, PlaybackStopped
from app.services.speech.output import ClientAudioChannel, PlaybackClip
from app.services.speech.playback import FallbackVoice, PlaybackEventType, SpeechPlayback


async def collect(playback: SpeechPlayback, text: str, channel: ClientAudioChannel, outcomes):
    """Run speak() while answering each published clip with the next outcome."""
    events = []
    clips = []

    async def consume():
        async for event in playback.speak(text):
            events.append(event)

    task = asyncio.create_task(consume())
    for completed in outcomes:
        while channel.pending is None:
            await asyncio.sleep(0.001)
        clip = channel.pending
        clips.append(clip)
        channel.report(clip.id, completed=completed, error=None if completed else "client error")
    await asyncio.wait_for(task, timeout=2)
    return events, clips


class TestSpeechPlayback:
    """Test remote voice with device fallback."""

    @pytest.mark.asyncio
    async def test_remote_voice(self, fake_tts, audio_channel):
        """Test the remote voice is played through the loudspeaker."""
        playback = SpeechPlayback(fake_tts, audio_channel, FallbackVoice())

        events, clips = await collect(playback, "Stay calm.", audio_channel, [True])

        assert [(e.type, e.source) for e in events] == [
            (PlaybackEventType.STARTED, "remote"),
            (PlaybackEventType.COMPLETED, "remote"),
        ]
        clip = clips[0]
        assert clip.kind == "audio"
        assert base64.b64decode(clip.audio_base64) == b"mp3-bytes"
        assert clip.route == "speaker"
        assert clip.volume == 1.0
        assert clip.duck_others is False

    @pytest.mark.asyncio
    async def test_synthesis_failure_uses_device_voice(self, fake_tts, audio_channel):
        """Test a failed synthesis falls back to the on-device synthesizer."""
        fake_tts.error = PlaybackFailed("tts down")
        voice = FallbackVoice(language="en-US", pitch=0.8, rate=0.85)
        playback = SpeechPlayback(fake_tts, audio_channel, voice)

        events, clips = await collect(playback, "Stay calm.", audio_channel, [True])

        assert [(e.type, e.source) for e in events] == [
            (PlaybackEventType.STARTED, "device"),
            (PlaybackEventType.COMPLETED, "device"),
        ]
        assert clips[0].kind == "device_speech"
        assert (clips[0].language, clips[0].pitch, clips[0].rate) == ("en-US", 0.8, 0.85)
        assert clips[0].text == "Stay calm."

    @pytest.mark.asyncio
    async def test_remote_playback_failure_uses_device_voice(self, fake_tts, audio_channel):
        """Test a failed audio clip is retried with the device voice, started once."""
        playback = SpeechPlayback(fake_tts, audio_channel, FallbackVoice())

        events, clips = await collect(playback, "Stay calm.", audio_channel, [False, True])

        assert [e.type for e in events] == [
            PlaybackEventType.STARTED,
            PlaybackEventType.COMPLETED,
        ]
        assert [c.kind for c in clips] == ["audio", "device_speech"]

    @pytest.mark.asyncio
    async def test_everything_fails_reports_failed_once(self, fake_tts, audio_channel):
        """Test exactly one terminal event when both voices fail."""
        fake_tts.error = PlaybackFailed("tts down")
        playback = SpeechPlayback(fake_tts, audio_channel, FallbackVoice())

        events, _ = await collect(playback, "Stay calm.", audio_channel, [False])

        terminal = [e for e in events if e.type is not PlaybackEventType.STARTED]
        assert len(terminal) == 1
        assert terminal[0].type is PlaybackEventType.FAILED
        assert terminal[0].error == "client error"

    @pytest.mark.asyncio
    async def test_cancel_ends_with_one_failed_event(self, fake_tts, audio_channel):
        """Test cancel stops the clip and speak still ends with a single failed event."""
        playback = SpeechPlayback(fake_tts, audio_channel, FallbackVoice())
        events = []

        async def consume():
            async for event in playback.speak("Stay calm."):
                events.append(event)

        task = asyncio.create_task(consume())
        while audio_channel.pending is None:
            await asyncio.sleep(0.001)

        playback.cancel()
        await asyncio.wait_for(task, timeout=2)

        assert audio_channel.pending is None
        assert [(e.type, e.source) for e in events] == [
            (PlaybackEventType.STARTED, "remote"),
            (PlaybackEventType.FAILED, "remote"),
        ]
        assert len(fake_tts.calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_device_voice(self, fake_tts, audio_channel):
        """Test stopping the fallback clip also ends with a single failed event."""
        fake_tts.error = PlaybackFailed("tts down")
        playback = SpeechPlayback(fake_tts, audio_channel, FallbackVoice())
        events = []

        async def consume():
            async for event in playback.speak("Stay calm."):
                events.append(event)

        task = asyncio.create_task(consume())
        while audio_channel.pending is None:
            await asyncio.sleep(0.001)

        playback.cancel()
        await asyncio.wait_for(task, timeout=2)

        assert [(e.type, e.source) for e in events] == [
            (PlaybackEventType.STARTED, "device"),
            (PlaybackEventType.FAILED, "device"),
        ]
        assert events[-1].error == "Playback stopped"


class TestClientAudioChannel:
    """Test the clip hand-off to the client."""

    @pytest.mark.asyncio
    async def test_timeout_fails_playback(self):
        """Test a client that never reports back fails the clip."""
        channel = ClientAudioChannel(timeout=0.01)

        with pytest.raises(PlaybackFailed):
            await channel.play(PlaybackClip(kind="audio", text="hi"))
        assert channel.pending is None

    @pytest.mark.asyncio
    async def test_busy_output(self, audio_channel):
        """Test only one clip plays at a time."""
        first = asyncio.create_task(audio_channel.play(PlaybackClip(kind="audio", text="one")))
        while audio_channel.pending is None:
            await asyncio.sleep(0.001)

        with pytest.raises(DeviceBusy):
            await audio_channel.play(PlaybackClip(kind="audio", text="two"))

        audio_channel.report(audio_channel.pending.id, completed=True)
        await first

    @pytest.mark.asyncio
    async def test_report_unknown_clip(self, audio_channel):
        """Test reports for clips that are not pending are rejected."""
        assert audio_channel.report("missing", completed=True) is False

        task = asyncio.create_task(audio_channel.play(PlaybackClip(kind="audio", text="one")))
        while audio_channel.pending is None:
            await asyncio.sleep(0.001)
        clip_id = audio_channel.pending.id

        assert audio_channel.report(clip_id, completed=True) is True
        assert audio_channel.report(clip_id, completed=True) is False
        await task

    @pytest.mark.asyncio
    async def test_stop_fails_pending_clip(self, audio_channel):
        """Test stop makes the waiting play call raise instead of hanging."""
        task = asyncio.create_task(audio_channel.play(PlaybackClip(kind="audio", text="one")))
        while audio_channel.pending is None:
            await asyncio.sleep(0.001)

        audio_channel.stop()

        with pytest.raises(PlaybackStopped):
            await task
        assert audio_channel.pending is None
