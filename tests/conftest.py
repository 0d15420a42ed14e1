"""Shared test fixtures and configuration."""
import asyncio
import os
from typing import Callable, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ASSISTANT_NAME", "Dr. Careo")

from app.db.database import create_engine_for, create_session_factory, init_db
from app.db.models import Base
from app.services.agent.reasoning import ReasoningResult
from app.services.call_session.manager import CallSessionEngine
from app.services.call_session.models import CallState
from app.services.speech.capture import DevicePermissions, SpeechCapture
from app.services.speech.output import ClientAudioChannel, PlaybackClip
from app.services.speech.playback import FallbackVoice, SpeechPlayback
from app.services.speech.stt import TranscriptionResult
from app.services.speech.tts import SynthesizedAudio


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_engine_for(TEST_DATABASE_URL)
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_factory(test_db_engine):
    """Session factory bound to the test database."""
    return create_session_factory(test_db_engine)


@pytest.fixture
async def test_db(test_session_factory):
    """Create test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client."""
    mock_client = Mock()
    mock_completion = Mock()
    mock_completion.choices = [Mock(message=Mock(content="Sit down and rest."))]
    mock_client.chat.completions.create = AsyncMock(return_value=mock_completion)
    mock_client.audio.transcriptions.create = AsyncMock(return_value=Mock(text="chest pain"))
    mock_client.audio.speech.create = AsyncMock(return_value=Mock(content=b"mp3-bytes"))
    return mock_client


# ----------------------------------------------------------------------
# Call engine collaborators
# ----------------------------------------------------------------------


class FakeTranscriber:
    """Transcription client stand-in."""

    def __init__(self, text: str = "chest pain"):
        self.text = text
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls = []
        self.on_call: Optional[Callable[[str], None]] = None

    async def transcribe(self, artifact):
        self.calls.append(artifact)
        if self.on_call:
            self.on_call("transcribe")
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return TranscriptionResult(text=self.text, model="fake-stt")


class FakeReasoner:
    """Reasoning client stand-in."""

    def __init__(self, text: str = "Sit down and stay calm."):
        self.text = text
        self.error: Optional[Exception] = None
        self.calls = []
        self.on_call: Optional[Callable[[str], None]] = None

    async def reply(self, history, new_utterance):
        self.calls.append((list(history), new_utterance))
        if self.on_call:
            self.on_call("reply")
        if self.error:
            raise self.error
        return ReasoningResult(text=self.text, model="fake-llm")


class FakeTTS:
    """Voice synthesis stand-in."""

    def __init__(self):
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self.on_call: Optional[Callable[[str], None]] = None

    async def synthesize(self, text: str) -> SynthesizedAudio:
        self.calls.append(text)
        if self.on_call:
            self.on_call("synthesize")
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return SynthesizedAudio(content=b"mp3-bytes", format="mp3", voice="onyx")


class FakeCallLog:
    """Records call log writes in memory."""

    def __init__(self):
        self.started = []
        self.ended = []

    async def call_started(self, session_id, device_id, started_at):
        self.started.append((session_id, device_id))

    async def call_ended(self, session_id, status, end_reason, turn_count):
        self.ended.append((session_id, status, end_reason, turn_count))


class CallDriver:
    """Plays the mobile client's part against an engine."""

    def __init__(self, engine: CallSessionEngine, channel: ClientAudioChannel):
        self.engine = engine
        self.channel = channel
        self._last_clip_id: Optional[str] = None

    async def wait_until(self, predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError(f"Timed out waiting; state is {self.engine.state.value}")
            await asyncio.sleep(0.001)

    async def wait_for_state(self, state: CallState) -> None:
        await self.wait_until(lambda: self.engine.state is state)

    async def next_clip(self) -> PlaybackClip:
        await self.wait_until(
            lambda: self.channel.pending is not None
            and self.channel.pending.id != self._last_clip_id
        )
        clip = self.channel.pending
        self._last_clip_id = clip.id
        return clip

    async def finish_playback(
        self,
        clip: Optional[PlaybackClip] = None,
        completed: bool = True,
        error: Optional[str] = None,
    ) -> PlaybackClip:
        """Report a clip as played; waits for the next new clip when none is given."""
        if clip is None:
            clip = await self.next_clip()
        assert self.channel.report(clip.id, completed=completed, error=error)
        return clip

    async def start_and_listen(self) -> None:
        await self.engine.start_call()
        await self.finish_playback()
        await self.wait_for_state(CallState.LISTENING)

    async def say(self, audio: bytes = b"caller-audio") -> PlaybackClip:
        """Record an utterance, stop listening, and wait for the reply clip."""
        self.engine.write_audio(audio)
        await self.engine.stop_listening()
        return await self.next_clip()

    async def take_turn(self, audio: bytes = b"caller-audio") -> None:
        clip = await self.say(audio)
        await self.finish_playback(clip)
        await self.wait_for_state(CallState.LISTENING)


@pytest.fixture
def permissions():
    return DevicePermissions("granted")


@pytest.fixture
def audio_channel():
    return ClientAudioChannel(timeout=5.0)


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def fake_reasoner():
    return FakeReasoner()


@pytest.fixture
def fake_tts():
    return FakeTTS()


@pytest.fixture
def fake_call_log():
    return FakeCallLog()


@pytest.fixture
async def call_engine(
    permissions, audio_channel, fake_transcriber, fake_reasoner, fake_tts, fake_call_log
):
    """Engine wired to fakes with no connect delay."""
    engine = CallSessionEngine(
        device_id="device-1",
        permissions=permissions,
        capture=SpeechCapture(permissions, "m4a"),
        transcriber=fake_transcriber,
        reasoner=fake_reasoner,
        playback=SpeechPlayback(fake_tts, audio_channel, FallbackVoice()),
        call_log=fake_call_log,
        connect_delay=0,
        max_recording_seconds=60,
    )
    yield engine
    await engine.end_call(reason="test_teardown")
    await asyncio.sleep(0)


@pytest.fixture
def call_driver(call_engine, audio_channel):
    return CallDriver(call_engine, audio_channel)
