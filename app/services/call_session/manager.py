"""Call session manager."""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Protocol, Sequence, Set

from app.core.config import settings
from app.core.exceptions import (
    CaptureClosed,
    DeviceBusy,
    EmptyRecording,
    InvalidTransition,
    PermissionDenied,
    ReasoningFailed,
    TranscriptionFailed,
)
from app.services.agent.reasoning import ReasoningResult
from app.services.call_session.constants import (
    ALLOWED_TRANSITIONS,
    DEVICE_BUSY_MESSAGE,
    FALLBACK_REPLY,
    FALLBACK_TRANSCRIPT,
    GREETING_TEMPLATE,
    PERMISSION_DENIED_MESSAGE,
    PRIMARY_ACTIONS,
)
from app.services.call_session.events import (
    CallEvent,
    CaptureCompleted,
    ConnectElapsed,
    PlaybackFinished,
    PlaybackStarted,
    ProcessingFinished,
)
from app.services.call_session.models import (
    CallSession,
    CallSnapshot,
    CallState,
    PlaybackHandle,
    Role,
    Turn,
)
from app.services.call_session.timer import CallTimer
from app.services.speech.capture import (
    AudioArtifact,
    CaptureHandle,
    DevicePermissions,
    PermissionProvider,
    SpeechCapture,
)
from app.services.speech.output import ClientAudioChannel
from app.services.speech.playback import PlaybackEventType, SpeechPlayback
from app.services.speech.stt import TranscriptionResult
from app.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    async def transcribe(self, artifact: AudioArtifact) -> TranscriptionResult:
        ...


class Reasoner(Protocol):
    async def reply(self, history: Sequence[Turn], new_utterance: str) -> ReasoningResult:
        ...


class CallLog(Protocol):
    async def call_started(self, session_id: str, device_id: str, started_at: datetime) -> None:
        ...

    async def call_ended(
        self, session_id: str, status: str, end_reason: str, turn_count: int
    ) -> None:
        ...


# States in which each completion event may still be applied
EVENT_STATES = {
    ConnectElapsed: {CallState.CONNECTING},
    PlaybackStarted: {CallState.AWAITING_GREETING_PLAYBACK, CallState.SPEAKING},
    PlaybackFinished: {CallState.AWAITING_GREETING_PLAYBACK, CallState.SPEAKING},
    CaptureCompleted: {CallState.LISTENING},
    ProcessingFinished: {CallState.PROCESSING},
}


class CallSessionEngine:
    """Drives one device's emergency call.

    Capture -> Transcription -> Reasoning -> Playback -> Capture, one stage at
    a time. All state changes happen under a single lock, either from a user
    input or from a completion event raised by a background task.
    """

    def __init__(
        self,
        device_id: str,
        permissions: PermissionProvider,
        capture: SpeechCapture,
        transcriber: Transcriber,
        reasoner: Reasoner,
        playback: SpeechPlayback,
        timer: Optional[CallTimer] = None,
        call_log: Optional[CallLog] = None,
        connect_delay: Optional[float] = None,
        max_recording_seconds: Optional[float] = None,
        assistant_name: Optional[str] = None,
    ):
        self.device_id = device_id
        self.permissions = permissions
        self.capture = capture
        self.transcriber = transcriber
        self.reasoner = reasoner
        self.playback = playback
        self.timer = timer or CallTimer()
        self.call_log = call_log
        self.connect_delay = (
            connect_delay if connect_delay is not None else settings.connect_delay_seconds
        )
        self.max_recording_seconds = (
            max_recording_seconds
            if max_recording_seconds is not None
            else settings.max_recording_seconds
        )
        self.assistant_name = assistant_name or settings.assistant_name

        self.session = CallSession()
        self._generation = 0
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    @property
    def state(self) -> CallState:
        return self.session.state

    def snapshot(self) -> CallSnapshot:
        """Read-only view of the current call."""
        session = self.session
        action = PRIMARY_ACTIONS[session.state]
        return CallSnapshot(
            session_id=session.id,
            state=session.state,
            transcript=session.transcript,
            response_text=session.response_text,
            elapsed_seconds=self.timer.elapsed_seconds,
            elapsed_display=self.timer.display,
            history=list(session.history),
            error=session.error,
            primary_action=action,
            primary_action_enabled=action is not None,
            recording=session.active_recording is not None,
            speaking=session.active_playback is not None,
        )

    # ------------------------------------------------------------------
    # User inputs
    # ------------------------------------------------------------------

    async def start_call(self) -> CallSnapshot:
        """Idle/Ended -> Connecting. No-op while a call is live."""
        async with self._lock:
            if self.session.state not in (CallState.IDLE, CallState.ENDED):
                logger.info(
                    f"[CALL ENGINE] Start ignored, call already {self.session.state.value} - "
                    f"Device: {self.device_id}"
                )
                return self.snapshot()

            granted = await self.permissions.request_microphone_permission()
            if not granted:
                logger.warning(
                    f"[CALL ENGINE] Microphone permission denied, call not started - "
                    f"Device: {self.device_id}"
                )
                if self.session.state is CallState.ENDED:
                    self._transition(self.session, CallState.IDLE)
                self.session.error = PERMISSION_DENIED_MESSAGE
                return self.snapshot()

            self._generation += 1
            session = CallSession(generation=self._generation)
            self.session = session
            self._transition(session, CallState.CONNECTING)
            session.started_at = datetime.utcnow()
            session.clear_history()
            self.timer.start()

            if self.call_log is not None:
                await self.call_log.call_started(session.id, self.device_id, session.started_at)

            self._spawn(self._connect(session.generation))
            return self.snapshot()

    async def stop_listening(self) -> CallSnapshot:
        """Listening -> Processing. No-op in any other state."""
        async with self._lock:
            session = self.session
            if session.state is not CallState.LISTENING:
                logger.info(
                    f"[CALL ENGINE] Stop listening ignored in state {session.state.value} - "
                    f"Device: {self.device_id}"
                )
                return self.snapshot()

            self._finish_capture(session, source="stop_listening")
            return self.snapshot()

    async def end_call(self, reason: str = "user_ended") -> CallSnapshot:
        """Any state -> Ended. Safe to call repeatedly."""
        async with self._lock:
            await self._teardown(
                self.session, CallState.ENDED, status="completed", reason=reason
            )
            return self.snapshot()

    async def primary_action(self) -> CallSnapshot:
        """The single call button: start when idle, stop-and-process when listening."""
        action = PRIMARY_ACTIONS[self.session.state]
        if action == "start":
            return await self.start_call()
        if action == "stop_listening":
            return await self.stop_listening()

        logger.debug(
            f"[CALL ENGINE] Primary action disabled in state {self.session.state.value} - "
            f"Device: {self.device_id}"
        )
        return self.snapshot()

    def write_audio(self, chunk: bytes, audio_format: Optional[str] = None) -> int:
        """Feed recorded audio into the active capture. Returns bytes captured so far."""
        handle = self.session.active_recording
        if handle is None:
            raise CaptureClosed("The call is not listening")
        handle.write(chunk, audio_format)
        return handle.byte_count

    def report_capture_complete(self) -> bool:
        """Signal the end of the caller's utterance from the capture side."""
        handle = self.session.active_recording
        if handle is None:
            return False
        handle.mark_complete()
        return True

    # ------------------------------------------------------------------
    # Transition function
    # ------------------------------------------------------------------

    async def _dispatch(self, event: CallEvent) -> None:
        async with self._lock:
            await self._apply(event)

    async def _apply(self, event: CallEvent) -> None:
        expected = EVENT_STATES.get(type(event))
        if expected is None:
            raise TypeError(f"Unhandled call event: {event!r}")

        session = self.session
        if event.generation != session.generation or session.state is CallState.ENDED:
            logger.debug(
                f"[CALL ENGINE] Discarding stale {type(event).__name__} "
                f"(generation {event.generation}, live {session.generation}) - Device: {self.device_id}"
            )
            return
        if session.state not in expected:
            logger.debug(
                f"[CALL ENGINE] Ignoring {type(event).__name__} in state {session.state.value} - "
                f"Device: {self.device_id}"
            )
            return

        if isinstance(event, ConnectElapsed):
            self._on_connected(session)
        elif isinstance(event, PlaybackStarted):
            self._on_playback_started(session, event)
        elif isinstance(event, PlaybackFinished):
            await self._on_playback_finished(session, event)
        elif isinstance(event, CaptureCompleted):
            if session.active_recording is None or session.active_recording.id != event.handle_id:
                logger.debug(f"[CALL ENGINE] Ignoring completion of old capture {event.handle_id}")
                return
            self._finish_capture(session, source="capture_complete")
        elif isinstance(event, ProcessingFinished):
            self._on_processing_finished(session, event)

    def _transition(self, session: CallSession, target: CallState) -> None:
        if target not in ALLOWED_TRANSITIONS[session.state]:
            raise InvalidTransition(session.state.value, target.value)
        logger.info(
            f"[CALL ENGINE] {session.state.value} -> {target.value} - "
            f"Device: {self.device_id}, Session: {session.id}"
        )
        session.state = target

    def _on_connected(self, session: CallSession) -> None:
        greeting = GREETING_TEMPLATE.format(assistant_name=self.assistant_name)
        self._transition(session, CallState.AWAITING_GREETING_PLAYBACK)
        session.append_turn(Role.ASSISTANT, greeting)
        session.response_text = greeting
        self._start_playback(session, greeting)

    def _on_playback_started(self, session: CallSession, event: PlaybackStarted) -> None:
        if not self._is_current_playback(session, event.playback_id):
            return
        if session.state is CallState.AWAITING_GREETING_PLAYBACK:
            self._transition(session, CallState.SPEAKING)

    async def _on_playback_finished(self, session: CallSession, event: PlaybackFinished) -> None:
        if not self._is_current_playback(session, event.playback_id):
            return
        session.active_playback = None
        if event.failed:
            logger.warning(
                f"[CALL ENGINE] Playback failed ({event.error}), listening anyway - "
                f"Device: {self.device_id}"
            )

        try:
            handle = await self.capture.acquire()
        except PermissionDenied as e:
            logger.warning(f"[CALL ENGINE] {e} - Device: {self.device_id}")
            await self._teardown(
                session,
                CallState.IDLE,
                status="failed",
                reason="microphone_permission_denied",
                error=PERMISSION_DENIED_MESSAGE,
            )
            return
        except DeviceBusy as e:
            logger.error(f"[CALL ENGINE] {e} - Device: {self.device_id}")
            await self._teardown(
                session,
                CallState.ENDED,
                status="failed",
                reason="device_busy",
                error=DEVICE_BUSY_MESSAGE,
            )
            return

        self._transition(session, CallState.LISTENING)
        session.active_recording = handle
        self._spawn(self._watch_capture(session.generation, handle))

    def _finish_capture(self, session: CallSession, source: str) -> None:
        handle = session.active_recording
        session.active_recording = None
        artifact: Optional[AudioArtifact] = None
        try:
            artifact = self.capture.stop(handle)
        except EmptyRecording as e:
            logger.warning(f"[CALL ENGINE] {e} - Device: {self.device_id}")

        logger.info(f"[CALL ENGINE] Capture finished by {source} - Device: {self.device_id}")
        self._transition(session, CallState.PROCESSING)
        self._spawn(self._process(session.generation, artifact, list(session.history)))

    def _on_processing_finished(self, session: CallSession, event: ProcessingFinished) -> None:
        session.append_turn(Role.USER, event.user_text)
        session.append_turn(Role.ASSISTANT, event.reply_text)
        session.transcript = event.user_text
        session.response_text = event.reply_text
        self._transition(session, CallState.SPEAKING)
        self._start_playback(session, event.reply_text)

    def _start_playback(self, session: CallSession, text: str) -> None:
        handle = PlaybackHandle(text=text, generation=session.generation)
        session.active_playback = handle
        self._spawn(self._run_playback(session.generation, handle.id, text))

    def _is_current_playback(self, session: CallSession, playback_id: str) -> bool:
        return session.active_playback is not None and session.active_playback.id == playback_id

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _teardown(
        self,
        session: CallSession,
        final_state: CallState,
        status: str,
        reason: str,
        error: Optional[str] = None,
    ) -> None:
        """Release everything the session owns. Every step runs even if another fails."""
        was_live = session.state not in (CallState.IDLE, CallState.ENDED)
        turn_count = session.turn_count

        steps = (
            ("cancel tasks", self._cancel_tasks),
            ("stop playback", self.playback.cancel),
            ("release capture", lambda: self.capture.release(session.active_recording)),
            ("clear timer", self.timer.clear),
            ("clear history", session.clear_history),
        )
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(
                    f"[CALL ENGINE] Teardown step '{name}' failed - Device: {self.device_id}, "
                    f"Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

        session.active_playback = None
        session.active_recording = None
        self._generation += 1
        session.generation = self._generation
        session.error = error
        if was_live:
            session.ended_at = datetime.utcnow()
        if session.state is not final_state or final_state is CallState.ENDED:
            self._transition(session, final_state)

        if was_live and self.call_log is not None:
            await self.call_log.call_ended(session.id, status, reason, turn_count)

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"[CALL ENGINE] Background task failed - Device: {self.device_id}",
                exc_info=exc,
            )

    async def _connect(self, generation: int) -> None:
        await asyncio.sleep(self.connect_delay)
        await self._dispatch(ConnectElapsed(generation))

    async def _watch_capture(self, generation: int, handle: CaptureHandle) -> None:
        await handle.wait_complete(self.max_recording_seconds)
        await self._dispatch(CaptureCompleted(generation, handle_id=handle.id))

    async def _process(
        self,
        generation: int,
        artifact: Optional[AudioArtifact],
        history: Sequence[Turn],
    ) -> None:
        used_fallback = False
        try:
            if artifact is None:
                raise EmptyRecording("Nothing was recorded")
            transcription = await self.transcriber.transcribe(artifact)
            result = await self.reasoner.reply(history, transcription.text)
            user_text, reply_text = transcription.text, result.text
        except (EmptyRecording, TranscriptionFailed, ReasoningFailed) as e:
            logger.warning(
                f"[CALL ENGINE] Using fallback response - Device: {self.device_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            user_text, reply_text, used_fallback = FALLBACK_TRANSCRIPT, FALLBACK_REPLY, True
        except Exception as e:
            logger.error(
                f"[CALL ENGINE] Unexpected processing error, using fallback - "
                f"Device: {self.device_id}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            user_text, reply_text, used_fallback = FALLBACK_TRANSCRIPT, FALLBACK_REPLY, True

        await self._dispatch(
            ProcessingFinished(
                generation,
                user_text=user_text,
                reply_text=reply_text,
                used_fallback=used_fallback,
            )
        )

    async def _run_playback(self, generation: int, playback_id: str, text: str) -> None:
        failed = False
        error: Optional[str] = None
        try:
            async for event in self.playback.speak(text):
                if event.type is PlaybackEventType.STARTED:
                    await self._dispatch(PlaybackStarted(generation, playback_id=playback_id))
                elif event.type is PlaybackEventType.FAILED:
                    failed, error = True, event.error
        except Exception as e:
            logger.error(
                f"[CALL ENGINE] Playback raised - Device: {self.device_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            failed, error = True, str(e)

        await self._dispatch(
            PlaybackFinished(generation, playback_id=playback_id, failed=failed, error=error)
        )


class CallSessionManager:
    """Registry of call engines, at most one live call per device."""

    def __init__(
        self,
        transcriber: Transcriber,
        reasoner: Reasoner,
        tts: TextToSpeechService,
        call_log: Optional[CallLog] = None,
        connect_delay: Optional[float] = None,
        max_recording_seconds: Optional[float] = None,
        playback_timeout: Optional[float] = None,
    ):
        self.transcriber = transcriber
        self.reasoner = reasoner
        self.tts = tts
        self.call_log = call_log
        self.connect_delay = connect_delay
        self.max_recording_seconds = max_recording_seconds
        self.playback_timeout = (
            playback_timeout if playback_timeout is not None else settings.playback_timeout_seconds
        )
        self._engines: Dict[str, CallSessionEngine] = {}

    def get_engine(self, device_id: str) -> CallSessionEngine:
        """Get the engine for a device, creating it on first use."""
        engine = self._engines.get(device_id)
        if engine is None:
            permissions = DevicePermissions()
            output = ClientAudioChannel(timeout=self.playback_timeout)
            engine = CallSessionEngine(
                device_id=device_id,
                permissions=permissions,
                capture=SpeechCapture(permissions, settings.capture_format),
                transcriber=self.transcriber,
                reasoner=self.reasoner,
                playback=SpeechPlayback(self.tts, output),
                call_log=self.call_log,
                connect_delay=self.connect_delay,
                max_recording_seconds=self.max_recording_seconds,
            )
            self._engines[device_id] = engine
            logger.info(f"[SESSION MANAGER] Engine created - Device: {device_id}")
        return engine

    @property
    def active_calls(self) -> int:
        """Number of devices with a call in progress."""
        return sum(
            1 for engine in self._engines.values()
            if engine.state not in (CallState.IDLE, CallState.ENDED)
        )

    async def shutdown(self) -> None:
        """End every live call."""
        for device_id, engine in list(self._engines.items()):
            if engine.state not in (CallState.IDLE, CallState.ENDED):
                logger.info(f"[SESSION MANAGER] Ending call on shutdown - Device: {device_id}")
                await engine.end_call(reason="server_shutdown")
        self._engines.clear()
