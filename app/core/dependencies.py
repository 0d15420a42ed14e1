"""FastAPI dependencies."""
from typing import Optional

from app.db.database import AsyncSessionLocal
from app.services.agent.reasoning import ReasoningClient
from app.services.call_session.manager import CallSessionManager
from app.services.persistence.calls import CallLogRecorder
from app.services.speech.stt import TranscriptionClient
from app.services.speech.tts import TextToSpeechService

_manager: Optional[CallSessionManager] = None


def get_call_session_manager() -> CallSessionManager:
    """Get the process-wide call session manager."""
    global _manager
    if _manager is None:
        _manager = CallSessionManager(
            transcriber=TranscriptionClient(),
            reasoner=ReasoningClient(),
            tts=TextToSpeechService(),
            call_log=CallLogRecorder(AsyncSessionLocal),
        )
    return _manager


async def shutdown_call_sessions() -> None:
    """End live calls if the manager was ever created."""
    global _manager
    if _manager is not None:
        await _manager.shutdown()
        _manager = None
