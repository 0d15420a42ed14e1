"""Emergency call endpoints consumed by the mobile client."""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel

from app.core.dependencies import get_call_session_manager
from app.core.exceptions import CaptureClosed
from app.services.call_session.manager import CallSessionEngine, CallSessionManager
from app.services.call_session.models import CallSnapshot
from app.services.speech.output import PlaybackClip

router = APIRouter(prefix="/api/emergency/{device_id}")
logger = logging.getLogger(__name__)

PermissionStatus = Literal["granted", "denied", "undetermined"]


class StartCallRequest(BaseModel):
    """Start call request model."""
    microphone_permission: Optional[PermissionStatus] = None


class PermissionUpdate(BaseModel):
    """Permission update request model."""
    microphone_permission: PermissionStatus


class PlaybackReport(BaseModel):
    """Client playback outcome."""
    status: Literal["completed", "failed"]
    error: Optional[str] = None


class CaptureStatus(BaseModel):
    """Capture upload response."""
    accepted: bool
    bytes_captured: int = 0


def get_engine(
    device_id: str,
    manager: CallSessionManager = Depends(get_call_session_manager),
) -> CallSessionEngine:
    """Get the call engine for the requesting device."""
    return manager.get_engine(device_id)


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get("/call", response_model=CallSnapshot)
async def get_call(engine: CallSessionEngine = Depends(get_engine)):
    """Current call state for the UI."""
    return engine.snapshot()


@router.post("/call/start", response_model=CallSnapshot)
async def start_call(
    request: Request,
    body: Optional[StartCallRequest] = None,
    engine: CallSessionEngine = Depends(get_engine),
):
    """Start an emergency call."""
    logger.info(
        f"[EMERGENCY API] Start call requested - Device: {engine.device_id}, Client: {_client(request)}"
    )
    if body and body.microphone_permission:
        engine.permissions.update(body.microphone_permission)
    return await engine.start_call()


@router.post("/call/primary-action", response_model=CallSnapshot)
async def primary_action(engine: CallSessionEngine = Depends(get_engine)):
    """The single call button."""
    return await engine.primary_action()


@router.post("/call/stop-listening", response_model=CallSnapshot)
async def stop_listening(engine: CallSessionEngine = Depends(get_engine)):
    """Caller finished speaking."""
    return await engine.stop_listening()


@router.post("/call/end", response_model=CallSnapshot)
async def end_call(request: Request, engine: CallSessionEngine = Depends(get_engine)):
    """End the call."""
    logger.info(
        f"[EMERGENCY API] End call requested - Device: {engine.device_id}, Client: {_client(request)}"
    )
    return await engine.end_call()


@router.put("/permissions")
async def update_permissions(
    body: PermissionUpdate, engine: CallSessionEngine = Depends(get_engine)
):
    """Record the device's microphone permission status."""
    engine.permissions.update(body.microphone_permission)
    return {"microphone_permission": body.microphone_permission}


@router.post("/capture/audio", response_model=CaptureStatus)
async def upload_audio(
    request: Request,
    format: Optional[str] = Query(None),
    engine: CallSessionEngine = Depends(get_engine),
):
    """Append a chunk of recorded audio to the active capture."""
    chunk = await request.body()
    try:
        total = engine.write_audio(chunk, format)
    except CaptureClosed as e:
        logger.warning(
            f"[EMERGENCY API] Audio rejected - Device: {engine.device_id}, "
            f"State: {engine.state.value}, Error: {str(e)}"
        )
        raise HTTPException(status_code=409, detail=str(e))

    logger.debug(
        f"[EMERGENCY API] Audio chunk accepted - Device: {engine.device_id}, "
        f"Chunk: {len(chunk)} bytes, Total: {total} bytes"
    )
    return CaptureStatus(accepted=True, bytes_captured=total)


@router.post("/capture/complete", response_model=CaptureStatus)
async def capture_complete(engine: CallSessionEngine = Depends(get_engine)):
    """The client's recorder detected the end of the utterance."""
    if not engine.report_capture_complete():
        raise HTTPException(status_code=409, detail="The call is not listening")
    return CaptureStatus(accepted=True)


@router.get("/playback", response_model=PlaybackClip)
async def get_playback(engine: CallSessionEngine = Depends(get_engine)):
    """Next clip for the client to play, if any."""
    clip = engine.playback.output.pending
    if clip is None:
        return Response(status_code=204)
    return clip


@router.post("/playback/{clip_id}")
async def report_playback(
    clip_id: str,
    body: PlaybackReport,
    engine: CallSessionEngine = Depends(get_engine),
):
    """Client reports that a clip finished or failed."""
    accepted = engine.playback.output.report(
        clip_id, completed=body.status == "completed", error=body.error
    )
    if not accepted:
        logger.warning(
            f"[EMERGENCY API] Unknown or stale clip report - Device: {engine.device_id}, Clip: {clip_id}"
        )
        raise HTTPException(status_code=404, detail=f"No pending clip {clip_id}")
    return {"status": body.status}
