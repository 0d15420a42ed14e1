"""Call history API endpoints."""
import logging
from typing import List
from fastapi import APIRouter, Depends, Request, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, ConfigDict

from app.db.database import get_db
from app.services.persistence.calls import CallPersistenceService


router = APIRouter()
logger = logging.getLogger(__name__)


class CallResponse(BaseModel):
    """Call response model."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    device_id: str
    started_at: str
    ended_at: str | None = None
    status: str
    end_reason: str | None = None
    turn_count: int = 0
    duration_seconds: int | None = None


@router.get("/api/calls/history", response_model=List[CallResponse])
async def get_call_history(
    request: Request,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    """Get recent emergency calls (metadata only)."""
    logger.info(
        f"[CALLS HISTORY] Request received - limit: {limit}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    try:
        calls = await CallPersistenceService(db).list_calls(limit=limit)
        result = [
            CallResponse(
                id=call.id,
                session_id=call.session_id,
                device_id=call.device_id,
                started_at=call.started_at.isoformat(),
                ended_at=call.ended_at.isoformat() if call.ended_at else None,
                status=call.status,
                end_reason=call.end_reason,
                turn_count=call.turn_count or 0,
                duration_seconds=call.duration_seconds,
            )
            for call in calls
        ]
        logger.info(f"[CALLS HISTORY] Returning {len(result)} calls")
        return result
    except Exception as e:
        logger.error(
            f"[CALLS HISTORY] Error fetching call history - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail=f"Error fetching call history: {str(e)}")
