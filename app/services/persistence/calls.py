"""Call persistence service."""
import logging
from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from app.db.models import CallRecord

logger = logging.getLogger(__name__)


class CallPersistenceService:
    """Service for persisting call metadata."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call(
        self, session_id: str, device_id: str, started_at: Optional[datetime] = None
    ) -> CallRecord:
        """Create a new call record or return existing one."""
        existing_call = await self.get_call_by_session_id(session_id)
        if existing_call:
            return existing_call

        call = CallRecord(
            session_id=session_id,
            device_id=device_id,
            started_at=started_at or datetime.utcnow(),
            status="in_progress",
        )
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def get_call_by_session_id(self, session_id: str) -> Optional[CallRecord]:
        """Get call by session id."""
        result = await self.db.execute(
            select(CallRecord).where(CallRecord.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def finish_call(
        self,
        session_id: str,
        status: str,
        ended_at: Optional[datetime] = None,
        end_reason: Optional[str] = None,
        turn_count: int = 0,
    ) -> Optional[CallRecord]:
        """Close a call record. Returns None when the call was never recorded."""
        call = await self.get_call_by_session_id(session_id)
        if not call:
            return None

        call.status = status
        call.ended_at = ended_at or datetime.utcnow()
        call.end_reason = end_reason
        call.turn_count = turn_count
        call.duration_seconds = max(0, int((call.ended_at - call.started_at).total_seconds()))
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def list_calls(self, limit: int = 100) -> List[CallRecord]:
        """Most recent calls first."""
        result = await self.db.execute(
            select(CallRecord).order_by(desc(CallRecord.started_at)).limit(limit)
        )
        return list(result.scalars().all())


class CallLogRecorder:
    """Writes call metadata from the call engine using its own DB sessions.

    A failed write is logged and never interrupts the call.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def call_started(self, session_id: str, device_id: str, started_at: datetime) -> None:
        try:
            async with self.session_factory() as db:
                await CallPersistenceService(db).create_call(session_id, device_id, started_at)
        except Exception as e:
            logger.error(
                f"[CALL LOG] Failed to record call start - Session: {session_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )

    async def call_ended(
        self, session_id: str, status: str, end_reason: str, turn_count: int
    ) -> None:
        try:
            async with self.session_factory() as db:
                await CallPersistenceService(db).finish_call(
                    session_id,
                    status,
                    ended_at=datetime.utcnow(),
                    end_reason=end_reason,
                    turn_count=turn_count,
                )
        except Exception as e:
            logger.error(
                f"[CALL LOG] Failed to record call end - Session: {session_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
