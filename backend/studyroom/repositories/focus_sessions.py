"""Database-backed focus session store; arbiter of one active session per room and user."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import (
    FocusSessionModel,
    SESSION_STATUS_ACTIVE,
    SESSION_STATUS_ENDED,
    SESSION_STATUS_EXPIRED,
)
from ..focus_session import RemoteFocusSession, as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)


class ActiveSessionExistsError(RuntimeError):
    def __init__(self, session_id: str) -> None:
        super().__init__("A focus session is already active for this room.")
        self.session_id = session_id


class SessionAlreadyEndedError(RuntimeError):
    pass


def _require(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} cannot be empty.")
    return normalized


class FocusSessionRepository:
    def __init__(self, stale_after: timedelta = DEFAULT_STALE_AFTER) -> None:
        self._stale_after = stale_after

    def get_active(self, session: Session, room_id: str, user_id: str) -> Optional[FocusSessionModel]:
        stmt = (
            select(FocusSessionModel)
            .where(
                FocusSessionModel.room_id == _require(room_id, "Room id"),
                FocusSessionModel.user_id == _require(user_id, "User id"),
                FocusSessionModel.status == SESSION_STATUS_ACTIVE,
            )
            .order_by(FocusSessionModel.last_pulse_at.desc())
        )
        return session.execute(stmt).scalars().first()

    def start(
        self,
        session: Session,
        room_id: str,
        user_id: str,
        *,
        topic_id: str,
        topic_title: str = "",
        milestone_id: Optional[str] = None,
        device_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FocusSessionModel:
        current = now or utcnow()
        existing = self.get_active(session, room_id, user_id)
        if existing is not None:
            if current - as_utc(existing.last_pulse_at) < self._stale_after:
                raise ActiveSessionExistsError(existing.id)
            logger.info("Expiring stale focus session %s for room=%s", existing.id, room_id)
            existing.status = SESSION_STATUS_EXPIRED
            existing.is_running = False
            existing.ended_at = current

        model = FocusSessionModel(
            room_id=_require(room_id, "Room id"),
            user_id=_require(user_id, "User id"),
            topic_id=_require(topic_id, "Topic id"),
            topic_title=topic_title.strip(),
            milestone_id=milestone_id,
            device_id=device_id,
            elapsed_seconds=0,
            is_running=True,
            status=SESSION_STATUS_ACTIVE,
            started_at=current,
            last_pulse_at=current,
        )
        session.add(model)
        session.flush()
        return model

    def _require_session(self, session: Session, room_id: str, user_id: str, session_id: str) -> FocusSessionModel:
        stmt = select(FocusSessionModel).where(
            FocusSessionModel.id == session_id,
            FocusSessionModel.room_id == _require(room_id, "Room id"),
            FocusSessionModel.user_id == _require(user_id, "User id"),
        )
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise LookupError(f"Focus session '{session_id}' was not found.")
        return model

    def pulse(
        self,
        session: Session,
        room_id: str,
        user_id: str,
        session_id: str,
        elapsed_seconds: int,
        *,
        is_running: bool = True,
        now: Optional[datetime] = None,
    ) -> FocusSessionModel:
        model = self._require_session(session, room_id, user_id, session_id)
        if model.status != SESSION_STATUS_ACTIVE:
            raise SessionAlreadyEndedError(f"Focus session '{session_id}' has already ended.")
        model.elapsed_seconds = max(model.elapsed_seconds, int(elapsed_seconds))
        model.is_running = is_running
        model.last_pulse_at = now or utcnow()
        session.flush()
        return model

    def end(
        self,
        session: Session,
        room_id: str,
        user_id: str,
        session_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> FocusSessionModel:
        model = self._require_session(session, room_id, user_id, session_id)
        if model.status != SESSION_STATUS_ACTIVE:
            raise SessionAlreadyEndedError(f"Focus session '{session_id}' has already ended.")
        model.status = SESSION_STATUS_ENDED
        model.is_running = False
        model.ended_at = now or utcnow()
        session.flush()
        return model

    @staticmethod
    def to_payload(model: FocusSessionModel) -> RemoteFocusSession:
        return RemoteFocusSession(
            session_id=model.id,
            topic_id=model.topic_id,
            topic_title=model.topic_title,
            milestone_id=model.milestone_id,
            elapsed_time=model.elapsed_seconds,
            is_running=model.is_running,
            last_pulse_at=as_utc(model.last_pulse_at),
        )


focus_sessions = FocusSessionRepository()

__all__ = [
    "ActiveSessionExistsError",
    "FocusSessionRepository",
    "SessionAlreadyEndedError",
    "focus_sessions",
]
