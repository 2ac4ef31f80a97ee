"""REST endpoints of the focus session store consumed by ``FocusSessionClient``."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from .db.session import get_session_dependency
from .repositories.focus_sessions import (
    ActiveSessionExistsError,
    SessionAlreadyEndedError,
    focus_sessions,
)
from .telemetry import emit_event

router = APIRouter(prefix="/api/rooms", tags=["focus-session"])
logger = logging.getLogger(__name__)


class StartFocusSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic_id: str = Field(..., min_length=1, alias="topicId")
    topic_title: str = Field(default="", alias="topicTitle")
    milestone_id: Optional[str] = Field(default=None, alias="milestoneId")
    device_id: Optional[str] = Field(default=None, alias="deviceId")


class PulseFocusSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    elapsed_time: int = Field(..., ge=0, alias="elapsedTime")
    is_running: bool = Field(default=True, alias="isRunning")


def _require_user_id(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-User-Id header")
    return user_id.strip()


def _session_json(model: Any) -> Dict[str, Any]:
    return focus_sessions.to_payload(model).model_dump(mode="json", by_alias=True)


@router.post("/{room_id}/session/start", status_code=status.HTTP_201_CREATED)
def start_focus_session(
    room_id: str,
    payload: StartFocusSessionRequest,
    db: Session = Depends(get_session_dependency),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Dict[str, Any]:
    uid = _require_user_id(user_id)
    try:
        model = focus_sessions.start(
            db,
            room_id,
            uid,
            topic_id=payload.topic_id,
            topic_title=payload.topic_title,
            milestone_id=payload.milestone_id,
            device_id=payload.device_id,
        )
    except ActiveSessionExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    emit_event("session_store_started", room_id=room_id, user_id=uid, session_id=model.id)
    return {"success": True, "sessionId": model.id, "session": _session_json(model)}


@router.get("/{room_id}/session/active")
def get_active_focus_session(
    room_id: str,
    db: Session = Depends(get_session_dependency),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Dict[str, Any]:
    uid = _require_user_id(user_id)
    model = focus_sessions.get_active(db, room_id, uid)
    return {"session": _session_json(model) if model is not None else None}


@router.post("/{room_id}/session/{session_id}/pulse")
def pulse_focus_session(
    room_id: str,
    session_id: str,
    payload: PulseFocusSessionRequest,
    db: Session = Depends(get_session_dependency),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Dict[str, Any]:
    uid = _require_user_id(user_id)
    try:
        focus_sessions.pulse(
            db,
            room_id,
            uid,
            session_id,
            payload.elapsed_time,
            is_running=payload.is_running,
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SessionAlreadyEndedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"success": True}


@router.post("/{room_id}/session/{session_id}/end")
def end_focus_session(
    room_id: str,
    session_id: str,
    db: Session = Depends(get_session_dependency),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Dict[str, Any]:
    uid = _require_user_id(user_id)
    try:
        model = focus_sessions.end(db, room_id, uid, session_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SessionAlreadyEndedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session already ended") from exc
    emit_event(
        "session_store_ended",
        room_id=room_id,
        user_id=uid,
        session_id=model.id,
        elapsed_seconds=model.elapsed_seconds,
    )
    return {"success": True, "session": _session_json(model)}
