"""Focus session models shared by the timer, the session client and the session store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class TaskRef(BaseModel):
    """The topic being studied; the timer only keeps its id and title."""

    task_id: str = Field(..., min_length=1)
    title: str = ""


class MilestoneRef(BaseModel):
    milestone_id: str = Field(..., min_length=1)
    title: Optional[str] = None


class TimerError(BaseModel):
    kind: Literal["conflict", "rejected", "network", "storage"]
    message: str
    occurred_at: datetime = Field(default_factory=utcnow)


class TimerSnapshot(BaseModel):
    """Read-only view of a timer published to subscribers."""

    model_config = ConfigDict(frozen=True)

    room_id: str
    status: TimerStatus = TimerStatus.IDLE
    elapsed_seconds: int = 0
    target_seconds: Optional[int] = None
    task: Optional[TaskRef] = None
    milestone: Optional[MilestoneRef] = None
    session_id: Optional[str] = None
    is_local: bool = False
    last_pulse_at: Optional[datetime] = None
    last_error: Optional[TimerError] = None

    @property
    def is_running(self) -> bool:
        return self.status is TimerStatus.RUNNING

    @property
    def progress(self) -> int:
        if not self.target_seconds:
            return 0
        return min(100, int(self.elapsed_seconds * 100 // self.target_seconds))


class StoredTimerState(BaseModel):
    """Local cache entry written under ``focusTimer_<room_id>``."""

    session_id: str
    task: Optional[TaskRef] = None
    milestone: Optional[MilestoneRef] = None
    is_running: bool = False
    elapsed_seconds: int = Field(default=0, ge=0)
    target_seconds: Optional[int] = None
    is_local: bool = False
    saved_at: datetime = Field(default_factory=utcnow)


class RemoteFocusSession(BaseModel):
    """Active session as reported by the remote session store."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="_id")
    topic_id: Optional[str] = Field(default=None, alias="topicId")
    topic_title: Optional[str] = Field(default=None, alias="topicTitle")
    milestone_id: Optional[str] = Field(default=None, alias="milestoneId")
    elapsed_time: int = Field(default=0, ge=0, alias="elapsedTime")
    is_running: bool = Field(default=False, alias="isRunning")
    last_pulse_at: Optional[datetime] = Field(default=None, alias="lastPulseAt")

    def is_fresh(self, now: datetime, stale_after: timedelta) -> bool:
        if self.last_pulse_at is None:
            return False
        return as_utc(now) - as_utc(self.last_pulse_at) < stale_after


class FocusCompletion(BaseModel):
    """Returned by ``FocusTimer.complete_session`` so the caller can mark the task done."""

    session_id: str
    task: Optional[TaskRef] = None
    milestone: Optional[MilestoneRef] = None
    elapsed_seconds: int = 0
    completed_at: datetime = Field(default_factory=utcnow)


__all__ = [
    "FocusCompletion",
    "MilestoneRef",
    "RemoteFocusSession",
    "StoredTimerState",
    "TaskRef",
    "TimerError",
    "TimerSnapshot",
    "TimerStatus",
    "as_utc",
    "utcnow",
]
