"""Roadmap timeline endpoints used by the room creation and study views."""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from .daily_tasks import DailyTask, RoadmapProgress, next_task, roadmap_progress, todays_tasks
from .timeline import (
    InvalidInputError,
    Milestone,
    RoadmapTopic,
    TimelineDistribution,
    TimelineSummary,
    can_shift,
    distribute,
    offset_date,
    parse_timeframe,
    regenerate_timeline,
    shift,
    timeline_summary,
)

router = APIRouter(prefix="/api/timeline", tags=["timeline"])
logger = logging.getLogger(__name__)


class DistributeRequest(BaseModel):
    milestones: List[Milestone] = Field(default_factory=list)
    total_days: Optional[int] = None
    timeframe: Optional[str] = None
    anchor_date: Optional[date] = None

    def resolved_days(self) -> int:
        if self.total_days is not None:
            return self.total_days
        return parse_timeframe(self.timeframe)


class ShiftRequest(BaseModel):
    milestones: List[Milestone] = Field(default_factory=list)
    index: int = Field(..., ge=0)
    delta_days: int = Field(..., ge=-1, le=1)
    today: Optional[date] = None


class ShiftResponse(BaseModel):
    applied: bool
    can_increment: bool
    can_decrement: bool
    milestones: List[Milestone]


class MilestonesRequest(BaseModel):
    milestones: List[Milestone] = Field(default_factory=list)
    today: Optional[date] = None


class TodayResponse(BaseModel):
    tasks: List[DailyTask] = Field(default_factory=list)
    next_task: Optional[DailyTask] = None
    additional_topics: List[RoadmapTopic] = Field(default_factory=list)
    progress: RoadmapProgress


def _invalid(exc: InvalidInputError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.post("/distribute", response_model=TimelineDistribution, status_code=status.HTTP_200_OK)
def distribute_timeline(payload: DistributeRequest) -> TimelineDistribution:
    try:
        return distribute(payload.milestones, payload.resolved_days(), payload.anchor_date)
    except InvalidInputError as exc:
        raise _invalid(exc) from exc


@router.post("/regenerate", response_model=TimelineDistribution, status_code=status.HTTP_200_OK)
def regenerate(payload: DistributeRequest) -> TimelineDistribution:
    try:
        return regenerate_timeline(payload.milestones, payload.resolved_days(), payload.anchor_date)
    except InvalidInputError as exc:
        raise _invalid(exc) from exc


def _can_move(milestones: List[Milestone], index: int, delta: int, today: Optional[date]) -> bool:
    if not 0 <= index < len(milestones):
        return False
    current = milestones[index].end_date
    if current is None:
        return False
    proposed = offset_date(current, delta)
    return proposed is not None and can_shift(milestones, index, proposed, today=today)


@router.post("/shift", response_model=ShiftResponse, status_code=status.HTTP_200_OK)
def shift_milestone(payload: ShiftRequest) -> ShiftResponse:
    if payload.index >= len(payload.milestones):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Milestone index {payload.index} is out of range.",
        )
    before = payload.milestones[payload.index].end_date
    updated = shift(payload.milestones, payload.index, payload.delta_days, today=payload.today)
    return ShiftResponse(
        applied=updated[payload.index].end_date != before,
        can_increment=_can_move(updated, payload.index, 1, payload.today),
        can_decrement=_can_move(updated, payload.index, -1, payload.today),
        milestones=updated,
    )


@router.post("/summary", response_model=TimelineSummary, status_code=status.HTTP_200_OK)
def summarize(payload: MilestonesRequest) -> TimelineSummary:
    return timeline_summary(payload.milestones)


@router.post("/tasks/today", response_model=TodayResponse, status_code=status.HTTP_200_OK)
def tasks_for_today(payload: MilestonesRequest) -> TodayResponse:
    task, covered = next_task(payload.milestones, payload.today)
    return TodayResponse(
        tasks=todays_tasks(payload.milestones, payload.today),
        next_task=task,
        additional_topics=covered,
        progress=roadmap_progress(payload.milestones, payload.today),
    )
