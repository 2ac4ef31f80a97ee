"""Today's study tasks and progress derived from a distributed roadmap."""

from __future__ import annotations

import math
from datetime import date
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel

from .focus_session import MilestoneRef, TaskRef
from .timeline import Milestone, RoadmapTopic


class DailyTask(BaseModel):
    task_id: str
    title: str
    description: str = ""
    status: str = "pending"
    milestone_id: str
    milestone_title: str = ""
    estimated_hours: float = 1.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    order: int = 0

    def task_ref(self) -> TaskRef:
        return TaskRef(task_id=self.task_id, title=self.title)

    def milestone_ref(self) -> MilestoneRef:
        return MilestoneRef(milestone_id=self.milestone_id, title=self.milestone_title or None)


class MilestoneProgress(BaseModel):
    total: int = 0
    completed: int = 0
    remaining: int = 0
    percentage: int = 0
    is_complete: bool = False


class RoadmapProgress(BaseModel):
    total_milestones: int = 0
    completed_milestones: int = 0
    current_milestone: Optional[str] = None
    overall_percentage: int = 0


def _today(value: Optional[date]) -> date:
    return value or date.today()


def _percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(math.floor(part * 100 / whole + 0.5))


def _open_topics(milestone: Milestone) -> List[Tuple[int, RoadmapTopic]]:
    return [
        (index, topic)
        for index, topic in enumerate(milestone.topics)
        if topic.status != "completed"
    ]


def find_active_milestone(milestones: Sequence[Milestone], today: Optional[date] = None) -> Optional[Milestone]:
    """First dated milestone that has not ended and still has open topics."""
    current = _today(today)
    for milestone in milestones:
        if milestone.start_date is None or milestone.end_date is None:
            continue
        if milestone.end_date >= current and _open_topics(milestone):
            return milestone
    return None


def topics_per_day(milestone: Milestone, today: Optional[date] = None) -> int:
    if not milestone.topics or milestone.start_date is None or milestone.end_date is None:
        return 0
    total_days = abs((milestone.end_date - milestone.start_date).days) or 1
    remaining_topics = len(_open_topics(milestone))
    days_elapsed = max(0, (_today(today) - milestone.start_date).days)
    remaining_days = max(1, total_days - days_elapsed)
    return max(1, math.ceil(remaining_topics / remaining_days))


def _task_from_topic(milestone: Milestone, index: int, topic: RoadmapTopic) -> DailyTask:
    return DailyTask(
        task_id=topic.topic_id or f"{milestone.milestone_id}-topic-{index}",
        title=topic.title,
        description=topic.description or f"Study topic from {milestone.title}",
        status=topic.status,
        milestone_id=milestone.milestone_id,
        milestone_title=milestone.title,
        estimated_hours=topic.estimated_hours,
        start_date=milestone.start_date,
        end_date=milestone.end_date,
        order=index,
    )


def todays_tasks(milestones: Sequence[Milestone], today: Optional[date] = None) -> List[DailyTask]:
    active = find_active_milestone(milestones, today)
    if active is None:
        return []
    quota = topics_per_day(active, today)
    return [
        _task_from_topic(active, index, topic)
        for index, topic in _open_topics(active)[:quota]
    ]


def next_task(
    milestones: Sequence[Milestone],
    today: Optional[date] = None,
) -> Tuple[Optional[DailyTask], List[RoadmapTopic]]:
    """Today's first task, the next milestone's opening topic, or the topics already covered."""
    active = find_active_milestone(milestones, today)
    if active is not None:
        tasks = todays_tasks([active], today)
        if tasks:
            return tasks[0], []
        position = next(
            (index for index, item in enumerate(milestones) if item.milestone_id == active.milestone_id),
            None,
        )
        if position is not None and position + 1 < len(milestones):
            following = milestones[position + 1]
            if following.topics:
                return _task_from_topic(following, 0, following.topics[0]), []

    covered = [
        topic
        for milestone in milestones
        for topic in milestone.topics
        if topic.status == "completed"
    ]
    return None, covered


def mark_topic_completed(milestone: Milestone, topic_id: str) -> Milestone:
    """Return a copy of ``milestone`` with the topic whose stable id matches marked completed."""
    updated = milestone.model_copy(deep=True)
    for topic in updated.topics:
        if topic.topic_id == topic_id:
            topic.status = "completed"
    return updated


def milestone_progress(milestone: Milestone) -> MilestoneProgress:
    total = len(milestone.topics)
    completed = sum(1 for topic in milestone.topics if topic.status == "completed")
    return MilestoneProgress(
        total=total,
        completed=completed,
        remaining=total - completed,
        percentage=_percentage(completed, total),
        is_complete=total > 0 and completed == total,
    )


def roadmap_progress(milestones: Sequence[Milestone], today: Optional[date] = None) -> RoadmapProgress:
    if not milestones:
        return RoadmapProgress()
    completed = sum(1 for milestone in milestones if milestone_progress(milestone).is_complete)
    active = find_active_milestone(milestones, today)
    return RoadmapProgress(
        total_milestones=len(milestones),
        completed_milestones=completed,
        current_milestone=active.title if active is not None else None,
        overall_percentage=_percentage(completed, len(milestones)),
    )


__all__ = [
    "DailyTask",
    "MilestoneProgress",
    "RoadmapProgress",
    "find_active_milestone",
    "mark_topic_completed",
    "milestone_progress",
    "next_task",
    "roadmap_progress",
    "todays_tasks",
    "topics_per_day",
]
