from __future__ import annotations

from datetime import date

from studyroom.daily_tasks import (
    find_active_milestone,
    mark_topic_completed,
    milestone_progress,
    next_task,
    roadmap_progress,
    todays_tasks,
    topics_per_day,
)
from studyroom.timeline import Milestone, distribute

ANCHOR = date(2024, 1, 1)


def _roadmap():
    milestones = [
        Milestone(
            milestone_id="basics",
            title="Basics",
            weight=1,
            topics=["Variables", "Loops", "Functions", {"title": "Modules", "status": "completed"}],
        ),
        Milestone(milestone_id="oop", title="Objects", weight=1, topics=["Classes", "Inheritance"]),
    ]
    return distribute(milestones, 20, ANCHOR).milestones  # basics ends 01-11, oop ends 01-21


def test_active_milestone_is_first_unfinished_one() -> None:
    milestones = _roadmap()

    assert find_active_milestone(milestones, ANCHOR).milestone_id == "basics"
    assert find_active_milestone(milestones, date(2024, 1, 15)).milestone_id == "oop"
    assert find_active_milestone(milestones, date(2024, 2, 1)) is None


def test_topics_per_day_spreads_remaining_topics() -> None:
    milestones = _roadmap()

    assert topics_per_day(milestones[0], ANCHOR) == 1
    assert topics_per_day(milestones[0], date(2024, 1, 10)) == 3
    assert topics_per_day(Milestone(milestone_id="empty"), ANCHOR) == 0


def test_todays_tasks_use_stable_topic_ids() -> None:
    milestones = _roadmap()

    tasks = todays_tasks(milestones, date(2024, 1, 10))

    assert [task.task_id for task in tasks] == ["basics-topic-0", "basics-topic-1", "basics-topic-2"]
    assert tasks[0].milestone_title == "Basics"
    assert tasks[0].task_ref().title == "Variables"
    assert tasks[0].milestone_ref().milestone_id == "basics"


def test_next_task_moves_to_following_milestone_when_done() -> None:
    milestones = _roadmap()
    basics = milestones[0]
    for topic_id in ("basics-topic-0", "basics-topic-1", "basics-topic-2"):
        basics = mark_topic_completed(basics, topic_id)
    milestones[0] = basics

    task, covered = next_task(milestones, ANCHOR)

    assert task is not None
    assert task.task_id == "oop-topic-0"
    assert covered == []


def test_next_task_reports_covered_topics_when_nothing_is_left() -> None:
    milestones = _roadmap()

    task, covered = next_task(milestones, date(2024, 3, 1))

    assert task is None
    assert [topic.title for topic in covered] == ["Modules"]


def test_mark_topic_completed_matches_by_id_only() -> None:
    milestone = _roadmap()[1]

    unchanged = mark_topic_completed(milestone, "Classes")
    updated = mark_topic_completed(milestone, "oop-topic-0")

    assert [topic.status for topic in unchanged.topics] == ["pending", "pending"]
    assert [topic.status for topic in updated.topics] == ["completed", "pending"]
    assert milestone.topics[0].status == "pending"


def test_progress_counts_completed_topics_and_milestones() -> None:
    milestones = _roadmap()
    oop = milestones[1]
    for topic_id in ("oop-topic-0", "oop-topic-1"):
        oop = mark_topic_completed(oop, topic_id)
    milestones[1] = oop

    basics_progress = milestone_progress(milestones[0])
    overall = roadmap_progress(milestones, ANCHOR)

    assert basics_progress.total == 4
    assert basics_progress.completed == 1
    assert basics_progress.percentage == 25
    assert basics_progress.is_complete is False
    assert milestone_progress(oop).is_complete is True
    assert overall.completed_milestones == 1
    assert overall.overall_percentage == 50
    assert overall.current_milestone == "Basics"
    assert roadmap_progress([]).total_milestones == 0
