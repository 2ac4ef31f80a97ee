"""Milestone timeline distribution and manual date adjustment.

A roadmap is an ordered list of milestones. ``distribute`` spreads a total
duration across them in proportion to their weight; ``shift`` and
``can_shift`` implement the +/- one day controls; ``regenerate_timeline``
recomputes dates for a new duration while keeping manual edits.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Literal, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from .telemetry import emit_event

logger = logging.getLogger(__name__)


DEFAULT_TIMEFRAME_DAYS = 30
MIN_WEIGHT_FROM_HOURS = 1.0
MAX_WEIGHT_FROM_HOURS = 10.0
TIMEFRAME_DAYS: Dict[str, int] = {
    "2weeks": 14,
    "3weeks": 21,
    "1month": 30,
    "6weeks": 42,
    "2months": 60,
    "3months": 90,
    "4months": 120,
    "5months": 150,
    "6months": 180,
    "1year": 365,
}
_MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


class InvalidInputError(ValueError):
    """Raised when a roadmap cannot be laid out; callers should fall back to a trivial roadmap."""


class RoadmapTopic(BaseModel):
    """Single study topic inside a milestone."""

    topic_id: Optional[str] = None
    title: str = "Untitled Topic"
    description: str = ""
    status: Literal["pending", "in_progress", "completed"] = "pending"
    estimated_hours: float = Field(default=1.0, gt=0)


class Milestone(BaseModel):
    """Roadmap milestone; dates are filled in by the distributor."""

    milestone_id: str = Field(..., min_length=1)
    title: str = ""
    description: str = ""
    weight: Optional[float] = None
    estimated_hours: Optional[float] = None
    task_count: Optional[int] = None
    topics: List[RoadmapTopic] = Field(default_factory=list)
    enabled: bool = True
    pinned: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_days: Optional[int] = None

    @field_validator("topics", mode="before")
    @classmethod
    def _normalize_topics(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [{"title": entry} if isinstance(entry, str) else entry for entry in value]

    @model_validator(mode="after")
    def _assign_topic_ids(self) -> "Milestone":
        for index, topic in enumerate(self.topics):
            if not topic.topic_id:
                topic.topic_id = f"{self.milestone_id}-topic-{index}"
        return self


class TimelineWarning(BaseModel):
    """Non-fatal condition raised while laying out a timeline."""

    code: Literal["compressed_timeline", "pin_released"]
    message: str
    milestone_id: Optional[str] = None


class TimelineDistribution(BaseModel):
    anchor_date: date
    total_days: int
    milestones: List[Milestone] = Field(default_factory=list)
    warnings: List[TimelineWarning] = Field(default_factory=list)

    @property
    def end_date(self) -> Optional[date]:
        return self.milestones[-1].end_date if self.milestones else None

    @property
    def shares(self) -> List[int]:
        return [milestone.duration_days or 0 for milestone in self.milestones]


class TimelineSummary(BaseModel):
    total_days: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_milestones: int = 0
    average_duration: int = 0


def parse_timeframe(timeframe: Optional[str]) -> int:
    """Translate a timeframe token such as ``3months`` or ``custom-90`` into days."""
    if not timeframe:
        return DEFAULT_TIMEFRAME_DAYS
    token = timeframe.strip().lower()
    if token.startswith("custom-"):
        raw = token[len("custom-"):]
        try:
            days = int(raw)
        except ValueError as exc:
            raise InvalidInputError(f"Custom timeframe '{timeframe}' is not a whole number of days.") from exc
        if days <= 0:
            raise InvalidInputError(f"Custom timeframe '{timeframe}' must be positive.")
        return days
    return TIMEFRAME_DAYS.get(token, DEFAULT_TIMEFRAME_DAYS)


def milestone_weight(milestone: Milestone) -> float:
    if milestone.weight is not None and milestone.weight > 0:
        return float(milestone.weight)
    if milestone.estimated_hours is not None and milestone.estimated_hours > 0:
        return max(MIN_WEIGHT_FROM_HOURS, min(MAX_WEIGHT_FROM_HOURS, milestone.estimated_hours / 2))
    if milestone.topics:
        return float(len(milestone.topics))
    if milestone.task_count is not None and milestone.task_count > 0:
        return float(milestone.task_count)
    return 1.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def allocate_days(weights: Sequence[float], total_days: int) -> Tuple[List[int], bool]:
    """Split ``total_days`` into whole-day shares proportional to ``weights``.

    Shares always sum to ``total_days`` and are at least one day each. When
    there are fewer days than weights every share is one day and the second
    element of the result is ``True``.
    """
    count = len(weights)
    if count == 0:
        raise InvalidInputError("Cannot allocate days across zero milestones.")
    if total_days < count:
        return [1] * count, True

    if not all(math.isfinite(weight) and weight > 0 for weight in weights):
        raise InvalidInputError("Milestone weights must be finite positive numbers.")
    # scale by the heaviest weight so huge weights cannot overflow the sum
    peak = max(weights)
    scaled = [weight / peak for weight in weights]
    total_weight = sum(scaled)

    shares = [_round_half_up(weight / total_weight * total_days) for weight in scaled]
    # rounding drift lands on the final milestone
    shares[-1] = total_days - sum(shares[:-1])

    for index in range(count):
        while shares[index] < 1:
            donor = max(range(count), key=lambda candidate: (shares[candidate], -candidate))
            shares[donor] -= 1
            shares[index] += 1
    return shares, False


def _validate(milestones: Sequence[Milestone], total_days: Any, anchor: date) -> None:
    if not milestones:
        raise InvalidInputError("Cannot distribute an empty milestone list.")
    if isinstance(total_days, bool) or not isinstance(total_days, int):
        raise InvalidInputError(f"Timeline duration must be a whole number of days, got {total_days!r}.")
    if total_days <= 0:
        raise InvalidInputError(f"Timeline duration must be positive, got {total_days}.")
    # compressed layouts use one day per milestone even past total_days
    span = max(total_days, len(milestones))
    if span > (date.max - anchor).days:
        raise InvalidInputError(
            f"A {span}-day timeline starting {anchor.isoformat()} ends past the last representable date."
        )


def _as_date(value: Optional[date]) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    return value


def _place(
    milestones: Sequence[Milestone],
    shares: Sequence[int],
    anchor: date,
    pinned: Optional[Set[int]] = None,
) -> List[Milestone]:
    kept_pins = pinned or set()
    placed: List[Milestone] = []
    cursor = anchor
    for index, (milestone, share) in enumerate(zip(milestones, shares)):
        end = cursor + timedelta(days=share)
        placed.append(
            milestone.model_copy(
                deep=True,
                update={
                    "start_date": cursor,
                    "end_date": end,
                    "duration_days": share,
                    "pinned": index in kept_pins,
                },
            )
        )
        cursor = end
    return placed


def _compressed_warning(count: int, total_days: int) -> TimelineWarning:
    return TimelineWarning(
        code="compressed_timeline",
        message=(
            f"{count} milestones do not fit in {total_days} days; "
            "each milestone was given a single day."
        ),
    )


def distribute(
    milestones: Sequence[Milestone],
    total_days: int,
    anchor_date: Optional[date] = None,
) -> TimelineDistribution:
    """Assign every milestone an end date proportional to its weight.

    Raises ``InvalidInputError`` for an empty list or a non-positive duration.
    """
    anchor = _as_date(anchor_date)
    _validate(milestones, total_days, anchor)

    shares, compressed = allocate_days([milestone_weight(item) for item in milestones], total_days)
    warnings: List[TimelineWarning] = []
    if compressed:
        warnings.append(_compressed_warning(len(milestones), total_days))
        logger.warning(
            "Compressed timeline: %s milestones across %s days", len(milestones), total_days
        )
        emit_event("timeline_compressed", milestone_count=len(milestones), total_days=total_days)

    return TimelineDistribution(
        anchor_date=anchor,
        total_days=total_days,
        milestones=_place(milestones, shares, anchor),
        warnings=warnings,
    )


def regenerate_timeline(
    milestones: Sequence[Milestone],
    total_days: int,
    anchor_date: Optional[date] = None,
) -> TimelineDistribution:
    """Redistribute for a new duration, keeping manually shifted end dates that still fit."""
    anchor = _as_date(anchor_date)
    _validate(milestones, total_days, anchor)
    timeline_end = anchor + timedelta(days=total_days)
    count = len(milestones)
    warnings: List[TimelineWarning] = []

    boundaries: List[Tuple[int, date]] = [(-1, anchor)]
    for index, milestone in enumerate(milestones):
        if not milestone.pinned or milestone.end_date is None:
            continue
        if index == count - 1:
            if milestone.end_date != timeline_end:
                warnings.append(
                    TimelineWarning(
                        code="pin_released",
                        message="The final milestone always ends on the timeline end date.",
                        milestone_id=milestone.milestone_id,
                    )
                )
            continue
        previous_index, previous_date = boundaries[-1]
        fits_before = (milestone.end_date - previous_date).days >= index - previous_index
        fits_after = (timeline_end - milestone.end_date).days >= count - 1 - index
        if fits_before and fits_after:
            boundaries.append((index, milestone.end_date))
            continue
        logger.info(
            "Releasing pinned date %s for milestone %s", milestone.end_date, milestone.milestone_id
        )
        warnings.append(
            TimelineWarning(
                code="pin_released",
                message=(
                    f"Manual date {milestone.end_date.isoformat()} no longer fits the "
                    f"{total_days}-day timeline and was recalculated."
                ),
                milestone_id=milestone.milestone_id,
            )
        )
    boundaries.append((count - 1, timeline_end))

    weights = [milestone_weight(item) for item in milestones]
    shares: List[int] = []
    compressed = False
    for (start_index, start_date), (end_index, end_date) in zip(boundaries, boundaries[1:]):
        segment, segment_compressed = allocate_days(
            weights[start_index + 1 : end_index + 1], (end_date - start_date).days
        )
        shares.extend(segment)
        compressed = compressed or segment_compressed
    if compressed:
        warnings.append(_compressed_warning(count, total_days))
        emit_event("timeline_compressed", milestone_count=count, total_days=total_days)

    pinned = {index for index, _ in boundaries[1:-1]}
    return TimelineDistribution(
        anchor_date=anchor,
        total_days=total_days,
        milestones=_place(milestones, shares, anchor, pinned=pinned),
        warnings=warnings,
    )


def _neighbour_date(milestones: Sequence[Milestone], index: int, step: int) -> Optional[date]:
    cursor = index + step
    while 0 <= cursor < len(milestones):
        candidate = milestones[cursor]
        if candidate.enabled:
            return candidate.end_date
        cursor += step
    return None


def offset_date(value: date, delta_days: int) -> Optional[date]:
    """``value`` moved by ``delta_days``, or ``None`` when that leaves the calendar."""
    try:
        return value + timedelta(days=delta_days)
    except OverflowError:
        return None


def can_shift(
    milestones: Sequence[Milestone],
    index: int,
    proposed: date,
    *,
    today: Optional[date] = None,
) -> bool:
    """Whether milestone ``index`` may end on ``proposed`` without crossing its enabled neighbours."""
    if not 0 <= index < len(milestones):
        return False
    if not milestones[index].enabled:
        return False
    current_day = _as_date(today)
    if proposed < current_day:
        return False

    previous = _neighbour_date(milestones, index, -1)
    if previous is None:
        previous = current_day
    if proposed <= previous:
        return False

    following = _neighbour_date(milestones, index, 1)
    if following is not None and proposed >= following:
        return False
    return True


def shift(
    milestones: Sequence[Milestone],
    index: int,
    delta_days: int,
    *,
    today: Optional[date] = None,
) -> List[Milestone]:
    """Move one milestone's end date by ``delta_days``; a disallowed move returns the roadmap unchanged."""
    updated = [milestone.model_copy(deep=True) for milestone in milestones]
    if not 0 <= index < len(updated) or delta_days == 0:
        return updated
    current = updated[index].end_date
    if current is None:
        return updated
    proposed = offset_date(current, delta_days)
    if proposed is None or not can_shift(updated, index, proposed, today=today):
        return updated

    target = updated[index]
    target.end_date = proposed
    target.pinned = True
    if target.start_date is not None:
        target.duration_days = max(1, (proposed - target.start_date).days)
    if index + 1 < len(updated):
        following = updated[index + 1]
        following.start_date = proposed
        if following.end_date is not None:
            following.duration_days = max(1, (following.end_date - proposed).days)
    return updated


def timeline_summary(milestones: Sequence[Milestone]) -> TimelineSummary:
    if not milestones:
        return TimelineSummary()
    start = milestones[0].start_date
    end = milestones[-1].end_date
    total_days = (end - start).days if start is not None and end is not None else 0
    return TimelineSummary(
        total_days=total_days,
        start_date=start,
        end_date=end,
        total_milestones=len(milestones),
        average_duration=_round_half_up(total_days / len(milestones)),
    )


def format_display_date(value: date) -> str:
    """Render ``2024-11-07`` as ``7 Nov``."""
    return f"{value.day} {_MONTH_ABBREVIATIONS[value.month - 1]}"


def fallback_roadmap(goal: str) -> List[Milestone]:
    """Single-milestone roadmap used when generation or distribution fails."""
    label = goal.strip() or "your goal"
    return [
        Milestone(
            milestone_id="milestone-1",
            title=f"Complete: {label}",
            description=f"Work steadily towards {label}.",
            weight=1.0,
        )
    ]


__all__ = [
    "DEFAULT_TIMEFRAME_DAYS",
    "InvalidInputError",
    "Milestone",
    "RoadmapTopic",
    "TIMEFRAME_DAYS",
    "TimelineDistribution",
    "TimelineSummary",
    "TimelineWarning",
    "allocate_days",
    "can_shift",
    "distribute",
    "fallback_roadmap",
    "format_display_date",
    "milestone_weight",
    "offset_date",
    "parse_timeframe",
    "regenerate_timeline",
    "shift",
    "timeline_summary",
]
