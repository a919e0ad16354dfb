"""Good-behavior roll-off (GBRO) simulation.

Rules:
- A point rolls off after 60 days with no new eligible violation.
- Each roll-off removes at most the two newest active, non-excused points
  dated strictly before the roll-off date; the clock then restarts from the
  roll-off date.
- Excused points never roll off, but their dates still reset the clock.
- Only the two newest remaining points carry a projected roll-off date.

Everything here is a pure function of the point snapshots and ``today``;
the cascade service turns the resulting schedule into row updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from ..utils.datetime import add_days

GBRO_WINDOW_DAYS = 60
POINTS_PER_ROLL_OFF = 2


class BehavioralSimulationError(Exception):
    """Raised when the replay cannot make progress on a user's history."""


@dataclass(frozen=True)
class PointSnapshot:
    """The slice of a point the simulation needs."""

    id: int
    shift_date: date
    is_excused: bool = False
    # False when the point's attendance linkage is broken; its date then never moves the clock
    affects_reference: bool = True


@dataclass(frozen=True)
class RollOff:
    """One behavioral decay event."""

    decay_date: date
    point_ids: tuple[int, ...]


@dataclass(frozen=True)
class BehavioralSchedule:
    roll_offs: tuple[RollOff, ...] = ()
    reference_date: Optional[date] = None
    projections: dict[int, date] = field(default_factory=dict)

    @property
    def forgiven_ids(self) -> set[int]:
        return {point_id for roll_off in self.roll_offs for point_id in roll_off.point_ids}

    def roll_off_for(self, point_id: int) -> Optional[RollOff]:
        for roll_off in self.roll_offs:
            if point_id in roll_off.point_ids:
                return roll_off
        return None


def _chronological(points: Iterable[PointSnapshot]) -> list[PointSnapshot]:
    return sorted(points, key=lambda p: (p.shift_date, p.id))


def _after_newest_violation(newest: date, today: date) -> Optional[date]:
    if (today - newest).days > GBRO_WINDOW_DAYS:
        return add_days(newest, GBRO_WINDOW_DAYS)
    return None


def _initial_roll_off_date(ordered: Sequence[PointSnapshot], newest: date, today: date) -> Optional[date]:
    # First gap longer than the window between consecutive violations wins
    for current, following in zip(ordered, ordered[1:]):
        if (following.shift_date - current.shift_date).days > GBRO_WINDOW_DAYS:
            candidate = add_days(current.shift_date, GBRO_WINDOW_DAYS)
            if candidate <= today:
                return candidate

    return _after_newest_violation(newest, today)


def _roll_off_date_after_reference(
    ordered: Sequence[PointSnapshot],
    reference_date: date,
    newest: date,
    today: date,
) -> Optional[date]:
    scheduled = add_days(reference_date, GBRO_WINDOW_DAYS)

    streak_broken = any(reference_date < p.shift_date < scheduled for p in ordered)
    if streak_broken:
        return _after_newest_violation(newest, today)

    if scheduled <= today:
        return scheduled
    return None


def compute_next_behavioral_date(
    points: Sequence[PointSnapshot],
    reference_date: Optional[date],
    today: date,
) -> Optional[date]:
    """Return the next roll-off date due on or before ``today``, if any.

    ``points`` are all GBRO-eligible, unexpired points including excused ones.
    Without a reference date the history is scanned for the first clean gap;
    with one, the next roll-off is 60 days later unless a violation lands
    inside that window.
    """

    if not points:
        return None

    ordered = _chronological(points)
    newest = ordered[-1].shift_date

    if reference_date is None:
        return _initial_roll_off_date(ordered, newest, today)
    return _roll_off_date_after_reference(ordered, reference_date, newest, today)


def simulate_behavioral_decay(points: Iterable[PointSnapshot], today: date) -> BehavioralSchedule:
    """Replay the full history up to ``today`` and return the roll-off schedule."""

    eligible = _chronological(points)
    timeline = [p for p in eligible if p.affects_reference]
    remaining = [p for p in eligible if not p.is_excused]
    reference_date: Optional[date] = None
    roll_offs: list[RollOff] = []

    while remaining:
        # Points with broken linkage only set the clock when nothing else can
        clock = timeline or remaining
        decay_date = compute_next_behavioral_date(clock, reference_date, today)
        if decay_date is None:
            break
        if reference_date is not None and decay_date <= reference_date:
            raise BehavioralSimulationError(
                f"roll-off date {decay_date} does not advance past reference {reference_date}"
            )

        due = sorted(
            (p for p in remaining if p.shift_date < decay_date),
            key=lambda p: (p.shift_date, p.id),
            reverse=True,
        )[:POINTS_PER_ROLL_OFF]

        if due:
            forgiven = {p.id for p in due}
            roll_offs.append(RollOff(decay_date=decay_date, point_ids=tuple(p.id for p in due)))
            remaining = [p for p in remaining if p.id not in forgiven]

        # A clean window with nothing left before it still restarts the clock
        reference_date = decay_date

    return BehavioralSchedule(
        roll_offs=tuple(roll_offs),
        reference_date=reference_date,
        projections=_project_next_roll_off(timeline, remaining, reference_date),
    )


def _project_next_roll_off(
    timeline: Sequence[PointSnapshot],
    remaining: Sequence[PointSnapshot],
    reference_date: Optional[date],
) -> dict[int, date]:
    if not remaining:
        return {}

    anchors = [p.shift_date for p in (timeline or remaining)]
    if reference_date is not None:
        anchors.append(reference_date)
    projected = add_days(max(anchors), GBRO_WINDOW_DAYS)

    newest_first = sorted(remaining, key=lambda p: (p.shift_date, p.id), reverse=True)
    return {p.id: projected for p in newest_first[:POINTS_PER_ROLL_OFF]}
