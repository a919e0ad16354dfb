import pytest

from attendance_points.services import behavioral_decay
from attendance_points.services.behavioral_decay import (
    BehavioralSimulationError,
    PointSnapshot,
    RollOff,
    compute_next_behavioral_date,
    simulate_behavioral_decay,
)


def test_two_points_roll_off_together_after_clean_window(day):
    points = [PointSnapshot(1, day(0)), PointSnapshot(2, day(40))]

    schedule = simulate_behavioral_decay(points, today=day(130))

    assert schedule.roll_offs == (RollOff(decay_date=day(100), point_ids=(2, 1)),)
    assert schedule.reference_date == day(100)
    assert schedule.projections == {}


def test_internal_gap_triggers_roll_off_before_later_violation(day):
    points = [PointSnapshot(1, day(0)), PointSnapshot(2, day(45)), PointSnapshot(3, day(200))]

    schedule = simulate_behavioral_decay(points, today=day(200))

    assert schedule.roll_offs == (RollOff(decay_date=day(105), point_ids=(2, 1)),)
    assert schedule.forgiven_ids == {1, 2}
    # The surviving point needs its own clean window after the newest violation
    assert schedule.projections == {3: day(260)}


def test_excused_point_resets_clock_but_is_never_forgiven(day):
    points = [PointSnapshot(1, day(0)), PointSnapshot(2, day(50), is_excused=True)]

    schedule = simulate_behavioral_decay(points, today=day(100))

    assert schedule.roll_offs == ()
    assert schedule.projections == {1: day(110)}


def test_excused_point_is_skipped_when_choosing_targets(day):
    points = [PointSnapshot(1, day(0), is_excused=True), PointSnapshot(2, day(10))]

    schedule = simulate_behavioral_decay(points, today=day(200))

    assert schedule.roll_offs == (RollOff(decay_date=day(70), point_ids=(2,)),)
    assert 1 not in schedule.forgiven_ids


def test_each_roll_off_forgives_at_most_two_points(day):
    points = [PointSnapshot(i + 1, day(i * 5)) for i in range(5)]

    schedule = simulate_behavioral_decay(points, today=day(300))

    assert [r.decay_date for r in schedule.roll_offs] == [day(80), day(140), day(200)]
    assert [r.point_ids for r in schedule.roll_offs] == [(5, 4), (3, 2), (1,)]
    assert all(len(r.point_ids) <= 2 for r in schedule.roll_offs)
    assert schedule.projections == {}


def test_violation_inside_window_breaks_the_streak(day):
    points = [
        PointSnapshot(1, day(0)),
        PointSnapshot(2, day(10)),
        PointSnapshot(3, day(20)),
        PointSnapshot(4, day(100)),
    ]

    schedule = simulate_behavioral_decay(points, today=day(150))

    assert schedule.roll_offs == (RollOff(decay_date=day(80), point_ids=(3, 2)),)
    assert schedule.projections == {4: day(160), 1: day(160)}

    later = simulate_behavioral_decay(points, today=day(161))

    assert later.roll_offs == (
        RollOff(decay_date=day(80), point_ids=(3, 2)),
        RollOff(decay_date=day(160), point_ids=(4, 1)),
    )
    assert later.projections == {}


def test_exactly_sixty_clean_days_is_not_enough(day):
    points = [PointSnapshot(1, day(0))]

    assert simulate_behavioral_decay(points, today=day(60)).roll_offs == ()
    assert simulate_behavioral_decay(points, today=day(61)).roll_offs == (
        RollOff(decay_date=day(60), point_ids=(1,)),
    )


def test_point_with_broken_linkage_does_not_move_the_clock(day):
    points = [PointSnapshot(1, day(0)), PointSnapshot(2, day(50), affects_reference=False)]

    schedule = simulate_behavioral_decay(points, today=day(100))

    assert schedule.roll_offs == (RollOff(decay_date=day(60), point_ids=(2, 1)),)


def test_lone_point_with_broken_linkage_still_rolls_off(day):
    points = [PointSnapshot(1, day(0), affects_reference=False)]

    schedule = simulate_behavioral_decay(points, today=day(400))

    assert schedule.roll_offs == (RollOff(decay_date=day(60), point_ids=(1,)),)
    assert schedule.projections == {}


def test_broken_linkage_points_project_from_their_own_dates(day):
    points = [
        PointSnapshot(1, day(0), affects_reference=False),
        PointSnapshot(2, day(20), affects_reference=False),
    ]

    assert simulate_behavioral_decay(points, today=day(30)).projections == {2: day(80), 1: day(80)}
    assert simulate_behavioral_decay(points, today=day(81)).roll_offs == (
        RollOff(decay_date=day(80), point_ids=(2, 1)),
    )


def test_replay_is_deterministic(day):
    points = [PointSnapshot(3, day(200)), PointSnapshot(1, day(0)), PointSnapshot(2, day(45))]

    first = simulate_behavioral_decay(points, today=day(400))
    second = simulate_behavioral_decay(list(reversed(points)), today=day(400))

    assert first == second


def test_compute_next_date_without_points(day):
    assert compute_next_behavioral_date([], None, day(500)) is None


def test_compute_next_date_after_reference(day):
    points = [PointSnapshot(1, day(0)), PointSnapshot(2, day(90))]

    # Clean window after the reference
    assert compute_next_behavioral_date(points, day(20), day(70)) is None
    assert compute_next_behavioral_date(points, day(20), day(80)) == day(80)
    # Day 90 lands inside the window, so the newest violation restarts it
    assert compute_next_behavioral_date(points, day(40), day(140)) is None
    assert compute_next_behavioral_date(points, day(40), day(151)) == day(150)


def test_simulation_refuses_to_stall(day, monkeypatch):
    monkeypatch.setattr(behavioral_decay, "compute_next_behavioral_date", lambda *args: day(10))

    with pytest.raises(BehavioralSimulationError):
        simulate_behavioral_decay(
            [PointSnapshot(1, day(0)), PointSnapshot(2, day(5)), PointSnapshot(3, day(20))],
            today=day(300),
        )
