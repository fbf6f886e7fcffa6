"""
test_schedule.py - Work schedule inference tests.

Usage: python test_schedule.py  (or: pytest test_schedule.py)
"""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from config import CommutePolicy
from models import Candidate, InferenceMode, RawTrip, ScheduleSource, Zone
from schedule import (
    confidence_for_samples,
    detect_work_days,
    infer_schedule,
    median_minutes,
    pair_workdays,
    round_up_to_hour,
)

POLICY = CommutePolicy()


def _candidate(
    time: str | None,
    zone: Zone = Zone.OFFICE,
    date: str = "Nov 24",
    batch_id: str = "b1",
    index: int = 0,
) -> Candidate:
    location = "Mireka Tower" if zone == Zone.OFFICE else "43b Lauries Rd"
    trip = RawTrip(date=date, time=time, location=location, amount="LKR254.00", batch_id=batch_id)
    return Candidate(trip=trip, zone=zone, amount_value=254.0, index=index)


def test_median_minutes():
    assert median_minutes([720, 760, 740]) == 740.0
    assert median_minutes([720, 760]) == 740.0
    assert median_minutes([]) is None


@pytest.mark.parametrize(
    "minutes, expected",
    [(760, 780), (780, 780), (781, 840), (0, 0), (1400, 0), (1439.5, 0)],
)
def test_round_up_to_hour(minutes, expected):
    assert round_up_to_hour(minutes) == expected


@pytest.mark.parametrize(
    "samples, expected",
    [(0, 0.0), (1, 0.40), (4, 0.40), (5, 0.60), (9, 0.60), (10, 0.75), (15, 0.85), (20, 0.95), (60, 0.95)],
)
def test_confidence_for_samples(samples, expected):
    assert confidence_for_samples(samples) == expected


def test_single_arrival_defines_afternoon_shift():
    schedule = infer_schedule([_candidate("12:40 PM")], POLICY, batch_id="b1")

    assert schedule.start_minutes == 780
    assert schedule.end_minutes == 1320
    assert schedule.label == "1:00 PM - 10:00 PM"
    assert schedule.start_clock == "13:00:00"
    assert schedule.end_clock == "22:00:00"
    assert schedule.sample_size == 1
    assert schedule.confidence == 0.40
    assert schedule.source == ScheduleSource.INFERRED
    assert schedule.median_arrival == 760.0
    assert schedule.batch_id == "b1"


def test_even_sample_count_averages_middle_values():
    schedule = infer_schedule(
        [_candidate("12:00 PM"), _candidate("12:40 PM"), _candidate("11:50 AM"), _candidate("12:50 PM")],
        POLICY,
        batch_id="b1",
    )
    # median of 710, 720, 760, 770 is 740 -> 1:00 PM
    assert schedule.median_arrival == 740.0
    assert schedule.start_minutes == 780


def test_home_trips_and_bad_times_are_not_samples():
    schedule = infer_schedule(
        [
            _candidate("12:40 PM"),
            _candidate("9:34 PM", zone=Zone.HOME),
            _candidate("smudged"),
            _candidate(None),
        ],
        POLICY,
        batch_id="b1",
    )
    assert schedule.sample_size == 1
    assert schedule.start_minutes == 780


def test_late_night_median_wraps_to_midnight():
    schedule = infer_schedule([_candidate("11:20 PM")], POLICY, batch_id="b1")
    assert schedule.start_minutes == 0
    assert schedule.end_minutes == 540


def test_no_office_arrivals_leaves_schedule_empty():
    schedule = infer_schedule(
        [_candidate("9:34 PM", zone=Zone.HOME), _candidate("garbage")],
        POLICY,
        batch_id="b1",
    )
    assert not schedule.is_available
    assert schedule.start_minutes is None
    assert schedule.end_minutes is None
    assert schedule.label is None
    assert schedule.confidence == 0.0
    assert schedule.sample_size == 0
    assert schedule.source == ScheduleSource.INSUFFICIENT


def test_fallback_applies_below_sample_threshold():
    policy = CommutePolicy(fallback_enabled=True)
    schedule = infer_schedule(
        [_candidate("12:40 PM"), _candidate("12:30 PM")], policy, batch_id="b1"
    )
    assert schedule.source == ScheduleSource.FALLBACK
    assert schedule.start_minutes == 540
    assert schedule.end_minutes == 1080
    assert schedule.confidence == 0.50
    assert schedule.sample_size == 2


def test_fallback_applies_with_no_samples():
    schedule = infer_schedule([], CommutePolicy(fallback_enabled=True), batch_id="b1")
    assert schedule.source == ScheduleSource.FALLBACK
    assert schedule.label == "9:00 AM - 6:00 PM"


def test_fallback_not_used_with_enough_samples():
    policy = CommutePolicy(fallback_enabled=True)
    candidates = [_candidate(time) for time in ("12:40 PM", "12:30 PM", "12:50 PM", "12:45 PM")]
    schedule = infer_schedule(candidates, policy, batch_id="b1")
    assert schedule.source == ScheduleSource.INFERRED
    assert schedule.start_minutes == 780


def test_foreign_batch_candidates_are_ignored():
    schedule = infer_schedule(
        [_candidate("12:40 PM"), _candidate("7:10 AM", batch_id="other")],
        POLICY,
        batch_id="b1",
    )
    assert schedule.sample_size == 1
    assert schedule.start_minutes == 780


def test_inference_is_deterministic():
    candidates = [_candidate(time) for time in ("12:40 PM", "12:10 PM", "1:05 PM")]
    assert infer_schedule(candidates, POLICY, "b1") == infer_schedule(candidates, POLICY, "b1")


def test_detect_work_days_picks_most_frequent_weekdays():
    # Nov 24 2025 is a Monday.
    candidates = [
        _candidate("12:40 PM", date="Nov 24"),
        _candidate("9:40 PM", zone=Zone.HOME, date="Nov 24"),
        _candidate("12:40 PM", date="Nov 25"),
        _candidate("12:40 PM", date="Nov 29"),
        _candidate("12:40 PM", date="??"),
    ]
    policy = CommutePolicy(work_days_top_n=2)
    assert detect_work_days(candidates, policy) == [0, 1]
    assert detect_work_days(candidates, CommutePolicy(work_days_top_n=0)) == []


def test_schedule_carries_work_days():
    schedule = infer_schedule([_candidate("12:40 PM", date="Nov 24")], POLICY, batch_id="b1")
    assert schedule.work_days == [0]


def test_pair_workdays_same_day_and_overnight():
    candidates = [
        _candidate("12:40 PM", date="Nov 3"),
        _candidate("12:40 PM", date="Nov 4"),
        _candidate("12:40 PM", date="Nov 5"),
        _candidate("1:30 AM", zone=Zone.HOME, date="Nov 4"),
        _candidate("1:00 AM", zone=Zone.HOME, date="Nov 5"),
        _candidate("10:15 PM", zone=Zone.HOME, date="Nov 5"),
    ]
    assert pair_workdays(candidates, POLICY) == [1530, 1500, 1335]


def test_paired_mode_derives_end_from_departures():
    policy = CommutePolicy(inference_mode=InferenceMode.PAIRED)
    candidates = [
        _candidate("12:40 PM", date="Nov 3"),
        _candidate("12:40 PM", date="Nov 4"),
        _candidate("12:40 PM", date="Nov 5"),
        _candidate("8:30 PM", zone=Zone.HOME, date="Nov 3"),
        _candidate("8:10 PM", zone=Zone.HOME, date="Nov 4"),
        _candidate("8:45 PM", zone=Zone.HOME, date="Nov 5"),
    ]
    schedule = infer_schedule(candidates, policy, batch_id="b1")

    assert schedule.source == ScheduleSource.PAIRED
    assert schedule.start_minutes == 780
    # median departure 8:30 PM, rounded down to 8:00 PM
    assert schedule.end_minutes == 1200


def test_paired_mode_without_enough_pairs_uses_fixed_shift():
    policy = CommutePolicy(inference_mode=InferenceMode.PAIRED)
    candidates = [
        _candidate("12:40 PM", date="Nov 3"),
        _candidate("8:30 PM", zone=Zone.HOME, date="Nov 3"),
    ]
    schedule = infer_schedule(candidates, policy, batch_id="b1")

    assert schedule.source == ScheduleSource.INFERRED
    assert schedule.end_minutes == 1320


def test_late_evening_arrivals_pair_with_next_morning_departures():
    candidates = [
        _candidate("11:30 PM", date="Nov 3"),
        _candidate("11:30 PM", date="Nov 4"),
        _candidate("11:30 PM", date="Nov 5"),
        _candidate("8:30 AM", zone=Zone.HOME, date="Nov 4"),
        _candidate("8:30 AM", zone=Zone.HOME, date="Nov 5"),
        _candidate("8:30 AM", zone=Zone.HOME, date="Nov 6"),
    ]
    assert pair_workdays(candidates, POLICY) == [1950, 1950, 1950]

    policy = CommutePolicy(inference_mode=InferenceMode.PAIRED)
    schedule = infer_schedule(candidates, policy, batch_id="b1")

    assert schedule.source == ScheduleSource.PAIRED
    assert schedule.start_minutes == 0
    # median departure 8:30 AM next day, rounded down to 8:00 AM
    assert schedule.end_minutes == 480


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
