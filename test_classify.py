"""
test_classify.py - Entry/exit window classification tests.

Usage: python test_classify.py  (or: pytest test_classify.py)
"""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from classify import (
    INSUFFICIENT_DATA_REASON,
    INVALID_TIME_REASON,
    classify_candidates,
    classify_trip,
    entry_window,
)
from config import CommutePolicy
from models import Candidate, InferredSchedule, RawTrip, ScheduleSource, TripStatus, Zone
from rules import INTERNAL_ERROR_REASON

POLICY = CommutePolicy()
AFTERNOON = InferredSchedule(
    batch_id="b1",
    start_minutes=780,
    end_minutes=1320,
    confidence=0.4,
    sample_size=1,
    source=ScheduleSource.INFERRED,
)


def _candidate(time, zone=Zone.OFFICE, index=0, batch_id="b1", status=None) -> Candidate:
    location = "Mireka Tower" if zone == Zone.OFFICE else "43b Lauries Rd"
    trip = RawTrip.model_validate(
        {
            "date": "Nov 24",
            "time": time,
            "location": location,
            "amount": "LKR254.00",
            "batchId": batch_id,
            "status": status,
        }
    )
    return Candidate(trip=trip, zone=zone, amount_value=254.0, index=index)


def _schedule(start: int, end: int) -> InferredSchedule:
    return InferredSchedule(
        batch_id="b1",
        start_minutes=start,
        end_minutes=end,
        confidence=0.6,
        sample_size=5,
        source=ScheduleSource.INFERRED,
    )


def test_entry_window_bounds():
    assert entry_window(AFTERNOON, POLICY) == (720, 790)


def test_office_arrival_inside_window():
    result = classify_trip(_candidate("12:40 PM"), AFTERNOON, POLICY)
    assert result.status == TripStatus.VALID
    assert result.zone == Zone.OFFICE
    assert result.reason == (
        "Within entry window (Shift starts 1:00 PM; allowed 12:00 PM - 1:10 PM, trip at 12:40 PM)"
    )


@pytest.mark.parametrize(
    "time, expected",
    [
        ("12:00 PM", TripStatus.VALID),
        ("1:10 PM", TripStatus.VALID),
        ("11:59 AM", TripStatus.INVALID),
        ("1:11 PM", TripStatus.INVALID),
        ("10:30 AM", TripStatus.INVALID),
    ],
)
def test_office_window_edges(time, expected):
    assert classify_trip(_candidate(time), AFTERNOON, POLICY).status == expected


def test_office_arrival_outside_window_reason():
    result = classify_trip(_candidate("10:30 AM"), AFTERNOON, POLICY)
    assert result.reason.startswith("Outside entry window (Shift starts 1:00 PM")
    assert "trip at 10:30 AM" in result.reason


def test_home_departure_before_shift_end():
    result = classify_trip(_candidate("9:34 PM", zone=Zone.HOME), AFTERNOON, POLICY)
    assert result.status == TripStatus.INVALID
    assert result.reason == "Departed before shift end (Shift ends 10:00 PM, trip at 9:34 PM)"


@pytest.mark.parametrize("time", ["10:00 PM", "11:45 PM", "1:30 AM"])
def test_home_departure_at_or_after_shift_end(time):
    result = classify_trip(_candidate(time, zone=Zone.HOME), AFTERNOON, POLICY)
    assert result.status == TripStatus.VALID
    assert result.reason.startswith("Departed after shift end")


def test_home_departure_early_morning_is_not_overnight():
    result = classify_trip(_candidate("4:00 AM", zone=Zone.HOME), AFTERNOON, POLICY)
    assert result.status == TripStatus.INVALID


def test_home_departure_cap():
    policy = CommutePolicy(home_max_after_end_minutes=60)
    late = classify_trip(_candidate("11:30 PM", zone=Zone.HOME), AFTERNOON, policy)
    assert late.status == TripStatus.INVALID
    assert late.reason.startswith("Departed too long after shift end")

    on_time = classify_trip(_candidate("10:45 PM", zone=Zone.HOME), AFTERNOON, policy)
    assert on_time.status == TripStatus.VALID


def test_midnight_start_compares_window_circularly():
    schedule = _schedule(0, 540)
    assert classify_trip(_candidate("11:30 PM"), schedule, POLICY).status == TripStatus.VALID
    assert classify_trip(_candidate("12:05 AM"), schedule, POLICY).status == TripStatus.VALID
    assert classify_trip(_candidate("10:30 PM"), schedule, POLICY).status == TripStatus.INVALID
    assert classify_trip(_candidate("2:00 AM", zone=Zone.HOME), schedule, POLICY).status == TripStatus.INVALID
    assert classify_trip(_candidate("9:30 AM", zone=Zone.HOME), schedule, POLICY).status == TripStatus.VALID


def test_shift_ending_after_midnight():
    schedule = _schedule(1080, 1620)
    before = classify_trip(_candidate("2:00 AM", zone=Zone.HOME), schedule, POLICY)
    assert before.status == TripStatus.INVALID
    assert before.reason == "Departed before shift end (Shift ends 3:00 AM, trip at 2:00 AM)"

    after = classify_trip(_candidate("3:30 AM", zone=Zone.HOME), schedule, POLICY)
    assert after.status == TripStatus.VALID


def test_unparseable_time_is_pending():
    result = classify_trip(_candidate("smudged"), AFTERNOON, POLICY)
    assert result.status == TripStatus.PENDING
    assert result.reason == INVALID_TIME_REASON


def test_missing_schedule_fails_closed():
    empty = InferredSchedule(batch_id="b1")
    for candidate in (_candidate("12:40 PM"), _candidate("11:00 PM", zone=Zone.HOME), _candidate("??")):
        result = classify_trip(candidate, empty, POLICY)
        assert result.status == TripStatus.INVALID
        assert result.reason == INSUFFICIENT_DATA_REASON


def test_upstream_status_hint_never_decides():
    result = classify_trip(_candidate("10:30 AM", status="Valid"), AFTERNOON, POLICY)
    assert result.status == TripStatus.INVALID
    assert result.status_hint == "valid"


def test_classify_trip_rejects_foreign_schedule():
    with pytest.raises(ValueError):
        classify_trip(_candidate("12:40 PM", batch_id="other"), AFTERNOON, POLICY)


def test_classify_candidates_isolates_failures():
    broken = Candidate.model_construct(
        trip=RawTrip(date="Nov 24", time="12:40 PM", location="Mireka", amount="LKR254.00", batch_id="b1"),
        zone="bogus",
        amount_value=254.0,
        index=1,
    )
    candidates = [
        _candidate("12:40 PM", index=0),
        broken,
        _candidate("9:34 PM", zone=Zone.HOME, index=2),
    ]
    results = classify_candidates(candidates, AFTERNOON, POLICY)

    assert [trip.status for trip in results] == [
        TripStatus.VALID,
        TripStatus.PENDING,
        TripStatus.INVALID,
    ]
    assert results[1].reason == INTERNAL_ERROR_REASON
    assert [trip.position for trip in results] == [0, 1, 2]


def test_classification_is_pure():
    candidate = _candidate("12:40 PM")
    first = classify_trip(candidate, AFTERNOON, POLICY)
    second = classify_trip(candidate, AFTERNOON, POLICY)
    assert first == second
    assert candidate.trip.time == "12:40 PM"


def test_night_shift_home_trip_after_end_is_valid():
    schedule = _schedule(1200, 1740)

    morning = classify_trip(_candidate("9:00 AM", zone=Zone.HOME), schedule, POLICY)
    assert morning.status == TripStatus.VALID
    assert morning.reason == "Departed after shift end (Shift ends 5:00 AM, trip at 9:00 AM)"

    early = classify_trip(_candidate("4:00 AM", zone=Zone.HOME), schedule, POLICY)
    assert early.status == TripStatus.INVALID
    assert early.reason == "Departed before shift end (Shift ends 5:00 AM, trip at 4:00 AM)"

    same_evening = classify_trip(_candidate("11:00 PM", zone=Zone.HOME), schedule, POLICY)
    assert same_evening.status == TripStatus.INVALID


def test_candidate_without_trip_keeps_pending_placeholder():
    orphan = Candidate.model_construct(zone=Zone.OFFICE, amount_value=0.0, index=1)
    results = classify_candidates([_candidate("12:40 PM", index=0), orphan], AFTERNOON, POLICY)

    assert len(results) == 2
    assert results[1].status == TripStatus.PENDING
    assert results[1].reason == INTERNAL_ERROR_REASON
    assert results[1].position == 1
    assert results[1].batch_id == "b1"


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
