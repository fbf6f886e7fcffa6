"""
classify.py - Time-window classification of candidate trips.

Each candidate ends in exactly one terminal state in one call:

    schedule unavailable        -> Invalid  (fail closed)
    time unparseable            -> Pending  (receipt may still be fine)
    office-bound, in window     -> Valid    [start - early, start + late]
    home-bound, after shift end -> Valid    (optional cap after the end)
    anything else               -> Invalid

Every outcome carries a reason that spells out the window in clock time,
so a reviewer can audit the decision without recomputing the schedule.
An exception while classifying one trip isolates that trip as Pending and
the rest of the batch carries on.
"""

from __future__ import annotations

from typing import Iterable, Optional

from config import CommutePolicy
from logging_config import get_logger
from models import Candidate, ClassifiedTrip, InferredSchedule, TripStatus, Zone
from normalize import MINUTES_PER_DAY, minutes_to_time_string, parse_time_to_minutes
from rules import INTERNAL_ERROR_REASON

logger = get_logger(__name__)

INSUFFICIENT_DATA_REASON = (
    "Insufficient data to detect shift (no valid office arrival times in batch)"
)
INVALID_TIME_REASON = "Invalid time format"

_HINT_STATUS = {
    "valid": TripStatus.VALID,
    "invalid": TripStatus.INVALID,
    "incomplete": TripStatus.PENDING,
    "pending": TripStatus.PENDING,
}


def _in_window(minutes: int, lower: int, upper: int) -> bool:
    # Windows near midnight are compared on the neighbouring days too.
    return any(
        lower <= minutes + offset <= upper
        for offset in (-MINUTES_PER_DAY, 0, MINUTES_PER_DAY)
    )


def entry_window(schedule: InferredSchedule, policy: CommutePolicy) -> tuple[int, int]:
    start = schedule.start_minutes
    return start - policy.early_tolerance_minutes, start + policy.late_tolerance_minutes


def _classify_office(
    minutes: int, schedule: InferredSchedule, policy: CommutePolicy
) -> tuple[TripStatus, str]:
    lower, upper = entry_window(schedule, policy)
    detail = (
        f"Shift starts {schedule.start_label}; allowed "
        f"{minutes_to_time_string(lower)} - {minutes_to_time_string(upper)}, "
        f"trip at {minutes_to_time_string(minutes)}"
    )
    if _in_window(minutes, lower, upper):
        return TripStatus.VALID, f"Within entry window ({detail})"
    return TripStatus.INVALID, f"Outside entry window ({detail})"


def _departure_minutes(minutes: int, schedule: InferredSchedule, policy: CommutePolicy) -> int:
    """Place a home trip on the timeline of the shift it ends.

    When the shift runs past midnight, any trip before the next shift
    start belongs to the shift that began the previous day. Otherwise only
    trips shortly after midnight (before the overnight grace) do.
    """
    start = schedule.start_minutes
    if schedule.end_minutes >= MINUTES_PER_DAY:
        cutoff = start
    else:
        cutoff = min(policy.overnight_grace_minutes, start)
    if minutes < cutoff:
        return minutes + MINUTES_PER_DAY
    return minutes


def _classify_home(
    minutes: int, schedule: InferredSchedule, policy: CommutePolicy
) -> tuple[TripStatus, str]:
    end = schedule.end_minutes
    departure = _departure_minutes(minutes, schedule, policy)
    trip_at = minutes_to_time_string(minutes)

    if departure < end:
        return (
            TripStatus.INVALID,
            f"Departed before shift end (Shift ends {schedule.end_label}, trip at {trip_at})",
        )

    cap = policy.home_max_after_end_minutes
    if cap is not None and departure > end + cap:
        return (
            TripStatus.INVALID,
            f"Departed too long after shift end (Shift ends {schedule.end_label}; "
            f"latest {minutes_to_time_string(end + cap)}, trip at {trip_at})",
        )

    return (
        TripStatus.VALID,
        f"Departed after shift end (Shift ends {schedule.end_label}, trip at {trip_at})",
    )


def _note_hint_override(candidate: Candidate, status: TripStatus) -> None:
    hint = candidate.trip.status_hint
    hinted: Optional[TripStatus] = _HINT_STATUS.get(hint or "")
    if hinted is not None and hinted != status:
        logger.debug(
            "upstream_status_overridden | index=%s | hint=%s | decided=%s",
            candidate.index,
            hint,
            status.value,
        )


def classify_trip(
    candidate: Candidate,
    schedule: InferredSchedule,
    policy: CommutePolicy,
) -> ClassifiedTrip:
    """Decide Valid/Invalid/Pending for one candidate against its batch schedule."""
    if schedule.batch_id and candidate.batch_id and candidate.batch_id != schedule.batch_id:
        raise ValueError(
            f"schedule for batch {schedule.batch_id!r} applied to trip from "
            f"batch {candidate.batch_id!r}"
        )

    if candidate.zone not in (Zone.OFFICE, Zone.HOME):
        raise ValueError(f"unknown zone: {candidate.zone!r}")

    if not schedule.is_available:
        status, reason = TripStatus.INVALID, INSUFFICIENT_DATA_REASON
    else:
        minutes = parse_time_to_minutes(candidate.time)
        if minutes is None:
            status, reason = TripStatus.PENDING, INVALID_TIME_REASON
        elif candidate.zone == Zone.OFFICE:
            status, reason = _classify_office(minutes, schedule, policy)
        else:
            status, reason = _classify_home(minutes, schedule, policy)

    _note_hint_override(candidate, status)
    logger.debug(
        "trip_classified | index=%s | zone=%s | time=%r | status=%s | reason=%r",
        candidate.index,
        candidate.zone.value,
        candidate.time,
        status.value,
        reason,
    )
    return ClassifiedTrip.from_trip(
        candidate.trip,
        status,
        reason,
        zone=candidate.zone,
        position=candidate.index,
    )


def classify_candidates(
    candidates: Iterable[Candidate],
    schedule: InferredSchedule,
    policy: CommutePolicy,
) -> list[ClassifiedTrip]:
    """Classify every candidate; a failing trip is isolated as Pending."""
    classified: list[ClassifiedTrip] = []
    failures = 0

    for candidate in candidates:
        try:
            classified.append(classify_trip(candidate, schedule, policy))
        except Exception as exc:
            failures += 1
            logger.warning(
                "trip_classification_error | index=%s | error_type=%s | error=%s | fallback=pending",
                getattr(candidate, "index", "?"),
                type(exc).__name__,
                exc,
            )
            position = getattr(candidate, "index", 0)
            trip = getattr(candidate, "trip", None)
            if trip is None:
                # Nothing left to copy; keep a placeholder so the trip is counted.
                logger.error(
                    "trip_classification_error | index=%s | reason='candidate has no trip' | fallback=pending_placeholder",
                    position,
                )
                classified.append(
                    ClassifiedTrip(
                        batch_id=schedule.batch_id,
                        status=TripStatus.PENDING,
                        reason=INTERNAL_ERROR_REASON,
                        position=position,
                    )
                )
                continue
            classified.append(
                ClassifiedTrip.from_trip(
                    trip,
                    TripStatus.PENDING,
                    INTERNAL_ERROR_REASON,
                    position=position,
                )
            )

    logger.info(
        "classification_complete | trips=%s | isolated_failures=%s | schedule=%s",
        len(classified),
        failures,
        schedule.label or "none",
    )
    return classified
