"""
aggregate.py - Batch totals, counts and chronological ordering.
"""

from __future__ import annotations

from typing import Iterable

from config import CommutePolicy
from logging_config import get_logger, graceful
from models import (
    BatchResult,
    BatchSummary,
    ClassifiedTrip,
    InferredSchedule,
    TripStatus,
    Zone,
)
from normalize import clean_text, parse_amount, parse_time_to_minutes, parse_trip_date

logger = get_logger(__name__)


@graceful(lambda: (0, 0))
def chronological_key(trip: ClassifiedTrip, year: int) -> tuple[int, int]:
    """Sort key of (date ordinal, minutes).

    Unparseable dates and times count as zero, so such trips sort first
    instead of being dropped. Ties keep submission order (sorted is stable).
    """
    parsed_date = parse_trip_date(trip.date, year)
    minutes = parse_time_to_minutes(trip.time)
    return (
        parsed_date.toordinal() if parsed_date is not None else 0,
        minutes if minutes is not None else 0,
    )


def _day_key(trip: ClassifiedTrip, year: int) -> str:
    parsed = parse_trip_date(trip.date, year)
    return parsed.isoformat() if parsed is not None else clean_text(trip.date)


def aggregate_batch(
    batch_id: str,
    classified: Iterable[ClassifiedTrip],
    schedule: InferredSchedule,
    policy: CommutePolicy,
    rejected_count: int = 0,
    duplicate_count: int = 0,
) -> BatchResult:
    """Partition classified trips and build the batch result."""
    ordered = sorted(classified, key=lambda trip: trip.position)

    valid = [trip for trip in ordered if trip.status == TripStatus.VALID]
    invalid = [trip for trip in ordered if trip.status == TripStatus.INVALID]
    pending = [trip for trip in ordered if trip.status == TripStatus.PENDING]

    if policy.sort_results:
        valid.sort(key=lambda trip: chronological_key(trip, policy.target_year))
        invalid.sort(key=lambda trip: chronological_key(trip, policy.target_year))

    total = sum(parse_amount(trip.amount) for trip in valid)
    active_days = {_day_key(trip, policy.target_year) for trip in valid}
    active_days.discard("")

    summary = BatchSummary(
        valid_count=len(valid),
        invalid_count=len(invalid),
        pending_count=len(pending),
        total_trips=len(ordered),
        rejected_count=rejected_count,
        duplicate_count=duplicate_count,
        active_days=len(active_days),
        office_valid_count=sum(1 for trip in valid if trip.zone == Zone.OFFICE),
        home_valid_count=sum(1 for trip in valid if trip.zone == Zone.HOME),
    )

    result = BatchResult(
        batch_id=batch_id,
        valid=valid,
        invalid=invalid,
        pending=pending,
        total_valid=f"{total:.2f}",
        summary=summary,
        inferred_schedule=schedule.label,
        schedule=schedule,
    )
    logger.info(
        "batch_aggregated | batch_id=%s | valid=%s | invalid=%s | pending=%s | total_valid=%s",
        batch_id,
        summary.valid_count,
        summary.invalid_count,
        summary.pending_count,
        result.total_valid,
    )
    return result
