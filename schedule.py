"""
schedule.py - Work schedule inference from commute timestamps.

The shift start is never observed directly. It is inferred per batch from
office arrival times:

    1. parse every office-bound candidate's time, drop unparseable ones
    2. take the median arrival (even counts average the two central values)
    3. round the median UP to the next full clock hour -> shift start
       (people arrive a little before an hourly shift boundary)
    4. shift end = start + configured shift duration

With no usable arrivals the schedule is left empty and every trip in the
batch fails closed, unless the policy explicitly opts into falling back to
standard hours. In paired mode the end comes from home departures matched
to office arrivals instead of the fixed duration.

Confidence is a step function of the sample size and is metadata only.
"""

from __future__ import annotations

import math
import statistics
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, Optional

from config import CommutePolicy
from logging_config import get_logger, graceful
from models import Candidate, InferenceMode, InferredSchedule, ScheduleSource, Zone
from normalize import (
    MINUTES_PER_DAY,
    MINUTES_PER_HOUR,
    minutes_to_time_string,
    parse_time_to_minutes,
    parse_trip_date,
)

logger = get_logger(__name__)

# (minimum samples, confidence), checked top-down.
CONFIDENCE_STEPS: tuple[tuple[int, float], ...] = (
    (20, 0.95),
    (15, 0.85),
    (10, 0.75),
    (5, 0.60),
)
LOW_SAMPLE_CONFIDENCE = 0.40


def median_minutes(samples: Iterable[float]) -> Optional[float]:
    values = sorted(samples)
    if not values:
        return None
    return float(statistics.median(values))


def round_up_to_hour(minutes: float) -> int:
    """Ceil to the next full hour, wrapped into the day (23:20 -> 0:00)."""
    return (math.ceil(minutes / MINUTES_PER_HOUR) * MINUTES_PER_HOUR) % MINUTES_PER_DAY


def confidence_for_samples(sample_size: int) -> float:
    if sample_size <= 0:
        return 0.0
    for minimum, confidence in CONFIDENCE_STEPS:
        if sample_size >= minimum:
            return confidence
    return LOW_SAMPLE_CONFIDENCE


def _same_batch(candidates: Iterable[Candidate], batch_id: str) -> list[Candidate]:
    """Drop candidates from other batches so schedules never leak."""
    kept: list[Candidate] = []
    for candidate in candidates:
        if batch_id and candidate.batch_id and candidate.batch_id != batch_id:
            logger.warning(
                "schedule_foreign_trip | batch_id=%s | trip_batch_id=%s | action=ignored",
                batch_id,
                candidate.batch_id,
            )
            continue
        kept.append(candidate)
    return kept


def arrival_samples(candidates: Iterable[Candidate]) -> list[int]:
    """Parsed office arrival times in minutes; unparseable times are skipped."""
    samples: list[int] = []
    for candidate in candidates:
        if candidate.zone != Zone.OFFICE:
            continue
        minutes = parse_time_to_minutes(candidate.time)
        if minutes is None:
            logger.debug("schedule_sample_skipped | time=%r", candidate.time)
            continue
        samples.append(minutes)
    return samples


@graceful(list)
def detect_work_days(candidates: Iterable[Candidate], policy: CommutePolicy) -> list[int]:
    """Most frequent weekdays (0=Monday) among the batch's trip dates."""
    if policy.work_days_top_n == 0:
        return []
    frequency: Counter[int] = Counter()
    for candidate in candidates:
        parsed = parse_trip_date(candidate.date, policy.target_year)
        if parsed is not None:
            frequency[parsed.weekday()] += 1
    ranked = sorted(frequency.items(), key=lambda item: (-item[1], item[0]))
    return sorted(day for day, _count in ranked[: policy.work_days_top_n])


def _dated_times(
    candidates: Iterable[Candidate], zone: Zone, year: int
) -> list[tuple[date, int]]:
    dated: list[tuple[date, int]] = []
    for candidate in candidates:
        if candidate.zone != zone:
            continue
        day = parse_trip_date(candidate.date, year)
        minutes = parse_time_to_minutes(candidate.time)
        if day is not None and minutes is not None:
            dated.append((day, minutes))
    return sorted(dated)


def pair_workdays(candidates: Iterable[Candidate], policy: CommutePolicy) -> list[int]:
    """Home departures paired with office arrivals, relative to the arrival day.

    Each arrival takes the earliest unused home trip later the same day,
    or failing that one early the next day, which is reported past 1440.
    Next-day trips count up to the overnight grace, extended by however far
    a shift starting at that arrival would run past midnight.
    """
    pool = list(candidates)
    arrivals = _dated_times(pool, Zone.OFFICE, policy.target_year)
    departures = _dated_times(pool, Zone.HOME, policy.target_year)
    used: set[int] = set()
    paired: list[int] = []

    for arrival_day, arrival_minutes in arrivals:
        next_day_cutoff = policy.overnight_grace_minutes + max(
            0, arrival_minutes + policy.shift_minutes - MINUTES_PER_DAY
        )
        match: Optional[tuple[int, int]] = None
        for position, (day, minutes) in enumerate(departures):
            if position in used:
                continue
            if day == arrival_day and minutes > arrival_minutes:
                match = (position, minutes)
                break
            if day == arrival_day + timedelta(days=1) and minutes < next_day_cutoff:
                match = (position, minutes + MINUTES_PER_DAY)
                break
        if match is not None:
            used.add(match[0])
            paired.append(match[1])

    logger.debug("pair_workdays | arrivals=%s | pairs=%s", len(arrivals), len(paired))
    return paired


def _fallback_schedule(
    batch_id: str, policy: CommutePolicy, sample_size: int, work_days: list[int]
) -> InferredSchedule:
    start = policy.fallback_start_minutes % MINUTES_PER_DAY
    end = policy.fallback_end_minutes
    logger.warning(
        "schedule_fallback | batch_id=%s | samples=%s | threshold=%s | window=%s-%s",
        batch_id,
        sample_size,
        policy.fallback_min_samples,
        minutes_to_time_string(start),
        minutes_to_time_string(end),
    )
    return InferredSchedule(
        batch_id=batch_id,
        start_minutes=start,
        end_minutes=end,
        confidence=policy.fallback_confidence,
        sample_size=sample_size,
        source=ScheduleSource.FALLBACK,
        work_days=work_days,
    )


def infer_schedule(
    candidates: Iterable[Candidate],
    policy: CommutePolicy,
    batch_id: str = "",
) -> InferredSchedule:
    """Compute the batch's shift from its own office arrivals."""
    pool = _same_batch(candidates, batch_id)
    samples = arrival_samples(pool)
    sample_size = len(samples)
    work_days = detect_work_days(pool, policy)

    if policy.fallback_enabled and sample_size < policy.fallback_min_samples:
        return _fallback_schedule(batch_id, policy, sample_size, work_days)

    if sample_size == 0:
        logger.warning(
            "schedule_insufficient | batch_id=%s | office_samples=0 | action=fail_closed",
            batch_id,
        )
        return InferredSchedule(
            batch_id=batch_id,
            confidence=0.0,
            sample_size=0,
            source=ScheduleSource.INSUFFICIENT,
            work_days=work_days,
        )

    median = median_minutes(samples)
    unwrapped_start = math.ceil(median / MINUTES_PER_HOUR) * MINUTES_PER_HOUR
    start = round_up_to_hour(median)
    end = start + policy.shift_minutes
    source = ScheduleSource.INFERRED
    confidence = confidence_for_samples(sample_size)

    if policy.inference_mode == InferenceMode.PAIRED:
        departures = pair_workdays(pool, policy)
        if len(departures) >= policy.min_paired_samples:
            departure_median = median_minutes(departures)
            paired_end = math.floor(departure_median / MINUTES_PER_HOUR) * MINUTES_PER_HOUR
            if paired_end > unwrapped_start:
                end = paired_end - (unwrapped_start - start)
                source = ScheduleSource.PAIRED
                confidence = confidence_for_samples(min(sample_size, len(departures)))
            else:
                logger.info(
                    "schedule_paired_rejected | batch_id=%s | paired_end=%s | start=%s | action=fixed_shift",
                    batch_id,
                    minutes_to_time_string(paired_end),
                    minutes_to_time_string(start),
                )
        else:
            logger.info(
                "schedule_paired_insufficient | batch_id=%s | pairs=%s | required=%s | action=fixed_shift",
                batch_id,
                len(departures),
                policy.min_paired_samples,
            )

    schedule = InferredSchedule(
        batch_id=batch_id,
        start_minutes=start,
        end_minutes=end,
        confidence=confidence,
        sample_size=sample_size,
        source=source,
        work_days=work_days,
        median_arrival=round(median, 2),
    )
    logger.info(
        "schedule_inferred | batch_id=%s | samples=%s | median=%s | window=%s | confidence=%.2f | source=%s",
        batch_id,
        sample_size,
        minutes_to_time_string(median),
        schedule.label,
        confidence,
        source.value,
    )
    return schedule
