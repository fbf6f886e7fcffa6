"""
rules.py - Stateless hard rules applied to each raw trip.

Rules run in a fixed order and stop at the first failure:
    1. date policy      - trip falls in the reporting month/year
    2. amount policy    - fare within the configured inclusive range
    3. location policy  - destination names the office or home zone

Survivors become Candidates tagged with their zone. Repeated receipts
(same date, time, destination and fare) are rejected after the rules so a
receipt uploaded twice is only reimbursed once.

A trip whose checks raise is isolated as Pending, not rejected.
"""

from __future__ import annotations

import re
from typing import Iterable, NamedTuple, Optional

from config import CommutePolicy
from logging_config import get_logger
from models import Candidate, ClassifiedTrip, RawTrip, TripStatus, Zone
from normalize import (
    clean_text,
    month_abbreviation,
    parse_amount,
    parse_time_to_minutes,
    parse_trip_date,
)

logger = get_logger(__name__)

INTERNAL_ERROR_REASON = "Internal processing error"


class FilterOutcome(NamedTuple):
    candidates: list[Candidate]
    rejected: list[ClassifiedTrip]
    duplicate_count: int


def check_date_policy(trip: RawTrip, policy: CommutePolicy) -> Optional[str]:
    """Reject trips outside the reporting period.

    A parseable date must land in the target month and year. An
    unparseable one passes only if it still names the target month.
    """
    period = f"{month_abbreviation(policy.target_month)} {policy.target_year}"
    raw = clean_text(trip.date)
    if not raw:
        return f"Missing trip date (reporting period {period})"

    parsed = parse_trip_date(trip.date, policy.target_year)
    if parsed is not None:
        if parsed.month == policy.target_month and parsed.year == policy.target_year:
            return None
        return f"Date outside reporting period ({trip.date} is not in {period})"

    abbreviation = month_abbreviation(policy.target_month).lower()
    if re.search(rf"\b{abbreviation}", raw):
        logger.debug("date_policy | unparseable_but_named_month | raw=%r", trip.date)
        return None
    return f"Date outside reporting period ({trip.date} is not in {period})"


def check_amount_policy(trip: RawTrip, policy: CommutePolicy) -> Optional[str]:
    value = parse_amount(trip.amount)
    if policy.min_amount <= value <= policy.max_amount:
        return None
    return (
        f"Amount out of range ({value:.2f} not within "
        f"{policy.min_amount:.2f}-{policy.max_amount:.2f})"
    )


def detect_zone(location: Optional[str], policy: CommutePolicy) -> Optional[Zone]:
    """Map destination text to a zone. Office wins when both match."""
    text = clean_text(location)
    if not text:
        return None
    if any(keyword in text for keyword in policy.office_keywords):
        return Zone.OFFICE
    if any(keyword in text for keyword in policy.home_keywords):
        return Zone.HOME
    return None


def check_location_policy(trip: RawTrip, policy: CommutePolicy) -> Optional[str]:
    if detect_zone(trip.location, policy) is not None:
        return None
    shown = (trip.location or "").strip() or "missing"
    return f"Unknown location ({shown})"


HARD_RULES = (check_date_policy, check_amount_policy, check_location_policy)


def apply_hard_rules(trip: RawTrip, policy: CommutePolicy) -> Optional[str]:
    """Return None when the trip passes every rule, else the first reason."""
    for rule in HARD_RULES:
        reason = rule(trip, policy)
        if reason is not None:
            logger.debug(
                "hard_rule_rejected | rule=%s | date=%r | location=%r | reason=%r",
                rule.__name__,
                trip.date,
                trip.location,
                reason,
            )
            return reason
    return None


def duplicate_key(trip: RawTrip) -> tuple[str, str, str, float]:
    """Identity of a receipt for duplicate detection."""
    minutes = parse_time_to_minutes(trip.time)
    time_part = str(minutes) if minutes is not None else clean_text(trip.time)
    return (
        clean_text(trip.date),
        time_part,
        clean_text(trip.location),
        round(parse_amount(trip.amount), 2),
    )


def filter_trips(trips: Iterable[RawTrip], policy: CommutePolicy) -> FilterOutcome:
    """Split raw trips into zone-tagged candidates and rejected trips."""
    candidates: list[Candidate] = []
    rejected: list[ClassifiedTrip] = []
    seen: dict[tuple[str, str, str, float], int] = {}
    duplicate_count = 0

    for index, trip in enumerate(trips):
        try:
            reason = apply_hard_rules(trip, policy)
            if reason is not None:
                rejected.append(
                    ClassifiedTrip.from_trip(trip, TripStatus.INVALID, reason, position=index)
                )
                continue

            if policy.reject_duplicates:
                key = duplicate_key(trip)
                if key in seen:
                    duplicate_count += 1
                    rejected.append(
                        ClassifiedTrip.from_trip(
                            trip,
                            TripStatus.INVALID,
                            "Duplicate receipt (same date, time, location and amount "
                            f"as trip #{seen[key] + 1})",
                            position=index,
                        )
                    )
                    continue
                seen[key] = index

            zone = detect_zone(trip.location, policy)
            candidates.append(
                Candidate(
                    trip=trip,
                    zone=zone,
                    amount_value=parse_amount(trip.amount),
                    index=index,
                )
            )
        except Exception as exc:
            logger.warning(
                "hard_rule_error | index=%s | error_type=%s | error=%s | fallback=pending",
                index,
                type(exc).__name__,
                exc,
            )
            rejected.append(
                ClassifiedTrip.from_trip(
                    trip, TripStatus.PENDING, INTERNAL_ERROR_REASON, position=index
                )
            )

    logger.info(
        "hard_rules_complete | candidates=%s | rejected=%s | duplicates=%s",
        len(candidates),
        len(rejected),
        duplicate_count,
    )
    return FilterOutcome(candidates, rejected, duplicate_count)
