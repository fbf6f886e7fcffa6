"""
explain.py - Human-readable, JSON-ready and tabular batch reports.

This module converts a structured `BatchResult` into:
- terminal-friendly text output for CLI usage
- the camelCase dictionary handed to presentation/storage collaborators
- a pandas DataFrame for CSV export
"""

from __future__ import annotations

from typing import Any

import pandas as pd

from logging_config import get_logger
from models import BatchResult, ClassifiedTrip, InferredSchedule, ScheduleSource

logger = get_logger(__name__)

OUTPUT_WIDTH = 64
SEPARATOR = "=" * OUTPUT_WIDTH
MAX_TRIPS_DISPLAY = 25
WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

EXPORT_COLUMNS = [
    "batch_id",
    "status",
    "date",
    "time",
    "location",
    "amount",
    "zone",
    "reason",
]

SOURCE_NOTES: dict[ScheduleSource, str] = {
    ScheduleSource.INFERRED: "inferred from office arrivals",
    ScheduleSource.PAIRED: "inferred from paired arrivals and departures",
    ScheduleSource.FALLBACK: "standard hours (not enough office arrivals)",
    ScheduleSource.INSUFFICIENT: "not enough data",
}


def _trip_line(trip: ClassifiedTrip) -> str:
    amount = trip.amount if trip.amount not in (None, "") else "no amount"
    return (
        f"    • {trip.date or '?'} {trip.time or '--:--'} -> "
        f"{trip.location or 'unknown'} | {amount}\n"
        f"        {trip.reason}"
    )


def _section(title: str, trips: list[ClassifiedTrip]) -> list[str]:
    lines = ["", f"  {title} ({len(trips)}):"]
    if not trips:
        lines.append("    • (none)")
        return lines
    for trip in trips[:MAX_TRIPS_DISPLAY]:
        lines.append(_trip_line(trip))
    if len(trips) > MAX_TRIPS_DISPLAY:
        lines.append(f"    • ... and {len(trips) - MAX_TRIPS_DISPLAY} more trip(s)")
    return lines


def describe_schedule(schedule: InferredSchedule) -> str:
    """One line describing the schedule and where it came from."""
    note = SOURCE_NOTES.get(schedule.source, schedule.source.value)
    if not schedule.is_available:
        return f"Shift: unknown ({note})"
    text = (
        f"Shift: {schedule.label} ({note}; {schedule.sample_size} sample(s), "
        f"confidence {schedule.confidence:.0%})"
    )
    if schedule.work_days:
        days = ", ".join(WEEKDAY_NAMES[day] for day in schedule.work_days)
        text += f"\n  Work days: {days}"
    return text


def format_report(result: BatchResult | None) -> str:
    """Format a BatchResult into a text block for the terminal."""
    if result is None:
        logger.error("report_input_error | result_none=True | fallback=error_block")
        return f"\n{SEPARATOR}\n  ERROR: No batch result available\n{SEPARATOR}\n"

    summary = result.summary
    lines: list[str] = ["", SEPARATOR, f"  Commute Validation - batch {result.batch_id or '(none)'}", SEPARATOR]
    lines.append("")
    lines.append(f"  {describe_schedule(result.schedule)}")
    lines.append("")
    lines.append(
        f"  Valid: {summary.valid_count}  |  Invalid: {summary.invalid_count}  |  "
        f"Pending: {summary.pending_count}  |  Total trips: {summary.total_trips}"
    )
    lines.append(f"  Reimbursable total: {result.total_valid}")
    if summary.active_days:
        lines.append(f"  Active days: {summary.active_days}")
    if summary.duplicate_count:
        lines.append(f"  Duplicates rejected: {summary.duplicate_count}")

    if result.is_empty:
        lines.append("")
        lines.append("  No trips submitted.")
    else:
        lines.extend(_section("Valid", result.valid))
        lines.extend(_section("Invalid", result.invalid))
        if result.pending:
            lines.extend(_section("Pending review", result.pending))

    if result.schedule.source == ScheduleSource.FALLBACK:
        lines.append("")
        lines.append("  WARNING: Standard hours were used instead of an inferred shift.")
    elif result.schedule.is_available and result.schedule.confidence < 0.6:
        lines.append("")
        lines.append("  WARNING: Few office arrivals - inferred shift has low confidence.")

    lines.append("")
    lines.append(SEPARATOR)
    lines.append("")
    return "\n".join(lines)


def _trip_payload(trip: ClassifiedTrip) -> dict[str, Any]:
    payload = trip.model_dump(by_alias=True, mode="json")
    if payload.get("statusHint") is None:
        payload.pop("statusHint", None)
    return payload


def schedule_payload(schedule: InferredSchedule) -> dict[str, Any]:
    payload = schedule.model_dump(by_alias=True, mode="json")
    payload["label"] = schedule.label
    payload["startTime"] = schedule.start_clock
    payload["endTime"] = schedule.end_clock
    return payload


def format_report_json(result: BatchResult | None) -> dict[str, Any]:
    """Format a BatchResult as the external JSON-compatible payload."""
    if result is None:
        logger.error("report_json_input_error | result_none=True | fallback=empty_payload")
        return {
            "valid": [],
            "invalid": [],
            "pending": [],
            "totalValid": "0.00",
            "summary": {"validCount": 0, "invalidCount": 0, "pendingCount": 0},
            "inferredSchedule": None,
            "warnings": ["Batch result was None"],
        }

    warnings: list[str] = []
    if result.schedule.source == ScheduleSource.FALLBACK:
        warnings.append("Standard hours were used instead of an inferred shift.")
    elif result.schedule.source == ScheduleSource.INSUFFICIENT and not result.is_empty:
        warnings.append("No office arrival times in batch; shift could not be inferred.")

    return {
        "batchId": result.batch_id,
        "valid": [_trip_payload(trip) for trip in result.valid],
        "invalid": [_trip_payload(trip) for trip in result.invalid],
        "pending": [_trip_payload(trip) for trip in result.pending],
        "totalValid": result.total_valid,
        "summary": result.summary.model_dump(by_alias=True),
        "inferredSchedule": result.inferred_schedule,
        "schedule": schedule_payload(result.schedule),
        "warnings": warnings,
    }


def results_to_dataframe(result: BatchResult) -> pd.DataFrame:
    """One row per trip, valid first, then invalid, then pending."""
    rows = [
        {
            "batch_id": trip.batch_id or result.batch_id,
            "status": trip.status.value,
            "date": trip.date,
            "time": trip.time,
            "location": trip.location,
            "amount": trip.amount,
            "zone": trip.zone.value if trip.zone is not None else None,
            "reason": trip.reason,
        }
        for trip in result.all_trips
    ]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)
