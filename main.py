"""
main.py - Batch orchestration and CLI for commute validation.

This module is orchestration-only:
1. hard rules   (rules.filter_trips)
2. inference    (schedule.infer_schedule)
3. classify     (classify.classify_candidates)
4. aggregate    (aggregate.aggregate_batch)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd

from aggregate import aggregate_batch
from classify import classify_candidates
from config import CommutePolicy, load_policy
from explain import format_report, format_report_json, results_to_dataframe
from logging_config import get_logger, setup_logging
from models import Batch, BatchResult, InferenceMode, InferredSchedule, RawTrip, TripStatus
from rules import filter_trips
from schedule import infer_schedule
from schedule_store import ScheduleStore

logger = get_logger("commute-audit")

DEFAULT_BATCH_ID = "default"
CSV_COLUMN_ALIASES = {
    "batch_id": "batchId",
    "batch": "batchId",
    "destination": "location",
    "total": "amount",
}


def _records_from_csv(path: str) -> list[dict[str, Any]]:
    try:
        df = pd.read_csv(path, dtype=str, encoding="utf-8-sig")
    except UnicodeDecodeError:
        logger.warning(
            "csv_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            path,
        )
        df = pd.read_csv(path, dtype=str, encoding="latin-1")
    except Exception as exc:
        raise ValueError(f"Failed to read CSV '{path}': {exc}") from exc

    df.columns = [str(column).strip() for column in df.columns]
    df = df.rename(
        columns={
            column: CSV_COLUMN_ALIASES.get(column.lower(), column)
            for column in df.columns
        }
    )
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict("records")


def _records_from_json(path: str) -> list[dict[str, Any]]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in '{path}': {exc}") from exc

    default_batch: Optional[str] = None
    if isinstance(data, dict):
        default_batch = data.get("batchId") or data.get("batch_id")
        data = data.get("trips")

    if not isinstance(data, list):
        raise ValueError(
            f"Trips file '{path}' must contain a list of trips or an object with a 'trips' list"
        )

    records: list[dict[str, Any]] = []
    for position, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"Trip #{position + 1} in '{path}' is not an object")
        if default_batch and not (item.get("batchId") or item.get("batch_id")):
            item = {**item, "batchId": default_batch}
        records.append(item)
    return records


def load_trips(path: str) -> list[RawTrip]:
    """Load raw trips from a JSON or CSV export of the extraction step."""
    if path is None:
        raise ValueError("trips path cannot be None")

    path = str(path).strip()
    if not path:
        raise ValueError("trips path cannot be empty")

    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Trips file not found: {path}\nProvide a valid JSON or CSV path with --trips"
        )

    if path.lower().endswith(".csv"):
        records = _records_from_csv(path)
    else:
        records = _records_from_json(path)

    trips = [RawTrip.model_validate(record) for record in records]
    logger.info("trips_loaded | path=%s | trips=%s", path, len(trips))
    return trips


def split_batches(
    trips: Iterable[RawTrip], default_batch_id: str = DEFAULT_BATCH_ID
) -> dict[str, Batch]:
    """Group trips by batchId, keeping first-seen batch order."""
    grouped: dict[str, list[RawTrip]] = {}
    for trip in trips:
        grouped.setdefault(trip.batch_id or default_batch_id, []).append(trip)
    return {
        batch_id: Batch(batch_id=batch_id, trips=batch_trips)
        for batch_id, batch_trips in grouped.items()
    }


def infer_batch_schedule(batch: Batch, policy: CommutePolicy) -> InferredSchedule:
    """Run only the hard rules and inference, for callers that just want the shift."""
    outcome = filter_trips(batch.trips, policy)
    return infer_schedule(outcome.candidates, policy, batch_id=batch.batch_id)


def run_batch(batch: Batch, policy: CommutePolicy | None = None) -> BatchResult:
    """Run the full validation pipeline for one batch."""
    if batch is None:
        raise ValueError("batch cannot be None")
    if policy is None:
        policy = load_policy()

    pipeline_start = time.time()
    logger.info("%s", "─" * 50)
    logger.info("pipeline_start | batch_id=%s | trips=%s", batch.batch_id, len(batch.trips))

    # Stage 1: hard rules.
    stage_start = time.time()
    outcome = filter_trips(batch.trips, policy)
    rules_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=1/4 | name=hard_rules | candidates=%s | rejected=%s | duration_s=%.3f",
        len(outcome.candidates),
        len(outcome.rejected),
        rules_time,
    )

    # Stage 2: inference.
    stage_start = time.time()
    schedule = infer_schedule(outcome.candidates, policy, batch_id=batch.batch_id)
    infer_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=2/4 | name=infer | schedule=%s | source=%s | duration_s=%.3f",
        schedule.label or "none",
        schedule.source.value,
        infer_time,
    )

    # Stage 3: classify.
    stage_start = time.time()
    classified = classify_candidates(outcome.candidates, schedule, policy)
    classify_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=3/4 | name=classify | trips=%s | duration_s=%.3f",
        len(classified),
        classify_time,
    )

    # Stage 4: aggregate.
    stage_start = time.time()
    result = aggregate_batch(
        batch.batch_id,
        [*outcome.rejected, *classified],
        schedule,
        policy,
        rejected_count=sum(
            1 for trip in outcome.rejected if trip.status == TripStatus.INVALID
        )
        - outcome.duplicate_count,
        duplicate_count=outcome.duplicate_count,
    )
    aggregate_time = time.time() - stage_start

    logger.info(
        "pipeline_complete | batch_id=%s | total_duration_s=%.3f | rules_s=%.3f | infer_s=%.3f | classify_s=%.3f | aggregate_s=%.3f",
        batch.batch_id,
        time.time() - pipeline_start,
        rules_time,
        infer_time,
        classify_time,
        aggregate_time,
    )
    return result


def run_batches(
    trips: Iterable[RawTrip],
    policy: CommutePolicy | None = None,
    default_batch_id: str = DEFAULT_BATCH_ID,
) -> dict[str, BatchResult]:
    """Validate every batch independently; each gets its own schedule."""
    if policy is None:
        policy = load_policy()
    return {
        batch_id: run_batch(batch, policy)
        for batch_id, batch in split_batches(trips, default_batch_id).items()
    }


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="commute-audit",
        description=(
            "Commute Reimbursement Validator\n"
            "Infers each batch's work shift from office arrival times and "
            "decides which ride receipts are reimbursable commutes."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s --trips trips.json\n"
            "  %(prog)s --trips trips.csv --batch-id nov-2025 --json\n"
            "  %(prog)s --trips trips.json --fallback --persist --export results.csv\n"
        ),
    )
    parser.add_argument(
        "--trips",
        "-t",
        type=str,
        required=True,
        help="Path to extracted trips (.json list / {'trips': [...]}, or .csv)",
    )
    parser.add_argument(
        "--batch-id",
        "-b",
        type=str,
        default=DEFAULT_BATCH_ID,
        help="Batch id for trips that do not carry one (default: %(default)s)",
    )
    parser.add_argument(
        "--fallback",
        action="store_true",
        help="Fall back to standard hours when a batch has too few office arrivals",
    )
    parser.add_argument(
        "--paired",
        action="store_true",
        help="Derive shift end from home departures paired with office arrivals",
    )
    parser.add_argument(
        "--persist",
        action="store_true",
        help="Save each inferred schedule to the schedule store",
    )
    parser.add_argument(
        "--store",
        type=str,
        default=None,
        help="Schedule store JSON file (default: $SCHEDULE_STORE_FILE or data/schedules.json)",
    )
    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Write one row per trip to this CSV file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON instead of formatted text",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG-level) logging",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON lines (for production/log aggregation)",
    )

    args = parser.parse_args()
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.log_json,
    )

    overrides: dict[str, Any] = {}
    if args.fallback:
        overrides["fallback_enabled"] = True
    if args.paired:
        overrides["inference_mode"] = InferenceMode.PAIRED

    try:
        policy = load_policy(overrides)
        trips = load_trips(args.trips)
        results = run_batches(trips, policy, default_batch_id=args.batch_id)

        if args.persist:
            store = ScheduleStore(args.store)
            for result in results.values():
                store.upsert_schedule(result.schedule, trips_analyzed=result.summary.total_trips)

        if args.export:
            frames = [results_to_dataframe(result) for result in results.values()]
            export_df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
            export_df.to_csv(args.export, index=False)
            logger.info("export_written | path=%s | rows=%s", args.export, len(export_df))

        if args.json:
            payload = [format_report_json(result) for result in results.values()]
            print(json.dumps(payload[0] if len(payload) == 1 else payload, indent=2))
        else:
            if not results:
                print(format_report(run_batch(Batch(batch_id=args.batch_id), policy)))
            for result in results.values():
                print(format_report(result))
    except FileNotFoundError as exc:
        logger.error("cli_error | type=FileNotFoundError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except ValueError as exc:
        logger.error("cli_error | type=ValueError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)
    except Exception as exc:
        logger.error(
            "cli_error | type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        print(f"\nUnexpected error: {exc}")
        print("Run with --verbose for full traceback.")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
