"""
api.py - FastAPI HTTP layer for commute validation.

Endpoints:
  - GET    /health
  - POST   /batches/{batch_id}/validate
  - POST   /batches/{batch_id}/schedule
  - GET    /schedules/{batch_id}
  - DELETE /schedules/{batch_id}

No validation or inference logic is implemented here.
"""

from __future__ import annotations

import os
from typing import Any

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from config import CommutePolicy, load_policy
from explain import format_report_json, schedule_payload
from logging_config import get_logger, setup_logging
from main import infer_batch_schedule, run_batch
from models import Batch, RawTrip
from schedule_store import ScheduleStore

logger = get_logger("commute-api")

app = FastAPI(
    title="Commute Reimbursement Validation API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

schedule_store = ScheduleStore()


def _batch_from_payload(batch_id: str, payload: dict[str, Any]) -> Batch:
    trips = payload.get("trips")
    if trips is None:
        trips = []
    if not isinstance(trips, list):
        raise ValueError("'trips' must be a list of trip objects")
    return Batch(
        batch_id=batch_id,
        trips=[RawTrip.model_validate(trip) for trip in trips],
    )


def _policy_from_payload(payload: dict[str, Any]) -> CommutePolicy:
    overrides = payload.get("policy") or {}
    if not isinstance(overrides, dict):
        raise ValueError("'policy' must be an object of policy overrides")
    return load_policy(overrides)


@app.get("/health")
def health() -> dict[str, str]:
    """Service health check."""
    return {"status": "ok"}


@app.post("/batches/{batch_id}/validate")
def validate_batch(batch_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Validate one batch of trips and return the full result payload.

    Body: {"trips": [...], "policy": {...overrides}, "persist": false}
    """
    try:
        batch = _batch_from_payload(batch_id, payload)
        policy = _policy_from_payload(payload)
        result = run_batch(batch, policy)
        if payload.get("persist"):
            schedule_store.upsert_schedule(
                result.schedule, trips_analyzed=result.summary.total_trips
            )
        return format_report_json(result)
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(
            "validate_batch_error | batch_id=%s | error_type=%s | error=%s",
            batch_id,
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(
            status_code=500,
            detail="Unexpected server error while validating batch.",
        ) from exc


@app.post("/batches/{batch_id}/schedule")
def infer_batch(batch_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Infer and store the batch's schedule without classifying trips."""
    try:
        batch = _batch_from_payload(batch_id, payload)
        policy = _policy_from_payload(payload)
        schedule = infer_batch_schedule(batch, policy)
        schedule_store.upsert_schedule(schedule, trips_analyzed=len(batch.trips))
        return schedule_payload(schedule)
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(
            "infer_batch_error | batch_id=%s | error_type=%s | error=%s",
            batch_id,
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(
            status_code=500,
            detail="Unexpected server error while inferring schedule.",
        ) from exc


@app.get("/schedules/{batch_id}")
def get_schedule(batch_id: str) -> dict[str, Any]:
    """Return the stored schedule record for a batch."""
    record = schedule_store.get_schedule(batch_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Schedule not found: {batch_id}")
    return record.model_dump(mode="json", by_alias=True)


@app.delete("/schedules/{batch_id}")
def delete_schedule(batch_id: str) -> dict[str, Any]:
    """Remove a stored schedule."""
    if not schedule_store.delete_schedule(batch_id):
        raise HTTPException(status_code=404, detail=f"Schedule not found: {batch_id}")
    return {"batchId": batch_id, "deleted": True}


if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
