"""
schedule_store.py - Persisted inferred schedules keyed by batch id.

Stores every batch's schedule in one local JSON file. Upserts replace the
previous record for the same batch; writes are atomic (temp file + replace).
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from logging_config import get_logger
from models import InferredSchedule

logger = get_logger(__name__)


class ScheduleRecord(BaseModel):
    """One stored schedule, with clock strings for external readers."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    batch_id: str = Field(..., alias="batchId")
    work_start_time: Optional[str] = Field(default=None, alias="workStartTime")
    work_end_time: Optional[str] = Field(default=None, alias="workEndTime")
    work_days: list[int] = Field(default_factory=list, alias="workDays")
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0, alias="confidenceScore")
    trips_analyzed: int = Field(default=0, ge=0, alias="tripsAnalyzed")
    schedule: InferredSchedule = Field(default_factory=InferredSchedule)
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator("batch_id", mode="before")
    @classmethod
    def _batch_id_required(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("batch_id is required")
        return text

    @field_validator("work_days", mode="before")
    @classmethod
    def _normalize_work_days(cls, value: Any) -> list[int]:
        days: set[int] = set()
        for raw in value if isinstance(value, (list, tuple)) else []:
            try:
                day = int(raw)
            except (TypeError, ValueError):
                continue
            if 0 <= day <= 6:
                days.add(day)
        return sorted(days)

    @classmethod
    def from_schedule(
        cls, schedule: InferredSchedule, trips_analyzed: int = 0
    ) -> "ScheduleRecord":
        return cls(
            batch_id=schedule.batch_id,
            work_start_time=schedule.start_clock,
            work_end_time=schedule.end_clock,
            work_days=schedule.work_days,
            confidence_score=schedule.confidence,
            trips_analyzed=trips_analyzed,
            schedule=schedule,
        )


class ScheduleStore:
    """Disk-backed schedule store using one JSON file and atomic writes."""

    def __init__(self, path: Optional[str] = None) -> None:
        target = path or os.getenv("SCHEDULE_STORE_FILE", "data/schedules.json")
        self.path = Path(target).resolve()

    def _load_all(self) -> dict[str, ScheduleRecord]:
        if not self.path.exists():
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as exc:
            logger.warning(
                "schedule_store_load_warning | path=%s | error_type=%s | error=%s | fallback='empty'",
                self.path,
                type(exc).__name__,
                exc,
            )
            return {}

        records: dict[str, ScheduleRecord] = {}
        for batch_id, payload in (raw if isinstance(raw, dict) else {}).items():
            try:
                record = ScheduleRecord.model_validate(payload)
            except Exception as exc:
                logger.warning(
                    "schedule_store_record_skipped | batch_id=%s | error_type=%s | error=%s",
                    batch_id,
                    type(exc).__name__,
                    exc,
                )
                continue
            records[record.batch_id] = record
        return records

    def _write_all(self, records: dict[str, ScheduleRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            batch_id: record.model_dump(mode="json", by_alias=True)
            for batch_id, record in sorted(records.items())
        }
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(self.path.parent),
            delete=False,
            suffix=".tmp",
            prefix="schedules-",
        ) as tmp_file:
            json.dump(payload, tmp_file, ensure_ascii=False, indent=2)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = Path(tmp_file.name)

        os.replace(tmp_path, self.path)

    def upsert_schedule(
        self, schedule: InferredSchedule, trips_analyzed: int = 0
    ) -> ScheduleRecord:
        """Insert or replace the schedule stored for schedule.batch_id."""
        record = ScheduleRecord.from_schedule(schedule, trips_analyzed=trips_analyzed)
        record.updated_at = datetime.now(timezone.utc).isoformat()

        records = self._load_all()
        records[record.batch_id] = record
        self._write_all(records)
        logger.info(
            "schedule_saved | batch_id=%s | start=%s | end=%s | confidence=%.2f",
            record.batch_id,
            record.work_start_time,
            record.work_end_time,
            record.confidence_score,
        )
        return record

    def get_schedule(self, batch_id: str) -> Optional[ScheduleRecord]:
        return self._load_all().get(str(batch_id or "").strip())

    def list_schedules(self) -> list[ScheduleRecord]:
        return [record for _, record in sorted(self._load_all().items())]

    def delete_schedule(self, batch_id: str) -> bool:
        """Remove one batch's schedule. Returns False when nothing was stored."""
        records = self._load_all()
        if records.pop(str(batch_id or "").strip(), None) is None:
            return False
        self._write_all(records)
        return True

    def reset(self) -> None:
        """Remove the store file if present."""
        try:
            if self.path.exists():
                self.path.unlink()
        except Exception as exc:
            logger.warning(
                "schedule_store_reset_warning | path=%s | error_type=%s | error=%s",
                self.path,
                type(exc).__name__,
                exc,
            )
