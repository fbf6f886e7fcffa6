"""
models.py - Data models for the commute validation pipeline.

Every stage communicates exclusively through these models:

    rules.py     ->  list[Candidate] + rejected list[ClassifiedTrip]
    schedule.py  ->  InferredSchedule
    classify.py  ->  list[ClassifiedTrip]
    aggregate.py ->  BatchResult
    explain.py   ->  str / dict (uses BatchResult as input)

Design principles:
1. Raw trips are read-only. Classification copies them into new objects
   with a status and a reason; nothing is mutated in place.
2. Every decision carries a human-readable reason so a reviewer can audit
   it without re-deriving the schedule.
3. External JSON uses camelCase keys (batchId, startMinutes, ...). Python
   code uses the snake_case attribute names; dump with by_alias=True.

Schema relationships:
    RawTrip        --wrapped by-->  Candidate.trip
    RawTrip        --copied into--> ClassifiedTrip
    InferredSchedule --used by-->   BatchResult.schedule
    BatchSummary   --used by-->     BatchResult.summary
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from normalize import MINUTES_PER_DAY, minutes_to_clock, minutes_to_time_string


class TripStatus(str, Enum):
    """Terminal outcome of a trip. Reached in one call, never retried."""

    VALID = "Valid"
    INVALID = "Invalid"
    # Passed the hard rules but the time could not be checked.
    PENDING = "Pending"


class Zone(str, Enum):
    """Which end of the commute a destination belongs to."""

    OFFICE = "office"
    HOME = "home"


class InferenceMode(str, Enum):
    """How the shift end is derived.

    OFFICE_ONLY: end = start + configured shift duration.
    PAIRED: end comes from home departures paired with office arrivals
    (same day, or next day shortly after midnight).
    """

    OFFICE_ONLY = "office_only"
    PAIRED = "paired"


class ScheduleSource(str, Enum):
    INFERRED = "inferred"
    PAIRED = "paired"
    FALLBACK = "fallback"
    INSUFFICIENT = "insufficient"


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    # pandas hands missing CSV cells over as NaN.
    if isinstance(value, float) and math.isnan(value):
        return None
    return value if isinstance(value, str) else str(value)


class TripFields(BaseModel):
    """Fields shared by raw and classified trips."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    date: str = Field(
        default="",
        description=(
            "Trip date as extracted from the receipt, usually month + day "
            "('Nov 24'). The year is not printed; it comes from the policy."
        ),
    )
    time: Optional[str] = Field(
        default=None,
        description="Trip time as extracted ('9:34 PM', '21:34'). May be missing or garbled.",
    )
    location: Optional[str] = Field(
        default=None,
        description="Destination text as extracted ('43b Lauries Rd', 'Mireka Tower').",
    )
    amount: Union[str, float, int, None] = Field(
        default=None,
        description=(
            "Fare as extracted. Currency-prefixed text ('LKR340.00') or a raw "
            "number. May contain OCR noise; parsed with normalize.parse_amount."
        ),
    )
    batch_id: str = Field(
        default="",
        alias="batchId",
        description="Groups trips that belong to one inference run.",
    )

    @field_validator("date", "batch_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        text = _text_or_none(value)
        return (text or "").strip()

    @field_validator("time", "location", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> Optional[str]:
        return _text_or_none(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Union[str, float, int, None]:
        if isinstance(value, float) and math.isnan(value):
            return None
        if value is None or isinstance(value, (str, int, float)):
            return value
        return str(value)


class RawTrip(TripFields):
    """One extracted receipt line item, as handed over by extraction.

    status_hint holds the extraction model's own opinion ('valid',
    'invalid', 'incomplete') when it sent one. It is kept for auditing
    only; policy decisions are always re-derived locally.
    """

    status_hint: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("status", "statusHint", "status_hint"),
        serialization_alias="statusHint",
    )

    @field_validator("status_hint", mode="before")
    @classmethod
    def _coerce_hint(cls, value: Any) -> Optional[str]:
        text = _text_or_none(value)
        if text is None:
            return None
        return text.strip().lower() or None

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "date": "Nov 24",
                    "time": "12:40 PM",
                    "location": "Mireka Tower",
                    "amount": "LKR254.00",
                    "batchId": "batch-2025-11",
                }
            ]
        },
    )


class Candidate(BaseModel):
    """A trip that passed the hard rules and awaits time-based checks."""

    model_config = ConfigDict(frozen=True)

    trip: RawTrip
    zone: Zone
    amount_value: float = Field(..., ge=0)
    index: int = Field(
        default=0,
        ge=0,
        description="Position in the submitted batch; keeps ordering stable.",
    )

    @property
    def time(self) -> Optional[str]:
        return self.trip.time

    @property
    def date(self) -> str:
        return self.trip.date

    @property
    def batch_id(self) -> str:
        return self.trip.batch_id


class ClassifiedTrip(TripFields):
    """RawTrip plus the decision. Immutable once produced."""

    status: TripStatus
    reason: str
    zone: Optional[Zone] = None
    status_hint: Optional[str] = Field(default=None, alias="statusHint")
    # Position in the submitted batch. Internal ordering only, never dumped.
    position: int = Field(default=0, ge=0, exclude=True)

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("reason must be a non-empty string")
        return text

    @classmethod
    def from_trip(
        cls,
        trip: RawTrip,
        status: TripStatus,
        reason: str,
        zone: Optional[Zone] = None,
        position: int = 0,
    ) -> "ClassifiedTrip":
        return cls(
            date=trip.date,
            time=trip.time,
            location=trip.location,
            amount=trip.amount,
            batch_id=trip.batch_id,
            status_hint=trip.status_hint,
            status=status,
            reason=reason,
            zone=zone,
            position=position,
        )

    @property
    def is_valid(self) -> bool:
        return self.status == TripStatus.VALID


class InferredSchedule(BaseModel):
    """Statistically derived shift for one batch.

    start_minutes is always a clock value in [0, 1440). end_minutes is
    start + shift duration and may run past midnight (>= 1440); it is
    wrapped only for display. Both are None when the batch had no usable
    office arrivals and fallback was not requested.

    confidence is metadata for consumers (0.95 for 20+ samples down to
    0.40 for a handful). It never gates a decision inside the engine.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    batch_id: str = Field(default="", alias="batchId")
    start_minutes: Optional[int] = Field(default=None, alias="startMinutes")
    end_minutes: Optional[int] = Field(default=None, alias="endMinutes", ge=0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    sample_size: int = Field(default=0, alias="sampleSize", ge=0)
    source: ScheduleSource = ScheduleSource.INSUFFICIENT
    work_days: list[int] = Field(
        default_factory=list,
        alias="workDays",
        description="Most frequent weekdays in the batch, 0=Monday .. 6=Sunday.",
    )
    median_arrival: Optional[float] = Field(
        default=None,
        alias="medianArrival",
        description="Median office arrival in minutes before rounding to the hour.",
    )

    @field_validator("start_minutes")
    @classmethod
    def _start_in_day(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and not 0 <= value < MINUTES_PER_DAY:
            raise ValueError(f"start_minutes must be within [0, {MINUTES_PER_DAY}), got {value}")
        return value

    @model_validator(mode="after")
    def _both_or_neither(self) -> "InferredSchedule":
        if (self.start_minutes is None) != (self.end_minutes is None):
            raise ValueError("start_minutes and end_minutes must both be set or both be None")
        return self

    @property
    def is_available(self) -> bool:
        return self.start_minutes is not None and self.end_minutes is not None

    @property
    def start_label(self) -> Optional[str]:
        if self.start_minutes is None:
            return None
        return minutes_to_time_string(self.start_minutes)

    @property
    def end_label(self) -> Optional[str]:
        if self.end_minutes is None:
            return None
        return minutes_to_time_string(self.end_minutes)

    @property
    def label(self) -> Optional[str]:
        """Human-readable window, e.g. '1:00 PM - 10:00 PM'."""
        if not self.is_available:
            return None
        return f"{self.start_label} - {self.end_label}"

    @property
    def start_clock(self) -> Optional[str]:
        return None if self.start_minutes is None else minutes_to_clock(self.start_minutes)

    @property
    def end_clock(self) -> Optional[str]:
        return None if self.end_minutes is None else minutes_to_clock(self.end_minutes)


class Batch(BaseModel):
    """Trips submitted together for one inference/validation run."""

    batch_id: str = Field(..., alias="batchId")
    trips: list[RawTrip] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("batch_id", mode="before")
    @classmethod
    def _batch_id_required(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("batch_id is required")
        return text

    @model_validator(mode="after")
    def _adopt_batch_id(self) -> "Batch":
        # Trips without a batch id belong to the batch they were submitted in.
        self.trips = [
            trip if trip.batch_id else trip.model_copy(update={"batch_id": self.batch_id})
            for trip in self.trips
        ]
        return self


class BatchSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    valid_count: int = Field(default=0, alias="validCount")
    invalid_count: int = Field(default=0, alias="invalidCount")
    pending_count: int = Field(default=0, alias="pendingCount")
    total_trips: int = Field(default=0, alias="totalTrips")
    rejected_count: int = Field(
        default=0,
        alias="rejectedCount",
        description="Trips rejected by the hard rules (subset of invalid_count).",
    )
    duplicate_count: int = Field(default=0, alias="duplicateCount")
    active_days: int = Field(
        default=0,
        alias="activeDays",
        description="Distinct dates with at least one valid trip.",
    )
    office_valid_count: int = Field(default=0, alias="officeValidCount")
    home_valid_count: int = Field(default=0, alias="homeValidCount")


class BatchResult(BaseModel):
    """Final output of one batch run."""

    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(default="", alias="batchId")
    valid: list[ClassifiedTrip] = Field(default_factory=list)
    invalid: list[ClassifiedTrip] = Field(default_factory=list)
    pending: list[ClassifiedTrip] = Field(default_factory=list)
    total_valid: str = Field(default="0.00", alias="totalValid")
    summary: BatchSummary = Field(default_factory=BatchSummary)
    inferred_schedule: Optional[str] = Field(default=None, alias="inferredSchedule")
    schedule: InferredSchedule = Field(default_factory=InferredSchedule)

    @property
    def all_trips(self) -> list[ClassifiedTrip]:
        return [*self.valid, *self.invalid, *self.pending]

    @property
    def is_empty(self) -> bool:
        return not (self.valid or self.invalid or self.pending)
