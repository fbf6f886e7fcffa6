"""
config.py - Validation policy loaded from the environment.

Every threshold the pipeline uses lives on CommutePolicy and is passed
explicitly into each stage. Values come from a .env file / environment
variables (COMMUTE_*); anything unset keeps its default.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from logging_config import get_logger
from models import InferenceMode
from normalize import MINUTES_PER_DAY, parse_time_to_minutes

logger = get_logger(__name__)

DEFAULT_OFFICE_KEYWORDS = ("mireka", "havelock", "324")
DEFAULT_HOME_KEYWORDS = ("43b", "43d", "lauries")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class CommutePolicy(BaseModel):
    """Reimbursement policy for one reporting period."""

    model_config = ConfigDict(frozen=True)

    # -- Hard rules --
    target_month: int = Field(default=11, ge=1, le=12)
    target_year: int = Field(default=2025, ge=2000, le=2100)
    min_amount: float = Field(default=150.0, ge=0)
    max_amount: float = Field(default=600.0, ge=0)
    office_keywords: tuple[str, ...] = DEFAULT_OFFICE_KEYWORDS
    home_keywords: tuple[str, ...] = DEFAULT_HOME_KEYWORDS
    reject_duplicates: bool = True

    # -- Schedule inference --
    shift_minutes: int = Field(default=540, gt=0, le=MINUTES_PER_DAY)
    inference_mode: InferenceMode = InferenceMode.OFFICE_ONLY
    min_paired_samples: int = Field(default=3, ge=1)
    work_days_top_n: int = Field(default=5, ge=0, le=7)

    # Opt-in: substitute a standard window instead of failing the batch.
    fallback_enabled: bool = False
    fallback_min_samples: int = Field(default=4, ge=1)
    fallback_start: str = "09:00"
    fallback_end: str = "18:00"
    fallback_confidence: float = Field(default=0.50, ge=0.0, le=1.0)

    # -- Classification windows --
    early_tolerance_minutes: int = Field(default=60, ge=0)
    late_tolerance_minutes: int = Field(default=10, ge=0)
    # None = any departure at or after shift end is valid.
    home_max_after_end_minutes: Optional[int] = Field(default=None, ge=0)
    # Home trips before this clock time (and before shift start) count as
    # the previous workday's late ride home.
    overnight_grace_minutes: int = Field(default=180, ge=0, lt=MINUTES_PER_DAY)

    # -- Reporting --
    sort_results: bool = True

    @field_validator("office_keywords", "home_keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            value = value.split(",")
        keywords = tuple(
            str(item).strip().lower() for item in (value or []) if str(item).strip()
        )
        if not keywords:
            raise ValueError("keyword set must contain at least one keyword")
        return keywords

    @field_validator("fallback_start", "fallback_end")
    @classmethod
    def _clock_parses(cls, value: str) -> str:
        if parse_time_to_minutes(value) is None:
            raise ValueError(f"not a clock time: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_ranges(self) -> "CommutePolicy":
        if self.min_amount > self.max_amount:
            raise ValueError(
                f"min_amount ({self.min_amount}) must not exceed max_amount ({self.max_amount})"
            )
        return self

    @property
    def fallback_start_minutes(self) -> int:
        return parse_time_to_minutes(self.fallback_start)  # type: ignore[return-value]

    @property
    def fallback_end_minutes(self) -> int:
        start = self.fallback_start_minutes
        end = parse_time_to_minutes(self.fallback_end)
        # A night shift ends on the next day.
        if end is not None and end <= start:
            end += MINUTES_PER_DAY
        return end  # type: ignore[return-value]

    def with_overrides(self, overrides: dict[str, Any] | None) -> "CommutePolicy":
        """Return a validated copy with some fields replaced."""
        if not overrides:
            return self
        unknown = sorted(set(overrides) - set(type(self).model_fields))
        if unknown:
            raise ValueError(f"Unknown policy fields: {unknown}")
        merged = self.model_dump()
        merged.update(overrides)
        return type(self).model_validate(merged)


ENV_FIELDS: dict[str, str] = {
    "COMMUTE_TARGET_MONTH": "target_month",
    "COMMUTE_TARGET_YEAR": "target_year",
    "COMMUTE_MIN_AMOUNT": "min_amount",
    "COMMUTE_MAX_AMOUNT": "max_amount",
    "COMMUTE_OFFICE_KEYWORDS": "office_keywords",
    "COMMUTE_HOME_KEYWORDS": "home_keywords",
    "COMMUTE_REJECT_DUPLICATES": "reject_duplicates",
    "COMMUTE_SHIFT_MINUTES": "shift_minutes",
    "COMMUTE_INFERENCE_MODE": "inference_mode",
    "COMMUTE_MIN_PAIRED_SAMPLES": "min_paired_samples",
    "COMMUTE_WORK_DAYS": "work_days_top_n",
    "COMMUTE_FALLBACK_ENABLED": "fallback_enabled",
    "COMMUTE_FALLBACK_MIN_SAMPLES": "fallback_min_samples",
    "COMMUTE_FALLBACK_START": "fallback_start",
    "COMMUTE_FALLBACK_END": "fallback_end",
    "COMMUTE_FALLBACK_CONFIDENCE": "fallback_confidence",
    "COMMUTE_EARLY_TOLERANCE": "early_tolerance_minutes",
    "COMMUTE_LATE_TOLERANCE": "late_tolerance_minutes",
    "COMMUTE_HOME_MAX_AFTER_END": "home_max_after_end_minutes",
    "COMMUTE_OVERNIGHT_GRACE": "overnight_grace_minutes",
    "COMMUTE_SORT_RESULTS": "sort_results",
}

_BOOL_FIELDS = {"reject_duplicates", "fallback_enabled", "sort_results"}
_OPTIONAL_FIELDS = {"home_max_after_end_minutes"}


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _load_env_file() -> None:
    try:
        load_dotenv()
    except UnicodeDecodeError:
        # Fallback for legacy Windows-encoded .env files.
        load_dotenv(encoding="cp1252")


def load_policy(
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> CommutePolicy:
    """Build the policy from the environment, then apply explicit overrides.

    Pass `environ` to read from a mapping instead of os.environ (the .env
    file is only consulted when reading the real environment).
    """
    if environ is None:
        _load_env_file()
        environ = dict(os.environ)

    values: dict[str, Any] = {}
    for env_name, field_name in ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        if field_name in _BOOL_FIELDS:
            values[field_name] = _parse_bool(env_name, raw)
        elif field_name in _OPTIONAL_FIELDS and raw.strip().lower() in {"none", "off"}:
            values[field_name] = None
        else:
            values[field_name] = raw.strip()

    policy = CommutePolicy.model_validate(values).with_overrides(overrides)
    logger.debug(
        "policy_loaded | month=%s | year=%s | amount_range=%.2f-%.2f | fallback=%s | mode=%s",
        policy.target_month,
        policy.target_year,
        policy.min_amount,
        policy.max_amount,
        policy.fallback_enabled,
        policy.inference_mode.value,
    )
    return policy
