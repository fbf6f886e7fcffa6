"""
normalize.py - Time, amount and date parsing for extracted trip fields.

Core parsers:
    parse_time_to_minutes(text)      -> minutes since midnight, or None
    minutes_to_time_string(minutes)  -> "H:MM AM/PM"
    minutes_to_clock(minutes)        -> "HH:MM:SS"
    parse_amount(value)              -> float (0.0 when unparseable)
    parse_trip_date(text, year)      -> datetime.date, or None

Design principles:
    - Pure transformations, no state
    - Never raise on bad input: OCR/LLM output is known to be lossy
    - None means "unparseable", never zero
"""

from __future__ import annotations

import calendar
import math
import re
from datetime import date, datetime
from typing import Any, Optional

from dateutil import parser as dateparser

from logging_config import get_logger

logger = get_logger(__name__)

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR

_TIME_PATTERN = re.compile(
    r"(?<!\d)(\d{1,2}):(\d{2})(?::\d{2})?\s*(AM|PM)?(?![A-Za-z])",
    re.IGNORECASE,
)
_NON_AMOUNT_CHARS = re.compile(r"[^\d.]")
_LEADING_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_EMPTY_MARKERS = {"", "n/a", "na", "none", "null", "unknown", "nan"}


def clean_text(value: Any) -> str:
    """Lowercase, trim and collapse whitespace. None becomes ''."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    text = value if isinstance(value, str) else str(value)
    return re.sub(r"\s+", " ", text).strip().lower()


def parse_time_to_minutes(text: Any) -> Optional[int]:
    """Parse '9:34 PM', '12:42pm', '21:34' or '13:00:00' into minutes.

    With AM/PM the hour is converted from 12-hour clock (12 AM -> 0,
    12 PM stays 12). Without it the digits are taken as 24-hour time.
    Returns None when nothing time-like is found or the values are out
    of range.
    """
    if text is None:
        return None

    if not isinstance(text, str):
        text = str(text)

    match = _TIME_PATTERN.search(text)
    if not match:
        logger.debug("parse_time | no_match | raw=%r", text)
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2))
    period = (match.group(3) or "").upper()

    if minutes > 59:
        logger.debug("parse_time | minutes_out_of_range | raw=%r", text)
        return None

    if period:
        if hours > 12:
            logger.debug("parse_time | hour_out_of_range_12h | raw=%r", text)
            return None
        if period == "PM" and hours != 12:
            hours += 12
        elif period == "AM" and hours == 12:
            hours = 0
    elif hours > 23:
        logger.debug("parse_time | hour_out_of_range_24h | raw=%r", text)
        return None

    return hours * MINUTES_PER_HOUR + minutes


def minutes_to_time_string(minutes: float) -> str:
    """Render minutes as 12-hour 'H:MM AM/PM', wrapping past midnight."""
    total = int(round(minutes)) % MINUTES_PER_DAY
    hours, mins = divmod(total, MINUTES_PER_HOUR)
    period = "AM" if hours < 12 else "PM"
    display_hour = hours % 12 or 12
    return f"{display_hour}:{mins:02d} {period}"


def minutes_to_clock(minutes: float) -> str:
    """Render minutes as 24-hour 'HH:MM:SS', wrapping past midnight."""
    total = int(round(minutes)) % MINUTES_PER_DAY
    hours, mins = divmod(total, MINUTES_PER_HOUR)
    return f"{hours:02d}:{mins:02d}:00"


def parse_amount(value: Any) -> float:
    """Parse a fare such as 'LKR340.00', '3,392.64' or 340 into a float.

    Every character that is not a digit or '.' is dropped and the leading
    number is read, so currency prefixes and thousands separators vanish.
    Anything unreadable returns 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number):
            logger.warning("parse_amount | non_finite=%r | fallback=0.0", value)
            return 0.0
        return abs(number)

    text = value if isinstance(value, str) else str(value)
    if text.strip().lower() in _EMPTY_MARKERS:
        return 0.0

    # "Rs. 340" would otherwise read as ".340".
    cleaned = _NON_AMOUNT_CHARS.sub("", text).lstrip(".")
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        logger.warning("parse_amount | parse_failed | raw=%r | fallback=0.0", value)
        return 0.0

    try:
        number = float(match.group(0))
    except ValueError:
        logger.warning("parse_amount | parse_failed | raw=%r | fallback=0.0", value)
        return 0.0

    if not math.isfinite(number):
        return 0.0
    return number


def month_abbreviation(month: int) -> str:
    """1 -> 'Jan' ... 12 -> 'Dec'."""
    return calendar.month_abbr[month]


def parse_trip_date(text: Any, year: int) -> Optional[date]:
    """Parse a receipt date ('Nov 24', '24 Nov', '11/24/2025') to a date.

    Receipts usually print only month and day, so the year comes from the
    reporting period. Returns None for anything that does not look like a
    calendar date.
    """
    raw = clean_text(text)
    if raw in _EMPTY_MARKERS:
        return None

    if not any(char.isdigit() for char in raw):
        return None

    # A bare number would silently become a day in January.
    if re.fullmatch(r"\d+", raw):
        return None

    try:
        parsed = dateparser.parse(raw, default=datetime(year, 1, 1))
    except (ValueError, OverflowError, TypeError) as exc:
        logger.debug(
            "parse_trip_date | parse_error=%s | raw=%r",
            type(exc).__name__,
            text,
        )
        return None

    if parsed is None:
        return None
    return parsed.date()
