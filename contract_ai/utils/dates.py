"""Date normalization helpers for signature dates and day offsets."""

import math
import re
from datetime import date, datetime, timedelta
from typing import Optional, Union

from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")

# Longest plausible contract offset, in days
MAX_DAY_OFFSET = 3650

# Free-form fallbacks tried after the numeric M/D/Y patterns
FALLBACK_FORMATS = [
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%b. %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S",
]


def _expand_year(year: str) -> int:
    if len(year) == 2:
        value = int(year)
        return 2000 + value if value <= 50 else 1900 + value
    return int(year)


def normalize_date_string(value: Optional[str]) -> Optional[str]:
    """Normalize a loosely formatted date to ``YYYY-MM-DD``.

    Accepts ISO dates, M/D/YY, M/D/YYYY, M-D-YY, M-D-YYYY and a handful of
    spelled-out forms ("March 15, 2024"). Two-digit years up to 50 are read
    as 20xx, later ones as 19xx.

    Args:
        value: Raw date text as read off the page

    Returns:
        Canonical date string, or None when the text is not a date
    """
    if not value or not isinstance(value, str):
        return None

    cleaned = value.strip()
    if not cleaned:
        return None

    if ISO_DATE.match(cleaned):
        try:
            datetime.strptime(cleaned, "%Y-%m-%d")
        except ValueError:
            return None
        return cleaned

    match = _NUMERIC_DATE.match(cleaned)
    if match:
        month, day, year = match.groups()
        try:
            return date(_expand_year(year), int(month), int(day)).isoformat()
        except ValueError:
            LOGGER.debug(f"Out-of-range numeric date: {cleaned}")
            return None

    # Ordinal suffixes ("March 1st, 2024") trip strptime
    stripped = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", cleaned, flags=re.IGNORECASE)
    for fmt in FALLBACK_FORMATS:
        try:
            return datetime.strptime(stripped, fmt).date().isoformat()
        except ValueError:
            continue

    LOGGER.debug(f"Failed to parse date value: {cleaned}")
    return None


def _bounded(days: int) -> Optional[int]:
    if 0 <= days <= MAX_DAY_OFFSET:
        return days
    LOGGER.debug(f"Day count out of range: {days}")
    return None


def parse_day_count(value: Union[int, float, str, None]) -> Optional[int]:
    """Interpret ``value`` as a whole number of days, or return None.

    Counts outside ``0..MAX_DAY_OFFSET`` and non-finite floats are rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return _bounded(int(value))
    if isinstance(value, int):
        return _bounded(value)
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"-?\d+", text):
            return _bounded(int(text))
        days_match = re.fullmatch(r"(\d+)\s*days?", text, flags=re.IGNORECASE)
        if days_match:
            return _bounded(int(days_match.group(1)))
    return None


def add_days(base: str, days: int) -> Optional[str]:
    """Add ``days`` calendar days to an ISO date string.

    Returns None when the result falls outside the representable date range.
    """
    start = datetime.strptime(base, "%Y-%m-%d").date()
    try:
        return (start + timedelta(days=days)).isoformat()
    except OverflowError:
        LOGGER.warning(f"Date out of range: {base} + {days} days")
        return None
