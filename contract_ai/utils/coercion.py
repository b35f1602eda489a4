"""Primitive coercers for loosely typed model output."""

import math
import re
from typing import Any, List, Optional


def coerce_number(value: Any, fallback: Optional[float] = None) -> Optional[float]:
    """Coerce ``value`` to a number.

    Strings lose dollar signs, commas and whitespace before conversion, so
    ``"$500,000"`` becomes ``500000``. Integral floats are returned as ints.
    """
    if value is None or isinstance(value, bool):
        return fallback

    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return fallback
        number = value
    elif isinstance(value, str):
        cleaned = re.sub(r"[$,\s]", "", value)
        if not cleaned:
            return fallback
        try:
            number = float(cleaned)
        except ValueError:
            return fallback
        if math.isnan(number) or math.isinf(number):
            return fallback
    else:
        return fallback

    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def coerce_string(value: Any) -> Optional[str]:
    """Coerce to a stripped string; empty becomes None."""
    if value is None:
        return None
    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value).strip()
    return text or None


def coerce_string_array(value: Any) -> List[str]:
    """Coerce to a list of non-empty strings.

    A single comma-separated string is split on commas.
    """
    if value is None:
        return []

    if isinstance(value, (list, tuple)):
        items = [coerce_string(item) for item in value if item is not None]
        return [item for item in items if item]

    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return []
        if "," in trimmed:
            return [part.strip() for part in trimmed.split(",") if part.strip()]
        return [trimmed]

    text = coerce_string(value)
    return [text] if text else []


def coerce_boolean(value: Any) -> Optional[bool]:
    """Coerce yes/no, true/false, 1/0 strings and numbers to a bool."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "y"):
            return True
        if lowered in ("false", "no", "0", "n"):
            return False
    return None
