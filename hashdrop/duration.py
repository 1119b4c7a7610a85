from __future__ import annotations

import math
import re

from hashdrop.errors import InvalidDurationError


_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR

UNIT_SECONDS: dict[str, float] = {
    "nsec": 1e-9, "ns": 1e-9,
    "usec": 1e-6, "us": 1e-6,
    "msec": 1e-3, "ms": 1e-3,
    "seconds": 1, "second": 1, "secs": 1, "sec": 1, "s": 1,
    "minutes": _MINUTE, "minute": _MINUTE, "mins": _MINUTE, "min": _MINUTE, "m": _MINUTE,
    "hours": _HOUR, "hour": _HOUR, "hrs": _HOUR, "hr": _HOUR, "h": _HOUR,
    "days": _DAY, "day": _DAY, "d": _DAY,
    "weeks": 7 * _DAY, "week": 7 * _DAY, "w": 7 * _DAY,
    "months": 30.44 * _DAY, "month": 30.44 * _DAY, "M": 30.44 * _DAY,
    "years": 365.25 * _DAY, "year": 365.25 * _DAY, "y": 365.25 * _DAY,
}

_TERM = re.compile(r"\s*(\d+)\s*([A-Za-z]+)")


def parse_duration(expression: str) -> float:
    """Parse a humantime-style duration such as ``3days`` or ``1h 30min`` into seconds."""
    text = expression.strip()
    if not text:
        raise InvalidDurationError(expression, "empty expression")

    total = 0.0
    position = 0
    while position < len(text):
        match = _TERM.match(text, position)
        if match is None:
            raise InvalidDurationError(expression, f"unexpected input at offset {position}")
        value, unit = match.groups()
        if unit not in UNIT_SECONDS:
            raise InvalidDurationError(expression, f"unknown unit '{unit}'")
        try:
            total += int(value) * UNIT_SECONDS[unit]
        except OverflowError:
            raise InvalidDurationError(expression, "out of range") from None
        position = match.end()
        while position < len(text) and text[position].isspace():
            position += 1
    if not math.isfinite(total):
        raise InvalidDurationError(expression, "out of range")
    return total
