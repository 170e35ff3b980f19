"""Scalar accessors shared by type inference and aggregation.

A row cell is one of: a number, a string, a boolean, or absent (``None`` or a
missing key). Everything that needs to look at a cell goes through the helpers
here so the coercion rules live in one place.

Numbers are lenient: surrounding whitespace is ignored, an empty string is 0
and hex, octal and binary literals are accepted. Integral floats print without
a fractional part, so 2.0 and 2 group under the same category.
"""

import datetime
import math
import numbers
import re
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

Row = Dict[str, Any]

_DECIMAL = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_RADIX_LITERAL = {
    16: re.compile(r"^0[xX][0-9a-fA-F]+$"),
    8: re.compile(r"^0[oO][0-7]+$"),
    2: re.compile(r"^0[bB][01]+$"),
}
_INFINITY = {"Infinity": math.inf, "+Infinity": math.inf, "-Infinity": -math.inf}

# Largest absolute epoch-millisecond value accepted as a timestamp.
_MAX_EPOCH_MS = 8.64e15

# Leap years that differ in month and day, and fall on different weekdays.
_DATE_DEFAULTS = (datetime.datetime(2000, 1, 1), datetime.datetime(2004, 2, 2))


def cell(row: Row, key: str) -> Any:
    """Return the raw value under ``key``, or ``None`` when it is absent."""
    return row.get(key)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def to_number(value: Any) -> Optional[float]:
    """Coerce a cell to a float, or ``None`` when it is not numeric.

    Absent cells are never numeric. ``Infinity`` is numeric but not finite.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, numbers.Real):
        number = float(value)
        return None if math.isnan(number) else number

    text = str(value).strip()
    if not text:
        return 0.0
    if text in _INFINITY:
        return _INFINITY[text]
    for base, pattern in _RADIX_LITERAL.items():
        if pattern.match(text):
            return float(int(text[2:], base))
    if _DECIMAL.match(text):
        return float(text)
    return None


def is_finite_number(value: Any) -> bool:
    number = to_number(value)
    return number is not None and math.isfinite(number)


def to_text(value: Any) -> str:
    """String form of a cell, with integral floats printed as integers."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        number = float(value)
        if math.isnan(number):
            return "NaN"
        if math.isinf(number):
            return "Infinity" if number > 0 else "-Infinity"
        if number.is_integer() and abs(number) < 1e21:
            return str(int(number))
        return repr(number)
    return str(value)


def category(value: Any, fallback: str) -> str:
    """Grouping key for a cell; absent cells fall back to ``fallback``."""
    if value is None:
        return fallback
    return to_text(value)


def parses_as_date(value: Any) -> bool:
    """Whether a cell names a calendar date.

    Strings must carry at least one of year, month or day. dateutil fills the
    missing parts from a default, so text such as ``Monday`` or ``12:30`` is
    parsed against two defaults and rejected when nothing on the calendar
    stayed put.
    """
    if value is None:
        return False
    if isinstance(value, (datetime.date, datetime.datetime)):
        return True
    if isinstance(value, numbers.Real):
        number = float(value)
        return math.isfinite(number) and abs(number) <= _MAX_EPOCH_MS

    text = str(value).strip()
    if not text:
        return False
    try:
        first, second = (date_parser.parse(text, default=d) for d in _DATE_DEFAULTS)
    except (ValueError, OverflowError):
        return False
    return first.year == second.year or first.month == second.month or first.day == second.day
