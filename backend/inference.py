import re
from typing import Any, List, Sequence

from schemas import Column, ColumnType
from values import Row, cell, is_blank, is_finite_number, parses_as_date, to_text

SAMPLE_SIZE = 100
TYPE_THRESHOLD = 0.8
SAMPLE_VALUES = 3

# Values this short (years, day numbers) never count as dates.
MIN_DATE_LENGTH = 4

_SEPARATORS = re.compile(r"[_-]")
_WORD_START = re.compile(r"\b\w", re.ASCII)


def column_label(key: str) -> str:
    spaced = _SEPARATORS.sub(" ", key)
    return _WORD_START.sub(lambda m: m.group(0).upper(), spaced)


def classify(values: Sequence[Any], threshold: float = TYPE_THRESHOLD) -> ColumnType:
    """Pick a column type from its non-blank sampled values.

    Numeric is checked before date, so a column that clears both thresholds
    is a number column.
    """
    if not values:
        return "text"

    total = len(values)
    numeric = sum(1 for v in values if is_finite_number(v))
    if numeric / total > threshold:
        return "number"

    dates = sum(1 for v in values if parses_as_date(v) and len(to_text(v)) > MIN_DATE_LENGTH)
    if dates / total > threshold:
        return "date"
    return "text"


def infer_columns(
    rows: Sequence[Row],
    sample_size: int = SAMPLE_SIZE,
    threshold: float = TYPE_THRESHOLD,
) -> List[Column]:
    """Infer one column per key of the first row, in that row's key order.

    Only the first ``sample_size`` rows are inspected. Keys are assumed to be
    uniform across rows.
    """
    if not rows:
        return []

    sample = rows[:sample_size]
    columns: List[Column] = []
    for key in rows[0].keys():
        values = [cell(row, key) for row in sample]
        values = [v for v in values if not is_blank(v)]
        columns.append(
            Column(
                key=key,
                label=column_label(key),
                type=classify(values, threshold),
                sample=values[:SAMPLE_VALUES],
            )
        )
    return columns
