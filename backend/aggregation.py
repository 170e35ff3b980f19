"""Reduce dataset rows into plot-ready records for a chart.

Categories are emitted in first-seen order while scanning rows top to bottom,
never sorted, so chart category order is stable for a given dataset.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from schemas import NO_GROUPING, Dataset
from values import Row, category, cell, to_number

PIE_GROUP_LIMIT = 10
UNKNOWN_CATEGORY = "Unknown"
OTHER_SERIES = "Other"
SOURCE_FIELD = "_source"

Record = Dict[str, Any]


def contribution(row: Row, y_key: Optional[str]) -> float:
    """Numeric value of ``y_key``, or 1 so non-numeric cells count rows instead."""
    if y_key:
        number = to_number(cell(row, y_key))
        if number is not None:
            return number
    return 1.0


def _frame(rows: Sequence[Row], x_key: str, y_key: Optional[str]) -> pd.DataFrame:
    """Category and contribution of every row, in row order."""
    return pd.DataFrame(
        {
            "category": pd.Series([category(cell(r, x_key), UNKNOWN_CATEGORY) for r in rows], dtype=object),
            "amount": pd.Series([contribution(r, y_key) for r in rows], dtype=float),
        }
    )


def _totals(frame: pd.DataFrame) -> pd.DataFrame:
    return frame.groupby("category", sort=False)["amount"].agg(["sum", "count"])


def _aggregate_pie(rows: Sequence[Row], x_key: str, y_key: Optional[str], limit: int) -> List[Record]:
    totals = _totals(_frame(rows, x_key, y_key)).head(limit)
    return [
        {"name": key, "value": float(total), "count": int(n)}
        for key, total, n in totals.itertuples(name=None)
    ]


def _aggregate_grouped(
    rows: Sequence[Row], x_key: str, y_key: str, group_by_key: str, combined: bool
) -> List[Record]:
    frame = _frame(rows, x_key, y_key)
    series = []
    for row in rows:
        label = category(cell(row, group_by_key), OTHER_SERIES)
        source = cell(row, SOURCE_FIELD)
        series.append(f"{source} - {label}" if combined and source else label)
    frame["series"] = pd.Series(series, dtype=object)

    # unstack would sort categories, so records are built from the stacked sums
    sums = frame.groupby(["category", "series"], sort=False)["amount"].sum()
    grouped: Dict[str, Record] = {}
    for (key, label), total in sums.items():
        grouped.setdefault(key, {x_key: key})[label] = float(total)
    return list(grouped.values())


def _aggregate_simple(rows: Sequence[Row], x_key: str, y_key: str) -> List[Record]:
    records = []
    for key, total, n in _totals(_frame(rows, x_key, y_key)).itertuples(name=None):
        record: Record = {x_key: key, y_key: 0.0, "count": 0}
        record[y_key] += float(total)
        record["count"] += int(n)
        records.append(record)
    return records


def aggregate(
    rows: Sequence[Row],
    x_key: Optional[str],
    y_key: Optional[str],
    group_by_key: Optional[str],
    chart_kind: str,
    pie_limit: int = PIE_GROUP_LIMIT,
    combined: bool = False,
) -> List[Record]:
    """Aggregate ``rows`` for one chart.

    Returns an empty list when ``x_key`` is unset, or when ``y_key`` is unset
    for anything but a pie chart. Pie charts keep the first ``pie_limit``
    categories seen. With ``group_by_key`` set (and not ``"none"``) each record
    holds one field per series seen under its category. Otherwise each record
    holds the ``y_key`` total and a row count.
    """
    if not x_key or (chart_kind != "pie" and not y_key):
        return []
    if not rows:
        return []

    if chart_kind == "pie":
        return _aggregate_pie(rows, x_key, y_key, pie_limit)
    if group_by_key and group_by_key != NO_GROUPING:
        return _aggregate_grouped(rows, x_key, y_key, group_by_key, combined)
    return _aggregate_simple(rows, x_key, y_key)


def combine_datasets(datasets: Iterable[Dataset]) -> List[Row]:
    """Concatenate dataset rows, tagging each with the dataset it came from."""
    combined: List[Row] = []
    for dataset in datasets:
        combined.extend({**row, SOURCE_FIELD: dataset.name} for row in dataset.rows)
    return combined
