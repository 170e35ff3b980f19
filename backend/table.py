import math
from functools import cmp_to_key
from typing import Any, List, Optional, Sequence

from schemas import TablePage
from values import Row, cell, to_number, to_text

ROWS_PER_PAGE = 10


def search_rows(rows: Sequence[Row], term: str) -> List[Row]:
    needle = term.lower()
    return [row for row in rows if any(needle in to_text(v).lower() for v in row.values())]


def _compare(a: Any, b: Any) -> int:
    num_a, num_b = to_number(a), to_number(b)
    if num_a is not None and num_b is not None:
        diff = num_a - num_b
        if math.isnan(diff):
            return 0
        return (diff > 0) - (diff < 0)
    str_a, str_b = to_text(a).lower(), to_text(b).lower()
    return (str_a > str_b) - (str_a < str_b)


def sort_rows(rows: Sequence[Row], column: str, direction: str = "asc") -> List[Row]:
    """Stable sort; numeric when both cells are numeric, otherwise case-insensitive text."""
    sign = -1 if direction == "desc" else 1
    return sorted(rows, key=cmp_to_key(lambda a, b: sign * _compare(cell(a, column), cell(b, column))))


def query_rows(
    rows: Sequence[Row],
    search: Optional[str] = None,
    sort_column: Optional[str] = None,
    sort_direction: str = "asc",
    page: int = 1,
    page_size: int = ROWS_PER_PAGE,
) -> TablePage:
    filtered = list(rows)
    if search:
        filtered = search_rows(filtered, search)
    if sort_column:
        filtered = sort_rows(filtered, sort_column, sort_direction)

    page = max(page, 1)
    start = (page - 1) * page_size
    return TablePage(
        rows=filtered[start:start + page_size],
        total=len(filtered),
        page=page,
        total_pages=math.ceil(len(filtered) / page_size),
    )
