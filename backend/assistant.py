"""Answers to free-text questions about a dataset.

``GeminiClient`` forwards the question with a small dataset context to the
Gemini ``generateContent`` endpoint and returns the answer verbatim.
``answer_locally`` handles a fixed set of question shapes (counts, sums,
averages, extremes, top values) without any network access.
"""

import json
import logging
from typing import Any, Dict, Optional, Sequence

import pandas as pd
import requests

from schemas import Column
from values import Row, category, cell, is_blank, to_number

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_KEY_PREFIX = "AIza"
CONTEXT_SAMPLE_ROWS = 3
EMPTY_ANSWER = "I couldn't generate a response. Please try again."


class AssistantError(Exception):
    """Base exception for AI assistant failures."""

    def __init__(self, message: str, code: str = "ASSISTANT_ERROR", details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AssistantConfigError(AssistantError):
    """Raised when the Gemini API key is missing or malformed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="ASSISTANT_NOT_CONFIGURED", details=details)


class AssistantNetworkError(AssistantError):
    """Raised when the Gemini endpoint cannot be reached."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="ASSISTANT_NETWORK_ERROR", details=details)


class AssistantUpstreamError(AssistantError):
    """Raised when Gemini answers with a non-success status."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="ASSISTANT_UPSTREAM_ERROR", details=details)


class AssistantResponseError(AssistantError):
    """Raised when the Gemini response body is not JSON."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="ASSISTANT_INVALID_RESPONSE", details=details)


def normalize_api_key(raw: Optional[str]) -> str:
    key = (raw or "").strip()
    if len(key) >= 2 and key.startswith('"') and key.endswith('"'):
        key = key[1:-1]
    if not key:
        raise AssistantConfigError("Gemini API key is not configured. Set GEMINI_API_KEY in the environment.")
    if not key.startswith(GEMINI_KEY_PREFIX):
        raise AssistantConfigError("Invalid Gemini API key format. Please check GEMINI_API_KEY.")
    return key


def build_context(rows: Sequence[Row], columns: Sequence[Column]) -> str:
    details = ", ".join(f"{c.label} ({c.type})" for c in columns)
    sample = json.dumps(list(rows[:CONTEXT_SAMPLE_ROWS]), indent=2, default=str)
    return (
        "Dataset Context:\n"
        f"- Total rows: {len(rows)}\n"
        f"- Total columns: {len(columns)}\n"
        f"- Column details: {details}\n"
        f"- Sample data: {sample}\n"
    )


def build_prompt(question: str, rows: Sequence[Row], columns: Sequence[Column]) -> str:
    return (
        "You are a data scientist analyzing a dataset. Here's the context:\n\n"
        f"{build_context(rows, columns)}\n"
        f'User question: "{question}"\n\n'
        "Please provide a helpful analysis or answer based on the data context provided. "
        "If the user is asking for specific calculations, provide the actual calculations. "
        "If they want insights, provide meaningful observations about the data structure and "
        "potential patterns. Be concise but informative."
    )


def extract_text(payload: Dict[str, Any]) -> str:
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return EMPTY_ANSWER
    return text or EMPTY_ANSWER


class GeminiClient:
    def __init__(self, api_key: Optional[str], model: str, timeout: float = 30.0, session=None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{GEMINI_BASE_URL}/{self.model}:generateContent"

    def ask(self, question: str, rows: Sequence[Row], columns: Sequence[Column]) -> str:
        key = normalize_api_key(self.api_key)
        body = {"contents": [{"parts": [{"text": build_prompt(question, rows, columns)}]}]}

        try:
            resp = self.session.post(self.url, params={"key": key}, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Gemini request failed: %s", e)
            raise AssistantNetworkError(
                "Unable to connect to Gemini API. Please check your internet connection.",
                details={"model": self.model},
            ) from e

        if not resp.ok:
            logger.warning("Gemini returned %s: %s", resp.status_code, resp.text[:200])
            raise AssistantUpstreamError(
                f"Gemini request failed with status {resp.status_code}",
                details={"status": resp.status_code, "model": self.model},
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise AssistantResponseError("Gemini returned a non-JSON response") from e
        return extract_text(payload)


# ---------------------------------------------------------------------------
# Local answers
# ---------------------------------------------------------------------------


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.3f}".rstrip("0").rstrip(".")


def _mentioned_column(question: str, columns: Sequence[Column]) -> Optional[Column]:
    for column in columns:
        if column.key.lower() in question or column.label.lower() in question:
            return column
    return None


def _numbers(rows: Sequence[Row], key: str) -> pd.Series:
    return pd.Series([to_number(cell(row, key)) for row in rows], dtype=float).dropna()


def _has_any(question: str, *words: str) -> bool:
    return any(w in question for w in words)


def _numeric_answer(question: str, rows: Sequence[Row], column: Optional[Column]) -> Optional[str]:
    if _has_any(question, "average", "mean"):
        kind, phrase = "average", "calculate the average"
    elif _has_any(question, "sum", "total"):
        kind, phrase = "sum", "calculate the sum"
    elif _has_any(question, "maximum", "max", "highest"):
        kind, phrase = "max", "find the maximum value"
    elif _has_any(question, "minimum", "min", "lowest"):
        kind, phrase = "min", "find the minimum value"
    else:
        return None

    if column is None or column.type != "number":
        return f"Please specify a numeric column to {phrase}."
    values = _numbers(rows, column.key)
    if values.empty:
        return f'There are no numeric values in "{column.label}".'

    if kind == "average":
        return f'The average value in "{column.label}" is {float(values.mean()):.2f}.'
    if kind == "sum":
        return f'The total sum of "{column.label}" is {_format_number(float(values.sum()))}.'
    if kind == "max":
        return f'The maximum value in "{column.label}" is {_format_number(float(values.max()))}.'
    return f'The minimum value in "{column.label}" is {_format_number(float(values.min()))}.'


def answer_locally(question: str, rows: Sequence[Row], columns: Sequence[Column]) -> str:
    q = question.lower()
    column = _mentioned_column(q, columns)

    if _has_any(q, "how many", "count"):
        if column:
            filled = sum(1 for row in rows if not is_blank(cell(row, column.key)))
            return f'There are {filled} non-empty values in "{column.label}" column.'
        return f"Your dataset contains {len(rows)} total rows across {len(columns)} columns."

    numeric = _numeric_answer(q, rows, column)
    if numeric is not None:
        return numeric

    if _has_any(q, "top", "most common"):
        if column is None:
            return "Please specify a column to find the top values."
        labels = pd.Series([category(cell(row, column.key), "Unknown") for row in rows], dtype=object)
        # ties keep first-seen order
        counts = labels.value_counts(sort=False).sort_values(ascending=False, kind="stable").head(5)
        top = "\n".join(f"{value}: {n}" for value, n in counts.items())
        return f'Top values in "{column.label}":\n{top}'

    if _has_any(q, "unique", "distinct"):
        if column is None:
            return "Please specify a column to count unique values."
        filled = [cell(row, column.key) for row in rows if not is_blank(cell(row, column.key))]
        unique = pd.Series(filled, dtype=object).nunique()
        return f'There are {unique} unique values in "{column.label}" column.'

    if _has_any(q, "columns", "fields"):
        by_type = pd.Series([c.type for c in columns], dtype=object).value_counts(sort=False)
        type_info = ", ".join(f"{n} {t}" for t, n in by_type.items())
        labels = ", ".join(c.label for c in columns)
        return f"Your dataset has {len(columns)} columns: {type_info}.\n\nColumns: {labels}."

    if _has_any(q, "overview", "summary", "describe"):
        by_type = pd.Series([c.type for c in columns], dtype=object).value_counts()
        numeric_labels = ", ".join(c.label for c in columns if c.type == "number") or "None"
        text_labels = ", ".join(c.label for c in columns if c.type == "text") or "None"
        return (
            "Dataset Overview:\n"
            f"• {len(rows)} total rows\n"
            f"• {len(columns)} columns ({by_type.get('number', 0)} numeric, {by_type.get('text', 0)} text, "
            f"{by_type.get('date', 0)} date)\n"
            f"• Numeric columns: {numeric_labels}\n"
            f"• Text columns: {text_labels}"
        )

    examples = ", ".join(c.label for c in columns[:3])
    return (
        f'I\'d be happy to help! Try asking about specific columns like "{examples}" or ask for an '
        "overview of your data. You can also ask for averages, sums, counts, or top values for any column."
    )
