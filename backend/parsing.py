import csv
import io
import logging
import os
from typing import List, Optional

import pandas as pd

from values import Row

logger = logging.getLogger(__name__)

DELIMITED_EXTENSIONS = {".csv", ".txt", ".tsv"}
EXCEL_EXTENSIONS = {".xlsx", ".xls"}
SUPPORTED_EXTENSIONS = DELIMITED_EXTENSIONS | EXCEL_EXTENSIONS
ENCODINGS = ("utf-8-sig", "utf-8", "latin-1")
BOM = "\ufeff"


class ParseError(Exception):
    """Base class for upload parsing failures."""


class UnsupportedFileError(ParseError):
    pass


class FileTooLargeError(ParseError):
    pass


class EmptyDatasetError(ParseError):
    pass


class FileParseError(ParseError):
    pass


def _decode(content: bytes) -> str:
    for encoding in ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FileParseError("Could not decode file")


def _read_delimited(content: bytes) -> pd.DataFrame:
    text = _decode(content)
    options = dict(dtype=str, keep_default_na=False, skip_blank_lines=True)
    try:
        # sep=None lets the python engine sniff the delimiter
        return pd.read_csv(io.StringIO(text), sep=None, engine="python", **options)
    except pd.errors.EmptyDataError:
        raise EmptyDatasetError("No valid data found in the file")
    except (csv.Error, pd.errors.ParserError):
        logger.info("Delimiter detection failed, falling back to comma")
    try:
        return pd.read_csv(io.StringIO(text), **options)
    except pd.errors.EmptyDataError:
        raise EmptyDatasetError("No valid data found in the file")
    except (csv.Error, pd.errors.ParserError, ValueError) as e:
        raise FileParseError(f"Failed to parse the file: {e}") from e


def _read_excel(content: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(io.BytesIO(content), dtype=str)
    except Exception as e:
        raise FileParseError(f"Failed to parse the file: {e}") from e


def frame_to_rows(df: pd.DataFrame) -> List[Row]:
    """Flatten a frame into trimmed string rows, dropping rows with no values."""
    df = df.copy()
    df.columns = [str(c).strip().lstrip(BOM).strip() for c in df.columns]
    records = df.fillna("").astype(str).to_dict(orient="records")
    rows = [{k: v.strip() for k, v in record.items()} for record in records]
    return [row for row in rows if any(v != "" for v in row.values())]


def parse_upload(filename: str, content: bytes, max_bytes: Optional[int] = None) -> List[Row]:
    """Parse an uploaded CSV, text or Excel file into rows keyed by header."""
    ext = os.path.splitext((filename or "").lower())[1]
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileError("Invalid file type. Please upload a CSV, Excel, or text file.")
    if max_bytes is not None and len(content) > max_bytes:
        raise FileTooLargeError(f"File is too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")

    if ext in EXCEL_EXTENSIONS:
        df = _read_excel(content)
    else:
        df = _read_delimited(content)

    rows = frame_to_rows(df)
    if not rows:
        raise EmptyDatasetError("No valid data found in the file")
    logger.info("Parsed %s: %d rows, %d columns", filename, len(rows), len(df.columns))
    return rows
