"""Tabular file parsing and record normalization."""

import logging
import re
import zipfile
from io import BytesIO
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from risk_tracker.exceptions import IngestionError
from risk_tracker.identity import dedupe_records, resolve_identity
from risk_tracker.models import IngestionResult, StudentRecord
from risk_tracker.risk import classify

logger = logging.getLogger("risk_tracker.parsers")

ENROLL_ID = "enrollId"
NAME = "name"
ATTENDANCE = "attendance"
SCORE = "score"
FEE = "fee"

CANONICAL_HEADERS = (ENROLL_ID, NAME, ATTENDANCE, SCORE, FEE)

# Checked in order, first match wins. Patterns run against the cleaned
# (lowercase, underscore-separated) label.
HEADER_PATTERNS = [
    (ENROLL_ID, re.compile(r'enrol|roll|studentid|(?:^|_)(?:u|s|emp|stu|std)?id(?:_|$)')),
    (NAME, re.compile(r'name')),
    (ATTENDANCE, re.compile(r'attendance|att|attn')),
    (SCORE, re.compile(r'score|marks?|result')),
    (FEE, re.compile(r'fee')),
]

DEFAULT_FEE_STATUS = "unpaid"


def clean_header_token(label: Any) -> str:
    """Lowercase, collapse non-alphanumeric runs to '_' and trim underscores."""
    if label is None or (not isinstance(label, str) and pd.isna(label)):
        return ""
    normalized = str(label).strip().lower()
    normalized = re.sub(r'[^a-z0-9]+', '_', normalized)
    return normalized.strip('_')


def canonical_header(label: Any) -> str:
    """
    Map a free-text column label to the internal vocabulary.

    Handles labels such as "Roll No.", "Student Name", "Attendance %",
    "Marks" or "Fee Status". Labels that match nothing come back as their
    cleaned token so they are still addressable.

    "id" only counts as a whole underscore-separated token, optionally
    with a short prefix (uid, sid, empid, stuid, stdid). Words that merely
    end in "id", like "paid", are not identifiers.

    Args:
        label: Raw column label

    Returns:
        One of CANONICAL_HEADERS, or the cleaned token
    """
    cleaned = clean_header_token(label)
    for canonical, pattern in HEADER_PATTERNS:
        if pattern.search(cleaned):
            return canonical
    return cleaned or str(label).strip()


def canonicalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename DataFrame columns to canonical tokens.

    When several source columns land on the same token only the first one
    is kept. Blank header cells (pandas labels them "Unnamed: N") are never
    matched against the vocabulary.
    """
    df = df.copy()
    renamed = [
        clean_header_token(col) if str(col).startswith("Unnamed:") else canonical_header(col)
        for col in df.columns
    ]
    mapping = dict(zip(df.columns, renamed))
    logger.debug("Header mapping: %s", mapping)
    df.columns = renamed

    if df.columns.duplicated().any():
        logger.warning(
            "Duplicate columns after canonicalization, keeping first: %s",
            df.columns[df.columns.duplicated()].tolist()
        )
        df = df.loc[:, ~df.columns.duplicated(keep='first')]
    return df


def cell_text(value: Any) -> str:
    """Stringify a raw cell, treating None/NaN as empty."""
    if value is None:
        return ""
    if not isinstance(value, str):
        try:
            if pd.isna(value):
                return ""
        except (TypeError, ValueError):
            pass
    return str(value).strip()


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a loosely formatted numeric cell.

    Accepts things like "85%", " 85 ", "1,234" or "$ 40.5". Thousands
    separators and spaces are stripped, then anything that is not a digit,
    a dot or a minus sign.

    Args:
        value: Raw cell value

    Returns:
        The number, or None when the cell is empty or not numeric
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        val = float(value)
        return val if np.isfinite(val) else None

    text = cell_text(value)
    if text == "":
        return None

    cleaned = re.sub(r'[, ]+', '', text)
    cleaned = re.sub(r'[^0-9.\-]', '', cleaned)
    if cleaned == "":
        return None
    try:
        val = float(cleaned)
    except ValueError:
        return None
    if not np.isfinite(val):
        return None
    return val


def is_blank_row(row: Mapping[str, Any]) -> bool:
    return all(cell_text(v) == "" for v in row.values())


def normalize_row(row: Mapping[str, Any], ordinal: int) -> Optional[StudentRecord]:
    """
    Build a typed record from one row keyed by canonical headers.

    Never raises on cell content: missing or unparsable fields fall back to
    defaults (0 for numbers, "unpaid" for fee, a generated display name).

    Args:
        row: Mapping of canonical header -> raw cell value
        ordinal: Zero-based position of the row among non-empty rows

    Returns:
        StudentRecord, or None if every cell in the row is empty
    """
    if is_blank_row(row):
        return None

    enroll_id = cell_text(row.get(ENROLL_ID))
    raw_name = cell_text(row.get(NAME))
    if raw_name:
        display_name = raw_name
    elif enroll_id:
        display_name = f"Student-{enroll_id}"
    else:
        display_name = f"Student-{ordinal + 1}"

    attendance = parse_number(row.get(ATTENDANCE))
    score = parse_number(row.get(SCORE))
    attendance_pct = attendance if attendance is not None else 0.0
    score_value = score if score is not None else 0.0
    fee_status = cell_text(row.get(FEE)) or DEFAULT_FEE_STATUS

    return StudentRecord(
        identity=resolve_identity(enroll_id, display_name, ordinal),
        enroll_id=enroll_id,
        display_name=display_name,
        attendance_pct=attendance_pct,
        score=score_value,
        fee_status=fee_status,
        risk_tier=classify(attendance_pct, score_value, fee_status),
    )


def _first_line(message: str) -> str:
    lines = [line.strip() for line in str(message).splitlines() if line.strip()]
    return lines[0] if lines else "Unknown parse error"


def load_table(file_bytes: bytes, filename: str = "upload.csv") -> pd.DataFrame:
    """
    Read an uploaded CSV (or .xlsx) into a DataFrame of canonical columns.

    Every cell is read as text; typing happens later in normalize_row.
    Blank lines are skipped. Malformed input aborts the whole upload.

    Args:
        file_bytes: Raw file content
        filename: Original filename, used to pick the reader

    Returns:
        DataFrame with canonicalized column labels

    Raises:
        IngestionError: with the parser's first diagnostic
    """
    is_excel = filename.lower().endswith((".xlsx", ".xls"))
    try:
        if is_excel:
            df = pd.read_excel(BytesIO(file_bytes), dtype=str, engine='openpyxl')
        else:
            df = pd.read_csv(
                BytesIO(file_bytes),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                encoding='utf-8-sig',
            )
    except pd.errors.EmptyDataError as e:
        raise IngestionError(f"Error parsing file: {_first_line(e)}") from e
    except pd.errors.ParserError as e:
        raise IngestionError(f"Error parsing file: {_first_line(e)}") from e
    except UnicodeDecodeError as e:
        raise IngestionError(f"Error parsing file: file is not valid UTF-8 ({e.reason})") from e
    except (zipfile.BadZipFile, InvalidFileException, KeyError) as e:
        # KeyError: a zip archive without the workbook parts
        raise IngestionError(f"Error parsing file: not a readable .xlsx workbook ({e})") from e
    except (ValueError, OSError) as e:
        raise IngestionError(f"Error parsing file: {_first_line(e)}") from e

    logger.info("Loaded %s: %d rows, columns %s", filename, len(df), list(df.columns))
    return canonicalize_columns(df)


def normalize_table(df: pd.DataFrame) -> IngestionResult:
    """
    Normalize every non-empty row and collapse duplicate identities.

    Later rows win over earlier rows with the same identity, matching the
    upsert the store performs on commit.
    """
    records: List[StudentRecord] = []
    rows: List[Dict[str, Any]] = df.to_dict(orient='records')

    ordinal = 0
    for row in rows:
        record = normalize_row(row, ordinal)
        if record is None:
            continue
        records.append(record)
        ordinal += 1

    final = dedupe_records(records)
    collapsed = len(records) - len(final)
    if collapsed:
        logger.info("Collapsed %d duplicate rows by identity", collapsed)

    return IngestionResult(
        records=final,
        total_rows=len(records),
        duplicates_collapsed=collapsed,
    )


def ingest_file(file_bytes: bytes, filename: str = "upload.csv") -> IngestionResult:
    """Parse, normalize, classify and deduplicate one uploaded file."""
    df = load_table(file_bytes, filename)
    return normalize_table(df)
