"""
CRM file reader: turns an uploaded CSV or Excel export into row records.

The actual decoding is pandas' job; this module only sniffs the format,
enforces upload limits and normalises cells into the shape column
detection expects (string headers, "" for missing cells, ISO dates).
"""

import io
import logging
import os
import zipfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from crm_enrichment.config import settings
from crm_enrichment.exceptions import CrmFileParseError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = [".csv", ".xlsx"]
ZIP_MAGIC = b"PK\x03\x04"

# Control bytes that never appear in a text export (tab, newlines, form feed and ESC are fine)
_TEXT_SNIFF_BYTES = 1000
_ALLOWED_CONTROL_BYTES = frozenset({0x09, 0x0A, 0x0B, 0x0C, 0x0D, 0x1B})


@dataclass
class ParsedCrmData:
    rows: List[Dict[str, Any]]
    columns: List[str]
    row_count: int
    file_type: str  # 'csv' or 'xlsx'


def validate_upload(filename: str, file_size: int) -> dict:
    """Check extension and size of an upload before reading it."""
    file_ext = os.path.splitext(filename)[1].lower()

    if file_ext not in ALLOWED_EXTENSIONS:
        return {
            "valid": False,
            "error": f"File type '{file_ext}' not allowed. Only CSV and Excel files accepted.",
            "file_type": None,
            "file_size": 0,
        }

    file_type = "csv" if file_ext == ".csv" else "xlsx"

    max_size = settings.MAX_UPLOAD_MB * 1024 * 1024
    if file_size > max_size:
        return {
            "valid": False,
            "error": f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum {settings.MAX_UPLOAD_MB}MB.",
            "file_type": None,
            "file_size": file_size,
        }

    return {"valid": True, "error": None, "file_type": file_type, "file_size": file_size}


def _is_xlsx(data: bytes) -> bool:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return any(name.startswith("xl/") for name in archive.namelist())
    except zipfile.BadZipFile:
        return False


def detect_file_type(data: bytes) -> str:
    """Sniff the content: 'xlsx', 'csv' or 'unknown'."""
    if data[:4] == ZIP_MAGIC and _is_xlsx(data):
        return "xlsx"

    for byte in data[:_TEXT_SNIFF_BYTES]:
        if byte < 0x20 and byte not in _ALLOWED_CONTROL_BYTES:
            return "unknown"

    return "csv"


def get_excel_sheet_names(data: bytes) -> List[str]:
    """Sheet names of a workbook, in workbook order."""
    with pd.ExcelFile(io.BytesIO(data)) as workbook:
        return list(workbook.sheet_names)


def _read_frame(data: bytes, file_type: str, sheet_name: Optional[str]) -> pd.DataFrame:
    if file_type == "csv":
        return pd.read_csv(io.BytesIO(data))

    with pd.ExcelFile(io.BytesIO(data)) as workbook:
        target = sheet_name or workbook.sheet_names[0]
        if target not in workbook.sheet_names:
            raise CrmFileParseError(f'Sheet "{target}" not found in Excel file')
        return workbook.parse(target)


def _normalise_cells(df: pd.DataFrame) -> pd.DataFrame:
    """String headers, ISO date strings, and "" in place of missing cells."""
    df = df.rename(columns=str)

    # Full timestamps: a bare YYYY-MM-DD would also satisfy the phone shape
    for col in df.select_dtypes(include=["datetime", "datetimetz"]).columns:
        df[col] = df[col].dt.strftime("%Y-%m-%dT%H:%M:%S")

    df = df.astype(object)
    return df.where(df.notna(), "")


def parse_crm_file(
    data: bytes,
    max_rows: Optional[int] = None,
    sheet_name: Optional[str] = None,
) -> ParsedCrmData:
    """
    Read a CRM export into row records.

    Args:
        data: Raw file bytes
        max_rows: Keep only this many rows in ``rows`` (``row_count`` still
            reports the full size)
        sheet_name: Excel sheet to read; defaults to the first one

    Raises:
        CrmFileParseError: unknown format, unreadable content or no data rows
    """
    file_type = detect_file_type(data)
    if file_type == "unknown":
        raise CrmFileParseError("Unrecognised file format. Supported: CSV, XLSX")

    try:
        df = _read_frame(data, file_type, sheet_name)
    except CrmFileParseError:
        raise
    except Exception as e:
        logger.warning("Failed to parse %s upload: %s", file_type, e)
        raise CrmFileParseError(f"Failed to parse file: {e}") from e

    if df.empty:
        label = "CSV" if file_type == "csv" else "Excel"
        raise CrmFileParseError(f"The {label} file is empty or contains no valid data")

    df = _normalise_cells(df)
    rows_df = df.head(max_rows) if max_rows else df

    return ParsedCrmData(
        rows=rows_df.to_dict(orient="records"),
        columns=df.columns.tolist(),
        row_count=len(df),
        file_type=file_type,
    )
