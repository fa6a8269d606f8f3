"""Helpers behind the column-mapping editor.

A detected mapping is never edited in place: every change returns a new
``{column: ColumnType}`` dict, which is what gets sent on to clustering.
"""

from typing import Any, Dict, Mapping, Sequence

from crm_enrichment.exceptions import InvalidColumnMappingError
from crm_enrichment.services.column_detector import ColumnType


def _as_column_type(column: str, value: Any) -> ColumnType:
    try:
        return ColumnType(value)
    except ValueError:
        raise InvalidColumnMappingError(
            f"Column '{column}' has unknown type '{value}'"
        ) from None


def coerce_column_mapping(mapping: Mapping[str, Any]) -> Dict[str, ColumnType]:
    """Validate a submitted mapping, turning type strings into ColumnType."""
    return {column: _as_column_type(column, value) for column, value in mapping.items()}


def initial_editor_mapping(
    columns: Sequence[str],
    detected: Mapping[str, ColumnType],
) -> Dict[str, ColumnType]:
    """Every dataset column, with undetected ones starting as UNKNOWN."""
    return {column: detected.get(column, ColumnType.UNKNOWN) for column in columns}


def override_column_type(
    mapping: Mapping[str, ColumnType],
    column: str,
    column_type: Any,
) -> Dict[str, ColumnType]:
    """Return a copy of ``mapping`` with ``column`` set to ``column_type``."""
    updated = dict(mapping)
    updated[column] = _as_column_type(column, column_type)
    return updated


def count_mapped_columns(mapping: Mapping[str, Any]) -> int:
    """Number of columns mapped to something other than UNKNOWN."""
    return sum(1 for value in mapping.values() if value != ColumnType.UNKNOWN)
