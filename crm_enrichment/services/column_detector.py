"""
CRM Column Detection Engine

Classifies each column of an uploaded CRM export to one of a fixed set of
semantic column types, so the rows can be handed to behavioral clustering
with a known schema.

Detection is a two-stage strategy:
1. Header name match against an ordered rule table (first declared type wins)
2. Value shape analysis of up to 10 sample cells, used only when the
   header is uninformative

Nothing in here raises for classification purposes; anything that cannot
be classified comes back as ``ColumnType.UNKNOWN``.
"""

import logging
import math
import numbers
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10


class ColumnType(str, Enum):
    """Semantic field kinds a CRM column can be mapped to."""

    CUSTOMER_ID = "customer_id"
    EMAIL = "email"
    NAME = "name"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    PHONE = "phone"
    COMPANY = "company"
    INDUSTRY = "industry"
    REVENUE = "revenue"
    PURCHASE_COUNT = "purchase_count"
    LAST_PURCHASE_DATE = "last_purchase_date"
    SIGNUP_DATE = "signup_date"
    STATUS = "status"
    SEGMENT = "segment"
    LOCATION = "location"
    CITY = "city"
    COUNTRY = "country"
    AGE = "age"
    GENDER = "gender"
    UNKNOWN = "unknown"


def _patterns(*sources: str) -> List[Pattern[str]]:
    return [re.compile(source, re.IGNORECASE) for source in sources]


# Header rules, evaluated top to bottom. A header matching several rules
# resolves to the first one listed, so this must stay an ordered list.
COLUMN_PATTERNS: List[Tuple[ColumnType, List[Pattern[str]]]] = [
    # Identity
    (ColumnType.CUSTOMER_ID, _patterns(r"customer.*id", r"client.*id", r"user.*id", r"^id$")),
    (ColumnType.EMAIL, _patterns(r"e?mail", r"^email$")),
    # "name" is an exact token so "first name" / "last name" fall through
    (ColumnType.NAME, _patterns(r"^name$", r"full.*name", r"customer.*name")),
    (ColumnType.FIRST_NAME, _patterns(r"first.*name", r"fname", r"given.*name")),
    (ColumnType.LAST_NAME, _patterns(r"last.*name", r"lname", r"surname", r"family.*name")),
    (ColumnType.PHONE, _patterns(r"phone", r"tel", r"mobile", r"cell")),
    # Firmographics
    (ColumnType.COMPANY, _patterns(r"company", r"organization", r"business")),
    (ColumnType.INDUSTRY, _patterns(r"industry", r"sector", r"vertical")),
    # Behavior
    (ColumnType.REVENUE, _patterns(r"revenue", r"sales", r"spend", r"ltv", r"lifetime.*value")),
    (ColumnType.PURCHASE_COUNT, _patterns(r"purchase.*count", r"order.*count", r"transactions", r"num.*orders")),
    (ColumnType.LAST_PURCHASE_DATE, _patterns(r"last.*purchase", r"last.*order", r"recent.*purchase")),
    (ColumnType.SIGNUP_DATE, _patterns(r"signup", r"join.*date", r"registration", r"created.*at")),
    (ColumnType.STATUS, _patterns(r"status", r"state", r"active")),
    (ColumnType.SEGMENT, _patterns(r"segment", r"tier", r"level", r"category")),
    # Geography & demographics
    (ColumnType.LOCATION, _patterns(r"location", r"address")),
    (ColumnType.CITY, _patterns(r"city", r"town")),
    (ColumnType.COUNTRY, _patterns(r"country", r"nation")),
    (ColumnType.AGE, _patterns(r"^age$", r"years.*old")),
    (ColumnType.GENDER, _patterns(r"gender", r"sex$")),
]

# Value shapes (matched against whole cell strings)
EMAIL_VALUE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
PHONE_VALUE = re.compile(r"[\d\s\-+()]+", re.ASCII)
DATE_VALUE = re.compile(r"\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4}", re.ASCII)
MIN_PHONE_LENGTH = 10

# Mean thresholds for numeric columns
REVENUE_MEAN_FLOOR = 1000
AGE_MEAN_RANGE = (18, 100)

HIGH_IMPORTANCE = frozenset({
    ColumnType.PURCHASE_COUNT,
    ColumnType.REVENUE,
    ColumnType.LAST_PURCHASE_DATE,
    ColumnType.STATUS,
    ColumnType.SEGMENT,
})
MEDIUM_IMPORTANCE = frozenset({
    ColumnType.SIGNUP_DATE,
    ColumnType.INDUSTRY,
    ColumnType.COMPANY,
    ColumnType.LOCATION,
})


@dataclass
class ColumnMapping:
    """Result of column detection over one dataset."""
    detected: Dict[str, ColumnType] = field(default_factory=dict)
    suggestions: Dict[ColumnType, List[str]] = field(default_factory=dict)
    unmapped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-ready form with string type values."""
        return {
            "detected": {col: col_type.value for col, col_type in self.detected.items()},
            "suggestions": {col_type.value: list(cols) for col_type, cols in self.suggestions.items()},
            "unmapped": list(self.unmapped),
        }


def detect_column_type(column_name: str) -> ColumnType:
    """Classify a column by its header alone."""
    normalized = column_name.strip()

    for column_type, patterns in COLUMN_PATTERNS:
        for pattern in patterns:
            if pattern.search(normalized):
                return column_type

    return ColumnType.UNKNOWN


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NA or value is pd.NaT:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _to_number(value: Any) -> Optional[float]:
    """Numeric reading of a cell, or None if it has none."""
    if isinstance(value, str):
        if not value.strip():
            # Blank-but-not-empty text reads as zero
            return 0.0
    elif not isinstance(value, numbers.Number) or isinstance(value, complex):
        return None

    try:
        number = float(value)
    except OverflowError:
        # Integers past float range read as infinity
        return math.inf if value > 0 else -math.inf
    except (TypeError, ValueError):
        return None

    if math.isnan(number):
        return None
    return number


def _is_email(value: Any) -> bool:
    return isinstance(value, str) and EMAIL_VALUE.fullmatch(value) is not None


def _is_phone(value: Any) -> bool:
    return (
        isinstance(value, str)
        and PHONE_VALUE.fullmatch(value) is not None
        and len(value) >= MIN_PHONE_LENGTH
    )


def _is_date(value: Any) -> bool:
    return isinstance(value, str) and DATE_VALUE.match(value) is not None


def _classify_numeric(values: Sequence[float]) -> ColumnType:
    mean = sum(values) / len(values)

    if mean > REVENUE_MEAN_FLOOR:
        return ColumnType.REVENUE
    low, high = AGE_MEAN_RANGE
    if low < mean < high:
        return ColumnType.AGE
    return ColumnType.PURCHASE_COUNT


def classify_by_sample(column_name: str, sample_values: Iterable[Any]) -> ColumnType:
    """
    Guess a column's type from its values when the header says nothing.

    Every non-empty value must share a shape for that shape to win; shapes
    are tried as email, phone, date, then numeric. Numeric columns are
    split by the mean of their values.

    Args:
        column_name: Column header (kept for logging only)
        sample_values: Raw cell values, typically the first 10 rows

    Returns:
        The inferred ColumnType, or UNKNOWN
    """
    values = [v for v in sample_values if not _is_missing(v)]
    if not values:
        return ColumnType.UNKNOWN

    if all(_is_email(v) for v in values):
        return ColumnType.EMAIL

    if all(_is_phone(v) for v in values):
        return ColumnType.PHONE

    if all(_is_date(v) for v in values):
        return ColumnType.SIGNUP_DATE

    parsed = [_to_number(v) for v in values]
    if all(n is not None for n in parsed):
        return _classify_numeric(parsed)

    logger.debug("No common value shape for column %r", column_name)
    return ColumnType.UNKNOWN


def analyze_column_data(column_name: str, sample_values: Iterable[Any]) -> ColumnType:
    """Header match first, value shapes as the fallback."""
    name_based = detect_column_type(column_name)
    if name_based is not ColumnType.UNKNOWN:
        return name_based
    return classify_by_sample(column_name, sample_values)


def detect_column_mappings(
    columns: Sequence[str],
    sample_rows: Sequence[Mapping[str, Any]],
) -> ColumnMapping:
    """
    Detect column types for an entire dataset.

    Args:
        columns: Column names in file order
        sample_rows: Row records keyed by column name; only the first 10
            are inspected

    Returns:
        ColumnMapping with detected, suggestions and unmapped filled in
    """
    mapping = ColumnMapping()
    head = sample_rows[:SAMPLE_SIZE]

    for column in columns:
        sample_values = [row.get(column) for row in head]
        column_type = analyze_column_data(column, sample_values)

        if column_type is ColumnType.UNKNOWN:
            mapping.unmapped.append(column)
            continue

        mapping.detected[column] = column_type
        mapping.suggestions.setdefault(column_type, []).append(column)

    logger.debug(
        "Column detection: %d detected, %d unmapped",
        len(mapping.detected),
        len(mapping.unmapped),
    )
    return mapping


def detect_dataframe_mappings(df: pd.DataFrame) -> ColumnMapping:
    """Convenience wrapper: detect mappings straight from a DataFrame."""
    head = df.head(SAMPLE_SIZE).rename(columns=str)
    return detect_column_mappings(list(head.columns), head.to_dict(orient="records"))


def get_column_importance(column_type: ColumnType) -> str:
    """How much a column type matters for behavioral clustering: high, medium or low."""
    if column_type in HIGH_IMPORTANCE:
        return "high"
    if column_type in MEDIUM_IMPORTANCE:
        return "medium"
    return "low"
