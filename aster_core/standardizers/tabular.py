"""
Column Type Inference for Tabular Data
======================================

Shared by the CSV and spreadsheet standardizers. A column commits to a
non-string type only when at least 90% of its non-empty values match that
type's pattern; otherwise it is a string column.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

TYPE_THRESHOLD = 0.9
MAX_FREQUENCY_VALUES = 20

NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
DATE_RE = re.compile(r"^(\d{4}[-/]\d{1,2}[-/]\d{1,2}|\d{1,2}[-/]\d{1,2}[-/]\d{4})$")
DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$"
)
BOOLEAN_VALUES = frozenset({"true", "false", "yes", "no", "1", "0", "y", "n"})


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def infer_column_type(values: List[str]) -> Dict[str, Any]:
    """
    Infer the type of a column from its non-empty values.

    Args:
        values: Non-empty cell values as text

    Returns:
        Dict with inferredType (numeric|date|boolean|string|empty),
        confidence and the raw pattern counts
    """
    if not values:
        return {"inferredType": "empty", "confidence": 1}

    numeric_count = 0
    date_count = 0
    boolean_count = 0

    for value in values:
        lowered = str(value).strip().lower()
        if NUMERIC_RE.match(lowered):
            numeric_count += 1
        if DATE_RE.match(lowered) or DATETIME_RE.match(lowered):
            date_count += 1
        if lowered in BOOLEAN_VALUES:
            boolean_count += 1

    total = len(values)

    # Precedence matters: "1"/"0" are both numeric and boolean
    if numeric_count / total >= TYPE_THRESHOLD:
        return {
            "inferredType": "numeric",
            "confidence": numeric_count / total,
            "patterns": {"numeric": numeric_count, "total": total},
        }
    if date_count / total >= TYPE_THRESHOLD:
        return {
            "inferredType": "date",
            "confidence": date_count / total,
            "patterns": {"date": date_count, "total": total},
        }
    if boolean_count / total >= TYPE_THRESHOLD:
        return {
            "inferredType": "boolean",
            "confidence": boolean_count / total,
            "patterns": {"boolean": boolean_count, "total": total},
        }
    return {
        "inferredType": "string",
        "confidence": 1,
        "patterns": {
            "numeric": numeric_count,
            "date": date_count,
            "boolean": boolean_count,
            "total": total,
        },
    }


def _to_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def numeric_statistics(values: Iterable[str]) -> Dict[str, float]:
    """min/max/avg/sum over the values that parse as numbers."""
    numbers = [n for n in (_to_number(v) for v in values) if n is not None]
    if not numbers:
        return {}
    total = sum(numbers)
    return {
        "min": min(numbers),
        "max": max(numbers),
        "avg": total / len(numbers),
        "sum": total,
    }


def string_statistics(values: List[str]) -> Dict[str, Any]:
    """Distinct-value count, frequencies (small cardinality only) and lengths."""
    frequency: Dict[str, int] = {}
    for value in values:
        frequency[value] = frequency.get(value, 0) + 1

    unique_count = len(frequency)
    return {
        "uniqueValueCount": unique_count,
        "valueFrequency": frequency if unique_count <= MAX_FREQUENCY_VALUES else None,
        "minLength": min((len(v) for v in values), default=0),
        "maxLength": max((len(v) for v in values), default=0),
    }


def analyze_columns(rows: List[Dict[str, Any]], headers: List[str]) -> Dict[str, Dict[str, Any]]:
    """
    Type inference and statistics for every column of a table.

    Args:
        rows: Records keyed by header
        headers: Column names in display order

    Returns:
        Mapping header -> {inferredType, confidence, patterns, statistics,
        nonEmptyCount, totalCount}
    """
    columns: Dict[str, Dict[str, Any]] = {}

    for header in headers:
        values = [row.get(header) for row in rows]
        non_empty = [str(v) for v in values if not is_empty(v)]

        type_info = infer_column_type(non_empty)
        inferred = type_info["inferredType"]

        if inferred == "numeric":
            statistics: Dict[str, Any] = numeric_statistics(non_empty)
        elif inferred == "string":
            statistics = string_statistics(non_empty)
        else:
            statistics = {}

        columns[header] = {
            **type_info,
            "statistics": statistics,
            "nonEmptyCount": len(non_empty),
            "totalCount": len(values),
        }

    return columns
