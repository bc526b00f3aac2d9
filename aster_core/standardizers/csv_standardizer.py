"""
CSV Standardizer - delimited text to row records

Detects the delimiter from the header line, parses quoted fields (with ""
escapes), keys each row by header and runs column type inference.
"""

import logging
from typing import Dict, List

from ..documents import CsvDocument, ErrorDocument, StandardizedDocument
from ..metadata import UploadedFile, build_metadata
from .tabular import analyze_columns

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
DEFAULT_DELIMITER = ","


def detect_delimiter(first_line: str) -> str:
    """
    Pick the candidate delimiter occurring most often outside quoted spans.

    Ties resolve in candidate order (comma first); a line with none of the
    candidates falls back to comma.
    """
    counts = {d: 0 for d in CANDIDATE_DELIMITERS}
    in_quotes = False
    i = 0
    while i < len(first_line):
        char = first_line[i]
        if char == '"':
            if in_quotes and i + 1 < len(first_line) and first_line[i + 1] == '"':
                i += 1  # escaped quote
            else:
                in_quotes = not in_quotes
        elif not in_quotes and char in counts:
            counts[char] += 1
        i += 1

    best = DEFAULT_DELIMITER
    best_count = 0
    for delimiter in CANDIDATE_DELIMITERS:
        if counts[delimiter] > best_count:
            best = delimiter
            best_count = counts[delimiter]
    return best


def parse_csv_line(line: str, delimiter: str) -> List[str]:
    """Split one line on ``delimiter``, honoring quotes. Values are trimmed."""
    if '"' not in line:
        return [value.strip() for value in line.split(delimiter)]

    values = []
    current = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    values.append("".join(current).strip())
    return values


def _empty_document(uploaded: UploadedFile) -> CsvDocument:
    return CsvDocument(
        metadata=build_metadata(uploaded, "std-csv"),
        data=[],
        structure={"headers": [], "rowCount": 0, "columnCount": 0, "delimiter": DEFAULT_DELIMITER},
        analysis={"columns": {}, "rowCount": 0, "columnCount": 0},
    )


def standardize_csv(content: str, uploaded: UploadedFile) -> StandardizedDocument:
    """
    Standardize CSV text.

    Args:
        content: Decoded file text
        uploaded: The uploaded file (metadata source)

    Returns:
        CsvDocument, or ErrorDocument if parsing fails
    """
    if not content or not content.strip():
        return _empty_document(uploaded)

    try:
        lines = [line.rstrip("\r") for line in content.split("\n") if line.strip()]
        delimiter = detect_delimiter(lines[0])
        headers = parse_csv_line(lines[0], delimiter)

        rows: List[Dict[str, str]] = []
        for row_index, line in enumerate(lines[1:]):
            values = parse_csv_line(line, delimiter)
            row = {
                header: values[index] if index < len(values) else ""
                for index, header in enumerate(headers)
            }
            row["_rowId"] = f"row-{row_index}"
            rows.append(row)

        return CsvDocument(
            metadata=build_metadata(uploaded, "std-csv"),
            data=rows,
            structure={
                "headers": headers,
                "rowCount": len(rows),
                "columnCount": len(headers),
                "delimiter": delimiter,
            },
            analysis={
                "columns": analyze_columns(rows, headers),
                "rowCount": len(rows),
                "columnCount": len(headers),
            },
        )
    except Exception as e:
        logger.warning(f"Failed to standardize CSV file {uploaded.name}: {e}")
        return ErrorDocument(
            metadata=build_metadata(uploaded, "std-csv"),
            error=f"Failed to standardize CSV file: {e}",
        )
