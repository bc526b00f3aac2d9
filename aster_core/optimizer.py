"""
Content Optimizer for ASTER
===========================

Extracts a bounded, representative excerpt of a standardized document so it
can be placed in a model prompt. Sampling is deterministic: the same document
and budget always produce the same excerpt.

Per-format policy:

    Markdown       verbatim if it fits; else intro (20%, max 2000 chars),
                   up to 5 evenly spaced sections (max 1000 chars each) or
                   3 raw chunks when there are no headings, and a
                   conclusion (10%, max 1000 chars)
    CSV            headers, row count, first 10 rows; for more than 30 rows
                   also 5 rows around the midpoint and the last 5
    Spreadsheet    sheet list, then up to 3 sheets (first, keyword-named,
                   middle/last) with a head/middle/tail 20-row window each
    JSON array     length, first 5 items; for more than 15 items also 3
                   around the midpoint and the last 3
    JSON object    key list and the first 10 key/value pairs

Whatever the format, the result never exceeds ``max_bytes`` characters: an
oversized excerpt keeps its head and tail around a truncation marker.
"""

import json
from typing import Any, Dict, List

from .documents import (
    CsvDocument,
    JsonDocument,
    MarkdownDocument,
    SpreadsheetDocument,
    StandardizedDocument,
)
from .standardizers.markdown import heading_lines

DEFAULT_MAX_BYTES = 50000

TRUNCATION_MARKER = "\n\n... [content truncated due to size] ...\n\n"
NO_CONTENT = "File has no data content"
UNSUPPORTED_FORMAT = "File format not fully supported for detailed content extraction"

SHEET_KEYWORDS = ("summary", "data", "main", "overview", "total")
MAX_SAMPLED_SHEETS = 3

INTERNAL_ROW_KEYS = ("_rowId",)


# =============================================================================
# Helpers
# =============================================================================

def truncate_middle(text: str, max_bytes: int) -> str:
    """
    Hard size cap: keep the head and tail of ``text`` around a marker.

    The marker's length is taken out of the budget, so the result is never
    longer than ``max_bytes``. Budgets too small to hold the marker get a
    plain prefix.
    """
    if max_bytes <= 0:
        return ""
    if len(text) <= max_bytes:
        return text

    room = max_bytes - len(TRUNCATION_MARKER)
    if room < 2:
        return text[:max_bytes]

    head = room // 2
    tail = room - head
    return text[:head] + TRUNCATION_MARKER + text[len(text) - tail:]


def _row_json(row: Dict[str, Any]) -> str:
    visible = {k: v for k, v in row.items() if k not in INTERNAL_ROW_KEYS}
    return json.dumps(visible, ensure_ascii=False, separators=(",", ":"), default=str)


def _rows_text(rows: List[Dict[str, Any]]) -> str:
    return "".join(_row_json(row) + "\n" for row in rows)


def _pretty(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


# =============================================================================
# Markdown
# =============================================================================

def heading_positions(content: str) -> List[int]:
    """Character offsets of the heading lines of a Markdown text."""
    positions = []
    offset = 0
    lines = content.split("\n")
    for line, heading in zip(lines, heading_lines(lines)):
        if heading is not None:
            positions.append(offset)
        offset += len(line) + 1
    return positions


def optimize_markdown(content: str, max_bytes: int) -> str:
    if not content.strip():
        return NO_CONTENT
    if len(content) <= max_bytes:
        return content

    total = len(content)
    intro = content[:min(int(total * 0.2), 2000)]

    samples = []
    positions = heading_positions(content)
    if positions:
        count = min(5, len(positions))
        step = max(1, len(positions) // count)
        for i in list(range(0, len(positions), step))[:count]:
            start = positions[i]
            next_start = positions[i + 1] if i + 1 < len(positions) else total
            samples.append(content[start:start + min(1000, next_start - start)])
    else:
        chunk_size = total // 3
        for i in range(3):
            start = i * chunk_size
            samples.append(content[start:start + min(1000, chunk_size)])

    conclusion = content[total - min(int(total * 0.1), 1000):]
    sampled = "".join(sample + "\n...\n" for sample in samples)

    return (
        f"{intro}\n\n...\n[Content sampled due to size]\n...\n\n"
        f"{sampled}\n...\n\n{conclusion}"
    )


# =============================================================================
# Tabular
# =============================================================================

def optimize_csv(document: CsvDocument) -> str:
    rows = document.data
    headers = document.headers
    if not rows and not headers:
        return NO_CONTENT

    total = len(rows)
    text = f"Headers: {', '.join(headers) or 'None'}\n"
    text += f"Total rows: {total}\n"
    if total == 0:
        return text

    begin = min(10, total)
    text += f"\nBeginning sample ({begin} rows):\n"
    text += _rows_text(rows[:begin])

    if total > 30:
        mid_start = total // 2 - 2
        text += f"\nMiddle sample (rows {mid_start}-{mid_start + 4}):\n"
        text += _rows_text(rows[mid_start:mid_start + 5])

        end_start = max(mid_start + 5, total - 5)
        text += f"\nEnd sample (last {total - end_start} rows):\n"
        text += _rows_text(rows[end_start:])

    return text


def select_sheets(sheet_names: List[str]) -> List[str]:
    """
    Choose which sheets to sample: always the first, then up to two whose
    name contains a priority keyword, then the middle and/or last sheet
    until three are selected.
    """
    target = min(MAX_SAMPLED_SHEETS, len(sheet_names))
    selected: List[str] = []
    if not sheet_names:
        return selected

    selected.append(sheet_names[0])
    if len(sheet_names) == 1:
        return selected

    important = [
        name for name in sheet_names
        if any(keyword in name.lower() for keyword in SHEET_KEYWORDS)
    ]
    for name in important[:2]:
        if name not in selected:
            selected.append(name)

    if len(selected) < target:
        middle = sheet_names[len(sheet_names) // 2]
        if len(sheet_names) > 2 and middle not in selected:
            selected.append(middle)
        last = sheet_names[-1]
        if len(selected) < target and last not in selected:
            selected.append(last)

    return selected


def optimize_spreadsheet(document: SpreadsheetDocument) -> str:
    names = document.sheet_names
    if not names:
        return NO_CONTENT

    text = f"Excel file with {len(names)} sheets: {', '.join(names)}\n\n"
    selected = select_sheets(names)

    for name in selected:
        sheet = document.sheets.get(name)
        if sheet is None:
            continue
        text += f"=== SHEET: {name} ===\n"
        rows = sheet.records
        if rows:
            total = len(rows)
            text += f"Headers: {', '.join(sheet.headers)}\n"
            text += f"Total rows: {total}\n"

            begin = min(10, total)
            text += f"Sample (first {begin} rows):\n"
            text += _rows_text(rows[:begin])

            if total > 20:
                mid = total // 2
                text += f"Sample (middle rows {mid}-{mid + 4}):\n"
                text += _rows_text(rows[mid:mid + 5])
                if total > begin + 5:
                    text += "Sample (last 5 rows):\n"
                    text += _rows_text(rows[total - 5:])
        else:
            text += "Empty sheet\n"
        text += "\n"

    omitted = [name for name in names if name not in selected]
    if omitted:
        text += f"[{len(omitted)} additional sheets not shown: {', '.join(omitted)}]\n"

    return text


# =============================================================================
# JSON
# =============================================================================

def optimize_json(value: Any) -> str:
    if isinstance(value, list):
        total = len(value)
        text = f"JSON array with {total} items.\n"
        if total == 0:
            return text

        sample_size = min(5, total)
        text += f"Beginning items ({sample_size}):\n"
        text += _pretty(value[:sample_size]) + "\n"

        if total > 15:
            mid_start = total // 2 - 1
            text += f"Middle items ({mid_start}-{mid_start + 2}):\n"
            text += _pretty(value[mid_start:mid_start + 3]) + "\n"

            end_start = max(mid_start + 3, total - 3)
            text += f"End items ({end_start}-{total - 1}):\n"
            text += _pretty(value[end_start:]) + "\n"
        return text

    if isinstance(value, dict):
        keys = list(value.keys())
        text = f"JSON object with {len(keys)} keys: {', '.join(keys)}\n\n"
        if not keys:
            return text

        sample_size = min(len(keys), 10)
        text += "Sample of content:\n"
        text += _pretty({key: value[key] for key in keys[:sample_size]})
        if len(keys) > sample_size:
            text += f"\n\n[{len(keys) - sample_size} more keys not shown]\n"
        return text

    return f"JSON value: {json.dumps(value, ensure_ascii=False, default=str)}"


# =============================================================================
# Entry point
# =============================================================================

def optimize(document: StandardizedDocument, max_bytes: int = DEFAULT_MAX_BYTES) -> str:
    """
    Build a bounded excerpt of ``document``.

    Args:
        document: Any standardized document
        max_bytes: Maximum excerpt length in characters (>= 1)

    Returns:
        Excerpt text, at most ``max_bytes`` characters long
    """
    if isinstance(document, MarkdownDocument):
        text = optimize_markdown(document.data.full_text, max_bytes)
    elif isinstance(document, CsvDocument):
        text = optimize_csv(document)
    elif isinstance(document, SpreadsheetDocument):
        text = optimize_spreadsheet(document)
    elif isinstance(document, JsonDocument):
        text = optimize_json(document.data)
    else:
        text = UNSUPPORTED_FORMAT

    return truncate_middle(text, max_bytes)
