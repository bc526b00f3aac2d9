"""
Spreadsheet Standardizer - workbook to named sheets

Reads .xlsx/.xlsm workbooks with openpyxl. For each sheet it derives the
used-range dimensions, header-keyed records, the raw 2-D grid and the cell
formulas. Column analysis runs on the first sheet only.
"""

import logging
from datetime import date, datetime, time
from io import BytesIO
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

from ..documents import (
    ErrorDocument,
    SheetData,
    SheetDimensions,
    SpreadsheetDocument,
    StandardizedDocument,
)
from ..metadata import UploadedFile, build_metadata
from .tabular import analyze_columns

logger = logging.getLogger(__name__)


def cell_text(value: Any) -> Optional[str]:
    """Render a cell value as display text (None stays None)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def header_names(row: List[Optional[str]]) -> List[str]:
    """
    Turn the first grid row into unique column keys.

    Blank headers become ``__EMPTY``, ``__EMPTY_1``...; repeated names get a
    numeric suffix (``Name``, ``Name_1``).
    """
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for value in row:
        base = value if value not in (None, "") else "__EMPTY"
        name = base
        if base in seen:
            seen[base] += 1
            name = f"{base}_{seen[base]}"
        else:
            seen[base] = 0
        headers.append(name)
    return headers


def _formula_text(value: Any) -> str:
    text = getattr(value, "text", value)  # ArrayFormula keeps its text in .text
    text = str(text)
    return text[1:] if text.startswith("=") else text


def _read_sheet(value_sheet, formula_sheet) -> SheetData:
    dimensions = SheetDimensions(
        start_row=value_sheet.min_row - 1,
        end_row=value_sheet.max_row - 1,
        start_col=value_sheet.min_column - 1,
        end_col=value_sheet.max_column - 1,
    )

    grid = [
        [cell_text(v) for v in row]
        for row in value_sheet.iter_rows(
            min_row=value_sheet.min_row,
            max_row=value_sheet.max_row,
            min_col=value_sheet.min_column,
            max_col=value_sheet.max_column,
            values_only=True,
        )
    ]

    has_header = bool(grid) and any(v is not None for v in grid[0])
    headers = header_names(grid[0]) if has_header else []
    records = []
    for row in grid[1:]:
        if all(v is None for v in row):
            continue
        records.append({header: row[i] if i < len(row) else None for i, header in enumerate(headers)})

    formulas = {}
    for row in formula_sheet.iter_rows():
        for cell in row:
            if cell.data_type == "f":
                formulas[cell.coordinate] = _formula_text(cell.value)

    return SheetData(
        name=value_sheet.title,
        records=records,
        raw_rows=grid,
        headers=headers,
        dimensions=dimensions,
        formulas=formulas or None,
    )


def standardize_spreadsheet(payload: bytes, uploaded: UploadedFile) -> StandardizedDocument:
    """
    Standardize a workbook.

    Args:
        payload: Raw workbook bytes
        uploaded: The uploaded file (metadata source)

    Returns:
        SpreadsheetDocument, or ErrorDocument if the workbook cannot be read
    """
    try:
        # Two passes: cached values for data, formula strings for formulas
        value_book = load_workbook(BytesIO(payload), data_only=True)
        formula_book = load_workbook(BytesIO(payload), data_only=False)

        # Chartsheets hold no cells
        sheet_names = [sheet.title for sheet in value_book.worksheets]
        sheets = {
            name: _read_sheet(value_book[name], formula_book[name])
            for name in sheet_names
        }

        sheet_summary = {
            name: {
                "rowCount": len(sheet.records),
                "columnCount": len(sheet.headers),
                "totalCells": len(sheet.records) * len(sheet.headers),
                "dimensions": sheet.dimensions.to_dict(),
                "hasFormulas": sheet.formulas is not None,
            }
            for name, sheet in sheets.items()
        }

        first = sheets[sheet_names[0]]
        analysis = {
            "totalSheets": len(sheet_names),
            "primarySheet": first.name,
            "sheets": sheet_summary,
            "columns": analyze_columns(first.records, first.headers),
        }

        logger.debug(f"Standardized workbook {uploaded.name}: {len(sheet_names)} sheets")
        return SpreadsheetDocument(
            metadata=build_metadata(uploaded, "std-excel"),
            sheet_names=sheet_names,
            sheets=sheets,
            analysis=analysis,
        )
    except Exception as e:
        logger.warning(f"Failed to standardize spreadsheet {uploaded.name}: {e}")
        return ErrorDocument(
            metadata=build_metadata(uploaded, "std-excel"),
            error=f"Failed to standardize spreadsheet file: {e}",
        )
