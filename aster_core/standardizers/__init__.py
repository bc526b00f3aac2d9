"""
Format Standardizers for ASTER

Converts raw uploaded files into StandardizedDocument instances. Dispatch is
by file extension. Malformed or unsupported input never raises: it yields an
ErrorDocument. Only failing to read the file at all propagates.
"""

import asyncio
import logging
from pathlib import Path
from typing import Union

from ..documents import ErrorDocument, StandardizedDocument
from ..metadata import UploadedFile, build_metadata
from .csv_standardizer import detect_delimiter, parse_csv_line, standardize_csv
from .json_standardizer import analyze_json_structure, standardize_json
from .markdown import standardize_markdown
from .spreadsheet import standardize_spreadsheet
from .tabular import analyze_columns, infer_column_type

logger = logging.getLogger(__name__)

SPREADSHEET_EXTENSIONS = ("xlsx", "xlsm", "xls")
MARKDOWN_EXTENSIONS = ("md", "markdown")
SUPPORTED_EXTENSIONS = SPREADSHEET_EXTENSIONS + MARKDOWN_EXTENSIONS + ("csv", "json")


def decode_text(payload: bytes) -> str:
    """UTF-8 (BOM tolerated), falling back to Latin-1 which accepts any byte."""
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError:
        return payload.decode("latin-1")


def standardize(uploaded: UploadedFile) -> StandardizedDocument:
    """
    Standardize one uploaded file.

    Pure function of the file's content and metadata apart from the
    conversion timestamp and standardization id.

    Args:
        uploaded: The file to standardize

    Returns:
        A StandardizedDocument; ``format == "error"`` for unsupported or
        malformed input
    """
    extension = uploaded.extension

    if extension in SPREADSHEET_EXTENSIONS:
        return standardize_spreadsheet(uploaded.raw_payload, uploaded)

    if extension in MARKDOWN_EXTENSIONS:
        return standardize_markdown(decode_text(uploaded.raw_payload), uploaded)

    if extension == "csv":
        return standardize_csv(decode_text(uploaded.raw_payload), uploaded)

    if extension == "json":
        return standardize_json(decode_text(uploaded.raw_payload), uploaded)

    logger.info(f"Unsupported file type for {uploaded.name}: '{extension}'")
    return ErrorDocument(
        metadata=build_metadata(uploaded),
        error=f"Unsupported file type: {extension or '(none)'}",
    )


async def standardize_path(path: Union[str, Path]) -> StandardizedDocument:
    """
    Read a file from disk and standardize it.

    The read happens off the event loop. Parsing is synchronous.

    Raises:
        OSError: If the file cannot be read
    """
    uploaded = await asyncio.to_thread(UploadedFile.from_path, path)
    return standardize(uploaded)


__all__ = [
    "SUPPORTED_EXTENSIONS",
    "analyze_columns",
    "analyze_json_structure",
    "decode_text",
    "detect_delimiter",
    "infer_column_type",
    "parse_csv_line",
    "standardize",
    "standardize_csv",
    "standardize_json",
    "standardize_markdown",
    "standardize_path",
    "standardize_spreadsheet",
]
