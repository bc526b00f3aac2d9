"""
Standardized Documents for ASTER
================================

Every supported input file is normalized into one member of a small family of
document types. The ``format`` class attribute is the discriminant:

    CsvDocument          format = "csv"            rows keyed by header
    SpreadsheetDocument  format = "tabular-excel"  named sheets with records
    MarkdownDocument     format = "markdown"       sections + extracted structure
    JsonDocument         format = "json"           parsed value
    ErrorDocument        format = "error"          no data, an error message

Documents are created once by a standardizer and never mutated afterwards.
``to_dict()`` / ``document_from_dict()`` give the JSON-compatible shape used
for persistence.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from .metadata import DocumentMetadata


class DocumentFormat(str, Enum):
    """Discriminant of the standardized document union."""
    CSV = "csv"
    SPREADSHEET = "tabular-excel"
    MARKDOWN = "markdown"
    JSON = "json"
    ERROR = "error"


@dataclass
class StandardizedDocument:
    """Base of the document union. Only subclasses are instantiated."""
    metadata: DocumentMetadata

    format: ClassVar[DocumentFormat]

    @property
    def filename(self) -> str:
        return self.metadata.filename

    @property
    def is_error(self) -> bool:
        return self.format == DocumentFormat.ERROR

    def _payload_dict(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON-compatible representation."""
        result = {"metadata": self.metadata.to_dict(), "format": self.format.value}
        result.update(self._payload_dict())
        return result


# =============================================================================
# CSV
# =============================================================================

@dataclass
class CsvDocument(StandardizedDocument):
    """
    Delimited text parsed into one dict per row.

    ``structure`` holds headers, rowCount, columnCount and the detected
    delimiter; ``analysis`` holds per-column type inference and statistics.
    """
    data: List[Dict[str, str]] = field(default_factory=list)
    structure: Dict[str, Any] = field(default_factory=dict)
    analysis: Dict[str, Any] = field(default_factory=dict)

    format: ClassVar[DocumentFormat] = DocumentFormat.CSV

    @property
    def headers(self) -> List[str]:
        return list(self.structure.get("headers", []))

    def _payload_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "structure": self.structure, "analysis": self.analysis}


# =============================================================================
# Spreadsheet
# =============================================================================

@dataclass
class SheetDimensions:
    """Zero-based cell range of a sheet (the declared used range)."""
    start_row: int = 0
    end_row: int = 0
    start_col: int = 0
    end_col: int = 0

    @property
    def total_rows(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def total_cols(self) -> int:
        return self.end_col - self.start_col + 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "startRow": self.start_row,
            "endRow": self.end_row,
            "startCol": self.start_col,
            "endCol": self.end_col,
            "totalRows": self.total_rows,
            "totalCols": self.total_cols,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SheetDimensions":
        return cls(
            start_row=data.get("startRow", 0),
            end_row=data.get("endRow", 0),
            start_col=data.get("startCol", 0),
            end_col=data.get("endCol", 0),
        )


@dataclass
class SheetData:
    """One worksheet: header-keyed records plus the raw 2-D grid."""
    name: str
    records: List[Dict[str, Optional[str]]] = field(default_factory=list)
    raw_rows: List[List[Optional[str]]] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    dimensions: SheetDimensions = field(default_factory=SheetDimensions)
    formulas: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.records,
            "rawData": self.raw_rows,
            "headers": self.headers,
            "dimensions": self.dimensions.to_dict(),
            "formulas": self.formulas,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "SheetData":
        return cls(
            name=name,
            records=data.get("data", []),
            raw_rows=data.get("rawData", []),
            headers=data.get("headers", []),
            dimensions=SheetDimensions.from_dict(data.get("dimensions", {})),
            formulas=data.get("formulas"),
        )


@dataclass
class SpreadsheetDocument(StandardizedDocument):
    """A workbook: ordered sheet names and per-sheet data."""
    sheet_names: List[str] = field(default_factory=list)
    sheets: Dict[str, SheetData] = field(default_factory=dict)
    analysis: Dict[str, Any] = field(default_factory=dict)

    format: ClassVar[DocumentFormat] = DocumentFormat.SPREADSHEET

    @property
    def data(self) -> Dict[str, SheetData]:
        return self.sheets

    def _payload_dict(self) -> Dict[str, Any]:
        return {
            "data": {
                "sheetNames": self.sheet_names,
                "sheets": {name: sheet.to_dict() for name, sheet in self.sheets.items()},
            },
            "analysis": self.analysis,
        }


# =============================================================================
# Markdown
# =============================================================================

@dataclass
class MarkdownSection:
    """A run of non-heading lines introduced by a heading (level 0: preamble)."""
    id: str
    title: str
    level: int
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "level": self.level, "content": self.content}


@dataclass
class MarkdownData:
    """Full text, sections and the extracted flat structures."""
    full_text: str = ""
    sections: List[MarkdownSection] = field(default_factory=list)
    headings: List[Dict[str, Any]] = field(default_factory=list)
    links: List[Dict[str, Any]] = field(default_factory=list)
    images: List[Dict[str, Any]] = field(default_factory=list)
    code_blocks: List[Dict[str, Any]] = field(default_factory=list)
    lists: Dict[str, List[Dict[str, Any]]] = field(
        default_factory=lambda: {"ordered": [], "unordered": []}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fullText": self.full_text,
            "sections": [s.to_dict() for s in self.sections],
            "structure": {
                "headings": self.headings,
                "links": self.links,
                "images": self.images,
                "codeBlocks": self.code_blocks,
                "lists": self.lists,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarkdownData":
        structure = data.get("structure", {})
        return cls(
            full_text=data.get("fullText", ""),
            sections=[MarkdownSection(**s) for s in data.get("sections", [])],
            headings=structure.get("headings", []),
            links=structure.get("links", []),
            images=structure.get("images", []),
            code_blocks=structure.get("codeBlocks", []),
            lists=structure.get("lists", {"ordered": [], "unordered": []}),
        )


@dataclass
class MarkdownDocument(StandardizedDocument):
    data: MarkdownData = field(default_factory=MarkdownData)
    analysis: Dict[str, Any] = field(default_factory=dict)

    format: ClassVar[DocumentFormat] = DocumentFormat.MARKDOWN

    def _payload_dict(self) -> Dict[str, Any]:
        return {"data": self.data.to_dict(), "analysis": self.analysis}


# =============================================================================
# JSON and errors
# =============================================================================

@dataclass
class JsonDocument(StandardizedDocument):
    data: Any = None
    analysis: Dict[str, Any] = field(default_factory=dict)

    format: ClassVar[DocumentFormat] = DocumentFormat.JSON

    def _payload_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "analysis": self.analysis}


@dataclass
class ErrorDocument(StandardizedDocument):
    """Terminal state of a failed standardization. Carries no data."""
    error: str = ""

    format: ClassVar[DocumentFormat] = DocumentFormat.ERROR

    @property
    def data(self) -> None:
        return None

    def _payload_dict(self) -> Dict[str, Any]:
        return {"error": self.error}


def document_from_dict(data: Dict[str, Any]) -> StandardizedDocument:
    """
    Rebuild a document from its ``to_dict()`` form.

    Unknown formats come back as ErrorDocument rather than raising, so a
    stale persisted entry cannot break loading of the others.
    """
    metadata = DocumentMetadata.from_dict(data.get("metadata", {}))
    fmt = data.get("format")

    if fmt == DocumentFormat.CSV.value:
        return CsvDocument(
            metadata=metadata,
            data=data.get("data", []),
            structure=data.get("structure", {}),
            analysis=data.get("analysis", {}),
        )
    if fmt == DocumentFormat.SPREADSHEET.value:
        payload = data.get("data", {})
        sheets = payload.get("sheets", {})
        return SpreadsheetDocument(
            metadata=metadata,
            sheet_names=payload.get("sheetNames", list(sheets)),
            sheets={name: SheetData.from_dict(name, sheet) for name, sheet in sheets.items()},
            analysis=data.get("analysis", {}),
        )
    if fmt == DocumentFormat.MARKDOWN.value:
        return MarkdownDocument(
            metadata=metadata,
            data=MarkdownData.from_dict(data.get("data", {})),
            analysis=data.get("analysis", {}),
        )
    if fmt == DocumentFormat.JSON.value:
        return JsonDocument(metadata=metadata, data=data.get("data"), analysis=data.get("analysis", {}))
    if fmt == DocumentFormat.ERROR.value:
        return ErrorDocument(metadata=metadata, error=data.get("error", ""))

    return ErrorDocument(metadata=metadata, error=f"Unknown document format: {fmt}")


def usable_documents(documents: List[StandardizedDocument]) -> List[StandardizedDocument]:
    """Documents that can feed context assembly (error documents excluded)."""
    return [doc for doc in documents if not doc.is_error]


def select_documents(
    documents: List[StandardizedDocument],
    filenames: List[str],
) -> List[StandardizedDocument]:
    """Documents whose filename is in ``filenames``, in their original order."""
    wanted = set(filenames)
    return [doc for doc in documents if doc.filename in wanted]
