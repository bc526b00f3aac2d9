"""
Report Blocks for ASTER
=======================

A report is an ordered list of blocks. Each block has its own prompt, its
generated content and the filenames it draws on. Order is significant and
user-controlled.

Block lifecycle:

    PENDING -> QUEUED -> GENERATING -> GENERATED | FAILED
    GENERATED -> REGENERATING -> GENERATED

A cancelled generation returns the block to the state it had before.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TypeVar

T = TypeVar("T")

MARKDOWN_SEPARATOR = "\n\n---\n\n"


class BlockStatus(str, Enum):
    """Generation state of a report block."""
    PENDING = "pending"
    QUEUED = "queued"
    GENERATING = "generating"
    GENERATED = "generated"
    FAILED = "failed"
    REGENERATING = "regenerating"


def new_block_id() -> str:
    return f"block-{uuid.uuid4().hex[:12]}"


@dataclass
class ReportBlock:
    """
    One section of a report.

    Attributes:
        id: Unique block id
        title: Section title
        prompt: Instruction used to generate the content
        content: Generated (or user-edited) text
        relevant_files: Filenames this section draws on (empty: all files)
        status: Current generation state
        error: Message of the last failed generation, if any
    """
    title: str
    prompt: str
    content: str = ""
    relevant_files: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_block_id)
    status: BlockStatus = BlockStatus.PENDING
    error: Optional[str] = None

    @property
    def is_generating(self) -> bool:
        return self.status in (BlockStatus.GENERATING, BlockStatus.REGENERATING)

    @property
    def is_generated(self) -> bool:
        return self.status == BlockStatus.GENERATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "prompt": self.prompt,
            "content": self.content,
            "relevant_files": list(self.relevant_files),
            "status": self.status.value,
            "error": self.error,
            "isGenerating": self.is_generating,
            "isGenerated": self.is_generated,
        }

    def to_export_dict(self) -> Dict[str, Any]:
        """Public shape of the block: internal fields stripped."""
        return {
            "title": self.title,
            "prompt": self.prompt,
            "content": self.content,
            "relevant_files": list(self.relevant_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReportBlock":
        status = data.get("status")
        if status in {s.value for s in BlockStatus}:
            status = BlockStatus(status)
        elif data.get("isGenerated"):
            status = BlockStatus.GENERATED
        else:
            status = BlockStatus.PENDING
        # A persisted in-flight state cannot be resumed
        if status in (BlockStatus.QUEUED, BlockStatus.GENERATING):
            status = BlockStatus.PENDING
        elif status == BlockStatus.REGENERATING:
            status = BlockStatus.GENERATED

        return cls(
            id=data.get("id") or new_block_id(),
            title=str(data.get("title", "")),
            prompt=str(data.get("prompt", "")),
            content=str(data.get("content", "") or ""),
            relevant_files=[str(f) for f in data.get("relevant_files", []) or []],
            status=status,
            error=data.get("error"),
        )


def move_item(items: List[T], from_index: int, to_index: int) -> List[T]:
    """
    Return a copy of ``items`` with one element moved.

    Raises:
        IndexError: If either index is out of range
    """
    if not 0 <= from_index < len(items) or not 0 <= to_index < len(items):
        raise IndexError(f"Cannot move item {from_index} to {to_index} in a list of {len(items)}")
    result = list(items)
    item = result.pop(from_index)
    result.insert(to_index, item)
    return result


# =============================================================================
# Export
# =============================================================================

def export_report_json(blocks: List[ReportBlock], indent: int = 2) -> str:
    """Report as a JSON array of {title, prompt, content, relevant_files}."""
    return json.dumps([b.to_export_dict() for b in blocks], indent=indent, ensure_ascii=False)


def export_report_markdown(blocks: List[ReportBlock]) -> str:
    """Report as Markdown: one numbered "## n. title" section per block."""
    sections = []
    for number, block in enumerate(blocks, start=1):
        title = block.title.strip() or "Untitled"
        content = block.content.strip() or "_(no content)_"
        sections.append(f"## {number}. {title}\n\n{content}")
    return MARKDOWN_SEPARATOR.join(sections)


def export_filename(prefix: str = "aster-report", extension: str = "json", moment: Optional[datetime] = None) -> str:
    """Timestamped export file name, e.g. aster-report-20250101-120000.json"""
    moment = moment or datetime.now()
    return f"{prefix}-{moment.strftime('%Y%m%d-%H%M%S')}.{extension.lstrip('.')}"
