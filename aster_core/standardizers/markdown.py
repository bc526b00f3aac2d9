"""
Markdown Standardizer - long-form text to sections and structure

Splits the document at ATX headings (# to ######) into sections that cover
every non-heading line, and extracts links, images, fenced code blocks and
list groups alongside document statistics.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from ..documents import ErrorDocument, MarkdownData, MarkdownDocument, MarkdownSection, StandardizedDocument
from ..metadata import UploadedFile, build_metadata

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
FENCE_RE = re.compile(r"^\s*```")
LINK_RE = re.compile(r"(?<!!)\[([^\]]+)\]\(([^)]+)\)")
IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
ORDERED_ITEM_RE = re.compile(r"^(\s*)\d+\.\s+(.+)$")
UNORDERED_ITEM_RE = re.compile(r"^(\s*)[*\-+]\s+(.+)$")
LIST_LIKE_RE = re.compile(r"^\s*[*\-+\d]\s+")

PREAMBLE_TITLE = "Introduction"


def heading_lines(lines: List[str]) -> List[Optional[Tuple[int, str]]]:
    """
    Classify each line: (level, title) for headings, None otherwise.

    Lines inside fenced code blocks are never headings.
    """
    result: List[Optional[Tuple[int, str]]] = []
    in_fence = False
    for line in lines:
        if FENCE_RE.match(line):
            in_fence = not in_fence
            result.append(None)
            continue
        match = None if in_fence else HEADING_RE.match(line)
        result.append((len(match.group(1)), match.group(2).strip()) if match else None)
    return result


def extract_sections(lines: List[str]) -> Tuple[List[MarkdownSection], List[Dict[str, Any]]]:
    """
    Split lines into sections at heading boundaries.

    Content before the first heading forms a level-0 "Introduction" section.
    A heading immediately followed by another heading yields no section, so
    joining all section contents with newlines gives back exactly the
    non-heading lines of the document.

    Returns:
        (sections, headings)
    """
    sections: List[MarkdownSection] = []
    headings: List[Dict[str, Any]] = []
    title = PREAMBLE_TITLE
    level = 0
    buffer: List[str] = []

    for index, (line, heading) in enumerate(zip(lines, heading_lines(lines))):
        if heading is None:
            buffer.append(line)
            continue
        if buffer:
            sections.append(MarkdownSection(f"section-{len(sections)}", title, level, "\n".join(buffer)))
            buffer = []
        level, title = heading
        headings.append({"title": title, "level": level, "index": index})

    if buffer:
        sections.append(MarkdownSection(f"section-{len(sections)}", title, level, "\n".join(buffer)))

    return sections, headings


def extract_links(content: str) -> List[Dict[str, Any]]:
    return [
        {"text": m.group(1), "url": m.group(2), "position": m.start()}
        for m in LINK_RE.finditer(content)
    ]


def extract_images(content: str) -> List[Dict[str, Any]]:
    return [
        {"alt": m.group(1), "url": m.group(2), "position": m.start()}
        for m in IMAGE_RE.finditer(content)
    ]


def extract_code_blocks(lines: List[str]) -> List[Dict[str, Any]]:
    """Fenced code blocks with their language tag. An unclosed fence runs to EOF."""
    blocks = []
    current: Optional[Dict[str, Any]] = None

    for index, line in enumerate(lines):
        if line.strip().startswith("```"):
            if current is not None:
                current["endLine"] = index
                blocks.append(current)
                current = None
            else:
                current = {
                    "language": line.strip()[3:].strip(),
                    "code": [],
                    "startLine": index,
                }
        elif current is not None:
            current["code"].append(line)

    if current is not None:
        current["endLine"] = len(lines) - 1
        blocks.append(current)

    return [
        {
            "language": block["language"],
            "code": "\n".join(block["code"]),
            "startLine": block["startLine"],
            "endLine": block["endLine"],
            "lineCount": len(block["code"]),
        }
        for block in blocks
    ]


def extract_lists(lines: List[str]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Group contiguous list items into ordered/unordered runs.

    A run ends at a blank line, a non-list line, or a switch between ordered
    and unordered items. Each item records its indent so nesting survives.
    """
    lists: Dict[str, List[Dict[str, Any]]] = {"ordered": [], "unordered": []}
    current: Optional[Dict[str, Any]] = None

    def close(end_line: int):
        nonlocal current
        if current is not None:
            current["endLine"] = end_line
            lists[current["type"]].append(current)
            current = None

    for index, line in enumerate(lines):
        match = ORDERED_ITEM_RE.match(line)
        list_type = "ordered"
        if not match:
            match = UNORDERED_ITEM_RE.match(line)
            list_type = "unordered"

        if match:
            indent = len(match.group(1))
            if current is None or current["type"] != list_type:
                close(index - 1)
                current = {"type": list_type, "items": [], "startLine": index, "indent": indent}
            current["items"].append({"content": match.group(2), "lineIndex": index, "indent": indent})
        elif current is not None and (not line.strip() or not LIST_LIKE_RE.match(line)):
            close(index - 1)

    close(len(lines) - 1)
    return lists


def standardize_markdown(content: str, uploaded: UploadedFile) -> StandardizedDocument:
    """
    Standardize Markdown text.

    Args:
        content: Decoded file text
        uploaded: The uploaded file (metadata source)

    Returns:
        MarkdownDocument, or ErrorDocument on unexpected failure
    """
    try:
        lines = content.split("\n")
        sections, headings = extract_sections(lines)
        links = extract_links(content)
        images = extract_images(content)
        code_blocks = extract_code_blocks(lines)
        lists = extract_lists(lines)

        list_groups = len(lists["ordered"]) + len(lists["unordered"])
        list_items = sum(len(group["items"]) for groups in lists.values() for group in groups)

        return MarkdownDocument(
            metadata=build_metadata(uploaded, "std-md"),
            data=MarkdownData(
                full_text=content,
                sections=sections,
                headings=headings,
                links=links,
                images=images,
                code_blocks=code_blocks,
                lists=lists,
            ),
            analysis={
                "totalCharacters": len(content),
                "totalWords": len(content.split()),
                "totalLines": len(lines),
                "headingCount": len(headings),
                "sectionCount": len(sections),
                "linkCount": len(links),
                "imageCount": len(images),
                "codeBlockCount": len(code_blocks),
                "listCount": list_groups,
                "listItemCount": list_items,
            },
        )
    except Exception as e:
        logger.warning(f"Failed to standardize Markdown file {uploaded.name}: {e}")
        return ErrorDocument(
            metadata=build_metadata(uploaded, "std-md"),
            error=f"Failed to standardize Markdown file: {e}",
        )
