"""
Tests for Markdown standardization
"""

import pytest

from aster_core.documents import MarkdownDocument
from aster_core.standardizers import standardize
from aster_core.standardizers.markdown import extract_lists, extract_sections, heading_lines


def non_heading_text(text: str) -> str:
    lines = text.split("\n")
    return "\n".join(line for line, h in zip(lines, heading_lines(lines)) if h is None)


class TestSections:
    """Tests for section splitting."""

    def test_sections_and_levels(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        assert isinstance(doc, MarkdownDocument)
        sections = doc.data.sections
        assert [(s.title, s.level) for s in sections] == [
            ("Introduction", 0),
            ("Overview", 1),
            ("Revenue", 2),
            ("Costs", 2),
        ]
        assert [s.id for s in sections] == ["section-0", "section-1", "section-2", "section-3"]

    def test_heading_inside_code_fence_is_ignored(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        assert [h["title"] for h in doc.data.headings] == ["Overview", "Revenue", "Costs"]
        assert "# not a heading" in doc.data.sections[2].content

    @pytest.mark.parametrize("text", [
        "",
        "no headings at all\nsecond line",
        "# A\n# B\ntext",
        "# Title\n\nBody text",
        "intro\n## Deep\nx\n###### Deepest\ny\n",
    ])
    def test_sections_cover_document(self, text):
        sections, _ = extract_sections(text.split("\n"))
        assert "\n".join(s.content for s in sections) == non_heading_text(text)

    def test_sample_covers_document(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        joined = "\n".join(s.content for s in doc.data.sections)
        assert joined == non_heading_text(sample_markdown)


class TestStructure:
    """Tests for links, images, code blocks and lists."""

    def test_links_exclude_images(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        assert [(l["text"], l["url"]) for l in doc.data.links] == [("finance team", "https://example.com/finance")]
        assert [(i["alt"], i["url"]) for i in doc.data.images] == [("chart", "images/q1.png")]

    def test_code_blocks(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        assert len(doc.data.code_blocks) == 1
        block = doc.data.code_blocks[0]
        assert block["language"] == "python"
        assert block["lineCount"] == 2
        assert 'print("hello")' in block["code"]

    def test_lists(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        unordered = doc.data.lists["unordered"]
        ordered = doc.data.lists["ordered"]
        assert len(unordered) == 1 and len(ordered) == 1
        assert [item["content"] for item in unordered[0]["items"]] == ["Product A", "Product B", "Variant B1"]
        assert [item["indent"] for item in unordered[0]["items"]] == [0, 0, 2]
        assert [item["content"] for item in ordered[0]["items"]] == ["First step", "Second step"]

    def test_switching_list_type_starts_new_group(self):
        lists = extract_lists(["- a", "1. b", "- c"])
        assert len(lists["unordered"]) == 2
        assert len(lists["ordered"]) == 1

    def test_analysis_counts(self, make_upload, sample_markdown):
        doc = standardize(make_upload("notes.md", sample_markdown))
        analysis = doc.analysis
        assert analysis["headingCount"] == 3
        assert analysis["sectionCount"] == 4
        assert analysis["linkCount"] == 1
        assert analysis["imageCount"] == 1
        assert analysis["codeBlockCount"] == 1
        assert analysis["listCount"] == 2
        assert analysis["listItemCount"] == 5
        assert analysis["totalCharacters"] == len(sample_markdown)
        assert analysis["totalLines"] == len(sample_markdown.split("\n"))
