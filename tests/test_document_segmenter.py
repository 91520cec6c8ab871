# tests/test_document_segmenter.py
"""Tests for heading-aware document splitting."""
import pytest

from notegraph.services.document_segmenter import (
    DEFAULT_DOCUMENT_TITLE,
    HeadingSegmenter,
    extract_document_title,
)


class TestHeadingSegmenter:
    """Tests for HeadingSegmenter."""

    def test_splits_on_headings(self):
        text = "# Guide\nIntro line.\n## Setup\nInstall it.\n### Details\nMore."
        segments = HeadingSegmenter().segment(text)

        assert [s.title for s in segments] == ["Guide", "Setup", "Details"]
        assert [s.level for s in segments] == [1, 2, 3]
        assert [s.index for s in segments] == [0, 1, 2]
        assert segments[1].body == "## Setup\nInstall it."

    def test_text_before_first_heading(self):
        segments = HeadingSegmenter().segment("Preamble.\n# Title\nBody.")
        assert segments[0].title == "Chunk 1"
        assert segments[0].level == 0
        assert segments[1].title == "Title"

    def test_plain_text_is_one_segment(self):
        segments = HeadingSegmenter().segment("Just some text.\nAnother line.")
        assert len(segments) == 1
        assert segments[0].body == "Just some text.\nAnother line."

    def test_empty_sections_skipped(self):
        assert HeadingSegmenter().segment("\n\n  \n") == []

    def test_overflow_continues_heading(self):
        line = "a" * 10
        text = "\n".join(["## Long", line, line, line])

        segments = HeadingSegmenter(max_tokens=5).segment(text)

        assert [s.title for s in segments] == ["Long", "Long (cont.)", "Long (cont.)"]
        assert segments[0].body == f"## Long\n{line}"
        assert [s.index for s in segments] == [0, 1, 2]

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            HeadingSegmenter(max_tokens=0)


class TestExtractDocumentTitle:
    """Tests for document title detection."""

    def test_first_h1(self):
        assert extract_document_title("\n# Handbook\n## Part") == "Handbook"

    def test_first_short_line(self):
        assert extract_document_title("## Overview\nText") == "Overview"
        assert extract_document_title("Meeting notes\nMore") == "Meeting notes"

    def test_fallback(self):
        assert extract_document_title("x" * 150) == DEFAULT_DOCUMENT_TITLE
        assert extract_document_title("") == DEFAULT_DOCUMENT_TITLE
