"""Heading-aware splitting of long documents into ordered segments.

Each markdown heading starts a new segment. A segment growing past the
token limit is cut at the line that overflows it and continues as
"<heading> (cont.)". Any other splitter that yields ordered
``DocumentSegment`` objects can stand in through ``DocumentSegmenter``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

DEFAULT_DOCUMENT_TITLE = "Imported Document"

# Rough estimate: ~4 characters per token for English text
_CHARS_PER_TOKEN = 4
_HEADER = re.compile(r"^(#{1,6})\s+(.+)$")


@dataclass(frozen=True)
class DocumentSegment:
    """One ordered piece of a document.

    Attributes:
        title: Heading text, or "Chunk N" when the segment has no heading.
        body: Segment text, heading line included.
        index: 0-based position within the document.
        level: Heading level (0 when the segment precedes any heading).
    """

    title: str
    body: str
    index: int
    level: int = 0


class DocumentSegmenter(Protocol):
    """Anything that splits document text into ordered segments."""

    def segment(self, text: str) -> List[DocumentSegment]:
        ...


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / _CHARS_PER_TOKEN)


def _parse_header(line: str) -> Optional[tuple]:
    match = _HEADER.match(line)
    if not match:
        return None
    return len(match.group(1)), match.group(2).strip()


def extract_document_title(text: str) -> str:
    """First H1, else the first short non-empty line, else a generic title."""
    for line in text.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        header = _parse_header(trimmed)
        if header and header[0] == 1:
            return header[1]
        if len(trimmed) < 100:
            return re.sub(r"^#+\s+", "", trimmed).strip()
    return DEFAULT_DOCUMENT_TITLE


class HeadingSegmenter:
    """Split markdown by headings, respecting a token limit.

    Args:
        max_tokens: Largest segment size before an overflow split.
    """

    def __init__(self, max_tokens: int = 9999) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be positive")
        self._max_tokens = max_tokens

    def segment(self, text: str) -> List[DocumentSegment]:
        segments: List[DocumentSegment] = []
        current: List[str] = []
        heading = ""
        level = 0

        def emit(lines: List[str]) -> None:
            body = "\n".join(lines).strip()
            if body:
                segments.append(
                    DocumentSegment(
                        title=heading or f"Chunk {len(segments) + 1}",
                        body=body,
                        index=len(segments),
                        level=level,
                    )
                )

        for line in text.split("\n"):
            header = _parse_header(line)
            if header:
                emit(current)
                current = [line]
                level, heading = header
                continue

            current.append(line)
            if len(current) > 1 and estimate_tokens("\n".join(current)) > self._max_tokens:
                emit(current[:-1])
                current = [line]
                if heading and not heading.endswith("(cont.)"):
                    heading = f"{heading} (cont.)"

        emit(current)
        return segments
