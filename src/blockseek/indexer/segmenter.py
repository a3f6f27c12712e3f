"""Markdown block segmentation: split a document into heading-scoped line spans."""

from __future__ import annotations

import re
from typing import Protocol

# ATX headings only; setext underlines are treated as body text.
_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")

ROOT_KEY = "#"


class BlockSegmenter(Protocol):
    """Protocol for block segmenters."""

    def segment(self, text: str) -> dict[str, tuple[int, int]]:
        """Map each block key to its 1-indexed, inclusive (start, end) line span."""
        ...


def _unique_key(key: str, seen: dict[str, int]) -> str:
    """Suffix repeated keys with [2], [3], ... so they stay unique per document."""
    n = seen.get(key, 0) + 1
    seen[key] = n
    if n == 1:
        return key
    return f"{key}[{n}]"


class MarkdownSegmenter:
    """Split markdown on ATX headings.

    Each heading opens a block that ends on the line before the next heading
    (of any level) or at the end of the document. Keys are heading paths:
    ``#Intro#Setup`` is the ``## Setup`` section nested under ``# Intro``.
    Text before the first heading becomes the ``#`` block when it is not blank.
    Headings inside fenced code blocks are ignored.
    """

    def segment(self, text: str) -> dict[str, tuple[int, int]]:
        lines = text.split("\n")
        total = len(lines)

        # (line_no, level, title) for every heading outside a code fence
        headings: list[tuple[int, int, str]] = []
        # Opening fence marker while inside a code block
        fence: str | None = None
        for i, line in enumerate(lines, 1):
            line = line.rstrip("\r")
            fence_match = _FENCE_RE.match(line)
            if fence_match:
                marker, rest = fence_match.groups()
                if fence is None:
                    fence = marker
                # Closing fence: same character, at least as long, no info string
                elif marker[0] == fence[0] and len(marker) >= len(fence) and not rest.strip():
                    fence = None
                continue
            if fence is not None:
                continue
            m = _HEADING_RE.match(line)
            if m:
                headings.append((i, len(m.group(1)), (m.group(2) or "").strip()))

        blocks: dict[str, tuple[int, int]] = {}
        seen: dict[str, int] = {}

        first_heading = headings[0][0] if headings else total + 1
        if any(line.strip() for line in lines[: first_heading - 1]):
            blocks[_unique_key(ROOT_KEY, seen)] = (1, first_heading - 1)

        # Stack of (level, title) for the enclosing headings
        stack: list[tuple[int, str]] = []
        for idx, (line_no, level, title) in enumerate(headings):
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, title))

            end = headings[idx + 1][0] - 1 if idx + 1 < len(headings) else total
            key = ROOT_KEY + ROOT_KEY.join(t for _, t in stack)
            blocks[_unique_key(key, seen)] = (line_no, end)

        return blocks
