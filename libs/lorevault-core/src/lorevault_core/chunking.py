"""Header-aware chunking of markdown documents into gapless line ranges.

A document at or below ``threshold_lines`` becomes a single chunk. Longer
documents are cut at ATX headings up to ``split_level``; any section longer than
``max_chunk_lines`` (including a document with no headings at all) is further cut
into fixed windows. Chunks are 1-based, inclusive line ranges that, ordered by
``chunk_index``, cover ``[1, total_lines]`` exactly once.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

HEADER_PATH_SEPARATOR = " > "

_HEADING = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?[ \t]*#*[ \t]*$")
_FENCE = re.compile(r"^ {0,3}(`{3,}|~{3,})")


class ChunkingPolicy(BaseModel):
    """Size thresholds for the chunker."""

    model_config = ConfigDict(frozen=True)

    threshold_lines: int = Field(default=500, ge=1)
    max_chunk_lines: int = Field(default=200, ge=1)
    split_level: int = Field(default=3, ge=1, le=6)


class ChunkSpec(BaseModel):
    """A chunk before embedding: its position, heading trail and text."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0)
    header_path: str
    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)
    content: str

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


class Heading(NamedTuple):
    line: int
    level: int
    title: str


def compute_content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def split_lines(content: str) -> list[str]:
    """Split on newlines. A trailing newline does not start another line."""
    lines = content.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines


def frontmatter_end(lines: list[str]) -> int:
    """Line number of the closing `---` of a leading YAML block, or 0 if there is none."""
    if not lines or lines[0].rstrip("\r").strip() != "---":
        return 0
    for number, raw in enumerate(lines[1:], start=2):
        if raw.rstrip("\r").strip() in ("---", "..."):
            return number
    return 0


def find_headings(lines: list[str], max_level: int = 6) -> list[Heading]:
    """ATX headings up to ``max_level``, skipping fenced code and a leading YAML block."""
    headings: list[Heading] = []
    fence: str | None = None
    skip = frontmatter_end(lines)
    for number, raw in enumerate(lines, start=1):
        if number <= skip:
            continue
        line = raw.rstrip("\r")
        fence_match = _FENCE.match(line)
        if fence is not None:
            closing = fence_match.group(1) if fence_match else ""
            if closing[:1] == fence[0] and len(closing) >= len(fence):
                fence = None
            continue
        if fence_match:
            fence = fence_match.group(1)
            continue
        match = _HEADING.match(line)
        if match is None:
            continue
        level = len(match.group(1))
        if level <= max_level:
            headings.append(Heading(number, level, (match.group(2) or "").strip()))
    return headings


def chunk_document(content: str, policy: ChunkingPolicy | None = None) -> list[ChunkSpec]:
    """Split ``content`` into chunks according to ``policy``. Deterministic."""
    policy = policy or ChunkingPolicy()
    lines = split_lines(content)
    total = len(lines)

    if total <= policy.threshold_lines:
        headings = find_headings(lines, policy.split_level)
        header_path = headings[0].title if headings else ""
        return [
            ChunkSpec(
                chunk_index=0,
                header_path=header_path,
                start_line=1,
                end_line=total,
                content="\n".join(lines),
            )
        ]

    sections = _sections(lines, find_headings(lines, policy.split_level))
    specs: list[ChunkSpec] = []
    for start, end, header_path in sections:
        for window_start in range(start, end + 1, policy.max_chunk_lines):
            window_end = min(window_start + policy.max_chunk_lines - 1, end)
            specs.append(
                ChunkSpec(
                    chunk_index=len(specs),
                    header_path=header_path,
                    start_line=window_start,
                    end_line=window_end,
                    content="\n".join(lines[window_start - 1 : window_end]),
                )
            )

    logger.debug("Chunked %d lines into %d chunks", total, len(specs))
    return specs


def _sections(lines: list[str], headings: list[Heading]) -> list[tuple[int, int, str]]:
    """Line ranges between split headings, each with its heading trail."""
    total = len(lines)
    if not headings:
        return [(1, total, "")]

    boundaries: list[tuple[int, str]] = []
    stack: list[tuple[int, str]] = []
    for heading in headings:
        while stack and stack[-1][0] >= heading.level:
            stack.pop()
        stack.append((heading.level, heading.title))
        boundaries.append((heading.line, HEADER_PATH_SEPARATOR.join(t for _, t in stack if t)))

    first_line = boundaries[0][0]
    if first_line > 1:
        preamble = lines[: first_line - 1]
        if any(line.strip() for line in preamble):
            boundaries.insert(0, (1, ""))
        else:
            # Blank lead-in joins the first section.
            boundaries[0] = (1, boundaries[0][1])

    sections: list[tuple[int, int, str]] = []
    for i, (start, header_path) in enumerate(boundaries):
        end = boundaries[i + 1][0] - 1 if i + 1 < len(boundaries) else total
        sections.append((start, end, header_path))
    return sections


def assert_partition(specs: list[ChunkSpec], total_lines: int) -> None:
    """Raise ValueError unless ``specs`` cover ``[1, total_lines]`` with no gaps or overlaps."""
    expected = 1
    for index, spec in enumerate(sorted(specs, key=lambda s: s.chunk_index)):
        if spec.chunk_index != index:
            msg = f"chunk_index {spec.chunk_index} out of sequence at position {index}"
            raise ValueError(msg)
        if spec.start_line != expected:
            msg = f"chunk {index} starts at line {spec.start_line}, expected {expected}"
            raise ValueError(msg)
        expected = spec.end_line + 1
    if expected != total_lines + 1:
        msg = f"chunks end at line {expected - 1}, document has {total_lines}"
        raise ValueError(msg)
