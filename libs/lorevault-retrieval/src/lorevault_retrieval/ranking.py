"""Ordering and selection rules for search hits and assembled context."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, NamedTuple

from lorevault_core.chunking import HEADER_PATH_SEPARATOR
from lorevault_storage.base import similarity_order

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from lorevault_core.models.identifiers import DocumentId
    from lorevault_storage.base import ScoredChunk

_WHITESPACE = re.compile(r"\s+")


class ContextSource(NamedTuple):
    scored: ScoredChunk
    top_tier: bool


def _chunk_order(scored: ScoredChunk) -> tuple:
    return similarity_order(
        scored.similarity, scored.chunk.promotion_level, scored.document.updated_at
    )


def make_snippet(text: str | None, max_chars: int) -> str:
    if not text or max_chars <= 0:
        return ""
    flat = _WHITESPACE.sub(" ", text).strip()
    if len(flat) <= max_chars:
        return flat
    return flat[: max(max_chars - 3, 0)].rstrip() + "..."


def best_per_document(chunks: Iterable[ScoredChunk], cap: int) -> list[ScoredChunk]:
    """The best chunk of each distinct document, most similar documents first, at most ``cap``."""
    picked: list[ScoredChunk] = []
    seen: set[DocumentId] = set()
    for scored in sorted(chunks, key=_chunk_order):
        if len(picked) >= cap:
            break
        if scored.document.id in seen:
            continue
        seen.add(scored.document.id)
        picked.append(scored)
    return picked


def select_context_sources(
    top_tier: Sequence[ScoredChunk],
    candidates: Sequence[ScoredChunk],
    *,
    max_sources: int,
    top_tier_cap: int,
    min_similarity: float,
) -> list[ContextSource]:
    """Choose the ordered sources of an assembled context.

    Top-tier documents come first regardless of similarity, one chunk each and
    at most ``top_tier_cap`` of them. Remaining slots take the most similar
    other chunks at or above ``min_similarity``, one per (document, header_path),
    never repeating a document already included as top tier.
    """
    pinned = best_per_document(top_tier, min(top_tier_cap, max_sources))
    selected = [ContextSource(s, top_tier=True) for s in pinned]
    pinned_docs = {s.document.id for s in pinned}

    seen_sections: set[tuple[DocumentId, str]] = set()
    for scored in sorted(candidates, key=_chunk_order):
        if len(selected) >= max_sources:
            break
        if scored.similarity < min_similarity:
            # Sorted by similarity; nothing further qualifies.
            break
        if scored.document.id in pinned_docs:
            continue
        section = (scored.document.id, scored.chunk.header_path)
        if section in seen_sections:
            continue
        seen_sections.add(section)
        selected.append(ContextSource(scored, top_tier=False))
    return selected


def source_heading(rank: int, relative_path: str, header_path: str) -> str:
    if header_path:
        return f"[{rank}] {relative_path}{HEADER_PATH_SEPARATOR}{header_path}"
    return f"[{rank}] {relative_path}"


def assemble_context(sources: Sequence[ContextSource], max_chars: int) -> tuple[str, bool]:
    """Concatenate numbered sources into one context string of at most ``max_chars``.

    Returns the context and whether it was cut short.
    """
    parts: list[str] = []
    used = 0
    for rank, source in enumerate(sources, start=1):
        chunk = source.scored.chunk
        entry = f"{source_heading(rank, source.scored.document.relative_path, chunk.header_path)}\n"
        entry += chunk.content
        separator = 2 if parts else 0
        remaining = max_chars - used - separator
        if len(entry) > remaining:
            if remaining > 0:
                parts.append(entry[:remaining])
            return "\n\n".join(parts), True
        parts.append(entry)
        used += separator + len(entry)
    return "\n\n".join(parts), False
