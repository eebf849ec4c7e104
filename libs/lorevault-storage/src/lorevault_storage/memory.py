"""In-process store with exact cosine search, for tests and local runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np

from lorevault_storage.base import (
    PromotionChange,
    ScopeCount,
    ScoredChunk,
    ScoredDocument,
    ScoredExternalChunk,
    check_chunk_set,
    check_tenant,
    check_vector,
)
from lorevault_storage.exceptions import InvalidEntityError, MissingTenantError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from lorevault_core.models.entities import Chunk, Document, ExternalChunk, ExternalDocument
    from lorevault_core.models.enums import PromotionLevel
    from lorevault_core.models.identifiers import DocumentId, SourceId
    from lorevault_core.models.values import SearchFilters, TenantContext, TenantScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    """One immutable generation of the store. Writers build a new one and swap it in."""

    documents: dict[DocumentId, Document] = field(default_factory=dict)
    chunks: dict[DocumentId, tuple[Chunk, ...]] = field(default_factory=dict)
    external_documents: dict[DocumentId, ExternalDocument] = field(default_factory=dict)
    external_chunks: dict[DocumentId, tuple[ExternalChunk, ...]] = field(default_factory=dict)


def cosine_similarities(
    query: Sequence[float], vectors: Sequence[Sequence[float]]
) -> np.ndarray[Any, Any]:
    """Cosine similarity of ``query`` against each row of ``vectors``. Zero vectors score 0."""
    if not vectors:
        return np.zeros(0, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)
    return np.clip(sims, -1.0, 1.0)


def _top_k(
    sims: np.ndarray[Any, Any],
    k: int,
    updated: Sequence[datetime],
    levels: Sequence[PromotionLevel] | None = None,
) -> list[int]:
    """Indices of the k best candidates: similarity, then tier, then recency."""
    if k <= 0 or sims.size == 0:
        return []
    stamps = np.array([u.timestamp() for u in updated], dtype=np.float64)
    ranks = np.array([lvl.rank for lvl in levels] if levels is not None else [0] * len(stamps))
    # Scores within 1e-12 are ties; lexsort orders by its last key first.
    order = np.lexsort((-stamps, -ranks, -np.round(sims, 12)))
    return [int(i) for i in order[:k]]


def _without_external(state: _Snapshot, scope: TenantScope) -> tuple[_Snapshot, ScopeCount]:
    doomed = {k for k, d in state.external_documents.items() if scope.matches(d.tenant)}
    removed_chunks = sum(len(state.external_chunks.get(k, ())) for k in doomed)
    remaining = replace(
        state,
        external_documents={k: v for k, v in state.external_documents.items() if k not in doomed},
        external_chunks={k: v for k, v in state.external_chunks.items() if k not in doomed},
    )
    return remaining, ScopeCount(len(doomed), removed_chunks)


class InMemoryVectorStore:
    """Exact-search store holding copy-on-write snapshots.

    Every public method completes without awaiting, so on one event loop a
    write replaces the whole snapshot before any reader can observe it, and a
    reader works on a single generation throughout.
    """

    def __init__(self, dimensions: int) -> None:
        if dimensions <= 0:
            msg = "dimensions must be positive"
            raise ValueError(msg)
        self._dimensions = dimensions
        self._state = _Snapshot()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    # -- documents -------------------------------------------------------------

    async def upsert(self, document: Document, chunks: Sequence[Chunk]) -> None:
        check_chunk_set(document, chunks, self._dimensions)
        state = self._state
        existing = state.documents.get(document.id)
        if existing is not None and existing.tenant != document.tenant:
            msg = "Document id is owned by another tenant"
            raise MissingTenantError(msg, details={"document_id": str(document.id)})
        for other in state.documents.values():
            if (
                other.id != document.id
                and other.tenant == document.tenant
                and other.relative_path == document.relative_path
            ):
                msg = "Another document already occupies this path"
                raise InvalidEntityError(msg, details={"relative_path": document.relative_path})

        stored = document
        if existing is not None:
            stored = document.model_copy(update={"created_at": existing.created_at})
        self._state = replace(
            state,
            documents={**state.documents, document.id: stored},
            chunks={
                **state.chunks,
                document.id: tuple(sorted(chunks, key=lambda c: c.chunk_index)),
            },
        )
        logger.debug("Upserted document %s with %d chunks", document.id, len(chunks))

    async def get(self, document_id: DocumentId, tenant: TenantContext) -> Document | None:
        check_tenant(tenant)
        document = self._state.documents.get(document_id)
        return document if document is not None and document.tenant == tenant else None

    async def get_by_path(self, relative_path: str, tenant: TenantContext) -> Document | None:
        check_tenant(tenant)
        for document in self._state.documents.values():
            if document.tenant == tenant and document.relative_path == relative_path:
                return document
        return None

    async def get_chunks(self, document_id: DocumentId, tenant: TenantContext) -> list[Chunk]:
        check_tenant(tenant)
        return [c for c in self._state.chunks.get(document_id, ()) if c.tenant == tenant]

    async def get_with_chunks(
        self, relative_path: str, tenant: TenantContext
    ) -> tuple[Document, list[Chunk]] | None:
        document = await self.get_by_path(relative_path, tenant)
        if document is None:
            return None
        return document, list(self._state.chunks.get(document.id, ()))

    async def delete(self, document_id: DocumentId, tenant: TenantContext) -> ScopeCount:
        check_tenant(tenant)
        state = self._state
        document = state.documents.get(document_id)
        if document is None or document.tenant != tenant:
            return ScopeCount(0, 0)
        removed_chunks = len(state.chunks.get(document_id, ()))
        self._state = replace(
            state,
            documents={k: v for k, v in state.documents.items() if k != document_id},
            chunks={k: v for k, v in state.chunks.items() if k != document_id},
        )
        return ScopeCount(1, removed_chunks)

    async def delete_scope(
        self, scope: TenantScope, *, include_external: bool = False
    ) -> ScopeCount:
        state = self._state
        doomed = {k for k, d in state.documents.items() if scope.matches(d.tenant)}
        removed_docs = len(doomed)
        removed_chunks = sum(len(state.chunks.get(k, ())) for k in doomed)
        state = replace(
            state,
            documents={k: v for k, v in state.documents.items() if k not in doomed},
            chunks={k: v for k, v in state.chunks.items() if k not in doomed},
        )
        if include_external:
            state, external = _without_external(state, scope)
            removed_docs += external.documents
            removed_chunks += external.chunks
        self._state = state
        logger.info(
            "Deleted %d documents / %d chunks in scope %s", removed_docs, removed_chunks, scope
        )
        return ScopeCount(removed_docs, removed_chunks)

    async def count_scope(self, scope: TenantScope) -> ScopeCount:
        state = self._state
        matching = [k for k, d in state.documents.items() if scope.matches(d.tenant)]
        return ScopeCount(len(matching), sum(len(state.chunks.get(k, ())) for k in matching))

    async def search(
        self,
        query_vector: Sequence[float],
        tenant: TenantContext,
        k: int,
        ef_search: int | None = None,
        filters: SearchFilters | None = None,
    ) -> list[ScoredDocument]:
        check_tenant(tenant)
        check_vector(query_vector, self._dimensions, what="query vector")
        candidates = [
            d
            for d in self._state.documents.values()
            if d.tenant == tenant
            and d.embedding is not None
            and (filters is None or filters.allows(d.doc_type, d.promotion_level))
        ]
        sims = cosine_similarities(
            query_vector, [d.embedding.values for d in candidates if d.embedding is not None]
        )
        best = _top_k(
            sims,
            k,
            [d.updated_at for d in candidates],
            [d.promotion_level for d in candidates],
        )
        return [ScoredDocument(candidates[i], float(sims[i])) for i in best]

    async def search_chunks(
        self,
        query_vector: Sequence[float],
        tenant: TenantContext,
        k: int,
        ef_search: int | None = None,
        filters: SearchFilters | None = None,
    ) -> list[ScoredChunk]:
        check_tenant(tenant)
        check_vector(query_vector, self._dimensions, what="query vector")
        state = self._state
        candidates: list[tuple[Chunk, Document]] = []
        for document_id, chunks in state.chunks.items():
            document = state.documents[document_id]
            if document.tenant != tenant:
                continue
            if filters is not None and not filters.allows(
                document.doc_type, document.promotion_level
            ):
                continue
            candidates.extend((chunk, document) for chunk in chunks)
        sims = cosine_similarities(query_vector, [c.embedding.values for c, _ in candidates])
        best = _top_k(
            sims,
            k,
            [d.updated_at for _, d in candidates],
            [c.promotion_level for c, _ in candidates],
        )
        return [ScoredChunk(candidates[i][0], candidates[i][1], float(sims[i])) for i in best]

    async def set_promotion(
        self, document_id: DocumentId, tenant: TenantContext, level: PromotionLevel
    ) -> PromotionChange | None:
        check_tenant(tenant)
        state = self._state
        current = state.documents.get(document_id)
        if current is None or current.tenant != tenant:
            return None
        chunks = tuple(c.with_promotion(level) for c in state.chunks.get(document_id, ()))
        promoted = current.with_promotion(level)
        self._state = replace(
            state,
            documents={**state.documents, document_id: promoted},
            chunks={**state.chunks, document_id: chunks},
        )
        return PromotionChange(promoted, current.promotion_level, len(chunks))

    # -- external collection ---------------------------------------------------

    async def upsert_external(
        self, document: ExternalDocument, chunks: Sequence[ExternalChunk]
    ) -> None:
        check_chunk_set(document, chunks, self._dimensions)
        state = self._state
        existing = state.external_documents.get(document.id)
        if existing is not None and existing.tenant != document.tenant:
            msg = "External document id is owned by another tenant"
            raise MissingTenantError(msg, details={"document_id": str(document.id)})
        self._state = replace(
            state,
            external_documents={**state.external_documents, document.id: document},
            external_chunks={
                **state.external_chunks,
                document.id: tuple(sorted(chunks, key=lambda c: c.chunk_index)),
            },
        )

    async def get_external_by_path(
        self, source_id: SourceId, relative_path: str, tenant: TenantContext
    ) -> ExternalDocument | None:
        check_tenant(tenant)
        for document in self._state.external_documents.values():
            if (
                document.tenant == tenant
                and document.source_id == source_id
                and document.relative_path == relative_path
            ):
                return document
        return None

    async def search_external(
        self,
        query_vector: Sequence[float],
        tenant: TenantContext,
        k: int,
        ef_search: int | None = None,
        source_ids: frozenset[str] | None = None,
    ) -> list[ScoredExternalChunk]:
        check_tenant(tenant)
        check_vector(query_vector, self._dimensions, what="query vector")
        state = self._state
        candidates: list[tuple[ExternalChunk, ExternalDocument]] = []
        for document_id, chunks in state.external_chunks.items():
            document = state.external_documents[document_id]
            if document.tenant != tenant:
                continue
            if source_ids is not None and document.source_id not in source_ids:
                continue
            candidates.extend((chunk, document) for chunk in chunks)
        sims = cosine_similarities(query_vector, [c.embedding.values for c, _ in candidates])
        return [
            ScoredExternalChunk(candidates[i][0], candidates[i][1], float(sims[i]))
            for i in _top_k(sims, k, [d.updated_at for _, d in candidates])
        ]

    async def delete_external_scope(self, scope: TenantScope) -> ScopeCount:
        self._state, removed = _without_external(self._state, scope)
        return removed

    # -- maintenance -----------------------------------------------------------

    async def bloat_ratio(self) -> float:
        return 0.0

    async def rebuild_indexes(self) -> list[str]:
        # Exact search keeps no index.
        return []
