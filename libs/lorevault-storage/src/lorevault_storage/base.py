"""The tenant-scoped store contract and the invariant checks every backend applies."""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple, Protocol

from lorevault_storage.exceptions import (
    DimensionMismatchError,
    InvalidEntityError,
    MissingTenantError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from lorevault_core.models.entities import Chunk, Document, ExternalChunk, ExternalDocument
    from lorevault_core.models.enums import PromotionLevel
    from lorevault_core.models.identifiers import DocumentId, SourceId
    from lorevault_core.models.values import (
        EmbeddingVector,
        SearchFilters,
        TenantContext,
        TenantScope,
    )


class ScoredDocument(NamedTuple):
    document: Document
    similarity: float


class ScoredChunk(NamedTuple):
    chunk: Chunk
    document: Document
    similarity: float


class ScoredExternalChunk(NamedTuple):
    chunk: ExternalChunk
    document: ExternalDocument
    similarity: float


class PromotionChange(NamedTuple):
    document: Document
    previous_level: PromotionLevel
    chunks_updated: int


class ScopeCount(NamedTuple):
    documents: int
    chunks: int


class VectorStore(Protocol):
    """Tenant-scoped persistence with similarity search.

    Every call takes the tenant (or a scope for bulk deletes) and applies it
    before any similarity computation. Multi-row writes are atomic to readers.
    Searches return the k best rows under :func:`similarity_order`, so equal
    similarities at the cut resolve by tier, then recency.
    """

    @property
    def dimensions(self) -> int: ...

    async def upsert(self, document: Document, chunks: Sequence[Chunk]) -> None:
        """Write ``document`` and replace its whole chunk set in one step."""
        ...

    async def get(self, document_id: DocumentId, tenant: TenantContext) -> Document | None: ...

    async def get_by_path(self, relative_path: str, tenant: TenantContext) -> Document | None: ...

    async def get_chunks(self, document_id: DocumentId, tenant: TenantContext) -> list[Chunk]: ...

    async def get_with_chunks(
        self, relative_path: str, tenant: TenantContext
    ) -> tuple[Document, list[Chunk]] | None:
        """Document and chunks read from one consistent snapshot."""
        ...

    async def delete(self, document_id: DocumentId, tenant: TenantContext) -> ScopeCount: ...

    async def delete_scope(
        self, scope: TenantScope, *, include_external: bool = False
    ) -> ScopeCount:
        """Delete every document and chunk inside ``scope`` in one atomic step.

        With ``include_external`` the external collection inside the scope goes
        in the same step, and its rows are added to the counts.
        """
        ...

    async def count_scope(self, scope: TenantScope) -> ScopeCount: ...

    async def search(
        self,
        query_vector: Sequence[float],
        tenant: TenantContext,
        k: int,
        ef_search: int | None = None,
        filters: SearchFilters | None = None,
    ) -> list[ScoredDocument]: ...

    async def search_chunks(
        self,
        query_vector: Sequence[float],
        tenant: TenantContext,
        k: int,
        ef_search: int | None = None,
        filters: SearchFilters | None = None,
    ) -> list[ScoredChunk]: ...

    async def set_promotion(
        self, document_id: DocumentId, tenant: TenantContext, level: PromotionLevel
    ) -> PromotionChange | None:
        """Move the document and every chunk to ``level`` atomically. None if absent."""
        ...

    async def upsert_external(
        self, document: ExternalDocument, chunks: Sequence[ExternalChunk]
    ) -> None: ...

    async def get_external_by_path(
        self, source_id: SourceId, relative_path: str, tenant: TenantContext
    ) -> ExternalDocument | None: ...

    async def search_external(
        self,
        query_vector: Sequence[float],
        tenant: TenantContext,
        k: int,
        ef_search: int | None = None,
        source_ids: frozenset[str] | None = None,
    ) -> list[ScoredExternalChunk]: ...

    async def delete_external_scope(self, scope: TenantScope) -> ScopeCount: ...

    async def bloat_ratio(self) -> float:
        """Dead-to-live row ratio across the vector tables."""
        ...

    async def rebuild_indexes(self) -> list[str]:
        """Rebuild ANN indexes without blocking readers. Returns the rebuilt index names."""
        ...


def similarity_order(similarity: float, level: PromotionLevel, updated_at: datetime) -> tuple:
    """Sort key: similarity, then higher tier, then most recently updated. Use ascending."""
    return (-similarity, -level.rank, -updated_at.timestamp())


def check_tenant(tenant: TenantContext) -> None:
    # Models built with model_construct() skip validation.
    if not (tenant.project and tenant.branch and tenant.workspace_hash):
        msg = "Row carries an incomplete tenant context"
        raise MissingTenantError(msg, details={"tenant": str(tenant)})


def check_vector(values: Sequence[float], dimensions: int, *, what: str = "vector") -> None:
    if len(values) != dimensions:
        raise DimensionMismatchError(dimensions, len(values), what=what)


def check_embedding(embedding: EmbeddingVector | None, dimensions: int, *, what: str) -> None:
    if embedding is not None:
        check_vector(embedding.values, dimensions, what=what)


def check_chunk_set(
    document: Document | ExternalDocument,
    chunks: Sequence[Chunk] | Sequence[ExternalChunk],
    dimensions: int,
) -> None:
    """Reject a document/chunk set that would break a store invariant.

    Chunks must share the parent's id, tenant and promotion level, carry
    vectors of the collection's dimensionality, and partition the document's
    lines ``[1, line_count]`` in ``chunk_index`` order.
    """
    check_tenant(document.tenant)
    check_embedding(document.embedding, dimensions, what="document embedding")
    if not chunks:
        msg = "A document needs at least one chunk"
        raise InvalidEntityError(msg, details={"document_id": str(document.id)})

    level = getattr(document, "promotion_level", None)
    expected_line = 1
    for position, chunk in enumerate(sorted(chunks, key=lambda c: c.chunk_index)):
        if chunk.document_id != document.id:
            msg = "Chunk belongs to a different document"
            raise InvalidEntityError(msg, details={"chunk_id": str(chunk.id)})
        if chunk.tenant != document.tenant:
            msg = "Chunk tenant differs from its document"
            raise MissingTenantError(msg, details={"chunk_id": str(chunk.id)})
        if level is not None and getattr(chunk, "promotion_level", None) != level:
            msg = "Chunk promotion level differs from its document"
            raise InvalidEntityError(msg, details={"chunk_id": str(chunk.id)})
        check_vector(chunk.embedding.values, dimensions, what="chunk embedding")
        if chunk.chunk_index != position or chunk.start_line != expected_line:
            msg = "Chunks do not form a gapless line partition"
            raise InvalidEntityError(
                msg, details={"chunk_index": chunk.chunk_index, "start_line": chunk.start_line}
            )
        expected_line = chunk.end_line + 1
    if expected_line != document.line_count + 1:
        msg = "Chunks do not cover the whole document"
        raise InvalidEntityError(
            msg, details={"covered": expected_line - 1, "line_count": document.line_count}
        )
