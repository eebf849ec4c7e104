"""Parse, chunk, embed and store one document.

Indexing is serialized per (tenant, path) by a KeyedLock in-process and by the
store's own write lock across processes. Vectors are computed before anything
is written, so a provider failure leaves the previous version fully in place.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from lorevault_core.chunking import chunk_document, compute_content_hash, split_lines
from lorevault_core.concurrency import KeyedLock
from lorevault_core.frontmatter import parse_document
from lorevault_core.models.entities import Chunk, Document, ExternalChunk, ExternalDocument
from lorevault_core.models.enums import IndexStatus, PromotionLevel
from lorevault_core.models.identifiers import ChunkId, DocumentId, SourceId
from lorevault_core.models.responses import DeleteResult, IndexResult
from lorevault_core.models.values import TenantScope

if TYPE_CHECKING:
    from collections.abc import Callable

    from lorevault_core.chunking import ChunkSpec
    from lorevault_core.frontmatter import ParsedDocument
    from lorevault_core.models.values import EmbeddingVector, TenantContext
    from lorevault_core.session import ActiveTenant
    from lorevault_retrieval.config import RetrievalConfig
    from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
    from lorevault_storage.base import VectorStore

logger = logging.getLogger(__name__)

CHUNK_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "https://lorevault.dev/chunk")


def chunk_id_for(document_id: DocumentId, chunk_index: int, content_hash: str) -> ChunkId:
    """Deterministic chunk id: identical input always yields identical ids."""
    name = f"{document_id}:{chunk_index}:{content_hash}"
    return ChunkId(str(uuid.uuid5(CHUNK_ID_NAMESPACE, name)))


def document_lock_key(tenant: TenantContext, relative_path: str) -> tuple[str, str, str]:
    return ("documents", tenant.key, relative_path)


def _embedding_text(parsed: ParsedDocument) -> str:
    return f"{parsed.title}\n\n{parsed.body}" if parsed.body.strip() else parsed.title


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DocumentIndexer:
    """Turns raw markdown into a stored document with its embedded chunks."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingAdapter,
        retrieval: RetrievalConfig,
        *,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._retrieval = retrieval
        self._locks = locks or KeyedLock()
        self._clock = clock

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    async def index(self, active: ActiveTenant, relative_path: str, content: str) -> IndexResult:
        """Index ``content`` at ``relative_path`` for the active tenant.

        Re-indexing identical content is a no-op reported as UNCHANGED. The
        document id and promotion level survive re-indexing.
        """
        tenant = active.tenant
        content_hash = compute_content_hash(content)
        async with self._locks.hold(document_lock_key(tenant, relative_path)):
            existing = await self._store.get_by_path(relative_path, tenant)
            if existing is not None and existing.content_hash == content_hash:
                chunks = await self._store.get_chunks(existing.id, tenant)
                logger.debug("Document %s unchanged", existing.id)
                return IndexResult(
                    status=IndexStatus.UNCHANGED,
                    document_id=existing.id,
                    relative_path=relative_path,
                    content_hash=content_hash,
                    chunk_count=len(chunks),
                )

            parsed = parse_document(content, relative_path)
            active.doc_types.validate(
                parsed.doc_type, {**parsed.frontmatter, "title": parsed.title}
            )
            level = (
                existing.promotion_level if existing is not None else self._initial_level(parsed)
            )

            specs = chunk_document(content, active.project.config.chunking)
            vectors = await self._embedder.embed_batch(
                [_embedding_text(parsed)] + [spec.content for spec in specs]
            )

            now = self._clock()
            document_id = existing.id if existing is not None else DocumentId(str(uuid.uuid4()))
            document = Document(
                id=document_id,
                tenant=tenant,
                relative_path=relative_path,
                title=parsed.title,
                summary=parsed.summary,
                doc_type=parsed.doc_type,
                promotion_level=level,
                content_hash=content_hash,
                char_count=len(content),
                line_count=len(split_lines(content)),
                frontmatter=parsed.frontmatter,
                embedding=vectors[0],
                created_at=existing.created_at if existing is not None else now,
                updated_at=now,
            )
            chunks = [
                self._chunk(document, spec, vector, now)
                for spec, vector in zip(specs, vectors[1:], strict=True)
            ]
            await self._store.upsert(document, chunks)

        status = IndexStatus.CREATED if existing is None else IndexStatus.UPDATED
        logger.info(
            "Indexed document %s (%s, %d chunks, %d lines)",
            document_id,
            status,
            len(chunks),
            document.line_count,
        )
        return IndexResult(
            status=status,
            document_id=document_id,
            relative_path=relative_path,
            content_hash=content_hash,
            chunk_count=len(chunks),
        )

    async def remove(self, active: ActiveTenant, relative_path: str) -> DeleteResult | None:
        """Delete one document and its chunks. None when nothing is stored at the path."""
        tenant = active.tenant
        async with self._locks.hold(document_lock_key(tenant, relative_path)):
            existing = await self._store.get_by_path(relative_path, tenant)
            if existing is None:
                return None
            removed = await self._store.delete(existing.id, tenant)
        logger.info("Removed document %s (%d chunks)", existing.id, removed.chunks)
        return DeleteResult(
            scope=TenantScope.of(tenant),
            deleted_documents=removed.documents,
            deleted_chunks=removed.chunks,
        )

    async def index_external(
        self, active: ActiveTenant, source_id: SourceId, relative_path: str, content: str
    ) -> IndexResult:
        """Index reference material into the external collection. No doc type, no promotion."""
        tenant = active.tenant
        content_hash = compute_content_hash(content)
        key = ("external", source_id, tenant.key, relative_path)
        async with self._locks.hold(key):
            existing = await self._store.get_external_by_path(source_id, relative_path, tenant)
            if existing is not None and existing.content_hash == content_hash:
                return IndexResult(
                    status=IndexStatus.UNCHANGED,
                    document_id=existing.id,
                    relative_path=relative_path,
                    content_hash=content_hash,
                    chunk_count=0,
                )

            parsed = parse_document(content, relative_path)
            specs = chunk_document(content, active.project.config.chunking)
            vectors = await self._embedder.embed_batch(
                [_embedding_text(parsed)] + [spec.content for spec in specs]
            )

            now = self._clock()
            document_id = existing.id if existing is not None else DocumentId(str(uuid.uuid4()))
            document = ExternalDocument(
                id=document_id,
                tenant=tenant,
                source_id=source_id,
                relative_path=relative_path,
                title=parsed.title,
                content_hash=content_hash,
                char_count=len(content),
                line_count=len(split_lines(content)),
                embedding=vectors[0],
                created_at=existing.created_at if existing is not None else now,
                updated_at=now,
            )
            chunks = [
                ExternalChunk(
                    id=chunk_id_for(document_id, spec.chunk_index, content_hash),
                    document_id=document_id,
                    tenant=tenant,
                    chunk_index=spec.chunk_index,
                    header_path=spec.header_path,
                    start_line=spec.start_line,
                    end_line=spec.end_line,
                    content=spec.content,
                    embedding=vector,
                    created_at=now,
                )
                for spec, vector in zip(specs, vectors[1:], strict=True)
            ]
            await self._store.upsert_external(document, chunks)

        logger.info("Indexed external document %s from source %s", document_id, source_id)
        return IndexResult(
            status=IndexStatus.CREATED if existing is None else IndexStatus.UPDATED,
            document_id=document_id,
            relative_path=relative_path,
            content_hash=content_hash,
            chunk_count=len(chunks),
        )

    def _initial_level(self, parsed: ParsedDocument) -> PromotionLevel:
        label = parsed.frontmatter.get("promotion_level")
        if label is None:
            return PromotionLevel.STANDARD
        return self._retrieval.parse_level(str(label))

    def _chunk(
        self, document: Document, spec: ChunkSpec, vector: EmbeddingVector, now: datetime
    ) -> Chunk:
        return Chunk(
            id=chunk_id_for(document.id, spec.chunk_index, document.content_hash),
            document_id=document.id,
            tenant=document.tenant,
            promotion_level=document.promotion_level,
            chunk_index=spec.chunk_index,
            header_path=spec.header_path,
            start_line=spec.start_line,
            end_line=spec.end_line,
            content=spec.content,
            embedding=vector,
            created_at=now,
        )
