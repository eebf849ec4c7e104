"""PostgreSQL + pgvector implementation of the tenant-scoped store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

from psycopg import AsyncConnection
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg.sql import SQL, Identifier, Literal

from lorevault_storage.base import (
    PromotionChange,
    ScopeCount,
    ScoredChunk,
    ScoredDocument,
    ScoredExternalChunk,
    check_chunk_set,
    check_tenant,
    check_vector,
    similarity_order,
)
from lorevault_storage.exceptions import (
    InvalidEntityError,
    MissingTenantError,
    StoreUnavailableError,
)
from lorevault_storage.repositories import ChunkRepository, DocumentRepository, ExternalRepository
from lorevault_storage.tuning import AnnTuning, effective_ef_search, select_tuning

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from lorevault_core.models.entities import Chunk, Document, ExternalChunk, ExternalDocument
    from lorevault_core.models.enums import PromotionLevel
    from lorevault_core.models.identifiers import DocumentId, SourceId
    from lorevault_core.models.values import SearchFilters, TenantContext, TenantScope
    from lorevault_storage.pool import ConnectionPool

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

# Rows fetched past k, so ties at the cut can be ordered before truncating.
TIE_MARGIN = 8
MAX_TIE_FETCH = 1_000

# index name -> table
VECTOR_INDEXES: dict[str, str] = {
    "idx_documents_embedding": "documents",
    "idx_chunks_embedding": "chunks",
    "idx_external_documents_embedding": "external_documents",
    "idx_external_chunks_embedding": "external_chunks",
}


@asynccontextmanager
async def _translate_errors() -> AsyncIterator[None]:
    """Map constraint violations raised by PostgreSQL onto INVALID_ENTITY."""
    try:
        yield
    except pg_errors.UniqueViolation as exc:
        msg = "Another document already occupies this path"
        raise InvalidEntityError(msg, details={"constraint": exc.diag.constraint_name}) from None
    except (
        pg_errors.CheckViolation,
        pg_errors.NotNullViolation,
        pg_errors.ForeignKeyViolation,
    ) as exc:
        msg = "Row violates a store constraint"
        raise InvalidEntityError(msg, details={"constraint": exc.diag.constraint_name}) from None
    except pg_errors.DataException as exc:
        msg = "Row carries invalid data"
        raise InvalidEntityError(msg, details={"sqlstate": exc.sqlstate}) from None


class PgVectorStore:
    """Tenant-scoped store on PostgreSQL with HNSW cosine indexes.

    Writes to one document run in a single transaction holding a transaction-level
    advisory lock on (tenant, path), so concurrent writers of the same path
    serialize across processes. Multi-row reads run in a read-only REPEATABLE READ
    transaction and see one snapshot.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool
        config = pool.config
        self._dimensions = config.embedding_dimensions
        self._tuning = select_tuning(config.expected_collection_size, config.index_profile)

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def tuning(self) -> AnnTuning:
        return self._tuning

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[AsyncConnection[dict[str, object]]]:
        async with self._pool.connection() as conn, conn.transaction(), _translate_errors():
            yield conn

    @asynccontextmanager
    async def _snapshot(self) -> AsyncIterator[AsyncConnection[dict[str, object]]]:
        async with self._pool.connection() as conn, conn.transaction():
            await conn.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY")
            yield conn

    async def _lock_path(
        self,
        conn: AsyncConnection[dict[str, object]],
        namespace: str,
        tenant: TenantContext,
        path: str,
    ) -> None:
        await conn.execute(
            "SELECT pg_advisory_xact_lock(hashtextextended(%(key)s, 0))",
            {"key": f"{namespace}|{tenant.key}|{path}"},
        )

    async def _set_search_depth(
        self, conn: AsyncConnection[dict[str, object]], k: int, ef_search: int | None
    ) -> None:
        depth = effective_ef_search(self._tuning, k, ef_search)
        await conn.execute(
            "SELECT set_config('hnsw.ef_search', %(depth)s, true)", {"depth": str(depth)}
        )
        # Keep scanning past filtered-out neighbours until k rows qualify, up to
        # max_scan_tuples visited rows.
        await conn.execute("SELECT set_config('hnsw.iterative_scan', 'strict_order', true)")
        await conn.execute(
            "SELECT set_config('hnsw.max_scan_tuples', %(limit)s, true)",
            {"limit": str(max(self._tuning.max_scan_tuples, depth))},
        )

    async def _nearest(
        self,
        conn: AsyncConnection[dict[str, object]],
        k: int,
        ef_search: int | None,
        fetch: Callable[[int], Awaitable[list[tuple[RowT, float]]]],
    ) -> list[tuple[RowT, float]]:
        """Nearest rows by distance, widened until every row tied with the k-th is in.

        Callers reorder the result by :func:`similarity_order` and keep k.
        """
        if k <= 0:
            return []
        size = k + TIE_MARGIN
        while True:
            await self._set_search_depth(conn, size, ef_search)
            pairs = await fetch(size)
            if len(pairs) < size or pairs[-1][1] != pairs[k - 1][1] or size >= MAX_TIE_FETCH:
                return pairs
            size = min(size * 2, MAX_TIE_FETCH)

    # -- documents -------------------------------------------------------------

    async def upsert(self, document: Document, chunks: Sequence[Chunk]) -> None:
        check_chunk_set(document, chunks, self._dimensions)
        async with self._write() as conn:
            await self._lock_path(conn, "documents", document.tenant, document.relative_path)
            if not await DocumentRepository(conn).upsert(document):
                msg = "Document id is owned by another tenant"
                raise MissingTenantError(msg, details={"document_id": str(document.id)})
            await ChunkRepository(conn).replace_for_document(document.id, document.tenant, chunks)
        logger.debug("Upserted document %s with %d chunks", document.id, len(chunks))

    async def get(self, document_id: DocumentId, tenant: TenantContext) -> Document | None:
        check_tenant(tenant)
        async with self._pool.connection() as conn:
            return await DocumentRepository(conn).get_by_id(document_id, tenant)

    async def get_by_path(self, relative_path: str, tenant: TenantContext) -> Document | None:
        check_tenant(tenant)
        async with self._pool.connection() as conn:
            return await DocumentRepository(conn).get_by_path(relative_path, tenant)

    async def get_chunks(self, document_id: DocumentId, tenant: TenantContext) -> list[Chunk]:
        check_tenant(tenant)
        async with self._pool.connection() as conn:
            return await ChunkRepository(conn).get_by_document_id(document_id, tenant)

    async def get_with_chunks(
        self, relative_path: str, tenant: TenantContext
    ) -> tuple[Document, list[Chunk]] | None:
        check_tenant(tenant)
        async with self._snapshot() as conn:
            document = await DocumentRepository(conn).get_by_path(relative_path, tenant)
            if document is None:
                return None
            chunks = await ChunkRepository(conn).get_by_document_id(document.id, tenant)
        return document, chunks

    async def delete(self, document_id: DocumentId, tenant: TenantContext) -> ScopeCount:
        check_tenant(tenant)
        async with self._write() as conn:
            documents = DocumentRepository(conn)
            existing = await documents.get_by_id(document_id, tenant)
            if existing is None:
                return ScopeCount(0, 0)
            # Advisory lock before row locks, same order as upsert.
            await self._lock_path(conn, "documents", tenant, existing.relative_path)
            removed_chunks = await ChunkRepository(conn).delete_by_document_id(document_id, tenant)
            removed = await documents.delete(document_id, tenant)
        return ScopeCount(int(removed), removed_chunks)

    async def delete_scope(
        self, scope: TenantScope, *, include_external: bool = False
    ) -> ScopeCount:
        async with self._write() as conn:
            removed_chunks = await ChunkRepository(conn).delete_scope(scope)
            removed_docs = await DocumentRepository(conn).delete_scope(scope)
            if include_external:
                external_docs, external_chunks = await ExternalRepository(conn).delete_scope(scope)
                removed_docs += external_docs
                removed_chunks += external_chunks
        logger.info(
            "Deleted %d documents / %d chunks in scope %s", removed_docs, removed_chunks, scope
        )
        return ScopeCount(removed_docs, removed_chunks)

    async def count_scope(self, scope: TenantScope) -> ScopeCount:
        async with self._snapshot() as conn:
            docs = await DocumentRepository(conn).count_scope(scope)
            chunks = await ChunkRepository(conn).count_scope(scope)
        return ScopeCount(docs, chunks)

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
        async with self._snapshot() as conn:
            documents = DocumentRepository(conn)
            pairs = await self._nearest(
                conn,
                k,
                ef_search,
                lambda size: documents.search_similar(
                    query_vector, tenant, top_k=size, filters=filters
                ),
            )
        pairs.sort(key=lambda p: similarity_order(p[1], p[0].promotion_level, p[0].updated_at))
        return [ScoredDocument(doc, sim) for doc, sim in pairs[:k]]

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
        async with self._snapshot() as conn:
            chunks = ChunkRepository(conn)
            pairs = await self._nearest(
                conn,
                k,
                ef_search,
                lambda size: chunks.search_similar(
                    query_vector, tenant, top_k=size, filters=filters
                ),
            )
            parents = await DocumentRepository(conn).get_many(
                list({chunk.document_id for chunk, _ in pairs}), tenant
            )
        scored = [ScoredChunk(chunk, parents[chunk.document_id], sim) for chunk, sim in pairs]
        scored.sort(
            key=lambda s: similarity_order(
                s.similarity, s.chunk.promotion_level, s.document.updated_at
            )
        )
        return scored[:k]

    async def set_promotion(
        self, document_id: DocumentId, tenant: TenantContext, level: PromotionLevel
    ) -> PromotionChange | None:
        check_tenant(tenant)
        async with self._write() as conn:
            documents = DocumentRepository(conn)
            located = await documents.get_by_id(document_id, tenant)
            if located is None:
                return None
            await self._lock_path(conn, "documents", tenant, located.relative_path)
            current = await documents.get_by_id(document_id, tenant, for_update=True)
            if current is None:
                return None
            await documents.update_promotion(document_id, tenant, level)
            updated = await ChunkRepository(conn).update_promotion(document_id, tenant, level)
        return PromotionChange(current.with_promotion(level), current.promotion_level, updated)

    # -- external collection ---------------------------------------------------

    async def upsert_external(
        self, document: ExternalDocument, chunks: Sequence[ExternalChunk]
    ) -> None:
        check_chunk_set(document, chunks, self._dimensions)
        async with self._write() as conn:
            await self._lock_path(
                conn, f"external:{document.source_id}", document.tenant, document.relative_path
            )
            external = ExternalRepository(conn)
            if not await external.upsert_document(document):
                msg = "External document id is owned by another tenant"
                raise MissingTenantError(msg, details={"document_id": str(document.id)})
            await external.replace_chunks(document.id, document.tenant, chunks)

    async def get_external_by_path(
        self, source_id: SourceId, relative_path: str, tenant: TenantContext
    ) -> ExternalDocument | None:
        check_tenant(tenant)
        async with self._pool.connection() as conn:
            return await ExternalRepository(conn).get_by_path(source_id, relative_path, tenant)

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
        async with self._snapshot() as conn:
            external = ExternalRepository(conn)
            pairs = await self._nearest(
                conn,
                k,
                ef_search,
                lambda size: external.search_similar(
                    query_vector, tenant, top_k=size, source_ids=source_ids
                ),
            )
            parents = await external.get_many(list({c.document_id for c, _ in pairs}), tenant)
        scored = [
            ScoredExternalChunk(chunk, parents[chunk.document_id], sim) for chunk, sim in pairs
        ]
        scored.sort(key=lambda s: (-s.similarity, -s.document.updated_at.timestamp()))
        return scored[:k]

    async def delete_external_scope(self, scope: TenantScope) -> ScopeCount:
        async with self._write() as conn:
            docs, chunks = await ExternalRepository(conn).delete_scope(scope)
        return ScopeCount(docs, chunks)

    # -- maintenance -----------------------------------------------------------

    async def bloat_ratio(self) -> float:
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(
                "SELECT coalesce(sum(n_dead_tup), 0) AS dead, coalesce(sum(n_live_tup), 0) AS live "
                "FROM pg_stat_user_tables WHERE relname = ANY(%(tables)s)",
                {"tables": sorted(set(VECTOR_INDEXES.values()))},
            )
            row = await cur.fetchone()
        if row is None:
            return 0.0
        dead, live = int(str(row["dead"])), int(str(row["live"]))
        return dead / max(live, 1)

    async def rebuild_indexes(self) -> list[str]:
        """Rebuild every HNSW index with the current tuning, without blocking readers.

        Each index is built beside the old one with CREATE INDEX CONCURRENTLY and
        swapped in by two renames in one transaction. The old index is dropped
        only after the swap, so searches always have a complete index.
        """
        try:
            conn = await AsyncConnection.connect(
                self._pool.config.dsn, autocommit=True, row_factory=dict_row
            )
        except pg_errors.OperationalError as exc:
            msg = "Database connection failed"
            raise StoreUnavailableError(msg) from exc

        rebuilt: list[str] = []
        async with conn:
            for index, table in VECTOR_INDEXES.items():
                staging, retired = f"{index}_rebuild", f"{index}_retired"
                for leftover in (staging, retired):
                    await conn.execute(
                        SQL("DROP INDEX CONCURRENTLY IF EXISTS {}").format(Identifier(leftover))
                    )
                await conn.execute(
                    SQL(
                        "CREATE INDEX CONCURRENTLY {} ON {} "
                        "USING hnsw (embedding vector_cosine_ops) "
                        "WITH (m = {}, ef_construction = {})"
                    ).format(
                        Identifier(staging),
                        Identifier(table),
                        Literal(self._tuning.m),
                        Literal(self._tuning.ef_construction),
                    )
                )
                async with conn.transaction():
                    await conn.execute(
                        SQL("ALTER INDEX IF EXISTS {} RENAME TO {}").format(
                            Identifier(index), Identifier(retired)
                        )
                    )
                    await conn.execute(
                        SQL("ALTER INDEX {} RENAME TO {}").format(
                            Identifier(staging), Identifier(index)
                        )
                    )
                await conn.execute(
                    SQL("DROP INDEX CONCURRENTLY IF EXISTS {}").format(Identifier(retired))
                )
                await conn.execute(SQL("VACUUM (ANALYZE) {}").format(Identifier(table)))
                rebuilt.append(index)
                logger.info(
                    "Rebuilt %s (m=%d, ef_construction=%d)",
                    index,
                    self._tuning.m,
                    self._tuning.ef_construction,
                )
        return rebuilt
