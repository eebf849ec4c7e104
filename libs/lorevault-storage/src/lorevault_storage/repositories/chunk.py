"""Chunk repository: tenant-scoped writes and vector search for the chunks table."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from psycopg.sql import SQL

from lorevault_storage.mappers import ChunkMapper
from lorevault_storage.repositories.predicates import (
    TENANT_MATCH,
    filter_params,
    scope_match,
    tenant_params,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from psycopg import AsyncConnection

    from lorevault_core.models.entities import Chunk
    from lorevault_core.models.enums import PromotionLevel
    from lorevault_core.models.identifiers import DocumentId
    from lorevault_core.models.values import SearchFilters, TenantContext, TenantScope


class ChunkRepository:
    """Async repository for Chunk persistence and vector search against PostgreSQL + pgvector."""

    def __init__(self, conn: AsyncConnection[dict[str, object]]) -> None:
        self._conn = conn

    async def replace_for_document(
        self, document_id: DocumentId, tenant: TenantContext, chunks: Sequence[Chunk]
    ) -> int:
        """Delete the document's chunks and insert ``chunks``. Returns the number removed."""
        removed = await self.delete_by_document_id(document_id, tenant)
        if not chunks:
            return removed
        async with self._conn.cursor() as cur:
            await cur.executemany(
                SQL("""
                    INSERT INTO chunks
                        (id, document_id, project, branch, workspace_hash, promotion_level,
                         chunk_index, header_path, start_line, end_line, content,
                         embedding, embedding_model_name, created_at)
                    VALUES
                        (%(id)s, %(document_id)s, %(project)s, %(branch)s, %(workspace_hash)s,
                         %(promotion_level)s, %(chunk_index)s, %(header_path)s, %(start_line)s,
                         %(end_line)s, %(content)s, %(embedding)s, %(embedding_model_name)s,
                         %(created_at)s)
                """),
                [ChunkMapper.to_row(chunk) for chunk in chunks],
            )
        return removed

    async def get_by_document_id(
        self, document_id: DocumentId, tenant: TenantContext
    ) -> list[Chunk]:
        """Fetch all chunks for a document, ordered by chunk_index ASC."""
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL(
                    "SELECT * FROM chunks WHERE document_id = %(document_id)s AND {} "
                    "ORDER BY chunk_index ASC"
                ).format(TENANT_MATCH),
                {"document_id": str(document_id), **tenant_params(tenant)},
            )
            rows = await cur.fetchall()
        return [ChunkMapper.from_row(dict(r)) for r in rows]

    async def update_promotion(
        self, document_id: DocumentId, tenant: TenantContext, level: PromotionLevel
    ) -> int:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL(
                    "UPDATE chunks SET promotion_level = %(level)s "
                    "WHERE document_id = %(document_id)s AND {}"
                ).format(TENANT_MATCH),
                {"level": level.value, "document_id": str(document_id), **tenant_params(tenant)},
            )
            return cur.rowcount

    async def delete_by_document_id(self, document_id: DocumentId, tenant: TenantContext) -> int:
        """Delete all chunks for a document. Returns the number of deleted rows."""
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("DELETE FROM chunks WHERE document_id = %(document_id)s AND {}").format(
                    TENANT_MATCH
                ),
                {"document_id": str(document_id), **tenant_params(tenant)},
            )
            return cur.rowcount

    async def delete_scope(self, scope: TenantScope) -> int:
        predicate, params = scope_match(scope)
        async with self._conn.cursor() as cur:
            await cur.execute(SQL("DELETE FROM chunks WHERE {}").format(predicate), params)
            return cur.rowcount

    async def count_scope(self, scope: TenantScope) -> int:
        predicate, params = scope_match(scope)
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("SELECT count(*) AS cnt FROM chunks WHERE {}").format(predicate), params
            )
            row = await cur.fetchone()
        return int(str(row["cnt"])) if row else 0

    async def search_similar(
        self,
        query_embedding: Sequence[float],
        tenant: TenantContext,
        *,
        top_k: int,
        filters: SearchFilters | None = None,
    ) -> list[tuple[Chunk, float]]:
        """Find chunks of ``tenant`` most similar to a query vector using cosine distance.

        Returns (chunk, similarity) pairs in descending similarity order.
        Cosine distance via <=> is in [0, 2]; similarity = 1 - distance.
        """
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("""
                    SELECT *, 1 - (embedding <=> %(query)s) AS similarity
                    FROM chunks
                    WHERE {}
                      AND (%(levels)s::text[] IS NULL OR promotion_level = ANY(%(levels)s::text[]))
                      AND (%(doc_types)s::text[] IS NULL OR document_id IN (
                          SELECT d.id FROM documents d
                          WHERE d.doc_type = ANY(%(doc_types)s::text[])
                            AND d.project = %(project)s
                            AND d.branch = %(branch)s
                            AND d.workspace_hash = %(workspace_hash)s))
                    ORDER BY embedding <=> %(query)s
                    LIMIT %(top_k)s
                """).format(TENANT_MATCH),
                {
                    "query": np.array(query_embedding, dtype=np.float32),
                    "top_k": top_k,
                    **tenant_params(tenant),
                    **filter_params(filters),
                },
            )
            rows = await cur.fetchall()

        results: list[tuple[Chunk, float]] = []
        for r in rows:
            row_dict = dict(r)
            similarity = float(str(row_dict.pop("similarity")))
            results.append((ChunkMapper.from_row(row_dict), similarity))
        return results
