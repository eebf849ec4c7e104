"""Document repository: tenant-scoped CRUD and vector search for the documents table."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from psycopg.sql import SQL
from psycopg.types.json import Jsonb

from lorevault_storage.mappers import DocumentMapper
from lorevault_storage.repositories.predicates import (
    TENANT_MATCH,
    filter_params,
    scope_match,
    tenant_params,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from psycopg import AsyncConnection

    from lorevault_core.models.entities import Document
    from lorevault_core.models.enums import PromotionLevel
    from lorevault_core.models.identifiers import DocumentId
    from lorevault_core.models.values import SearchFilters, TenantContext, TenantScope


class DocumentRepository:
    """Async repository for Document persistence against PostgreSQL + pgvector.

    Every statement carries the tenant predicate. Transactions are the caller's.
    """

    def __init__(self, conn: AsyncConnection[dict[str, object]]) -> None:
        self._conn = conn

    async def upsert(self, document: Document) -> bool:
        """Insert or overwrite a document by id.

        Returns False when the id exists under another tenant; that row is left alone.
        """
        row = DocumentMapper.to_row(document)
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("""
                    INSERT INTO documents
                        (id, project, branch, workspace_hash, relative_path, title, summary,
                         doc_type, promotion_level, content_hash, char_count, line_count,
                         frontmatter, embedding, embedding_model_name, created_at, updated_at)
                    VALUES
                        (%(id)s, %(project)s, %(branch)s, %(workspace_hash)s, %(relative_path)s,
                         %(title)s, %(summary)s, %(doc_type)s, %(promotion_level)s,
                         %(content_hash)s, %(char_count)s, %(line_count)s, %(frontmatter)s,
                         %(embedding)s, %(embedding_model_name)s, %(created_at)s, %(updated_at)s)
                    ON CONFLICT (id) DO UPDATE SET
                        relative_path = EXCLUDED.relative_path,
                        title = EXCLUDED.title,
                        summary = EXCLUDED.summary,
                        doc_type = EXCLUDED.doc_type,
                        promotion_level = EXCLUDED.promotion_level,
                        content_hash = EXCLUDED.content_hash,
                        char_count = EXCLUDED.char_count,
                        line_count = EXCLUDED.line_count,
                        frontmatter = EXCLUDED.frontmatter,
                        embedding = EXCLUDED.embedding,
                        embedding_model_name = EXCLUDED.embedding_model_name,
                        updated_at = EXCLUDED.updated_at
                    WHERE documents.project = EXCLUDED.project
                      AND documents.branch = EXCLUDED.branch
                      AND documents.workspace_hash = EXCLUDED.workspace_hash
                    RETURNING id
                """),
                {**row, "frontmatter": Jsonb(row["frontmatter"])},
            )
            return await cur.fetchone() is not None

    async def get_by_id(
        self, document_id: DocumentId, tenant: TenantContext, *, for_update: bool = False
    ) -> Document | None:
        """Fetch a document by id within ``tenant``; None if absent."""
        query = SQL("SELECT * FROM documents WHERE id = %(id)s AND {}{}").format(
            TENANT_MATCH, SQL(" FOR UPDATE") if for_update else SQL("")
        )
        async with self._conn.cursor() as cur:
            await cur.execute(query, {"id": str(document_id), **tenant_params(tenant)})
            row = await cur.fetchone()
        return DocumentMapper.from_row(dict(row)) if row is not None else None

    async def get_by_path(self, relative_path: str, tenant: TenantContext) -> Document | None:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL(
                    "SELECT * FROM documents WHERE relative_path = %(relative_path)s AND {}"
                ).format(TENANT_MATCH),
                {"relative_path": relative_path, **tenant_params(tenant)},
            )
            row = await cur.fetchone()
        return DocumentMapper.from_row(dict(row)) if row is not None else None

    async def get_many(
        self, document_ids: Sequence[DocumentId], tenant: TenantContext
    ) -> dict[DocumentId, Document]:
        if not document_ids:
            return {}
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("SELECT * FROM documents WHERE id = ANY(%(ids)s) AND {}").format(TENANT_MATCH),
                {"ids": [str(i) for i in document_ids], **tenant_params(tenant)},
            )
            rows = await cur.fetchall()
        documents = [DocumentMapper.from_row(dict(r)) for r in rows]
        return {d.id: d for d in documents}

    async def update_promotion(
        self, document_id: DocumentId, tenant: TenantContext, level: PromotionLevel
    ) -> bool:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL(
                    "UPDATE documents SET promotion_level = %(level)s "
                    "WHERE id = %(id)s AND {} RETURNING id"
                ).format(TENANT_MATCH),
                {"level": level.value, "id": str(document_id), **tenant_params(tenant)},
            )
            return await cur.fetchone() is not None

    async def delete(self, document_id: DocumentId, tenant: TenantContext) -> bool:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("DELETE FROM documents WHERE id = %(id)s AND {} RETURNING id").format(
                    TENANT_MATCH
                ),
                {"id": str(document_id), **tenant_params(tenant)},
            )
            return await cur.fetchone() is not None

    async def delete_scope(self, scope: TenantScope) -> int:
        predicate, params = scope_match(scope)
        async with self._conn.cursor() as cur:
            await cur.execute(SQL("DELETE FROM documents WHERE {}").format(predicate), params)
            return cur.rowcount

    async def count_scope(self, scope: TenantScope) -> int:
        predicate, params = scope_match(scope)
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("SELECT count(*) AS cnt FROM documents WHERE {}").format(predicate), params
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
    ) -> list[tuple[Document, float]]:
        """Documents of ``tenant`` nearest to the query by cosine distance.

        Returns (document, similarity) pairs in descending similarity order.
        Tenant and filter predicates sit in the WHERE clause of the index scan.
        """
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("""
                    SELECT *, 1 - (embedding <=> %(query)s) AS similarity
                    FROM documents
                    WHERE {}
                      AND embedding IS NOT NULL
                      AND (%(doc_types)s::text[] IS NULL OR doc_type = ANY(%(doc_types)s::text[]))
                      AND (%(levels)s::text[] IS NULL OR promotion_level = ANY(%(levels)s::text[]))
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

        results: list[tuple[Document, float]] = []
        for r in rows:
            row_dict = dict(r)
            similarity = float(str(row_dict.pop("similarity")))
            results.append((DocumentMapper.from_row(row_dict), similarity))
        return results
