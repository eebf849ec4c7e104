"""External reference collection, kept in its own tables, never joined with documents."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from psycopg.sql import SQL

from lorevault_storage.mappers import ExternalChunkMapper, ExternalDocumentMapper
from lorevault_storage.repositories.predicates import TENANT_MATCH, scope_match, tenant_params

if TYPE_CHECKING:
    from collections.abc import Sequence

    from psycopg import AsyncConnection

    from lorevault_core.models.entities import ExternalChunk, ExternalDocument
    from lorevault_core.models.identifiers import DocumentId, SourceId
    from lorevault_core.models.values import TenantContext, TenantScope


class ExternalRepository:
    """Async repository for the ``external_documents`` / ``external_chunks`` tables."""

    def __init__(self, conn: AsyncConnection[dict[str, object]]) -> None:
        self._conn = conn

    async def upsert_document(self, document: ExternalDocument) -> bool:
        """Insert or overwrite by id. False when the id belongs to another tenant."""
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("""
                    INSERT INTO external_documents
                        (id, project, branch, workspace_hash, source_id, relative_path, title,
                         content_hash, char_count, line_count, embedding, embedding_model_name,
                         created_at, updated_at)
                    VALUES
                        (%(id)s, %(project)s, %(branch)s, %(workspace_hash)s, %(source_id)s,
                         %(relative_path)s, %(title)s, %(content_hash)s, %(char_count)s,
                         %(line_count)s, %(embedding)s, %(embedding_model_name)s,
                         %(created_at)s, %(updated_at)s)
                    ON CONFLICT (id) DO UPDATE SET
                        title = EXCLUDED.title,
                        content_hash = EXCLUDED.content_hash,
                        char_count = EXCLUDED.char_count,
                        line_count = EXCLUDED.line_count,
                        embedding = EXCLUDED.embedding,
                        embedding_model_name = EXCLUDED.embedding_model_name,
                        updated_at = EXCLUDED.updated_at
                    WHERE external_documents.project = EXCLUDED.project
                      AND external_documents.branch = EXCLUDED.branch
                      AND external_documents.workspace_hash = EXCLUDED.workspace_hash
                    RETURNING id
                """),
                ExternalDocumentMapper.to_row(document),
            )
            return await cur.fetchone() is not None

    async def replace_chunks(
        self, document_id: DocumentId, tenant: TenantContext, chunks: Sequence[ExternalChunk]
    ) -> None:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL(
                    "DELETE FROM external_chunks WHERE document_id = %(document_id)s AND {}"
                ).format(TENANT_MATCH),
                {"document_id": str(document_id), **tenant_params(tenant)},
            )
            if chunks:
                await cur.executemany(
                    SQL("""
                        INSERT INTO external_chunks
                            (id, document_id, project, branch, workspace_hash, chunk_index,
                             header_path, start_line, end_line, content, embedding,
                             embedding_model_name, created_at)
                        VALUES
                            (%(id)s, %(document_id)s, %(project)s, %(branch)s,
                             %(workspace_hash)s, %(chunk_index)s, %(header_path)s,
                             %(start_line)s, %(end_line)s, %(content)s, %(embedding)s,
                             %(embedding_model_name)s, %(created_at)s)
                    """),
                    [ExternalChunkMapper.to_row(chunk) for chunk in chunks],
                )

    async def get_by_path(
        self, source_id: SourceId, relative_path: str, tenant: TenantContext
    ) -> ExternalDocument | None:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL(
                    "SELECT * FROM external_documents "
                    "WHERE source_id = %(source_id)s AND relative_path = %(relative_path)s AND {}"
                ).format(TENANT_MATCH),
                {
                    "source_id": str(source_id),
                    "relative_path": relative_path,
                    **tenant_params(tenant),
                },
            )
            row = await cur.fetchone()
        return ExternalDocumentMapper.from_row(dict(row)) if row is not None else None

    async def get_many(
        self, document_ids: Sequence[DocumentId], tenant: TenantContext
    ) -> dict[DocumentId, ExternalDocument]:
        if not document_ids:
            return {}
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("SELECT * FROM external_documents WHERE id = ANY(%(ids)s) AND {}").format(
                    TENANT_MATCH
                ),
                {"ids": [str(i) for i in document_ids], **tenant_params(tenant)},
            )
            rows = await cur.fetchall()
        documents = [ExternalDocumentMapper.from_row(dict(r)) for r in rows]
        return {d.id: d for d in documents}

    async def search_similar(
        self,
        query_embedding: Sequence[float],
        tenant: TenantContext,
        *,
        top_k: int,
        source_ids: frozenset[str] | None = None,
    ) -> list[tuple[ExternalChunk, float]]:
        async with self._conn.cursor() as cur:
            await cur.execute(
                SQL("""
                    SELECT *, 1 - (embedding <=> %(query)s) AS similarity
                    FROM external_chunks
                    WHERE {}
                      AND (%(source_ids)s::text[] IS NULL OR document_id IN (
                          SELECT d.id FROM external_documents d
                          WHERE d.source_id = ANY(%(source_ids)s::text[])
                            AND d.project = %(project)s
                            AND d.branch = %(branch)s
                            AND d.workspace_hash = %(workspace_hash)s))
                    ORDER BY embedding <=> %(query)s
                    LIMIT %(top_k)s
                """).format(TENANT_MATCH),
                {
                    "query": np.array(query_embedding, dtype=np.float32),
                    "top_k": top_k,
                    "source_ids": sorted(source_ids) if source_ids is not None else None,
                    **tenant_params(tenant),
                },
            )
            rows = await cur.fetchall()

        results: list[tuple[ExternalChunk, float]] = []
        for r in rows:
            row_dict = dict(r)
            similarity = float(str(row_dict.pop("similarity")))
            results.append((ExternalChunkMapper.from_row(row_dict), similarity))
        return results

    async def delete_scope(self, scope: TenantScope) -> tuple[int, int]:
        """Delete documents and chunks inside ``scope``. Returns (documents, chunks)."""
        predicate, params = scope_match(scope)
        async with self._conn.cursor() as cur:
            await cur.execute(SQL("DELETE FROM external_chunks WHERE {}").format(predicate), params)
            chunks = cur.rowcount
            await cur.execute(
                SQL("DELETE FROM external_documents WHERE {}").format(predicate), params
            )
            return cur.rowcount, chunks
