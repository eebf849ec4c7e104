"""Bidirectional mappers between domain models and database rows."""

from __future__ import annotations

from typing import Any

import numpy as np

from lorevault_core.models.entities import Chunk, Document, ExternalChunk, ExternalDocument
from lorevault_core.models.enums import PromotionLevel
from lorevault_core.models.identifiers import ChunkId, DocumentId, SourceId
from lorevault_core.models.values import EmbeddingVector, TenantContext


def tenant_columns(tenant: TenantContext) -> dict[str, str]:
    """The three tenant columns every table carries."""
    return {
        "project": tenant.project,
        "branch": tenant.branch,
        "workspace_hash": tenant.workspace_hash,
    }


def tenant_from_row(row: dict[str, Any]) -> TenantContext:
    return TenantContext(
        project=row["project"],
        branch=row["branch"],
        workspace_hash=row["workspace_hash"],
    )


def embedding_to_array(embedding: EmbeddingVector | None) -> np.ndarray[Any, Any] | None:
    if embedding is None:
        return None
    return np.array(embedding.values, dtype=np.float32)


def embedding_from_row(row: dict[str, Any]) -> EmbeddingVector | None:
    """Rebuild an EmbeddingVector from the ``embedding`` and ``embedding_model_name`` columns."""
    array = row.get("embedding")
    if array is None:
        return None
    values = np.asarray(array, dtype=np.float32).tolist()
    return EmbeddingVector(
        values=values,
        dimensions=len(values),
        model_name=row["embedding_model_name"],
    )


class DocumentMapper:
    """Maps between Document domain objects and database rows."""

    @staticmethod
    def to_row(doc: Document) -> dict[str, Any]:
        """Convert a Document to a dict suitable for INSERT/UPDATE."""
        return {
            "id": str(doc.id),
            **tenant_columns(doc.tenant),
            "relative_path": doc.relative_path,
            "title": doc.title,
            "summary": doc.summary,
            "doc_type": doc.doc_type,
            "promotion_level": doc.promotion_level.value,
            "content_hash": doc.content_hash,
            "char_count": doc.char_count,
            "line_count": doc.line_count,
            "frontmatter": doc.frontmatter,
            "embedding": embedding_to_array(doc.embedding),
            "embedding_model_name": doc.embedding.model_name if doc.embedding else None,
            "created_at": doc.created_at,
            "updated_at": doc.updated_at,
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> Document:
        """Reconstruct a Document from a database row."""
        return Document(
            id=DocumentId(row["id"]),
            tenant=tenant_from_row(row),
            relative_path=row["relative_path"],
            title=row["title"],
            summary=row["summary"],
            doc_type=row["doc_type"],
            promotion_level=PromotionLevel(row["promotion_level"]),
            content_hash=row["content_hash"],
            char_count=row["char_count"],
            line_count=row["line_count"],
            frontmatter=row["frontmatter"] or {},
            embedding=embedding_from_row(row),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ChunkMapper:
    """Maps between Chunk domain objects and database rows.

    The chunk's tenant and promotion level are written from the chunk itself;
    the store checks beforehand that they equal the parent's.
    """

    @staticmethod
    def to_row(chunk: Chunk) -> dict[str, Any]:
        return {
            "id": str(chunk.id),
            "document_id": str(chunk.document_id),
            **tenant_columns(chunk.tenant),
            "promotion_level": chunk.promotion_level.value,
            "chunk_index": chunk.chunk_index,
            "header_path": chunk.header_path,
            "start_line": chunk.start_line,
            "end_line": chunk.end_line,
            "content": chunk.content,
            "embedding": embedding_to_array(chunk.embedding),
            "embedding_model_name": chunk.embedding.model_name,
            "created_at": chunk.created_at,
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> Chunk:
        embedding = embedding_from_row(row)
        if embedding is None:  # pragma: no cover - column is NOT NULL
            msg = f"Chunk {row['id']} has no embedding"
            raise ValueError(msg)
        return Chunk(
            id=ChunkId(row["id"]),
            document_id=DocumentId(row["document_id"]),
            tenant=tenant_from_row(row),
            promotion_level=PromotionLevel(row["promotion_level"]),
            chunk_index=row["chunk_index"],
            header_path=row["header_path"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            content=row["content"],
            embedding=embedding,
            created_at=row["created_at"],
        )


class ExternalDocumentMapper:
    """Maps between ExternalDocument objects and ``external_documents`` rows."""

    @staticmethod
    def to_row(doc: ExternalDocument) -> dict[str, Any]:
        return {
            "id": str(doc.id),
            **tenant_columns(doc.tenant),
            "source_id": str(doc.source_id),
            "relative_path": doc.relative_path,
            "title": doc.title,
            "content_hash": doc.content_hash,
            "char_count": doc.char_count,
            "line_count": doc.line_count,
            "embedding": embedding_to_array(doc.embedding),
            "embedding_model_name": doc.embedding.model_name if doc.embedding else None,
            "created_at": doc.created_at,
            "updated_at": doc.updated_at,
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> ExternalDocument:
        return ExternalDocument(
            id=DocumentId(row["id"]),
            tenant=tenant_from_row(row),
            source_id=SourceId(row["source_id"]),
            relative_path=row["relative_path"],
            title=row["title"],
            content_hash=row["content_hash"],
            char_count=row["char_count"],
            line_count=row["line_count"],
            embedding=embedding_from_row(row),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ExternalChunkMapper:
    """Maps between ExternalChunk objects and ``external_chunks`` rows."""

    @staticmethod
    def to_row(chunk: ExternalChunk) -> dict[str, Any]:
        return {
            "id": str(chunk.id),
            "document_id": str(chunk.document_id),
            **tenant_columns(chunk.tenant),
            "chunk_index": chunk.chunk_index,
            "header_path": chunk.header_path,
            "start_line": chunk.start_line,
            "end_line": chunk.end_line,
            "content": chunk.content,
            "embedding": embedding_to_array(chunk.embedding),
            "embedding_model_name": chunk.embedding.model_name,
            "created_at": chunk.created_at,
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> ExternalChunk:
        embedding = embedding_from_row(row)
        if embedding is None:  # pragma: no cover - column is NOT NULL
            msg = f"External chunk {row['id']} has no embedding"
            raise ValueError(msg)
        return ExternalChunk(
            id=ChunkId(row["id"]),
            document_id=DocumentId(row["document_id"]),
            tenant=tenant_from_row(row),
            chunk_index=row["chunk_index"],
            header_path=row["header_path"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            content=row["content"],
            embedding=embedding,
            created_at=row["created_at"],
        )
