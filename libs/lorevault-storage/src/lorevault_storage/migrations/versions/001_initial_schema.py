"""Initial schema: tenant-scoped documents, chunks, external collection, HNSW indexes.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import context, op

from lorevault_storage.config import DatabaseConfig
from lorevault_storage.tuning import select_tuning

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TENANT_COLUMNS = """
            project         VARCHAR(255) NOT NULL CHECK (project <> ''),
            branch          VARCHAR(255) NOT NULL CHECK (branch <> ''),
            workspace_hash  VARCHAR(64)  NOT NULL CHECK (workspace_hash <> ''),"""

PROMOTION_CHECK = "CHECK (promotion_level IN ('standard', 'elevated', 'pinned'))"


def _vector_settings() -> tuple[int, int, int]:
    """Dimensions, m and ef_construction from alembic options, else LOREVAULT_DB_* settings."""
    db = DatabaseConfig()
    tuning = select_tuning(db.expected_collection_size, db.index_profile)
    options = context.config
    dims = int(options.get_main_option("embedding_dimensions") or db.embedding_dimensions)
    m = int(options.get_main_option("hnsw_m") or tuning.m)
    ef_construction = int(
        options.get_main_option("hnsw_ef_construction") or tuning.ef_construction
    )
    return dims, m, ef_construction


def _hnsw_index(name: str, table: str, m: int, ef_construction: int) -> str:
    return (
        f"CREATE INDEX {name} ON {table} USING hnsw (embedding vector_cosine_ops) "
        f"WITH (m = {m}, ef_construction = {ef_construction})"
    )


def upgrade() -> None:
    dims, m, ef_construction = _vector_settings()

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.execute(f"""
        CREATE TABLE documents (
            id              VARCHAR(64)  PRIMARY KEY,{TENANT_COLUMNS}
            relative_path   TEXT         NOT NULL CHECK (relative_path <> ''),
            title           TEXT         NOT NULL,
            summary         TEXT,
            doc_type        VARCHAR(64)  NOT NULL,
            promotion_level VARCHAR(16)  NOT NULL DEFAULT 'standard' {PROMOTION_CHECK},
            content_hash    CHAR(64)     NOT NULL,
            char_count      INTEGER      NOT NULL CHECK (char_count >= 0),
            line_count      INTEGER      NOT NULL CHECK (line_count >= 1),
            frontmatter     JSONB        NOT NULL DEFAULT '{{}}',
            embedding       vector({dims}),
            embedding_model_name VARCHAR(255),
            created_at      TIMESTAMPTZ  NOT NULL,
            updated_at      TIMESTAMPTZ  NOT NULL,

            UNIQUE (project, branch, workspace_hash, relative_path)
        )
    """)
    op.execute("CREATE INDEX idx_documents_tenant ON documents (project, branch, workspace_hash)")
    op.execute(_hnsw_index("idx_documents_embedding", "documents", m, ef_construction))

    op.execute(f"""
        CREATE TABLE chunks (
            id              VARCHAR(64)  PRIMARY KEY,
            document_id     VARCHAR(64)  NOT NULL
                                REFERENCES documents(id) ON DELETE CASCADE,{TENANT_COLUMNS}
            promotion_level VARCHAR(16)  NOT NULL DEFAULT 'standard' {PROMOTION_CHECK},
            chunk_index     INTEGER      NOT NULL CHECK (chunk_index >= 0),
            header_path     TEXT         NOT NULL DEFAULT '',
            start_line      INTEGER      NOT NULL CHECK (start_line >= 1),
            end_line        INTEGER      NOT NULL,
            content         TEXT         NOT NULL,
            embedding       vector({dims}) NOT NULL,
            embedding_model_name VARCHAR(255) NOT NULL,
            created_at      TIMESTAMPTZ  NOT NULL,

            CHECK (end_line >= start_line),
            UNIQUE (document_id, chunk_index)
        )
    """)
    op.execute("CREATE INDEX idx_chunks_document_id ON chunks (document_id)")
    op.execute("CREATE INDEX idx_chunks_tenant ON chunks (project, branch, workspace_hash)")
    op.execute(_hnsw_index("idx_chunks_embedding", "chunks", m, ef_construction))

    op.execute(f"""
        CREATE TABLE external_documents (
            id              VARCHAR(64)  PRIMARY KEY,{TENANT_COLUMNS}
            source_id       VARCHAR(128) NOT NULL CHECK (source_id <> ''),
            relative_path   TEXT         NOT NULL CHECK (relative_path <> ''),
            title           TEXT         NOT NULL,
            content_hash    CHAR(64)     NOT NULL,
            char_count      INTEGER      NOT NULL CHECK (char_count >= 0),
            line_count      INTEGER      NOT NULL CHECK (line_count >= 1),
            embedding       vector({dims}),
            embedding_model_name VARCHAR(255),
            created_at      TIMESTAMPTZ  NOT NULL,
            updated_at      TIMESTAMPTZ  NOT NULL,

            UNIQUE (project, branch, workspace_hash, source_id, relative_path)
        )
    """)
    op.execute(
        "CREATE INDEX idx_external_documents_tenant "
        "ON external_documents (project, branch, workspace_hash)"
    )
    op.execute(
        _hnsw_index("idx_external_documents_embedding", "external_documents", m, ef_construction)
    )

    op.execute(f"""
        CREATE TABLE external_chunks (
            id              VARCHAR(64)  PRIMARY KEY,
            document_id     VARCHAR(64)  NOT NULL
                                REFERENCES external_documents(id) ON DELETE CASCADE,{TENANT_COLUMNS}
            chunk_index     INTEGER      NOT NULL CHECK (chunk_index >= 0),
            header_path     TEXT         NOT NULL DEFAULT '',
            start_line      INTEGER      NOT NULL CHECK (start_line >= 1),
            end_line        INTEGER      NOT NULL,
            content         TEXT         NOT NULL,
            embedding       vector({dims}) NOT NULL,
            embedding_model_name VARCHAR(255) NOT NULL,
            created_at      TIMESTAMPTZ  NOT NULL,

            CHECK (end_line >= start_line),
            UNIQUE (document_id, chunk_index)
        )
    """)
    op.execute("CREATE INDEX idx_external_chunks_document_id ON external_chunks (document_id)")
    op.execute(
        "CREATE INDEX idx_external_chunks_tenant "
        "ON external_chunks (project, branch, workspace_hash)"
    )
    op.execute(_hnsw_index("idx_external_chunks_embedding", "external_chunks", m, ef_construction))


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS external_chunks")
    op.execute("DROP TABLE IF EXISTS external_documents")
    op.execute("DROP TABLE IF EXISTS chunks")
    op.execute("DROP TABLE IF EXISTS documents")
    op.execute("DROP EXTENSION IF EXISTS vector")
