"""Lorevault Storage: tenant-scoped vector stores, pool, migrations and maintenance."""

__version__ = "0.1.0"

from lorevault_storage.base import (
    PromotionChange,
    ScopeCount,
    ScoredChunk,
    ScoredDocument,
    ScoredExternalChunk,
    VectorStore,
)
from lorevault_storage.config import DatabaseConfig
from lorevault_storage.exceptions import (
    DimensionMismatchError,
    InvalidEntityError,
    MissingTenantError,
    StorageError,
    StoreUnavailableError,
)
from lorevault_storage.maintenance import IndexMaintainer
from lorevault_storage.memory import InMemoryVectorStore
from lorevault_storage.pgvector_store import PgVectorStore
from lorevault_storage.pool import ConnectionPool
from lorevault_storage.tuning import AnnTuning, select_tuning

__all__ = [
    "AnnTuning",
    "ConnectionPool",
    "DatabaseConfig",
    "DimensionMismatchError",
    "InMemoryVectorStore",
    "IndexMaintainer",
    "InvalidEntityError",
    "MissingTenantError",
    "PgVectorStore",
    "PromotionChange",
    "ScopeCount",
    "ScoredChunk",
    "ScoredDocument",
    "ScoredExternalChunk",
    "StorageError",
    "StoreUnavailableError",
    "VectorStore",
    "select_tuning",
]
