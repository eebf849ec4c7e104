"""Lorevault domain model: re-exports all public types."""

from lorevault_core.models.entities import (
    Chunk,
    Document,
    ExternalChunk,
    ExternalDocument,
)
from lorevault_core.models.enums import (
    ErrorCode,
    IndexProfile,
    IndexStatus,
    PromotionLevel,
    SessionState,
)
from lorevault_core.models.identifiers import (
    ChunkId,
    DocumentId,
    SourceId,
)
from lorevault_core.models.requests import (
    ActivateRequest,
    DeleteRequest,
    ExternalIndexRequest,
    ExternalSearchRequest,
    IndexRequest,
    PromotionRequest,
    QueryRequest,
    SearchRequest,
)
from lorevault_core.models.responses import (
    ActivationResult,
    DeleteResult,
    ErrorDetail,
    ExternalSearchHit,
    ExternalSearchResponse,
    IndexResult,
    MaintenanceReport,
    PromotionResult,
    QueryResponse,
    QuerySource,
    SearchHit,
    SearchResponse,
    ToolResponse,
)
from lorevault_core.models.values import (
    EmbeddingVector,
    SearchFilters,
    TenantContext,
    TenantScope,
)

__all__ = [
    # Identifiers
    "ChunkId",
    "DocumentId",
    "SourceId",
    # Enums
    "ErrorCode",
    "IndexProfile",
    "IndexStatus",
    "PromotionLevel",
    "SessionState",
    # Value Objects
    "EmbeddingVector",
    "SearchFilters",
    "TenantContext",
    "TenantScope",
    # Entities
    "Chunk",
    "Document",
    "ExternalChunk",
    "ExternalDocument",
    # Requests
    "ActivateRequest",
    "DeleteRequest",
    "ExternalIndexRequest",
    "ExternalSearchRequest",
    "IndexRequest",
    "PromotionRequest",
    "QueryRequest",
    "SearchRequest",
    # Responses
    "ActivationResult",
    "DeleteResult",
    "ErrorDetail",
    "ExternalSearchHit",
    "ExternalSearchResponse",
    "IndexResult",
    "MaintenanceReport",
    "PromotionResult",
    "QueryResponse",
    "QuerySource",
    "SearchHit",
    "SearchResponse",
    "ToolResponse",
]
