"""Response models returned by the lorevault operations."""

from pathlib import Path
from typing import Any, Generic, Self, TypeVar

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from lorevault_core.models.enums import ErrorCode, IndexStatus, PromotionLevel
from lorevault_core.models.identifiers import ChunkId, DocumentId, SourceId
from lorevault_core.models.values import TenantContext, TenantScope

DataT = TypeVar("DataT", bound=BaseModel)


class ActivationResult(BaseModel):
    """The tenant a session is now bound to."""

    model_config = ConfigDict(frozen=True)

    tenant: TenantContext
    project_name: str
    project_root: Path


class IndexResult(BaseModel):
    """Outcome of indexing one document."""

    model_config = ConfigDict(frozen=True)

    status: IndexStatus
    document_id: DocumentId
    relative_path: str
    content_hash: str
    chunk_count: int = Field(ge=0)


class SearchHit(BaseModel):
    """A document matched by similarity search."""

    model_config = ConfigDict(frozen=True)

    document_id: DocumentId
    relative_path: str
    title: str
    doc_type: str
    promotion_level: PromotionLevel
    score: float
    boosted_score: float
    snippet: str = ""
    updated_at: AwareDatetime


class SearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    hits: list[SearchHit] = []
    total: int = Field(ge=0)


class QuerySource(BaseModel):
    """One ranked source contributing to an assembled context."""

    model_config = ConfigDict(frozen=True)

    rank: int = Field(ge=1)
    document_id: DocumentId
    chunk_id: ChunkId
    relative_path: str
    title: str
    header_path: str
    start_line: int
    end_line: int
    promotion_level: PromotionLevel
    score: float
    top_tier: bool = False
    content: str


class QueryResponse(BaseModel):
    """Ordered sources plus the concatenated context for a generation call."""

    model_config = ConfigDict(frozen=True)

    query: str
    sources: list[QuerySource] = []
    context: str = ""
    top_tier_count: int = Field(default=0, ge=0)
    truncated: bool = False


class PromotionResult(BaseModel):
    """Acknowledgement of a promotion change, applied to the document and all its chunks."""

    model_config = ConfigDict(frozen=True)

    document_id: DocumentId
    relative_path: str
    previous_level: PromotionLevel
    new_level: PromotionLevel
    chunks_updated: int = Field(ge=0)
    boost_factor: float

    @property
    def changed(self) -> bool:
        return self.previous_level != self.new_level


class DeleteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: TenantScope
    deleted_documents: int = Field(ge=0)
    deleted_chunks: int = Field(ge=0)
    dry_run: bool = False


class ExternalSearchHit(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: DocumentId
    source_id: SourceId
    relative_path: str
    title: str
    header_path: str
    start_line: int
    end_line: int
    score: float
    content: str


class ExternalSearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    hits: list[ExternalSearchHit] = []
    total: int = Field(ge=0)


class MaintenanceReport(BaseModel):
    """What an offline index maintenance pass found and did."""

    model_config = ConfigDict(frozen=True)

    bloat_ratio: float = Field(ge=0.0)
    rebuilt: bool
    indexes: list[str] = []
    duration_ms: int = Field(ge=0)


class ErrorDetail(BaseModel):
    """Machine-readable error information."""

    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None
    timestamp: AwareDatetime


class ToolResponse(BaseModel, Generic[DataT]):
    """Envelope returned by every gateway operation."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: DataT | None = None
    error: ErrorDetail | None = None

    @classmethod
    def ok(cls, data: DataT) -> Self:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ErrorDetail) -> Self:
        return cls(success=False, error=error)

    @property
    def error_code(self) -> ErrorCode | None:
        return self.error.code if self.error is not None else None
