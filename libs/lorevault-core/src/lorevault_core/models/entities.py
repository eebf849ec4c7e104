"""Core entities for the lorevault domain model."""

from typing import Any, Self

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from lorevault_core.models.enums import PromotionLevel
from lorevault_core.models.identifiers import ChunkId, DocumentId, SourceId
from lorevault_core.models.values import EmbeddingVector, TenantContext


class Document(BaseModel):
    """An indexed knowledge document. Content lives in its chunks."""

    model_config = ConfigDict(frozen=True)

    id: DocumentId
    tenant: TenantContext
    relative_path: str = Field(min_length=1)
    title: str
    summary: str | None = None
    doc_type: str = Field(min_length=1)
    promotion_level: PromotionLevel = PromotionLevel.STANDARD
    content_hash: str = Field(min_length=64, max_length=64)
    char_count: int = Field(ge=0)
    line_count: int = Field(ge=1)
    frontmatter: dict[str, Any] = {}
    embedding: EmbeddingVector | None = None
    created_at: AwareDatetime
    updated_at: AwareDatetime

    def with_promotion(self, level: PromotionLevel) -> "Document":
        return self.model_copy(update={"promotion_level": level})


class Chunk(BaseModel):
    """A contiguous line range of a document, embedded on its own."""

    model_config = ConfigDict(frozen=True)

    id: ChunkId
    document_id: DocumentId
    tenant: TenantContext
    promotion_level: PromotionLevel = PromotionLevel.STANDARD
    chunk_index: int = Field(ge=0)
    header_path: str = ""
    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)
    content: str
    embedding: EmbeddingVector
    created_at: AwareDatetime

    @model_validator(mode="after")
    def _check_span(self) -> Self:
        if self.end_line < self.start_line:
            msg = f"end_line {self.end_line} precedes start_line {self.start_line}"
            raise ValueError(msg)
        return self

    def with_promotion(self, level: PromotionLevel) -> "Chunk":
        return self.model_copy(update={"promotion_level": level})


class ExternalDocument(BaseModel):
    """Read-only reference material, kept apart from institutional knowledge."""

    model_config = ConfigDict(frozen=True)

    id: DocumentId
    tenant: TenantContext
    source_id: SourceId
    relative_path: str = Field(min_length=1)
    title: str
    content_hash: str = Field(min_length=64, max_length=64)
    char_count: int = Field(ge=0)
    line_count: int = Field(ge=1)
    embedding: EmbeddingVector | None = None
    created_at: AwareDatetime
    updated_at: AwareDatetime


class ExternalChunk(BaseModel):
    """A chunk of an external document."""

    model_config = ConfigDict(frozen=True)

    id: ChunkId
    document_id: DocumentId
    tenant: TenantContext
    chunk_index: int = Field(ge=0)
    header_path: str = ""
    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)
    content: str
    embedding: EmbeddingVector
    created_at: AwareDatetime

    @model_validator(mode="after")
    def _check_span(self) -> Self:
        if self.end_line < self.start_line:
            msg = f"end_line {self.end_line} precedes start_line {self.start_line}"
            raise ValueError(msg)
        return self
