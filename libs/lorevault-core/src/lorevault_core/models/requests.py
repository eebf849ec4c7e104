"""Request models for the lorevault operations.

These carry the shape and numeric-range checks of every externally reachable
call; path safety and tenant presence are checked by the gateway on top.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PATH_CHARS = 1024
MAX_QUERY_CHARS = 2000
MAX_CONTENT_CHARS = 1_000_000
MAX_SEARCH_LIMIT = 100
MAX_SOURCES_LIMIT = 20

_BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/+@-]*$")


def _non_blank(value: str) -> str:
    value = value.strip()
    if not value:
        msg = "must not be blank"
        raise ValueError(msg)
    return value


class ActivateRequest(BaseModel):
    """Bind a session to the project described by ``config_path`` on ``branch``."""

    model_config = ConfigDict(frozen=True)

    config_path: str = Field(min_length=1, max_length=4096)
    branch: str = Field(default="main", min_length=1, max_length=255)

    @field_validator("branch")
    @classmethod
    def _check_branch(cls, value: str) -> str:
        if not _BRANCH_PATTERN.match(value) or ".." in value or value.endswith((".lock", "/")):
            msg = f"invalid branch name {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("config_path")
    @classmethod
    def _check_config_path(cls, value: str) -> str:
        if "\x00" in value:
            msg = "null byte in path"
            raise ValueError(msg)
        return _non_blank(value)


class IndexRequest(BaseModel):
    """Index (or re-index) one document of the active tenant."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1, max_length=MAX_PATH_CHARS)
    content: str = Field(max_length=MAX_CONTENT_CHARS)


class SearchRequest(BaseModel):
    """Similarity search over the active tenant's documents."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1, max_length=MAX_QUERY_CHARS)
    limit: int = Field(default=10, ge=1, le=MAX_SEARCH_LIMIT)
    doc_types: list[str] | None = Field(default=None, max_length=32)
    promotion_levels: list[str] | None = Field(default=None, max_length=8)
    min_promotion: str | None = None

    @field_validator("query")
    @classmethod
    def _check_query(cls, value: str) -> str:
        return _non_blank(value)


class QueryRequest(BaseModel):
    """Context assembly for a downstream generation call."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1, max_length=MAX_QUERY_CHARS)
    max_sources: int = Field(default=5, ge=1, le=MAX_SOURCES_LIMIT)
    include_top_tier: bool = True
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("query")
    @classmethod
    def _check_query(cls, value: str) -> str:
        return _non_blank(value)


class PromotionRequest(BaseModel):
    """Change the promotion tier of one document."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1, max_length=MAX_PATH_CHARS)
    level: str = Field(min_length=1, max_length=32)


class DeleteRequest(BaseModel):
    """Delete everything inside a partial tenant scope."""

    model_config = ConfigDict(frozen=True)

    project: str = Field(min_length=1, max_length=255)
    branch: str | None = Field(default=None, min_length=1, max_length=255)
    workspace_hash: str | None = Field(default=None, min_length=1, max_length=64)
    dry_run: bool = False


class ExternalIndexRequest(BaseModel):
    """Index a reference document into the external collection."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1, max_length=128)
    path: str = Field(min_length=1, max_length=MAX_PATH_CHARS)
    content: str = Field(max_length=MAX_CONTENT_CHARS)


class ExternalSearchRequest(BaseModel):
    """Similarity search over the external collection only."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1, max_length=MAX_QUERY_CHARS)
    limit: int = Field(default=10, ge=1, le=MAX_SEARCH_LIMIT)
    source_ids: list[str] | None = Field(default=None, max_length=32)

    @field_validator("query")
    @classmethod
    def _check_query(cls, value: str) -> str:
        return _non_blank(value)
