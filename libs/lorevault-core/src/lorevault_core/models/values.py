"""Frozen value objects for the lorevault domain model."""

import math
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lorevault_core.models.enums import PromotionLevel

TENANT_KEY_SEPARATOR = ":"


class TenantContext(BaseModel):
    """The (project, branch, workspace) triple isolating all data and queries."""

    model_config = ConfigDict(frozen=True)

    project: str = Field(min_length=1, max_length=255)
    branch: str = Field(min_length=1, max_length=255)
    workspace_hash: str = Field(min_length=1, max_length=64)

    @field_validator("project", "workspace_hash")
    @classmethod
    def _no_separator(cls, value: str) -> str:
        if TENANT_KEY_SEPARATOR in value:
            msg = f"must not contain {TENANT_KEY_SEPARATOR!r}"
            raise ValueError(msg)
        return value

    @field_validator("project", "branch", "workspace_hash")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value

    @property
    def key(self) -> str:
        """Flat ``project:branch:workspace_hash`` form."""
        return TENANT_KEY_SEPARATOR.join((self.project, self.branch, self.workspace_hash))

    def __str__(self) -> str:
        return self.key


class TenantScope(BaseModel):
    """A strict subset of a tenant context, used for scoped deletes."""

    model_config = ConfigDict(frozen=True)

    project: str = Field(min_length=1, max_length=255)
    branch: str | None = Field(default=None, min_length=1, max_length=255)
    workspace_hash: str | None = Field(default=None, min_length=1, max_length=64)

    @model_validator(mode="after")
    def _check_narrowing(self) -> Self:
        if self.workspace_hash is not None and self.branch is None:
            msg = "workspace_hash requires branch"
            raise ValueError(msg)
        return self

    @classmethod
    def of(cls, tenant: TenantContext) -> Self:
        return cls(
            project=tenant.project, branch=tenant.branch, workspace_hash=tenant.workspace_hash
        )

    def matches(self, tenant: TenantContext) -> bool:
        if tenant.project != self.project:
            return False
        if self.branch is not None and tenant.branch != self.branch:
            return False
        return self.workspace_hash is None or tenant.workspace_hash == self.workspace_hash

    def __str__(self) -> str:
        parts = [self.project, self.branch or "*", self.workspace_hash or "*"]
        return TENANT_KEY_SEPARATOR.join(parts)


class EmbeddingVector(BaseModel):
    """A dense vector representation of a document, chunk or query."""

    model_config = ConfigDict(frozen=True)

    values: list[float]
    dimensions: int = Field(gt=0)
    model_name: str = Field(min_length=1)

    @model_validator(mode="after")
    def _check_dimensions(self) -> Self:
        if len(self.values) != self.dimensions:
            msg = f"Expected {self.dimensions} values, got {len(self.values)}"
            raise ValueError(msg)
        if not all(math.isfinite(v) for v in self.values):
            msg = "Embedding contains non-finite values"
            raise ValueError(msg)
        return self

    def __repr__(self) -> str:
        # Vector values never end up in logs or tracebacks.
        return f"EmbeddingVector(dimensions={self.dimensions}, model_name={self.model_name!r})"

    __str__ = __repr__


class SearchFilters(BaseModel):
    """Optional narrowing applied by the store before similarity ranking."""

    model_config = ConfigDict(frozen=True)

    doc_types: frozenset[str] | None = None
    promotion_levels: frozenset[PromotionLevel] | None = None

    @classmethod
    def for_levels(cls, *levels: PromotionLevel) -> Self:
        return cls(promotion_levels=frozenset(levels))

    def allows(self, doc_type: str, level: PromotionLevel) -> bool:
        if self.doc_types is not None and doc_type not in self.doc_types:
            return False
        return self.promotion_levels is None or level in self.promotion_levels

    def excluding(self, *levels: PromotionLevel) -> "SearchFilters":
        """Copy restricted to every level except ``levels``."""
        base = (
            self.promotion_levels
            if self.promotion_levels is not None
            else frozenset(PromotionLevel)
        )
        return self.model_copy(update={"promotion_levels": base - frozenset(levels)})
