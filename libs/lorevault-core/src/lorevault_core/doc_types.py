"""Document-type registry and per-type frontmatter schemas."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from lorevault_core.errors import InvalidConfigError, InvalidDocTypeError, RequestValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class DocTypeDefinition(BaseModel):
    """Describes one document type and the frontmatter fields it requires."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, max_length=64, pattern=r"^[a-z][a-z0-9_-]*$")
    name: str
    description: str = ""
    required_fields: tuple[str, ...] = ()
    optional_fields: tuple[str, ...] = ()
    built_in: bool = False


class Frontmatter(BaseModel):
    """Fields shared by every document type. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    title: str = Field(min_length=1)
    tags: list[str] | None = None
    promotion_level: str | None = None
    links: list[str] | None = None


class ProblemFrontmatter(Frontmatter):
    tags: list[str] = Field(min_length=1)
    severity: str | None = None
    root_cause: str | None = None
    solution_status: str | None = None


class InsightFrontmatter(Frontmatter):
    tags: list[str] = Field(min_length=1)
    category: str | None = None


class CodebaseFrontmatter(Frontmatter):
    component: str = Field(min_length=1)


class ToolFrontmatter(Frontmatter):
    tool_name: str = Field(min_length=1)
    version: str | None = None


class StyleFrontmatter(Frontmatter):
    category: str = Field(min_length=1)
    language: str | None = None


class AdrFrontmatter(Frontmatter):
    status: str = Field(min_length=1)


BUILT_IN_TYPES: tuple[tuple[DocTypeDefinition, type[Frontmatter]], ...] = (
    (
        DocTypeDefinition(
            id="problem",
            name="Problem Statement",
            description="Problems and issues encountered, with their resolution status.",
            required_fields=("title", "tags"),
            optional_fields=("root_cause", "solution_status", "severity"),
            built_in=True,
        ),
        ProblemFrontmatter,
    ),
    (
        DocTypeDefinition(
            id="insight",
            name="Insight",
            description="Lessons learned from project experience.",
            required_fields=("title", "tags"),
            optional_fields=("category",),
            built_in=True,
        ),
        InsightFrontmatter,
    ),
    (
        DocTypeDefinition(
            id="codebase",
            name="Codebase Documentation",
            description="Structure and implementation notes for a component.",
            required_fields=("title", "component"),
            built_in=True,
        ),
        CodebaseFrontmatter,
    ),
    (
        DocTypeDefinition(
            id="tool",
            name="Tool Documentation",
            description="Tools, utilities and scripts used by the project.",
            required_fields=("title", "tool_name"),
            optional_fields=("version",),
            built_in=True,
        ),
        ToolFrontmatter,
    ),
    (
        DocTypeDefinition(
            id="style",
            name="Style Guide",
            description="Coding standards and conventions.",
            required_fields=("title", "category"),
            optional_fields=("language",),
            built_in=True,
        ),
        StyleFrontmatter,
    ),
    (
        DocTypeDefinition(
            id="spec", name="Specification", required_fields=("title",), built_in=True
        ),
        Frontmatter,
    ),
    (
        DocTypeDefinition(
            id="adr",
            name="Architecture Decision Record",
            required_fields=("title", "status"),
            built_in=True,
        ),
        AdrFrontmatter,
    ),
    (
        DocTypeDefinition(
            id="research", name="Research", required_fields=("title",), built_in=True
        ),
        Frontmatter,
    ),
    (
        DocTypeDefinition(
            id="doc", name="Documentation", required_fields=("title",), built_in=True
        ),
        Frontmatter,
    ),
)


class DocTypeRegistry:
    """Maps doc-type ids to their definition and frontmatter schema."""

    def __init__(self, custom: Iterable[DocTypeDefinition] = ()) -> None:
        self._types: dict[str, tuple[DocTypeDefinition, type[Frontmatter]]] = {}
        for definition, schema in BUILT_IN_TYPES:
            self._types[definition.id] = (definition, schema)
        for definition in custom:
            self.register(definition)

    def register(self, definition: DocTypeDefinition) -> None:
        """Register a custom type. Its required fields become required schema fields."""
        if definition.id in self._types:
            msg = f"Document type {definition.id!r} is already registered"
            raise InvalidConfigError(msg, details={"doc_type": definition.id})
        fields: dict[str, Any] = {
            name: (Any, ...)
            for name in definition.required_fields
            if name not in Frontmatter.model_fields
        }
        schema = create_model(  # type: ignore[call-overload]
            f"{definition.id.title().replace('-', '').replace('_', '')}Frontmatter",
            __base__=Frontmatter,
            **fields,
        )
        self._types[definition.id] = (definition, schema)
        logger.info("Registered custom doc type %r", definition.id)

    def ids(self) -> list[str]:
        return sorted(self._types)

    def get(self, doc_type: str) -> DocTypeDefinition | None:
        entry = self._types.get(doc_type)
        return entry[0] if entry else None

    def require(self, doc_type: str) -> DocTypeDefinition:
        """Return the definition or raise InvalidDocTypeError."""
        entry = self._types.get(doc_type)
        if entry is None:
            raise InvalidDocTypeError(doc_type, self.ids())
        return entry[0]

    def validate(self, doc_type: str, frontmatter: dict[str, Any]) -> Frontmatter:
        """Validate ``frontmatter`` against the schema of ``doc_type``."""
        self.require(doc_type)
        schema = self._types[doc_type][1]
        try:
            return schema.model_validate(frontmatter)
        except ValidationError as exc:
            raise RequestValidationError.from_pydantic(
                exc, f"Frontmatter does not match doc type {doc_type!r}"
            ) from exc
