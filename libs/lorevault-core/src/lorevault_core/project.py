"""Per-project configuration and tenant derivation.

A project keeps its settings in ``<root>/.lorevault/config.yaml`` (JSON is
accepted too, being a YAML subset). The tenant for a session is derived from
the project root and the branch the caller names.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lorevault_core.chunking import ChunkingPolicy
from lorevault_core.doc_types import DocTypeDefinition
from lorevault_core.errors import ConfigNotFoundError, InvalidConfigError
from lorevault_core.models.values import TENANT_KEY_SEPARATOR, TenantContext

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".lorevault"
CONFIG_FILE_NAMES = ("config.yaml", "config.yml", "config.json")
DEFAULT_BRANCH = "main"
WORKSPACE_HASH_LENGTH = 16


class RetrievalOverrides(BaseModel):
    """Project-level overrides of the process-wide retrieval settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)
    top_tier_cap: int | None = Field(default=None, ge=0, le=20)
    default_limit: int | None = Field(default=None, ge=1, le=100)
    default_max_sources: int | None = Field(default=None, ge=1, le=20)


class ExternalSourceConfig(BaseModel):
    """A read-only reference collection the project may index."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    name: str = ""
    path: str = ""


class ProjectConfig(BaseModel):
    """Contents of a project's configuration file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_name: str | None = Field(default=None, min_length=1, max_length=255)
    chunking: ChunkingPolicy = ChunkingPolicy()
    retrieval: RetrievalOverrides = RetrievalOverrides()
    custom_doc_types: list[DocTypeDefinition] = []
    external_sources: list[ExternalSourceConfig] = []

    def external_source(self, source_id: str) -> ExternalSourceConfig | None:
        return next((s for s in self.external_sources if s.id == source_id), None)


class LoadedProject(BaseModel):
    """A parsed configuration file together with the root it describes."""

    model_config = ConfigDict(frozen=True)

    config: ProjectConfig
    config_file: Path
    root: Path

    @property
    def project_name(self) -> str:
        name = self.config.project_name or self.root.name or "project"
        return name.replace(TENANT_KEY_SEPARATOR, "-")


def locate_config(config_path: str | Path) -> Path:
    """Find the configuration file for ``config_path`` (a file, or a project directory)."""
    path = Path(config_path).expanduser()
    if path.is_dir():
        search_dirs = [path / CONFIG_DIR_NAME, path] if path.name != CONFIG_DIR_NAME else [path]
        for directory in search_dirs:
            for name in CONFIG_FILE_NAMES:
                candidate = directory / name
                if candidate.is_file():
                    return candidate
        raise ConfigNotFoundError(str(path / CONFIG_DIR_NAME / CONFIG_FILE_NAMES[0]))
    if not path.is_file():
        raise ConfigNotFoundError(str(path))
    return path


def project_root_for(config_file: Path) -> Path:
    """The project root: the parent of ``.lorevault`` or the file's own directory."""
    parent = config_file.resolve().parent
    return parent.parent if parent.name == CONFIG_DIR_NAME else parent


def load_project_config(config_path: str | Path) -> LoadedProject:
    """Read, parse and validate a project configuration.

    Raises ConfigNotFoundError if nothing is found at ``config_path`` and
    InvalidConfigError if the file cannot be read, parsed or validated.
    """
    config_file = locate_config(config_path)
    try:
        text = config_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"Cannot read project configuration: {exc}"
        raise InvalidConfigError(msg, details={"path": str(config_file)}) from exc

    try:
        raw = yaml.safe_load(text) if text.strip() else {}
    except yaml.YAMLError as exc:
        msg = "Project configuration is not valid YAML"
        details = {"path": str(config_file), "error": str(exc)}
        raise InvalidConfigError(msg, details=details) from exc
    if not isinstance(raw, dict):
        msg = "Project configuration must be a mapping"
        raise InvalidConfigError(msg, details={"path": str(config_file)})

    try:
        config = ProjectConfig.model_validate(raw)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in exc.errors(include_url=False, include_input=False)
        ]
        msg = "Project configuration failed validation"
        raise InvalidConfigError(msg, details={"path": str(config_file), "errors": errors}) from exc

    ids = [d.id for d in config.custom_doc_types] + [s.id for s in config.external_sources]
    if len(ids) != len(set(ids)):
        msg = "Duplicate doc type or external source id in project configuration"
        raise InvalidConfigError(msg, details={"path": str(config_file)})

    loaded = LoadedProject(
        config=config, config_file=config_file, root=project_root_for(config_file)
    )
    logger.info("Loaded project configuration for %r", loaded.project_name)
    return loaded


def normalize_root(root: Path | str) -> str:
    """Absolute root path with forward slashes and no trailing slash."""
    text = str(Path(root).resolve()).replace("\\", "/")
    return text.rstrip("/") or "/"


def compute_workspace_hash(root: Path | str) -> str:
    """First 16 hex chars of the SHA-256 of the normalized root path."""
    digest = hashlib.sha256(normalize_root(root).encode("utf-8")).hexdigest()
    return digest[:WORKSPACE_HASH_LENGTH]


def derive_tenant(project: LoadedProject, branch: str = DEFAULT_BRANCH) -> TenantContext:
    return TenantContext(
        project=project.project_name,
        branch=branch,
        workspace_hash=compute_workspace_hash(project.root),
    )
