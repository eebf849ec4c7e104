"""Fixtures wiring the retrieval services to the in-memory store."""

from pathlib import Path
from typing import Any

import pytest

from lorevault_core.project import derive_tenant, load_project_config
from lorevault_core.session import ActiveTenant, TenantSession
from lorevault_retrieval.config import RetrievalConfig
from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
from lorevault_storage.memory import InMemoryVectorStore


@pytest.fixture
def store(dims: int) -> InMemoryVectorStore:
    return InMemoryVectorStore(dims)


@pytest.fixture
def embedder(hash_provider: Any, dims: int) -> EmbeddingAdapter:
    return EmbeddingAdapter(hash_provider, dims)


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig()


@pytest.fixture
def active(project_dir: Path) -> ActiveTenant:
    project = load_project_config(project_dir)
    return TenantSession().activate(derive_tenant(project), project)


@pytest.fixture
def other_active(project_dir: Path) -> ActiveTenant:
    """Same project checked out on another branch."""
    project = load_project_config(project_dir)
    return TenantSession().activate(derive_tenant(project, "feature/login"), project)
