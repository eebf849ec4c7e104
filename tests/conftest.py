"""Shared fixtures: tenants, a deterministic embedding provider and a project on disk."""

import hashlib
import math
import re
from collections.abc import Sequence
from pathlib import Path

import pytest

from lorevault_core.models.values import TenantContext

TEST_DIMENSIONS = 64

_TOKEN = re.compile(r"[a-z0-9]+")


class HashEmbeddingProvider:
    """Bag-of-words vectors: each token lands in a bucket chosen by its SHA-256.

    Texts sharing words are similar; identical texts get identical vectors.
    """

    def __init__(self, dimensions: int = TEST_DIMENSIONS, model: str = "hash-test") -> None:
        self.dimensions = dimensions
        self.model = model
        self.calls: list[list[str]] = []
        self.closed = False

    @property
    def model_name(self) -> str:
        return self.model

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            bucket = int(hashlib.sha256(token.encode()).hexdigest(), 16) % self.dimensions
            values[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in values))
        if norm == 0:
            values[0] = 1.0
            return values
        return [v / norm for v in values]

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def dims() -> int:
    return TEST_DIMENSIONS


@pytest.fixture
def hash_provider() -> HashEmbeddingProvider:
    return HashEmbeddingProvider()


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext(project="atlas", branch="main", workspace_hash="0123456789abcdef")


@pytest.fixture
def other_tenant() -> TenantContext:
    return TenantContext(project="atlas", branch="feature/login", workspace_hash="0123456789abcdef")


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project root with a minimal ``.lorevault/config.yaml``."""
    root = tmp_path / "atlas"
    (root / ".lorevault").mkdir(parents=True)
    (root / ".lorevault" / "config.yaml").write_text(
        "project_name: atlas\n"
        "chunking:\n"
        "  threshold_lines: 500\n"
        "  max_chunk_lines: 200\n"
        "custom_doc_types:\n"
        "  - id: runbook\n"
        "    name: Runbook\n"
        "    required_fields: [title, service]\n"
        "external_sources:\n"
        "  - id: python-docs\n"
        "    name: Python documentation\n",
        encoding="utf-8",
    )
    return root
