"""Shared fixtures for domain model tests."""

from datetime import UTC, datetime

import pytest

from lorevault_core.models.identifiers import ChunkId, DocumentId
from lorevault_core.models.values import EmbeddingVector

HASH_A = "a" * 64


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def document_id() -> DocumentId:
    return DocumentId("b7e4a1d9-2c3d-4e5f-8a7b-8c9d0e1f2a3b")


@pytest.fixture
def chunk_id() -> ChunkId:
    return ChunkId("c9f2b3e8-1a2b-5c4d-9e6f-7a8b9c0d1e2f")


@pytest.fixture
def content_hash() -> str:
    return HASH_A


@pytest.fixture
def embedding() -> EmbeddingVector:
    return EmbeddingVector(values=[0.1] * 8, dimensions=8, model_name="test-model")
