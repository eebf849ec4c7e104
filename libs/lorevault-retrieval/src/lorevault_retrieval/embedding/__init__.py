"""Embedding providers and the resilient adapter in front of them."""

from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
from lorevault_retrieval.embedding.cache import EmbeddingCache
from lorevault_retrieval.embedding.clients import (
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_provider,
)
from lorevault_retrieval.embedding.provider import EmbeddingProvider, EmbeddingProviderError
from lorevault_retrieval.embedding.retry import RetryPolicy

__all__ = [
    "EmbeddingAdapter",
    "EmbeddingCache",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "RetryPolicy",
    "create_provider",
]
