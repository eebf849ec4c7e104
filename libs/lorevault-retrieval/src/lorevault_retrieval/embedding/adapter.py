"""Resilient front end to an embedding provider.

The adapter owns everything between "texts in" and "validated vectors out":
input truncation, batching, per-attempt and overall deadlines, bounded retry
with backoff, an optional cache and the dimensionality check. It never returns
a placeholder vector; when the provider cannot deliver, callers get
DegradedEmbeddingError and must leave stored state untouched.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING

from lorevault_core.errors import DegradedEmbeddingError
from lorevault_core.models.values import EmbeddingVector
from lorevault_retrieval.embedding.cache import EmbeddingCache
from lorevault_retrieval.embedding.clients import create_provider
from lorevault_retrieval.embedding.provider import EmbeddingProviderError
from lorevault_retrieval.embedding.retry import RetryPolicy
from lorevault_storage.exceptions import DimensionMismatchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from lorevault_retrieval.config import EmbeddingConfig
    from lorevault_retrieval.embedding.provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingAdapter:
    """Embeds texts through ``provider`` into vectors of exactly ``dimensions`` values."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimensions: int,
        *,
        batch_size: int = 32,
        max_input_chars: int = 8000,
        request_timeout: float = 30.0,
        overall_timeout: float = 120.0,
        retry: RetryPolicy | None = None,
        cache: EmbeddingCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._max_input_chars = max_input_chars
        self._request_timeout = request_timeout
        self._overall_timeout = overall_timeout
        self._retry = retry or RetryPolicy()
        self._cache = cache
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: EmbeddingConfig,
        provider: EmbeddingProvider | None = None,
        dimensions: int | None = None,
    ) -> EmbeddingAdapter:
        cache = None
        if config.cache_enabled:
            cache = EmbeddingCache(config.cache_max_items, config.cache_ttl_seconds)
        return cls(
            provider or create_provider(config),
            dimensions or config.dimensions,
            batch_size=config.batch_size,
            max_input_chars=config.max_input_chars,
            request_timeout=config.request_timeout,
            overall_timeout=config.overall_timeout,
            retry=RetryPolicy(
                max_retries=config.max_retries,
                initial_delay_ms=config.initial_delay_ms,
                max_delay_ms=config.max_delay_ms,
                backoff_multiplier=config.backoff_multiplier,
                jitter=config.jitter,
            ),
            cache=cache,
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    @property
    def max_input_chars(self) -> int:
        return self._max_input_chars

    @property
    def cache(self) -> EmbeddingCache | None:
        return self._cache

    async def aclose(self) -> None:
        await self._provider.aclose()

    async def embed(self, text: str) -> EmbeddingVector:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingVector]:
        """Embed ``texts`` in order. Raises DegradedEmbeddingError or DimensionMismatchError."""
        if not texts:
            return []
        inputs = [text[: self._max_input_chars] for text in texts]
        vectors: list[list[float] | None] = [None] * len(inputs)
        model = self._provider.model_name

        pending: list[int] = []
        for i, text in enumerate(inputs):
            cached = self._cache.get(model, text) if self._cache is not None else None
            if cached is not None:
                vectors[i] = cached
            else:
                pending.append(i)

        started = time.monotonic()
        try:
            async with asyncio.timeout(self._overall_timeout):
                for offset in range(0, len(pending), self._batch_size):
                    batch = pending[offset : offset + self._batch_size]
                    result = await self._embed_with_retry([inputs[i] for i in batch])
                    for i, vector in zip(batch, result, strict=True):
                        vectors[i] = vector
                        if self._cache is not None:
                            self._cache.put(model, inputs[i], vector)
        except TimeoutError as exc:
            logger.warning(
                "Embedding of %d texts exceeded overall deadline of %.1fs",
                len(pending),
                self._overall_timeout,
            )
            msg = "Embedding did not complete before its deadline"
            raise DegradedEmbeddingError(
                msg, details={"texts": len(inputs), "timeout_seconds": self._overall_timeout}
            ) from exc

        if pending:
            logger.debug(
                "Embedded %d texts (%d cached, %d chars) in %.0fms",
                len(inputs),
                len(inputs) - len(pending),
                sum(len(inputs[i]) for i in pending),
                (time.monotonic() - started) * 1000,
            )
        return [
            EmbeddingVector(values=v, dimensions=self._dimensions, model_name=model)
            for v in vectors
            if v is not None
        ]

    async def _embed_with_retry(self, batch: list[str]) -> list[list[float]]:
        last_error: Exception | None = None
        for attempt in range(self._retry.max_attempts):
            if attempt:
                delay = self._retry.calculate_delay(attempt - 1)
                logger.debug("Embedding retry %d after %.3fs", attempt, delay)
                await self._sleep(delay)
            try:
                async with asyncio.timeout(self._request_timeout):
                    vectors = await self._provider.embed(batch)
            except TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "Embedding attempt %d/%d timed out (%d texts)",
                    attempt + 1,
                    self._retry.max_attempts,
                    len(batch),
                )
                continue
            except EmbeddingProviderError as exc:
                last_error = exc
                logger.warning(
                    "Embedding attempt %d/%d failed (%d texts, status=%s)",
                    attempt + 1,
                    self._retry.max_attempts,
                    len(batch),
                    exc.status_code,
                )
                if not exc.retryable:
                    break
                continue
            self._check_vectors(vectors, len(batch))
            return vectors

        msg = "Embedding provider unavailable"
        raise DegradedEmbeddingError(
            msg, details={"texts": len(batch), "reason": type(last_error).__name__}
        ) from last_error

    def _check_vectors(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            msg = f"Provider returned {len(vectors)} vectors for {expected} texts"
            raise DegradedEmbeddingError(msg)
        for vector in vectors:
            if len(vector) != self._dimensions:
                raise DimensionMismatchError(
                    self._dimensions, len(vector), what="provider embedding"
                )
            if not all(math.isfinite(v) for v in vector):
                msg = "Provider returned a vector with non-finite values"
                raise DegradedEmbeddingError(msg)
