"""Tests for EmbeddingAdapter: batching, truncation, retry, deadlines and checks."""

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest

from lorevault_core.errors import DegradedEmbeddingError
from lorevault_retrieval.config import EmbeddingConfig
from lorevault_retrieval.embedding.adapter import EmbeddingAdapter
from lorevault_retrieval.embedding.cache import EmbeddingCache
from lorevault_retrieval.embedding.provider import EmbeddingProviderError
from lorevault_retrieval.embedding.retry import RetryPolicy
from lorevault_storage.exceptions import DimensionMismatchError

DIMS = 3


class ScriptedProvider:
    """Fails according to ``failures`` (one entry per call), then returns constant vectors."""

    model_name = "scripted"

    def __init__(self, failures: Sequence[Exception | None] = (), vector: Any = None) -> None:
        self.failures = list(failures)
        self.vector = vector if vector is not None else [0.5] * DIMS
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        return [list(self.vector) for _ in texts]

    async def aclose(self) -> None:
        pass


class SlowProvider(ScriptedProvider):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        await asyncio.sleep(self.delay)
        return await super().embed(texts)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _adapter(provider: Any, **kwargs: Any) -> EmbeddingAdapter:
    kwargs.setdefault("retry", RetryPolicy(max_retries=2, initial_delay_ms=100, jitter=False))
    kwargs.setdefault("sleep", RecordingSleep())
    return EmbeddingAdapter(provider, DIMS, **kwargs)


class TestEmbed:
    async def test_single(self) -> None:
        vector = await _adapter(ScriptedProvider()).embed("hello")
        assert vector.dimensions == DIMS
        assert vector.model_name == "scripted"

    async def test_empty_batch(self) -> None:
        provider = ScriptedProvider()
        assert await _adapter(provider).embed_batch([]) == []
        assert provider.calls == []

    async def test_batches_in_order(self) -> None:
        provider = ScriptedProvider()
        adapter = _adapter(provider, batch_size=2)
        vectors = await adapter.embed_batch(["a", "b", "c", "d", "e"])
        assert len(vectors) == 5
        assert provider.calls == [["a", "b"], ["c", "d"], ["e"]]

    async def test_inputs_truncated(self) -> None:
        provider = ScriptedProvider()
        await _adapter(provider, max_input_chars=4).embed("abcdefgh")
        assert provider.calls == [["abcd"]]


class TestRetry:
    async def test_recovers_after_transient_failures(self) -> None:
        sleep = RecordingSleep()
        provider = ScriptedProvider([EmbeddingProviderError("503"), EmbeddingProviderError("503")])
        vector = await _adapter(provider, sleep=sleep).embed("x")
        assert vector.dimensions == DIMS
        assert len(provider.calls) == 3
        assert sleep.delays == pytest.approx([0.1, 0.2])

    async def test_exhaustion_is_degraded(self) -> None:
        provider = ScriptedProvider([EmbeddingProviderError("down")] * 3)
        with pytest.raises(DegradedEmbeddingError) as exc_info:
            await _adapter(provider).embed("x")
        assert exc_info.value.retryable
        assert len(provider.calls) == 3

    async def test_permanent_error_not_retried(self) -> None:
        provider = ScriptedProvider(
            [EmbeddingProviderError("bad key", status_code=401, retryable=False)]
        )
        with pytest.raises(DegradedEmbeddingError):
            await _adapter(provider).embed("x")
        assert len(provider.calls) == 1

    async def test_attempt_timeout_is_retried(self) -> None:
        provider = SlowProvider(delay=0.2)
        adapter = _adapter(provider, request_timeout=0.01, retry=RetryPolicy(max_retries=1))
        with pytest.raises(DegradedEmbeddingError):
            await adapter.embed("x")

    async def test_overall_deadline(self) -> None:
        provider = SlowProvider(delay=0.05)
        adapter = _adapter(provider, batch_size=1, overall_timeout=0.08)
        with pytest.raises(DegradedEmbeddingError, match="deadline"):
            await adapter.embed_batch(["a", "b", "c", "d"])

    async def test_cancellation_propagates(self) -> None:
        adapter = _adapter(SlowProvider(delay=1.0))
        task = asyncio.create_task(adapter.embed("x"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestVectorChecks:
    async def test_wrong_dimensions(self) -> None:
        provider = ScriptedProvider(vector=[0.1] * (DIMS + 1))
        with pytest.raises(DimensionMismatchError):
            await _adapter(provider).embed("x")

    async def test_non_finite_values(self) -> None:
        provider = ScriptedProvider(vector=[0.1, float("inf"), 0.1])
        with pytest.raises(DegradedEmbeddingError, match="non-finite"):
            await _adapter(provider).embed("x")

    async def test_wrong_vector_count(self) -> None:
        class ShortProvider(ScriptedProvider):
            async def embed(self, texts: Sequence[str]) -> list[list[float]]:
                return [[0.1] * DIMS]

        with pytest.raises(DegradedEmbeddingError, match="1 vectors for 2 texts"):
            await _adapter(ShortProvider()).embed_batch(["a", "b"])


class TestCache:
    async def test_cached_texts_skip_provider(self) -> None:
        provider = ScriptedProvider()
        cache = EmbeddingCache()
        adapter = _adapter(provider, cache=cache)

        await adapter.embed_batch(["a", "b"])
        await adapter.embed_batch(["a", "b", "c"])

        assert provider.calls == [["a", "b"], ["c"]]
        assert cache.hits == 2

    async def test_failure_caches_nothing(self) -> None:
        cache = EmbeddingCache()
        provider = ScriptedProvider([EmbeddingProviderError("down")] * 3)
        with pytest.raises(DegradedEmbeddingError):
            await _adapter(provider, cache=cache).embed("a")
        assert len(cache) == 0


class TestFromConfig:
    def test_builds_from_config(self) -> None:
        config = EmbeddingConfig(dimensions=DIMS, batch_size=7, cache_enabled=False)
        adapter = EmbeddingAdapter.from_config(config, provider=ScriptedProvider())
        assert adapter.dimensions == DIMS
        assert adapter.cache is None
        assert adapter.model_name == "scripted"

    def test_dimensions_override(self) -> None:
        adapter = EmbeddingAdapter.from_config(
            EmbeddingConfig(), provider=ScriptedProvider(), dimensions=DIMS
        )
        assert adapter.dimensions == DIMS
        assert adapter.cache is not None

    async def test_aclose_closes_provider(self) -> None:
        closed: list[bool] = []

        class ClosingProvider(ScriptedProvider):
            async def aclose(self) -> None:
                closed.append(True)

        await _adapter(ClosingProvider()).aclose()
        assert closed == [True]
