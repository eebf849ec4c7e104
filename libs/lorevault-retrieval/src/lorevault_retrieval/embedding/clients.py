"""Embedding providers speaking the Ollama and OpenAI HTTP APIs over httpx."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from lorevault_retrieval.embedding.provider import EmbeddingProviderError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lorevault_retrieval.config import EmbeddingConfig

logger = logging.getLogger(__name__)

# Client errors another attempt will not fix.
_PERMANENT_STATUSES = frozenset({400, 401, 403, 404, 422})


def _check_status(response: httpx.Response, provider: str) -> None:
    if response.is_success:
        return
    status = response.status_code
    raise EmbeddingProviderError(
        f"{provider} embedding request failed with HTTP {status}",
        status_code=status,
        retryable=status not in _PERMANENT_STATUSES,
    )


def _as_vectors(raw: Any, expected: int, provider: str) -> list[list[float]]:
    if not isinstance(raw, list) or len(raw) != expected:
        count = len(raw) if isinstance(raw, list) else 0
        msg = f"{provider} returned {count} vectors for {expected} inputs"
        raise EmbeddingProviderError(msg)
    vectors: list[list[float]] = []
    for item in raw:
        if not isinstance(item, list) or not item:
            msg = f"{provider} returned a malformed vector"
            raise EmbeddingProviderError(msg)
        try:
            vectors.append([float(v) for v in item])
        except (TypeError, ValueError) as exc:
            msg = f"{provider} returned a non-numeric vector"
            raise EmbeddingProviderError(msg) from exc
    return vectors


class _HttpEmbeddingProvider:
    """Shared client lifecycle. A caller-supplied client is not closed by us."""

    provider_name = "http"

    def __init__(
        self,
        model: str,
        base_url: str,
        *,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers=headers,
        )

    @property
    def model_name(self) -> str:
        return self._model

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            msg = f"{self.provider_name} embedding request timed out"
            raise EmbeddingProviderError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"{self.provider_name} embedding request failed: {type(exc).__name__}"
            raise EmbeddingProviderError(msg) from exc
        _check_status(response, self.provider_name)
        try:
            return response.json()
        except ValueError as exc:
            msg = f"{self.provider_name} returned a non-JSON body"
            raise EmbeddingProviderError(msg) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class OllamaEmbeddingProvider(_HttpEmbeddingProvider):
    """``POST /api/embed`` with ``{"model", "input"}``; vectors under ``embeddings``."""

    provider_name = "ollama"

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        body = await self._post("/api/embed", {"model": self._model, "input": list(texts)})
        raw = body.get("embeddings") if isinstance(body, dict) else None
        return _as_vectors(raw, len(texts), self.provider_name)


class OpenAIEmbeddingProvider(_HttpEmbeddingProvider):
    """``POST /v1/embeddings``; ``data`` items are re-ordered by their ``index``."""

    provider_name = "openai"

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        body = await self._post("/v1/embeddings", {"model": self._model, "input": list(texts)})
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            msg = "openai response has no data array"
            raise EmbeddingProviderError(msg)
        try:
            ordered = sorted(data, key=lambda item: int(item["index"]))
            raw = [item["embedding"] for item in ordered]
        except (KeyError, TypeError, ValueError) as exc:
            msg = "openai response items are malformed"
            raise EmbeddingProviderError(msg) from exc
        return _as_vectors(raw, len(texts), self.provider_name)


def create_provider(
    config: EmbeddingConfig, client: httpx.AsyncClient | None = None
) -> OllamaEmbeddingProvider | OpenAIEmbeddingProvider:
    """Build the provider named by ``config.provider``."""
    if config.provider == "openai":
        headers = None
        if config.api_key is not None:
            headers = {"Authorization": f"Bearer {config.api_key.get_secret_value()}"}
        return OpenAIEmbeddingProvider(
            config.model,
            config.base_url,
            timeout=config.request_timeout,
            headers=headers,
            client=client,
        )
    return OllamaEmbeddingProvider(
        config.model, config.base_url, timeout=config.request_timeout, client=client
    )
