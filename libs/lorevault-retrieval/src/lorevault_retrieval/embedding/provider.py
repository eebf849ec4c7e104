"""The narrow interface every embedding backend implements."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence


class EmbeddingProviderError(Exception):
    """A provider call failed: transport error, bad status or malformed body.

    ``retryable`` is False for failures another attempt cannot fix, such as a
    rejected API key or an unknown model.
    """

    def __init__(
        self, message: str, *, status_code: int | None = None, retryable: bool = True
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class EmbeddingProvider(Protocol):
    """Turns a batch of texts into one vector per text, in order."""

    @property
    def model_name(self) -> str: ...

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...

    async def aclose(self) -> None: ...
