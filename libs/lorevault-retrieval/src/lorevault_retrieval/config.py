"""Embedding and retrieval settings via environment variables."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings

from lorevault_core.errors import InvalidLevelError
from lorevault_core.models.enums import PromotionLevel


class EmbeddingConfig(BaseSettings):
    """Embedding provider settings, loaded from LOREVAULT_EMBED_* env vars."""

    model_config = {"env_prefix": "LOREVAULT_EMBED_"}

    provider: Literal["ollama", "openai"] = "ollama"
    base_url: str = "http://localhost:11434"
    api_key: SecretStr | None = None
    model: str = "nomic-embed-text"
    dimensions: int = Field(default=768, gt=0, le=16000)

    batch_size: int = Field(default=32, ge=1, le=2048)
    max_input_chars: int = Field(default=8000, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    overall_timeout: float = Field(default=120.0, gt=0)

    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay_ms: float = Field(default=200.0, ge=0)
    max_delay_ms: float = Field(default=5000.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True

    cache_enabled: bool = True
    cache_max_items: int = Field(default=10_000, ge=1)
    cache_ttl_seconds: float = Field(default=86_400.0, gt=0)


class RetrievalConfig(BaseSettings):
    """Search, context-assembly and promotion settings, from LOREVAULT_RETRIEVAL_* env vars."""

    model_config = {"env_prefix": "LOREVAULT_RETRIEVAL_"}

    default_limit: int = Field(default=10, ge=1, le=100)
    max_limit: int = Field(default=100, ge=1, le=100)
    default_max_sources: int = Field(default=5, ge=1, le=20)
    max_sources_limit: int = Field(default=20, ge=1, le=20)
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    top_tier_cap: int = Field(default=3, ge=0, le=20)
    search_timeout_seconds: float = Field(default=30.0, gt=0)
    max_context_chars: int = Field(default=24_000, ge=100)
    snippet_chars: int = Field(default=240, ge=0)
    ef_search: int | None = Field(default=None, ge=1, le=1000)

    boost_standard: float = Field(default=1.0, gt=0)
    boost_elevated: float = Field(default=1.5, gt=0)
    boost_pinned: float = Field(default=2.0, gt=0)
    promotion_aliases: dict[str, PromotionLevel] = {
        "promoted": PromotionLevel.ELEVATED,
        "important": PromotionLevel.ELEVATED,
        "critical": PromotionLevel.PINNED,
    }

    def boost_factor(self, level: PromotionLevel) -> float:
        return {
            PromotionLevel.STANDARD: self.boost_standard,
            PromotionLevel.ELEVATED: self.boost_elevated,
            PromotionLevel.PINNED: self.boost_pinned,
        }[level]

    def allowed_level_labels(self) -> list[str]:
        return [level.value for level in PromotionLevel] + sorted(self.promotion_aliases)

    def parse_level(self, label: str) -> PromotionLevel:
        """Resolve a level name or alias, case-insensitively. Raises InvalidLevelError."""
        key = label.strip().lower()
        if key in {level.value for level in PromotionLevel}:
            return PromotionLevel(key)
        alias = self.promotion_aliases.get(key)
        if alias is None:
            raise InvalidLevelError(label, self.allowed_level_labels())
        return alias
