"""Domain enumerations for lorevault."""

from enum import StrEnum
from typing import Self


class PromotionLevel(StrEnum):
    """Priority tier of a document, propagated to its chunks. Ordered low to high."""

    STANDARD = "standard"
    ELEVATED = "elevated"
    PINNED = "pinned"

    @property
    def rank(self) -> int:
        return _PROMOTION_RANKS[self]

    @classmethod
    def top(cls) -> Self:
        return cls.PINNED

    @classmethod
    def at_least(cls, minimum: "PromotionLevel") -> list["PromotionLevel"]:
        """All levels ranked at or above ``minimum``, highest first."""
        return sorted(
            (lvl for lvl in cls if lvl.rank >= minimum.rank), key=lambda lvl: lvl.rank, reverse=True
        )


_PROMOTION_RANKS = {
    PromotionLevel.STANDARD: 0,
    PromotionLevel.ELEVATED: 1,
    PromotionLevel.PINNED: 2,
}


class IndexStatus(StrEnum):
    """Outcome of an index call."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class SessionState(StrEnum):
    """Lifecycle of a client session's tenant binding."""

    NO_TENANT = "no_tenant"
    ACTIVE = "active"


class IndexProfile(StrEnum):
    """ANN tuning presets keyed by expected collection size."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class ErrorCode(StrEnum):
    """Machine-readable error codes surfaced to callers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    TENANT_NOT_ACTIVATED = "TENANT_NOT_ACTIVATED"
    NOT_FOUND = "NOT_FOUND"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INVALID_ENTITY = "INVALID_ENTITY"
    DEGRADED_EMBEDDING = "DEGRADED_EMBEDDING"
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_LEVEL = "INVALID_LEVEL"
    INVALID_DOC_TYPE = "INVALID_DOC_TYPE"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
