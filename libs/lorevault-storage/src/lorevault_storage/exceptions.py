"""Storage error hierarchy for lorevault-storage."""

from lorevault_core.errors import LorevaultError
from lorevault_core.models.enums import ErrorCode


class StorageError(LorevaultError):
    """Base exception for all storage-related errors."""


class StoreUnavailableError(StorageError):
    """The backing engine could not be reached. Safe to retry with backoff."""

    code = ErrorCode.STORE_UNAVAILABLE
    retryable = True


class InvalidEntityError(StorageError):
    """A write violated a store invariant. Not retryable; the caller has a bug."""

    code = ErrorCode.INVALID_ENTITY


class DimensionMismatchError(InvalidEntityError):
    """A vector does not have the collection's dimensionality."""

    def __init__(self, expected: int, actual: int, *, what: str = "vector") -> None:
        super().__init__(
            f"{what} has {actual} dimensions, collection expects {expected}",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class MissingTenantError(InvalidEntityError):
    """A row without a complete tenant context, or with one that disagrees with its parent."""
