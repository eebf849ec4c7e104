"""Error hierarchy shared by every lorevault library.

Each exception carries the :class:`ErrorCode` reported to callers and whether a
caller may reasonably retry. Library code raises these; only the gateway turns
them into response envelopes.
"""

from typing import Any, Self

from pydantic import ValidationError

from lorevault_core.models.enums import ErrorCode


class LorevaultError(Exception):
    """Base exception for all lorevault errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class RequestValidationError(LorevaultError):
    """Malformed or out-of-range input, rejected before touching storage."""

    code = ErrorCode.VALIDATION_ERROR

    @classmethod
    def from_pydantic(cls, exc: ValidationError, message: str = "Invalid request") -> Self:
        """Flatten a pydantic ValidationError into field-level details."""
        fields = [
            {
                "field": ".".join(str(p) for p in err["loc"]) or "__root__",
                "message": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors(include_url=False, include_input=False)
        ]
        return cls(message, details={"errors": fields})


class UnsafePathError(RequestValidationError):
    """A path failed traversal or containment checks."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Unsafe path rejected: {reason}", details={"reason": reason})
        # Keep the raw path off the message; it may carry injected bytes.
        self.path = path
        self.reason = reason


class TenantNotActivatedError(LorevaultError):
    """A data operation was attempted before a tenant was activated."""

    code = ErrorCode.TENANT_NOT_ACTIVATED

    def __init__(self) -> None:
        super().__init__("No active tenant. Call activate() first.")


class NotFoundError(LorevaultError):
    """The addressed entity does not exist in the active tenant."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}", details={"kind": kind, "key": key})
        self.kind = kind
        self.key = key


class ConfigNotFoundError(LorevaultError):
    """The project configuration file does not exist."""

    code = ErrorCode.CONFIG_NOT_FOUND

    def __init__(self, path: str) -> None:
        super().__init__(f"Project configuration not found: {path}", details={"path": path})
        self.path = path


class InvalidConfigError(LorevaultError):
    """The project configuration exists but cannot be parsed or validated."""

    code = ErrorCode.INVALID_CONFIG


class InvalidLevelError(LorevaultError):
    """An unknown promotion level label."""

    code = ErrorCode.INVALID_LEVEL

    def __init__(self, label: str, allowed: list[str]) -> None:
        super().__init__(
            f"Invalid promotion level {label!r}. Allowed: {', '.join(allowed)}",
            details={"level": label, "allowed": allowed},
        )
        self.label = label


class InvalidDocTypeError(LorevaultError):
    """An unknown document type."""

    code = ErrorCode.INVALID_DOC_TYPE

    def __init__(self, doc_type: str, allowed: list[str]) -> None:
        super().__init__(
            f"Invalid doc_type {doc_type!r}. Allowed: {', '.join(allowed)}",
            details={"doc_type": doc_type, "allowed": allowed},
        )
        self.doc_type = doc_type


class DegradedEmbeddingError(LorevaultError):
    """The embedding provider could not produce vectors within the retry budget."""

    code = ErrorCode.DEGRADED_EMBEDDING
    retryable = True


class DeadlineExceededError(LorevaultError):
    """An operation did not finish before its deadline."""

    code = ErrorCode.DEADLINE_EXCEEDED
    retryable = True

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            f"{operation} exceeded its deadline of {timeout:g}s",
            details={"operation": operation, "timeout_seconds": timeout},
        )

