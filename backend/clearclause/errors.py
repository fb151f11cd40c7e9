"""
Error taxonomy for the ClearClause analysis pipeline.
"""

from typing import Any, Dict, Optional


class ClearClauseError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.message


class InvalidInput(ClearClauseError):
    """Contract text is empty, missing or unusable."""


class ConfigurationError(ClearClauseError):
    """Configuration values are out of range or inconsistent."""


class ModelNotLoaded(ClearClauseError):
    """An inference was requested while no model is resident."""


class OperationTimeoutError(ClearClauseError, TimeoutError):
    """A load, inference or optimization exceeded its time budget."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"{operation} exceeded its time budget of {timeout_seconds:g}s",
            {"operation": operation, "timeout_seconds": timeout_seconds}
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class InferenceFailure(ClearClauseError):
    """The model call raised or returned unusable content."""


class ResourceExhausted(ClearClauseError):
    """Memory ceiling would be breached even after optimization."""

    def __init__(self, message: str, required_mb: float = 0.0, limit_mb: float = 0.0):
        super().__init__(message, {"required_mb": required_mb, "limit_mb": limit_mb})
        self.required_mb = required_mb
        self.limit_mb = limit_mb


class FallbackFailure(ClearClauseError):
    """The remote analysis path failed."""

    def __init__(
        self,
        message: str,
        code: str = "FALLBACK_FAILED",
        status_code: Optional[int] = None,
        primary_error: Optional[BaseException] = None,
        fallback_error: Optional[BaseException] = None
    ):
        super().__init__(message, {"code": code, "status_code": status_code})
        self.code = code
        self.status_code = status_code
        self.primary_error = primary_error
        self.fallback_error = fallback_error


def describe_error(exc: BaseException) -> str:
    """Render an exception as '<Kind>: <message>' for logs and fallback reasons."""
    message = str(exc) or repr(exc)
    return f"{type(exc).__name__}: {message}"
