"""Custom exceptions for clobbr.

All clobbr-specific exceptions inherit from ClobbrError for unified error handling.
Each exception preserves the original cause chain for debugging.
"""

from __future__ import annotations

from typing import Any


class ClobbrError(Exception):
    """Base exception for all clobbr errors.

    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base

    def with_context(self, **kwargs: Any) -> "ClobbrError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class ClobbrValidationError(ClobbrError):
    """Raised when a run is rejected before any request is dispatched.

    Common causes:
    - Empty URL
    - URL without scheme or host
    - Unsupported HTTP verb

    Attributes:
        errors: Every validation message, in the order they were found
    """

    def __init__(self, errors: list[str], **kwargs: Any) -> None:
        super().__init__("; ".join(errors) or "Invalid run settings", **kwargs)
        self.errors = list(errors)


class ClobbrConfigError(ClobbrError):
    """Raised when run settings are invalid or the settings file cannot be loaded.

    Common causes:
    - Settings file not found
    - Invalid YAML syntax
    - Invalid field values (e.g., iterations < 1)
    """


class ClobbrTransportError(ClobbrError):
    """Raised by a transport when no HTTP response could be obtained.

    Common causes:
    - Connection refused
    - DNS resolution failure
    - Timeout expiry
    - Malformed response / protocol error
    """


class ClobbrRunnerError(ClobbrError):
    """Raised when a run cannot be started from the given inputs."""
