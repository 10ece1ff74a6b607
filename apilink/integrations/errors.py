"""
apilink Error Taxonomy.

Every error surfaced by an executor is an IntegrationError annotated with
the integration id and the number of attempts made. The original failure
is kept as ``__cause__``.

- AuthError: missing/invalid credentials or refresh failure (never retried)
- ValidationError: malformed config or duplicate registration (never retried)
- RateLimitError: admission refused, or 429 that was not replayed
- TransportError: network-level failure (retryable by error code)
- ResponseError: non-2xx response that was not retried
- RetryExhaustedError: retryable failure with all attempts consumed
"""
from __future__ import annotations
from typing import Any


class IntegrationError(Exception):
    """Base class for all apilink errors."""

    def __init__(
        self,
        message: str,
        *,
        integration_id: str | None = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.integration_id = integration_id
        self.attempts = attempts

    def annotate(self, integration_id: str, attempts: int) -> "IntegrationError":
        """Attach call-site context without losing the original message."""
        if self.integration_id is None:
            self.integration_id = integration_id
        self.attempts = max(self.attempts, attempts)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "integration_id": self.integration_id,
            "attempts": self.attempts,
            "cause": repr(self.__cause__) if self.__cause__ else None,
        }

    def __str__(self) -> str:
        if self.integration_id:
            return f"[{self.integration_id}] {self.message} (attempts={self.attempts})"
        return self.message


class AuthError(IntegrationError):
    pass


class ValidationError(IntegrationError):
    pass


class NotFoundError(ValidationError):
    pass


class RateLimitError(IntegrationError):
    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TransportError(IntegrationError):
    """Network failure. ``code`` mirrors the classic errno-style names."""

    def __init__(self, message: str, *, code: str = "ENETWORK", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.code = code


class ResponseError(IntegrationError):
    def __init__(self, message: str, *, status_code: int, response: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response = response


class RetryExhaustedError(IntegrationError):
    def __init__(self, message: str, *, last_error: IntegrationError | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.last_error = last_error
