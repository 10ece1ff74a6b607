"""
apilink Retry Policy — Failure Classification + Exponential Backoff.

delay(n) = min(initial_delay * backoff_factor ** n, max_delay)

No jitter: delays are exact so callers can reason about worst-case latency.
"""
from __future__ import annotations
from dataclasses import dataclass

from apilink.integrations.config import RetryConfig
from apilink.integrations.errors import TransportError
from apilink.integrations.transport import IntegrationResponse


@dataclass(frozen=True)
class Outcome:
    """Result of one dispatch: exactly one of ``response`` / ``error`` is set."""
    response: IntegrationResponse | None = None
    error: TransportError | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None and self.response.ok

    @property
    def status(self) -> int | None:
        return self.response.status_code if self.response is not None else None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None


class RetryPolicy:
    """Decides whether a failed attempt is retried and how long to wait."""

    def __init__(self, config: RetryConfig | None = None):
        self.config = config

    @property
    def max_retries(self) -> int:
        return self.config.max_retries if self.config else 0

    def is_retryable(self, outcome: Outcome) -> bool:
        """True if the failure class is retryable, ignoring attempt count."""
        if self.config is None or outcome.ok:
            return False
        if outcome.status is not None and outcome.status in self.config.retryable_statuses:
            return True
        if outcome.error_code is not None and outcome.error_code in self.config.retryable_errors:
            return True
        return False

    def should_retry(self, outcome: Outcome, attempt: int) -> bool:
        return attempt < self.max_retries and self.is_retryable(outcome)

    def next_delay(self, attempt: int) -> float:
        if self.config is None:
            return 0.0
        return min(
            self.config.initial_delay * (self.config.backoff_factor ** attempt),
            self.config.max_delay,
        )
