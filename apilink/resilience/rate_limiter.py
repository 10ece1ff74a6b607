"""
apilink Rate Limiter — Server-Feedback Admission Gate.

State comes only from the provider's response headers; nothing is
estimated client-side:
- x-ratelimit-remaining: requests left in the current window
- x-ratelimit-reset: epoch seconds when the window resets
- Retry-After (on 429): seconds, or an HTTP date
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Mapping
import logging
import time

from apilink.integrations.config import RateLimitConfig

logger = logging.getLogger(__name__)

REMAINING_HEADER = "x-ratelimit-remaining"
RESET_HEADER = "x-ratelimit-reset"
RETRY_AFTER_HEADER = "retry-after"


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int | None = None
    reset_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat() if self.reset_time else None,
        }


def _parse_number(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value.strip())
    except ValueError:
        return None


class RateLimiter:
    """Per-executor rate limit gate. All callers of one executor share it."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RateLimitConfig(respect_retry_after=False)
        self._clock = clock
        self._state: dict[str, float] = {}

    @property
    def respect_retry_after(self) -> bool:
        return self.config.respect_retry_after

    def admit(self) -> bool:
        """Return False while the server says the quota is spent and not yet reset."""
        remaining = self._state.get("remaining")
        if remaining is not None and remaining <= 0:
            reset = self._state.get("reset")
            if reset is not None and reset > self._clock():
                return False
        return True

    def update(self, headers: Mapping[str, str]) -> None:
        """Record the rate limit headers of the latest response."""
        remaining = _parse_number(headers.get(REMAINING_HEADER))
        if remaining is not None:
            self._state["remaining"] = int(remaining)
        reset = _parse_number(headers.get(RESET_HEADER))
        if reset is not None:
            self._state["reset"] = reset

    def retry_after(self, headers: Mapping[str, str]) -> float:
        """Seconds to wait before replaying a 429."""
        value = headers.get(RETRY_AFTER_HEADER)
        if not value:
            return self.config.retry_after

        seconds = _parse_number(value)
        if seconds is not None:
            return max(0.0, seconds)

        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.debug("Unparseable Retry-After header: %r", value)
            return self.config.retry_after
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, when.timestamp() - self._clock())

    def seconds_until_reset(self) -> float | None:
        reset = self._state.get("reset")
        if reset is None:
            return None
        return max(0.0, reset - self._clock())

    def status(self) -> RateLimitStatus:
        remaining = self._state.get("remaining")
        reset = self._state.get("reset")
        return RateLimitStatus(
            remaining=int(remaining) if remaining is not None else None,
            reset_time=datetime.fromtimestamp(reset, tz=timezone.utc) if reset is not None else None,
        )

    def reset(self) -> None:
        self._state.clear()
