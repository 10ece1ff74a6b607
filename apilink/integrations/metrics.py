"""
apilink Metrics + Request Context.

IntegrationMetrics is owned by one executor and shared by all of its
callers. Every update happens in a single synchronous step, so a snapshot
taken between awaits is always internally consistent.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
import time
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IntegrationMetrics:
    """Counters for one integration."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limit_hits: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    retries: int = 0
    average_response_time: float = 0.0  # ms, running mean over completed calls
    last_request_time: datetime | None = None
    active_requests: int = 0
    queued_requests: int = 0

    def record_completion(self, elapsed_ms: float, success: bool) -> None:
        total_time = self.average_response_time * self.total_requests
        self.total_requests += 1
        self.average_response_time = (total_time + elapsed_ms) / self.total_requests
        self.last_request_time = utcnow()
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    def snapshot(self) -> "IntegrationMetrics":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful": self.successful_requests,
            "failed": self.failed_requests,
            "rate_limit_hits": self.rate_limit_hits,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "retries": self.retries,
            "error_rate": round(self.error_rate, 4),
            "avg_response_time_ms": round(self.average_response_time, 1),
            "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None,
            "active_requests": self.active_requests,
            "queued_requests": self.queued_requests,
        }


@dataclass
class RequestContext:
    """Per-call state that travels with a request across retries."""
    integration_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: float = field(default_factory=time.perf_counter)
    retry_count: int = 0
    cached: bool = False
    replayed: bool = False

    @property
    def attempts(self) -> int:
        return 1 + self.retry_count + (1 if self.replayed else 0)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


@dataclass
class HealthStatus:
    """Result of the most recent health probe."""
    integration_id: str
    healthy: bool = True
    last_checked: datetime | None = None
    last_status: int | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "healthy": self.healthy,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "last_status": self.last_status,
            "last_error": self.last_error,
        }
