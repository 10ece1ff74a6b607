"""
apilink Integration Configuration.

One IntegrationConfig per external service. The config itself is frozen;
only the token fields of OAuth2Auth / JWTAuth are rewritten in place when
credentials are refreshed.

Auth is a tagged variant: pass exactly one of OAuth2Auth, ApiKeyAuth,
BasicAuth, JWTAuth or CustomAuth (or None for unauthenticated services).
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Union
import os
import re

from apilink import __version__
from apilink.integrations.errors import ValidationError


# ---------------------------------------------------------------------------
# Auth variants
# ---------------------------------------------------------------------------

class AuthType(str, Enum):
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BASIC = "basic"
    JWT = "jwt"
    CUSTOM = "custom"


class ApiKeyPlacement(str, Enum):
    HEADER = "header"
    QUERY = "query"
    BODY = "body"


class JWTExpiryPolicy(str, Enum):
    ATTACH_STALE = "attach_stale"  # notify, then send the expired token anyway
    FAIL = "fail"                  # raise AuthError before dispatch


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class OAuth2Auth:
    """OAuth2 client credentials plus the current token set."""
    type: ClassVar[AuthType] = AuthType.OAUTH2

    client_id: str
    client_secret: str
    auth_url: str
    token_url: str
    refresh_url: str | None = None
    scopes: list[str] = field(default_factory=list)
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def __post_init__(self):
        self.expires_at = _as_utc(self.expires_at)

    def is_expired(self, now: datetime) -> bool:
        # Strictly in the past: a token expiring exactly now is still sent.
        return self.expires_at is not None and self.expires_at < now


@dataclass(frozen=True)
class ApiKeyAuth:
    type: ClassVar[AuthType] = AuthType.API_KEY

    key: str
    placement: ApiKeyPlacement = ApiKeyPlacement.HEADER
    header_name: str = "X-API-Key"
    param_name: str = "api_key"


@dataclass(frozen=True)
class BasicAuth:
    type: ClassVar[AuthType] = AuthType.BASIC

    username: str
    password: str


@dataclass
class JWTAuth:
    type: ClassVar[AuthType] = AuthType.JWT

    token: str
    expires_at: datetime | None = None
    refresh_token: str | None = None
    on_expired: JWTExpiryPolicy = JWTExpiryPolicy.ATTACH_STALE

    def __post_init__(self):
        self.expires_at = _as_utc(self.expires_at)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass(frozen=True)
class CustomAuth:
    """Caller-supplied signer: ``handler(PreparedRequest) -> PreparedRequest``.

    The handler may be a plain function or a coroutine function.
    """
    type: ClassVar[AuthType] = AuthType.CUSTOM

    handler: Callable[[Any], Union[Any, Awaitable[Any]]]


AuthConfig = Union[OAuth2Auth, ApiKeyAuth, BasicAuth, JWTAuth, CustomAuth]


# ---------------------------------------------------------------------------
# Pipeline sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitConfig:
    """Server-driven rate limiting.

    ``max_requests`` / ``window`` describe the provider's published quota and
    are informational; admission is decided from response headers only.
    """

    max_requests: int = 100
    window: float = 60.0
    retry_after: float = 60.0  # fallback wait when a 429 has no Retry-After
    respect_retry_after: bool = True


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retryable_statuses: frozenset[int] = frozenset({408, 500, 502, 503, 504})
    retryable_errors: frozenset[str] = frozenset({"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED"})


class CacheStrategy(str, Enum):
    FIFO = "fifo"
    LRU = "lru"
    TTL = "ttl"


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = True
    ttl: float = 300.0
    max_size: int = 1000
    strategy: CacheStrategy = CacheStrategy.FIFO
    exclude_patterns: tuple[str, ...] = ()

    def is_excluded(self, url: str) -> bool:
        return any(re.search(pattern, url) for pattern in self.exclude_patterns)


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IntegrationConfig:
    """Complete configuration for one external service.

    Usage::

        config = IntegrationConfig(
            id="crm",
            base_url="https://api.example.com/v2",
            auth=ApiKeyAuth(key="..."),
            retry=RetryConfig(max_retries=3, initial_delay=0.1),
            max_concurrent_requests=4,
        )
    """

    id: str
    base_url: str
    name: str = ""
    auth: AuthConfig | None = None
    rate_limit: RateLimitConfig | None = None
    retry: RetryConfig | None = None
    cache: CacheConfig | None = None
    timeout: float = 30.0
    max_concurrent_requests: int | None = None
    custom_headers: dict[str, str] = field(default_factory=dict)
    health_check_endpoint: str | None = None
    health_check_interval: float = 60.0
    health_check_timeout: float = 5.0
    user_agent: str = f"apilink/{__version__}"

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValidationError("Integration id must be a non-empty string")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValidationError(
                f"base_url must be an http(s) URL, got {self.base_url!r}",
                integration_id=self.id,
            )
        if self.timeout <= 0:
            raise ValidationError("timeout must be positive", integration_id=self.id)
        if self.max_concurrent_requests is not None and self.max_concurrent_requests < 1:
            raise ValidationError(
                "max_concurrent_requests must be at least 1", integration_id=self.id
            )
        if self.health_check_interval <= 0:
            raise ValidationError("health_check_interval must be positive", integration_id=self.id)
        if self.retry is not None:
            if self.retry.max_retries < 0 or self.retry.initial_delay < 0 or self.retry.backoff_factor < 1:
                raise ValidationError("invalid retry settings", integration_id=self.id)
        if self.cache is not None and self.cache.max_size < 1:
            raise ValidationError("cache max_size must be at least 1", integration_id=self.id)
        if not self.name:
            object.__setattr__(self, "name", self.id)

    @property
    def auth_type(self) -> AuthType | None:
        return self.auth.type if self.auth is not None else None

    @classmethod
    def from_env(cls, integration_id: str, prefix: str = "APILINK_") -> "IntegrationConfig":
        """Create config from environment variables.

        Example: APILINK_CRM_BASE_URL=https://api.example.com
                 APILINK_CRM_API_KEY=secret
        """
        scope = f"{prefix}{integration_id.upper()}_"
        base_url = os.getenv(f"{scope}BASE_URL")
        if not base_url:
            raise ValidationError(f"{scope}BASE_URL is not set", integration_id=integration_id)

        overrides: dict[str, Any] = {}
        timeout = os.getenv(f"{scope}TIMEOUT")
        if timeout:
            overrides["timeout"] = float(timeout)
        max_concurrent = os.getenv(f"{scope}MAX_CONCURRENT_REQUESTS")
        if max_concurrent:
            overrides["max_concurrent_requests"] = int(max_concurrent)
        health = os.getenv(f"{scope}HEALTH_CHECK_ENDPOINT")
        if health:
            overrides["health_check_endpoint"] = health
        api_key = os.getenv(f"{scope}API_KEY")
        if api_key:
            overrides["auth"] = ApiKeyAuth(
                key=api_key,
                header_name=os.getenv(f"{scope}API_KEY_HEADER", "X-API-Key"),
            )

        return cls(id=integration_id, base_url=base_url, **overrides)
