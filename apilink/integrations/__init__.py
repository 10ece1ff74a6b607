"""
apilink Integrations — Universal Request Pipeline.

Provides vendor-agnostic integration infrastructure:
- IntegrationConfig: per-service settings and auth variants
- AuthStrategy: credential attachment with single-flight OAuth2 refresh
- RequestExecutor: gate → cache → auth → rate limit → retry pipeline
- IntegrationRegistry: lifecycle, aggregation and event forwarding
- NotificationBus: typed lifecycle notifications
"""
from apilink.integrations.auth import AuthStrategy
from apilink.integrations.config import (
    ApiKeyAuth,
    ApiKeyPlacement,
    AuthConfig,
    AuthType,
    BasicAuth,
    CacheConfig,
    CacheStrategy,
    CustomAuth,
    IntegrationConfig,
    JWTAuth,
    JWTExpiryPolicy,
    OAuth2Auth,
    RateLimitConfig,
    RetryConfig,
)
from apilink.integrations.errors import (
    AuthError,
    IntegrationError,
    NotFoundError,
    RateLimitError,
    ResponseError,
    RetryExhaustedError,
    TransportError,
    ValidationError,
)
from apilink.integrations.events import (
    Notification,
    NotificationBus,
    NotificationType,
)
from apilink.integrations.executor import RequestExecutor
from apilink.integrations.metrics import (
    HealthStatus,
    IntegrationMetrics,
    RequestContext,
)
from apilink.integrations.registry import (
    ConnectionTestResult,
    IntegrationRegistry,
    RegistrationRecord,
)
from apilink.integrations.transport import (
    HttpxTransport,
    IntegrationResponse,
    PreparedRequest,
    Transport,
)

__all__ = [
    # Config
    "ApiKeyAuth",
    "ApiKeyPlacement",
    "AuthConfig",
    "AuthType",
    "BasicAuth",
    "CacheConfig",
    "CacheStrategy",
    "CustomAuth",
    "IntegrationConfig",
    "JWTAuth",
    "JWTExpiryPolicy",
    "OAuth2Auth",
    "RateLimitConfig",
    "RetryConfig",
    # Errors
    "AuthError",
    "IntegrationError",
    "NotFoundError",
    "RateLimitError",
    "ResponseError",
    "RetryExhaustedError",
    "TransportError",
    "ValidationError",
    # Events
    "Notification",
    "NotificationBus",
    "NotificationType",
    # Pipeline
    "AuthStrategy",
    "RequestExecutor",
    "HealthStatus",
    "IntegrationMetrics",
    "RequestContext",
    # Registry
    "ConnectionTestResult",
    "IntegrationRegistry",
    "RegistrationRecord",
    # Transport
    "HttpxTransport",
    "IntegrationResponse",
    "PreparedRequest",
    "Transport",
]
