"""
apilink — Request-execution core for third-party HTTP integrations.

Wraps outbound calls with pluggable auth, server-driven rate limiting,
retry with exponential backoff, response caching and bounded concurrency.
"""
__version__ = "0.1.0"

from apilink.integrations import (  # noqa: E402
    IntegrationConfig,
    IntegrationRegistry,
    RequestExecutor,
)

__all__ = [
    "__version__",
    "IntegrationConfig",
    "IntegrationRegistry",
    "RequestExecutor",
]
