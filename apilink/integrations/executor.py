"""
apilink Request Executor.

Every external service integration is a RequestExecutor (or a subclass
that adds service-specific calls on top of ``request``). One executor owns,
for one service:
- Bounded FIFO concurrency (ConcurrencyGate)
- GET response caching (ResponseCache)
- Credential attachment and refresh (AuthStrategy)
- Header-driven rate limiting + 429 replay (RateLimiter)
- Retry with exponential backoff (RetryPolicy)
- Metrics, health probing and lifecycle notifications

Lifecycle of one call:
    queued → admitted → authenticated → dispatched →
        succeeded
      | rate_limited → replayed once → dispatched
      | retryable_failure → retried → dispatched
      | failed
"""
from __future__ import annotations
from contextlib import suppress
from dataclasses import replace
from typing import Any, Awaitable, Callable
import asyncio
import logging

from apilink.integrations.auth import AuthStrategy
from apilink.integrations.config import IntegrationConfig
from apilink.integrations.errors import (
    IntegrationError,
    RateLimitError,
    ResponseError,
    RetryExhaustedError,
    TransportError,
)
from apilink.integrations.events import NotificationBus, NotificationType
from apilink.integrations.metrics import (
    HealthStatus,
    IntegrationMetrics,
    RequestContext,
    utcnow,
)
from apilink.integrations.transport import (
    HttpxTransport,
    IntegrationResponse,
    PreparedRequest,
    Transport,
)
from apilink.observability.tracing import annotate_span, request_span
from apilink.resilience.cache import ResponseCache, make_cache_key
from apilink.resilience.concurrency import ConcurrencyGate
from apilink.resilience.rate_limiter import RateLimiter, RateLimitStatus
from apilink.resilience.retry import Outcome, RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RequestExecutor:
    """
    Executes requests against one external service.

    Subclasses may override:
        initialize():      extra setup, call super() to start health checks
        cleanup():         extra teardown, call super() to release resources
        test_connection(): service-specific connectivity probe
    """

    def __init__(
        self,
        config: IntegrationConfig,
        transport: Transport | None = None,
        *,
        tracer: Any = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport()
        self._tracer = tracer
        self._sleep = sleep

        self.events = NotificationBus()
        self._metrics = IntegrationMetrics()
        self._health = HealthStatus(integration_id=config.id)
        self._gate = ConcurrencyGate(config.max_concurrent_requests)
        self._rate_limiter = RateLimiter(config.rate_limit)
        self._retry = RetryPolicy(config.retry)
        self._cache: ResponseCache | None = None
        if config.cache is not None and config.cache.enabled:
            self._cache = ResponseCache(config.cache)
        self._auth = AuthStrategy(config.id, config.auth, self._transport, self.events)

        self._health_task: asyncio.Task | None = None
        self._initialized = False

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_healthy(self) -> bool:
        return self._health.healthy

    @property
    def initialized(self) -> bool:
        return self._initialized

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Start background health checks. Idempotent."""
        if self._initialized:
            return
        if self.config.health_check_endpoint:
            self._health_task = asyncio.get_running_loop().create_task(
                self._health_loop(), name=f"apilink-health-{self.id}"
            )
        self._initialized = True
        logger.info("Integration %s initialized", self.id)

    async def cleanup(self) -> None:
        """Cancel health checks, drop cached and rate limit state, close an owned transport."""
        if self._health_task is not None:
            self._health_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._health_task
            self._health_task = None
        if self._cache is not None:
            self._cache.clear()
        self._rate_limiter.reset()
        if self._owns_transport:
            await self._transport.aclose()
        self._initialized = False
        logger.info("Integration %s cleaned up", self.id)

    async def __aenter__(self) -> "RequestExecutor":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()

    # --- Request pipeline ---

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path:
            return self.config.base_url
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _base_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent, **self.config.custom_headers, **(extra or {})}

    async def request(
        self,
        method: str,
        path: str = "",
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
    ) -> IntegrationResponse:
        """Run one logical call through the full pipeline.

        Returns the final response, or raises exactly one IntegrationError.
        """
        prepared = PreparedRequest(
            method=method.upper(),
            url=self._url(path),
            params=dict(params or {}),
            headers=self._base_headers(headers),
            json=json,
            data=data,
            timeout=timeout or self.config.timeout,
        )
        ctx = RequestContext(integration_id=self.id)

        with request_span(self._tracer, self.id, prepared.method, prepared.url) as span:
            async with self._gate.slot():
                response = await self._execute(prepared, ctx, cache_ttl)
            annotate_span(
                span,
                **{
                    "http.status_code": response.status_code,
                    "integration.attempts": ctx.attempts,
                    "integration.cached": ctx.cached,
                },
            )
        return response

    async def get(self, path: str = "", **kwargs: Any) -> IntegrationResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str = "", json: Any = None, **kwargs: Any) -> IntegrationResponse:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str = "", json: Any = None, **kwargs: Any) -> IntegrationResponse:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str = "", json: Any = None, **kwargs: Any) -> IntegrationResponse:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str = "", **kwargs: Any) -> IntegrationResponse:
        return await self.request("DELETE", path, **kwargs)

    async def _execute(
        self,
        prepared: PreparedRequest,
        ctx: RequestContext,
        cache_ttl: float | None,
    ) -> IntegrationResponse:
        cache_key = self._cache_key(prepared)
        if cache_key is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                ctx.cached = True
                self._metrics.cache_hits += 1
                logger.debug("Cache hit for %s %s", prepared.method, prepared.url)
                return cached
            self._metrics.cache_misses += 1

        try:
            authed = await self._auth.apply(prepared)
            response = await self._dispatch_with_policies(authed, ctx)
        except IntegrationError as exc:
            exc.annotate(self.id, ctx.attempts)
            self._metrics.record_completion(ctx.elapsed_ms(), success=False)
            logger.warning("%s %s failed: %s", prepared.method, prepared.url, exc)
            self.events.emit(
                NotificationType.REQUEST_FAILED,
                self.id,
                request_id=ctx.request_id,
                method=prepared.method,
                url=prepared.url,
                status=getattr(exc, "status_code", None),
                error=str(exc),
                retry_count=ctx.retry_count,
            )
            raise

        self._metrics.record_completion(ctx.elapsed_ms(), success=True)
        if cache_key is not None:
            self._cache.put(cache_key, response, cache_ttl)
        self.events.emit(
            NotificationType.REQUEST_SUCCEEDED,
            self.id,
            request_id=ctx.request_id,
            method=prepared.method,
            url=prepared.url,
            status=response.status_code,
            retry_count=ctx.retry_count,
        )
        return response

    def _cache_key(self, prepared: PreparedRequest) -> str | None:
        if self._cache is None or prepared.method != "GET":
            return None
        if self._cache.config.is_excluded(prepared.url):
            return None
        return make_cache_key(prepared.method, prepared.url, prepared.params)

    async def _dispatch_with_policies(
        self,
        request: PreparedRequest,
        ctx: RequestContext,
    ) -> IntegrationResponse:
        """Admit → dispatch → classify, looping for 429 replay and retries."""
        while True:
            if not self._rate_limiter.admit():
                wait = self._rate_limiter.seconds_until_reset()
                raise RateLimitError(
                    f"Rate limit quota for {self.id} exhausted, resets in {wait:.0f}s",
                    retry_after=wait,
                )

            outcome = await self._dispatch_once(request, ctx)
            if outcome.response is not None:
                self._rate_limiter.update(outcome.response.headers)
            if outcome.ok:
                return outcome.response

            if outcome.status == 429:
                wait = self._rate_limiter.retry_after(outcome.response.headers)
                self._metrics.rate_limit_hits += 1
                self.events.emit(
                    NotificationType.RATE_LIMIT_HIT,
                    self.id,
                    request_id=ctx.request_id,
                    url=request.url,
                    status=429,
                    delay=wait,
                )
                if self._rate_limiter.respect_retry_after and not ctx.replayed:
                    ctx.replayed = True
                    logger.info("Rate limited by %s, replaying in %.2fs", self.id, wait)
                    await self._sleep(wait)
                    continue
                raise RateLimitError(
                    f"HTTP 429 from {request.method} {request.url}", retry_after=wait
                )

            if self._retry.should_retry(outcome, ctx.retry_count):
                delay = self._retry.next_delay(ctx.retry_count)
                ctx.retry_count += 1
                self._metrics.retries += 1
                logger.info(
                    "Retrying %s %s (attempt %d) in %.2fs after %s",
                    request.method, request.url, ctx.retry_count, delay,
                    outcome.status or outcome.error_code,
                )
                self.events.emit(
                    NotificationType.REQUEST_RETRIED,
                    self.id,
                    request_id=ctx.request_id,
                    url=request.url,
                    status=outcome.status,
                    error=outcome.error_code,
                    retry_count=ctx.retry_count,
                    delay=delay,
                )
                await self._sleep(delay)
                continue

            failure = outcome.error or ResponseError(
                f"HTTP {outcome.status} from {request.method} {request.url}",
                status_code=outcome.status,
                response=outcome.response,
            )
            if self._retry.is_retryable(outcome):
                raise RetryExhaustedError(
                    f"Gave up on {request.method} {request.url} after {ctx.retry_count} retries",
                    last_error=failure,
                ) from failure
            raise failure

    async def _dispatch_once(self, request: PreparedRequest, ctx: RequestContext) -> Outcome:
        logger.debug("Dispatching %s %s [%s]", request.method, request.url, ctx.request_id)
        try:
            response = await self._transport.send(request)
        except TransportError as exc:
            return Outcome(error=exc)
        return Outcome(response=response)

    # --- Health ---

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_check_interval)
            try:
                await self.check_health()
            except Exception:
                logger.exception("Health check crashed for %s", self.id)

    async def check_health(self) -> HealthStatus:
        """Probe the health endpoint once. Never touches request admission."""
        probe = PreparedRequest(
            method="GET",
            url=self._url(self.config.health_check_endpoint or ""),
            headers=self._base_headers(),
            timeout=self.config.health_check_timeout,
        )
        try:
            response = await self._transport.send(await self._auth.apply(probe))
        except IntegrationError as exc:
            self._health.healthy = False
            self._health.last_checked = utcnow()
            self._health.last_status = None
            self._health.last_error = str(exc)
            logger.warning("Health check failed for %s: %s", self.id, exc)
            self.events.emit(NotificationType.HEALTH_CHECK_FAILED, self.id, healthy=False, error=str(exc))
        else:
            self._health.healthy = response.ok
            self._health.last_checked = utcnow()
            self._health.last_status = response.status_code
            self._health.last_error = None if response.ok else f"HTTP {response.status_code}"
            self.events.emit(
                NotificationType.HEALTH_CHECKED,
                self.id,
                healthy=response.ok,
                status=response.status_code,
            )
        return self.get_health()

    async def test_connection(self) -> bool:
        status = await self.check_health()
        return status.healthy

    # --- Accessors ---

    def get_metrics(self) -> IntegrationMetrics:
        snapshot = self._metrics.snapshot()
        snapshot.active_requests = self._gate.active
        snapshot.queued_requests = self._gate.queued
        return snapshot

    def get_health(self) -> HealthStatus:
        return replace(self._health)

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self._rate_limiter.status()

    def is_connected(self) -> bool:
        return self._health.healthy

    def clear_cache(self) -> int:
        removed = self._cache.clear() if self._cache is not None else 0
        self.events.emit(NotificationType.CACHE_CLEARED, self.id)
        return removed

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} base_url={self.config.base_url!r}>"
