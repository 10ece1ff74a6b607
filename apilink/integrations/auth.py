"""
apilink Auth Strategy — Credential Attachment + Refresh.

Given a PreparedRequest and the integration's AuthConfig, returns a new
request with credentials attached:
- OAuth2: Bearer token, refreshed first when ``expires_at`` has passed
- API key: header, query parameter, or a JSON or form body field
- Basic: base64(username:password)
- JWT: Bearer token, expiry handled per JWTExpiryPolicy
- Custom: caller-supplied handler

OAuth2 refresh is single-flight: concurrent callers that find the same
expired token all await one refresh call.
"""
from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable
import asyncio
import base64
import inspect
import logging

from apilink.integrations.config import (
    ApiKeyAuth,
    ApiKeyPlacement,
    AuthConfig,
    BasicAuth,
    CustomAuth,
    JWTAuth,
    JWTExpiryPolicy,
    OAuth2Auth,
)
from apilink.integrations.errors import AuthError, IntegrationError, TransportError
from apilink.integrations.events import NotificationBus, NotificationType
from apilink.integrations.metrics import utcnow
from apilink.integrations.transport import PreparedRequest, Transport

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
DEFAULT_TOKEN_LIFETIME = 3600  # seconds, when the token endpoint omits expires_in


class AuthStrategy:
    """Attaches credentials for one integration."""

    def __init__(
        self,
        integration_id: str,
        auth: AuthConfig | None,
        transport: Transport,
        bus: NotificationBus,
        refresh_timeout: float = 15.0,
        now: Callable[[], datetime] = utcnow,
    ):
        self.integration_id = integration_id
        self.auth = auth
        self._transport = transport
        self._bus = bus
        self._refresh_timeout = refresh_timeout
        self._now = now
        self._refresh_task: asyncio.Task | None = None
        self.refresh_count = 0

    async def apply(self, request: PreparedRequest) -> PreparedRequest:
        auth = self.auth
        if auth is None:
            return request
        if isinstance(auth, OAuth2Auth):
            return await self._apply_oauth2(request, auth)
        if isinstance(auth, ApiKeyAuth):
            return self._apply_api_key(request, auth)
        if isinstance(auth, BasicAuth):
            return self._apply_basic(request, auth)
        if isinstance(auth, JWTAuth):
            return self._apply_jwt(request, auth)
        if isinstance(auth, CustomAuth):
            return await self._apply_custom(request, auth)
        raise AuthError(f"Unsupported auth config: {type(auth).__name__}", integration_id=self.integration_id)

    # --- OAuth2 ---

    async def _apply_oauth2(self, request: PreparedRequest, auth: OAuth2Auth) -> PreparedRequest:
        if auth.is_expired(self._now()):
            await self._refresh_once(auth)
        if not auth.access_token:
            raise AuthError("OAuth2 access token is missing", integration_id=self.integration_id)
        return _with_header(request, "Authorization", f"Bearer {auth.access_token}")

    async def _refresh_once(self, auth: OAuth2Auth) -> None:
        if self._refresh_task is None:
            task = asyncio.get_running_loop().create_task(self._refresh_oauth2(auth))
            task.add_done_callback(self._refresh_done)
            self._refresh_task = task
        else:
            logger.debug("Joining in-flight OAuth2 refresh for %s", self.integration_id)
        await asyncio.shield(self._refresh_task)

    def _refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            task.exception()  # mark retrieved; waiters re-raise it themselves

    async def _refresh_oauth2(self, auth: OAuth2Auth) -> None:
        """Exchange the refresh token for a new token set, in place."""
        if not auth.refresh_token:
            self._refresh_failed("missing refresh token")
            raise AuthError(
                "Cannot refresh OAuth2 token: missing refresh token",
                integration_id=self.integration_id,
            )

        refresh = PreparedRequest(
            method="POST",
            url=auth.refresh_url or auth.token_url,
            headers={"Accept": "application/json"},
            data={
                "grant_type": "refresh_token",
                "refresh_token": auth.refresh_token,
                "client_id": auth.client_id,
                "client_secret": auth.client_secret,
            },
            timeout=self._refresh_timeout,
        )
        try:
            resp = await self._transport.send(refresh)
        except TransportError as exc:
            self._refresh_failed(str(exc))
            raise AuthError(
                f"OAuth2 refresh request failed: {exc.message}", integration_id=self.integration_id
            ) from exc

        data = resp.data if isinstance(resp.data, dict) else {}
        if not resp.ok or "access_token" not in data:
            self._refresh_failed(f"HTTP {resp.status_code}")
            raise AuthError(
                f"OAuth2 refresh rejected with HTTP {resp.status_code}",
                integration_id=self.integration_id,
            )

        expires_in = float(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        auth.access_token = data["access_token"]
        if data.get("refresh_token"):
            auth.refresh_token = data["refresh_token"]
        auth.expires_at = self._now() + timedelta(seconds=expires_in)
        self.refresh_count += 1

        logger.info("Refreshed OAuth2 token for %s (expires in %ss)", self.integration_id, expires_in)
        self._bus.emit(NotificationType.AUTH_REFRESHED, self.integration_id)

    def _refresh_failed(self, reason: str) -> None:
        logger.warning("OAuth2 refresh failed for %s: %s", self.integration_id, reason)
        self._bus.emit(NotificationType.AUTH_REFRESH_FAILED, self.integration_id, error=reason)

    # --- API key ---

    def _apply_api_key(self, request: PreparedRequest, auth: ApiKeyAuth) -> PreparedRequest:
        if not auth.key:
            raise AuthError("API key is missing", integration_id=self.integration_id)

        if auth.placement == ApiKeyPlacement.HEADER:
            return _with_header(request, auth.header_name, auth.key)

        if auth.placement == ApiKeyPlacement.QUERY:
            return replace(request, params={**request.params, auth.param_name: auth.key})

        # Body placement never applies to safe methods
        if request.method.upper() in SAFE_METHODS:
            return request
        if request.data is not None:
            # Form bodies take precedence over json when both are sent
            return replace(request, data={**request.data, auth.param_name: auth.key})
        if request.json is None:
            return replace(request, json={auth.param_name: auth.key})
        if not isinstance(request.json, dict):
            raise AuthError(
                "Cannot place API key in a non-object request body",
                integration_id=self.integration_id,
            )
        return replace(request, json={**request.json, auth.param_name: auth.key})

    # --- Basic ---

    def _apply_basic(self, request: PreparedRequest, auth: BasicAuth) -> PreparedRequest:
        if not auth.username:
            raise AuthError("Basic auth username is missing", integration_id=self.integration_id)
        encoded = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
        return _with_header(request, "Authorization", f"Basic {encoded}")

    # --- JWT ---

    def _apply_jwt(self, request: PreparedRequest, auth: JWTAuth) -> PreparedRequest:
        if not auth.token:
            raise AuthError("JWT token is missing", integration_id=self.integration_id)

        if auth.is_expired(self._now()):
            logger.warning("JWT for %s is expired", self.integration_id)
            if auth.refresh_token:
                self._bus.emit(NotificationType.AUTH_TOKEN_EXPIRED, self.integration_id)
            if auth.on_expired == JWTExpiryPolicy.FAIL:
                raise AuthError("JWT token is expired", integration_id=self.integration_id)

        return _with_header(request, "Authorization", f"Bearer {auth.token}")

    # --- Custom ---

    async def _apply_custom(self, request: PreparedRequest, auth: CustomAuth) -> PreparedRequest:
        try:
            result = auth.handler(request)
            if inspect.isawaitable(result):
                result = await result
        except IntegrationError:
            raise
        except Exception as exc:
            raise AuthError(
                f"Custom auth handler failed: {exc!r}", integration_id=self.integration_id
            ) from exc
        if not isinstance(result, PreparedRequest):
            raise AuthError(
                f"Custom auth handler returned {type(result).__name__}, expected PreparedRequest",
                integration_id=self.integration_id,
            )
        return result


def _with_header(request: PreparedRequest, name: str, value: str) -> PreparedRequest:
    return replace(request, headers={**request.headers, name: value})
