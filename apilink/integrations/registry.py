"""
apilink Integration Registry — Register, Aggregate, Broadcast.

Holds every live RequestExecutor by id:
- Registration runs the executor's initialize() as part of the same step
- Executor notifications are re-published on the registry bus
- Connection tests fan out concurrently; one failure never aborts the batch
- Metrics and health are read-only aggregated views
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional
import asyncio
import logging

from pydantic import BaseModel, Field

from apilink.integrations.errors import NotFoundError, ValidationError
from apilink.integrations.events import NotificationBus, NotificationType
from apilink.integrations.executor import RequestExecutor
from apilink.integrations.metrics import HealthStatus, IntegrationMetrics

logger = logging.getLogger(__name__)


class RegistrationRecord(BaseModel):
    """Bookkeeping entry for a registered integration."""
    id: str
    name: str
    base_url: str
    auth_type: Optional[str] = None
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ConnectionTestResult:
    integration_id: str
    connected: bool
    error: str | None = None


class IntegrationRegistry:
    """Central registry for all integrations in a process."""

    def __init__(self):
        self._executors: dict[str, RequestExecutor] = {}
        self._records: dict[str, RegistrationRecord] = {}
        self._forwarders: dict[str, Callable[[], None]] = {}
        self._pending: set[str] = set()
        self.events = NotificationBus()

    async def register(self, executor: RequestExecutor) -> RegistrationRecord:
        """Initialize and register an executor. Raises ValidationError on duplicate id."""
        integration_id = executor.id
        if integration_id in self._executors or integration_id in self._pending:
            raise ValidationError(
                f"Integration {integration_id} already registered",
                integration_id=integration_id,
            )

        # Reserve the id before the first await so a concurrent register() of
        # the same id is rejected too.
        self._pending.add(integration_id)
        try:
            await executor.initialize()
        finally:
            self._pending.discard(integration_id)

        record = RegistrationRecord(
            id=integration_id,
            name=executor.name,
            base_url=executor.config.base_url,
            auth_type=executor.config.auth_type.value if executor.config.auth_type else None,
        )
        self._executors[integration_id] = executor
        self._records[integration_id] = record
        self._forwarders[integration_id] = executor.events.subscribe(self.events.publish)

        logger.info("Registered integration %s", integration_id)
        self.events.emit(NotificationType.INTEGRATION_REGISTERED, integration_id)
        return record

    async def unregister(self, integration_id: str) -> None:
        """Clean up and remove an executor. Raises NotFoundError if unknown."""
        executor = self._executors.get(integration_id)
        if executor is None:
            raise NotFoundError(f"Integration {integration_id} not found", integration_id=integration_id)

        del self._executors[integration_id]
        self._records.pop(integration_id, None)
        unsubscribe = self._forwarders.pop(integration_id, None)
        if unsubscribe is not None:
            unsubscribe()

        await executor.cleanup()
        logger.info("Unregistered integration %s", integration_id)
        self.events.emit(NotificationType.INTEGRATION_UNREGISTERED, integration_id)

    def get(self, integration_id: str) -> RequestExecutor | None:
        return self._executors.get(integration_id)

    def list_integrations(self) -> list[RequestExecutor]:
        return list(self._executors.values())

    def records(self) -> list[RegistrationRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._executors)

    def __contains__(self, integration_id: object) -> bool:
        return integration_id in self._executors

    # --- Aggregation ---

    async def test_all_connections(self) -> dict[str, ConnectionTestResult]:
        """Probe every integration concurrently; failures are captured per id."""
        executors = list(self._executors.items())
        results = await asyncio.gather(
            *(self._test_one(integration_id, executor) for integration_id, executor in executors)
        )
        return {result.integration_id: result for result in results}

    async def _test_one(self, integration_id: str, executor: RequestExecutor) -> ConnectionTestResult:
        try:
            connected = await executor.test_connection()
        except Exception as exc:
            logger.warning("Connection test for %s raised: %s", integration_id, exc)
            self.events.emit(
                NotificationType.CONNECTION_TEST_FAILED, integration_id, error=str(exc)
            )
            return ConnectionTestResult(integration_id, connected=False, error=str(exc))
        return ConnectionTestResult(integration_id, connected=bool(connected))

    def get_metrics(self) -> dict[str, IntegrationMetrics]:
        return {integration_id: ex.get_metrics() for integration_id, ex in self._executors.items()}

    def get_health(self) -> dict[str, HealthStatus]:
        return {integration_id: ex.get_health() for integration_id, ex in self._executors.items()}

    def health_summary(self) -> dict[str, Any]:
        health = self.get_health()
        unhealthy = sorted(i for i, status in health.items() if not status.healthy)
        return {
            "total": len(health),
            "healthy": len(health) - len(unhealthy),
            "unhealthy": len(unhealthy),
            "unhealthy_ids": unhealthy,
        }

    async def cleanup(self) -> None:
        """Unregister and tear down every integration.

        A failing executor teardown is logged and does not stop the rest.
        """
        for integration_id in list(self._executors):
            try:
                await self.unregister(integration_id)
            except Exception:
                logger.exception("Cleanup of integration %s failed", integration_id)
