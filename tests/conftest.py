"""Shared fixtures: mock transports and a sleep recorder."""
from typing import Any, Callable

import httpx
import pytest

from apilink.integrations.config import IntegrationConfig
from apilink.integrations.executor import RequestExecutor
from apilink.integrations.transport import HttpxTransport

BASE_URL = "https://api.example.com/v1"


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def transport_for():
    """Build an HttpxTransport whose requests are answered by ``handler``."""
    def build(handler: Callable[[httpx.Request], Any]) -> HttpxTransport:
        return HttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return build


@pytest.fixture
def make_executor(transport_for, sleeper):
    """Build a RequestExecutor against BASE_URL with config overrides."""
    def build(handler: Callable[[httpx.Request], Any], **overrides: Any) -> RequestExecutor:
        integration_id = overrides.pop("id", "svc")
        config = IntegrationConfig(id=integration_id, base_url=BASE_URL, **overrides)
        return RequestExecutor(config, transport=transport_for(handler), sleep=sleeper)
    return build
