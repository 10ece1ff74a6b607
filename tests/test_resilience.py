"""Test cache, rate limiter, retry policy and concurrency gate."""
import asyncio
from email.utils import formatdate

import pytest

from apilink.integrations.config import CacheConfig, CacheStrategy, RateLimitConfig, RetryConfig
from apilink.integrations.errors import TransportError
from apilink.integrations.transport import IntegrationResponse
from apilink.resilience.cache import ResponseCache, make_cache_key
from apilink.resilience.concurrency import ConcurrencyGate
from apilink.resilience.rate_limiter import RateLimiter
from apilink.resilience.retry import Outcome, RetryPolicy


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# --- ResponseCache ---

def test_cache_returns_entry_within_ttl_only():
    clock = FakeClock(100.0)
    cache = ResponseCache(CacheConfig(ttl=10.0), clock=clock)
    cache.put("k", "v")
    clock.now = 109.999
    assert cache.get("k") == "v"
    clock.now = 110.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_per_entry_ttl_override():
    clock = FakeClock(0.0)
    cache = ResponseCache(CacheConfig(ttl=100.0), clock=clock)
    cache.put("short", 1, ttl=1.0)
    cache.put("long", 2)
    clock.now = 5.0
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_cache_evicts_oldest_inserted_when_full():
    cache = ResponseCache(CacheConfig(max_size=2), clock=FakeClock())
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)
    assert "a" not in cache
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_cache_lru_strategy_keeps_recently_read():
    cache = ResponseCache(CacheConfig(max_size=2, strategy=CacheStrategy.LRU), clock=FakeClock())
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)
    assert cache.get("a") == 1
    assert "b" not in cache


def test_cache_purges_expired_before_evicting():
    clock = FakeClock(0.0)
    cache = ResponseCache(CacheConfig(max_size=2, ttl=10.0), clock=clock)
    cache.put("old", 1, ttl=1.0)
    cache.put("keep", 2)
    clock.now = 2.0
    cache.put("new", 3)
    assert cache.get("keep") == 2
    assert cache.get("new") == 3
    assert len(cache) == 2


def test_cache_key_is_order_sensitive():
    k1 = make_cache_key("get", "https://x/y", {"a": 1, "b": 2})
    k2 = make_cache_key("GET", "https://x/y", {"b": 2, "a": 1})
    assert k1.startswith("GET:https://x/y:")
    assert k1 != k2


def test_cache_exclude_patterns():
    config = CacheConfig(exclude_patterns=(r"/live/",))
    assert config.is_excluded("https://api.example.com/live/prices")
    assert not config.is_excluded("https://api.example.com/static/prices")


# --- RateLimiter ---

def test_rate_limiter_admits_without_state():
    assert RateLimiter(RateLimitConfig()).admit()


def test_rate_limiter_refuses_until_reset():
    clock = FakeClock(1000.0)
    limiter = RateLimiter(RateLimitConfig(), clock=clock)
    limiter.update({"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1060"})
    assert not limiter.admit()
    clock.now = 1059.0
    assert not limiter.admit()
    clock.now = 1060.0
    assert limiter.admit()


def test_rate_limiter_remaining_tracks_latest_response():
    limiter = RateLimiter(RateLimitConfig(), clock=FakeClock(1000.0))
    limiter.update({"x-ratelimit-remaining": "5", "x-ratelimit-reset": "2000"})
    limiter.update({"x-ratelimit-remaining": "4"})
    assert limiter.status().remaining == 4
    limiter.update({"x-ratelimit-remaining": "garbage"})
    assert limiter.status().remaining == 4
    assert limiter.status().reset_time.timestamp() == 2000


def test_retry_after_seconds():
    limiter = RateLimiter(RateLimitConfig(retry_after=60.0))
    assert limiter.retry_after({"retry-after": "7"}) == 7.0


def test_retry_after_http_date():
    clock = FakeClock(1_700_000_000.0)
    limiter = RateLimiter(RateLimitConfig(), clock=clock)
    header = formatdate(1_700_000_030, usegmt=True)
    assert limiter.retry_after({"retry-after": header}) == pytest.approx(30.0)


def test_retry_after_past_date_is_zero():
    clock = FakeClock(1_700_000_000.0)
    limiter = RateLimiter(RateLimitConfig(), clock=clock)
    header = formatdate(1_600_000_000, usegmt=True)
    assert limiter.retry_after({"retry-after": header}) == 0.0


def test_retry_after_falls_back_to_default():
    limiter = RateLimiter(RateLimitConfig(retry_after=12.0))
    assert limiter.retry_after({}) == 12.0
    assert limiter.retry_after({"retry-after": "soon"}) == 12.0


# --- RetryPolicy ---

def _status(code: int) -> Outcome:
    return Outcome(response=IntegrationResponse(status_code=code))


def test_retry_delays_are_exact_exponential():
    policy = RetryPolicy(RetryConfig(initial_delay=0.1, backoff_factor=2, max_delay=0.5))
    assert [policy.next_delay(n) for n in range(4)] == pytest.approx([0.1, 0.2, 0.4, 0.5])


def test_retry_eligibility():
    policy = RetryPolicy(RetryConfig(max_retries=2))
    assert policy.should_retry(_status(503), 0)
    assert policy.should_retry(_status(503), 1)
    assert not policy.should_retry(_status(503), 2)
    assert not policy.should_retry(_status(404), 0)
    assert not policy.should_retry(_status(200), 0)


def test_retry_on_transport_error_code():
    policy = RetryPolicy(RetryConfig(retryable_errors=frozenset({"ECONNRESET"})))
    assert policy.should_retry(Outcome(error=TransportError("reset", code="ECONNRESET")), 0)
    assert not policy.should_retry(Outcome(error=TransportError("dns", code="ENETWORK")), 0)


def test_no_retry_without_config():
    policy = RetryPolicy(None)
    assert not policy.should_retry(_status(503), 0)
    assert policy.next_delay(3) == 0.0


# --- ConcurrencyGate ---

@pytest.mark.asyncio
async def test_gate_releases_fifo():
    gate = ConcurrencyGate(1)
    order = []

    async def worker(i: int):
        async with gate.slot():
            order.append(i)
            await asyncio.sleep(0)

    await gate.acquire()
    tasks = [asyncio.create_task(worker(i)) for i in range(5)]
    await asyncio.sleep(0)
    assert gate.queued == 5
    gate.release()
    await asyncio.gather(*tasks)
    assert order == [0, 1, 2, 3, 4]
    assert gate.active == 0


@pytest.mark.asyncio
async def test_gate_bounds_active():
    gate = ConcurrencyGate(2)
    peak = 0

    async def worker():
        nonlocal peak
        async with gate.slot():
            peak = max(peak, gate.active)
            await asyncio.sleep(0.01)

    await asyncio.gather(*(worker() for _ in range(6)))
    assert peak == 2
    assert gate.active == 0


@pytest.mark.asyncio
async def test_gate_cancelled_waiter_does_not_leak_slot():
    gate = ConcurrencyGate(1)
    await gate.acquire()
    waiter = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)
    assert gate.queued == 1
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert gate.queued == 0
    gate.release()
    assert gate.active == 0


@pytest.mark.asyncio
async def test_gate_unbounded():
    gate = ConcurrencyGate(None)
    for _ in range(50):
        await gate.acquire()
    assert gate.active == 50
    assert gate.queued == 0
