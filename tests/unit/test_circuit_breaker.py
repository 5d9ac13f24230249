"""Tests for the circuit breaker and retry helpers"""
import asyncio

import pytest

from dex_trade_parser.core.circuit_breaker import (
    CircuitBreaker, CircuitBreakerConfig, CircuitState,
    RetryConfig, retry_with_backoff,
)
from dex_trade_parser.core.errors import CircuitOpenError, FetchError, RateLimitedError


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def circuit_breaker(clock):
    config = CircuitBreakerConfig(
        failure_threshold=3,
        success_threshold=2,
        timeout_seconds=10.0,
        half_open_max_calls=2,
    )
    return CircuitBreaker("test", config, clock=clock)


async def success_func():
    return "ok"


async def failing_func():
    raise FetchError("upstream down")


async def open_breaker(breaker):
    for _ in range(3):
        with pytest.raises(FetchError):
            await breaker.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_closed_on_success(circuit_breaker):
    result = await circuit_breaker.call(success_func)

    assert result == "ok"
    assert circuit_breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_success_resets_consecutive_failures(circuit_breaker):
    for _ in range(2):
        with pytest.raises(FetchError):
            await circuit_breaker.call(failing_func)
    await circuit_breaker.call(success_func)
    with pytest.raises(FetchError):
        await circuit_breaker.call(failing_func)

    assert circuit_breaker.state == CircuitState.CLOSED
    assert circuit_breaker.get_stats()["consecutive_failures"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_opens_on_failures(circuit_breaker):
    await open_breaker(circuit_breaker)
    assert circuit_breaker.state == CircuitState.OPEN
    assert circuit_breaker.get_stats()["opened"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_rejects_when_open(circuit_breaker, clock):
    await open_breaker(circuit_breaker)
    clock.now += 9.9

    with pytest.raises(CircuitOpenError):
        await circuit_breaker.call(success_func)
    stats = circuit_breaker.get_stats()
    assert stats["rejected"] == 1
    assert stats["calls"] == 3


@pytest.mark.asyncio
async def test_open_error_is_a_fetch_error(circuit_breaker):
    await open_breaker(circuit_breaker)
    with pytest.raises(FetchError):
        await circuit_breaker.call(success_func)


@pytest.mark.asyncio
async def test_circuit_breaker_closes_after_half_open_successes(circuit_breaker, clock):
    await open_breaker(circuit_breaker)
    clock.now += 10.0

    assert await circuit_breaker.call(success_func) == "ok"
    assert circuit_breaker.state == CircuitState.HALF_OPEN
    assert await circuit_breaker.call(success_func) == "ok"
    assert circuit_breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_reopens(circuit_breaker, clock):
    await open_breaker(circuit_breaker)
    clock.now += 10.0

    with pytest.raises(FetchError):
        await circuit_breaker.call(failing_func)
    assert circuit_breaker.state == CircuitState.OPEN

    # cooldown restarts from the reopen
    with pytest.raises(CircuitOpenError):
        await circuit_breaker.call(success_func)


@pytest.mark.asyncio
async def test_half_open_limits_trial_calls(clock):
    breaker = CircuitBreaker(
        "test",
        CircuitBreakerConfig(failure_threshold=1, success_threshold=5,
                             timeout_seconds=1.0, half_open_max_calls=2),
        clock=clock,
    )
    with pytest.raises(FetchError):
        await breaker.call(failing_func)
    clock.now += 1.0

    await breaker.call(success_func)
    await breaker.call(success_func)
    with pytest.raises(CircuitOpenError):
        await breaker.call(success_func)
    assert breaker.state == CircuitState.HALF_OPEN


@pytest.mark.asyncio
async def test_retry_with_backoff_success():
    call_count = 0

    async def func():
        nonlocal call_count
        call_count += 1
        return "ok"

    config = RetryConfig(max_attempts=3, base_delay=0.1)
    result = await retry_with_backoff(func, config)

    assert result == "ok"
    assert call_count == 1


@pytest.mark.asyncio
async def test_retry_with_backoff_eventual_success():
    call_count = 0

    async def func():
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise FetchError("error")
        return "ok"

    config = RetryConfig(max_attempts=5, base_delay=0.01)
    result = await retry_with_backoff(func, config)

    assert result == "ok"
    assert call_count == 3


@pytest.mark.asyncio
async def test_retry_with_backoff_all_fail():
    call_count = 0

    async def func():
        nonlocal call_count
        call_count += 1
        raise FetchError("error")

    config = RetryConfig(max_attempts=3, base_delay=0.01)

    with pytest.raises(FetchError):
        await retry_with_backoff(func, config)

    assert call_count == 3


@pytest.mark.asyncio
async def test_retry_skips_non_retryable_errors():
    call_count = 0

    async def func():
        nonlocal call_count
        call_count += 1
        raise ValueError("bad input")

    config = RetryConfig(max_attempts=3, base_delay=0.01, retryable_exceptions=(FetchError,))

    with pytest.raises(ValueError):
        await retry_with_backoff(func, config)
    assert call_count == 1


@pytest.mark.asyncio
async def test_retry_delays_grow_and_cap(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)

    async def func():
        raise FetchError("error")

    config = RetryConfig(max_attempts=4, base_delay=1.0, max_delay=3.0, jitter=False)
    with pytest.raises(FetchError):
        await retry_with_backoff(func, config)
    assert delays == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_retry_honours_retry_after(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    attempts = iter([RateLimitedError("429", retry_after=0.5), None])

    async def func():
        error = next(attempts)
        if error:
            raise error
        return "ok"

    config = RetryConfig(max_attempts=2, base_delay=5.0, jitter=False)
    assert await retry_with_backoff(func, config) == "ok"
    assert delays == [0.5]
