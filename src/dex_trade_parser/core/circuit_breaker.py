"""
Failure gate and backoff for the RPC fetcher.

The fetcher wraps each JSON-RPC post as
``breaker.call(retry_with_backoff, post_once, retry_config, body)``: retries
absorb transient errors, and only a post that exhausted its retries counts as
one breaker failure.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from dex_trade_parser.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # cooldown elapsed, trial posts allowed


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5      # consecutive failed posts before opening
    success_threshold: int = 2      # trial successes before closing again
    timeout_seconds: float = 30.0   # cooldown while open
    half_open_max_calls: int = 3


class CircuitBreaker:
    """Stops posting to an endpoint set after repeated failed posts.

    State changes happen between awaits only, so no lock is needed.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._trial_calls = 0
        self._opened_at: Optional[float] = None
        self._counts = {"calls": 0, "failures": 0, "rejected": 0, "opened": 0}

    @property
    def state(self) -> CircuitState:
        return self._state

    def _admit(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at < self.config.timeout_seconds:
                return False
            self._enter(CircuitState.HALF_OPEN)
        if self._state == CircuitState.HALF_OPEN:
            if self._trial_calls >= self.config.half_open_max_calls:
                return False
            self._trial_calls += 1
        return True

    def _enter(self, state: CircuitState) -> None:
        logger.warning(f"[BREAKER] '{self.name}': {self._state.value} -> {state.value}")
        self._state = state
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._trial_calls = 0
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._counts["opened"] += 1

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.config.success_threshold:
                self._enter(CircuitState.CLOSED)
        else:
            self._consecutive_failures = 0

    def _on_failure(self, error: Exception) -> None:
        self._counts["failures"] += 1
        logger.debug(f"[BREAKER] '{self.name}' failure: {error}")
        if self._state == CircuitState.HALF_OPEN:
            self._enter(CircuitState.OPEN)
            return
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.config.failure_threshold:
            self._enter(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: breaker is open, ``func`` was not called
        """
        if not self._admit():
            self._counts["rejected"] += 1
            raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")

        self._counts["calls"] += 1
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def get_stats(self) -> dict:
        return {
            'name': self.name,
            'state': self._state.value,
            'consecutive_failures': self._consecutive_failures,
            **self._counts,
        }


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple = (Exception,)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    config: RetryConfig = None,
    *args,
    **kwargs
) -> T:
    """
    Call ``func`` with retries and exponential backoff.

    An exception carrying a ``retry_after`` attribute (seconds) overrides the
    computed delay, capped at ``max_delay``.
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt == config.max_attempts:
                logger.warning(f"[RETRY] All {config.max_attempts} attempts failed: {e}")
                raise

            retry_after = getattr(e, "retry_after", None)
            if retry_after:
                delay = float(retry_after)
            else:
                delay = config.base_delay * (config.exponential_base ** (attempt - 1))
                if config.jitter:
                    delay *= 0.5 + random.random()
            delay = min(delay, config.max_delay)

            logger.debug(f"[RETRY] Attempt {attempt} failed: {e}. Retrying in {delay:.2f}s...")
            await asyncio.sleep(delay)

    raise RuntimeError("retry_with_backoff called with max_attempts < 1")
