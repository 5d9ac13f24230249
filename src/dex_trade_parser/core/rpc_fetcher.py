"""
JSON-RPC transaction fetcher.

Fetches getTransaction results from a prioritized list of HTTP providers:
- per-provider rate limiting
- backoff on 429 and fallback to the next provider
- retries with exponential backoff, then a circuit breaker around the whole call
- bulk fetch as one JSON-RPC batch request (one round trip for up to 50 signatures)

Usage:
    fetcher = RpcTransactionFetcher.from_config(config)
    record = await fetcher.fetch_one(signature)
    records = await fetcher.fetch_batch(signatures)
    await fetcher.close()
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import aiohttp
from solders.signature import Signature

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryConfig,
    retry_with_backoff,
)
from dex_trade_parser.core.constants import MAX_BATCH_SIZE
from dex_trade_parser.core.errors import FetchError, MalformedTransactionError, RateLimitedError
from dex_trade_parser.core.models import TransactionRecord
from dex_trade_parser.utils.logger import get_logger

logger = get_logger(__name__)


class TransactionFetcher(Protocol):
    """What the classifier and pipeline need from a transaction source."""

    async def fetch_one(self, signature: str, commitment: str | None = None) -> TransactionRecord | None:
        ...

    async def fetch_batch(
        self, signatures: Sequence[str], commitment: str | None = None
    ) -> list[TransactionRecord | None]:
        """Records positionally aligned with ``signatures``, None for misses."""
        ...


def is_valid_signature(signature: Any) -> bool:
    if not isinstance(signature, str) or not signature:
        return False
    try:
        Signature.from_string(signature)
    except (ValueError, TypeError):
        return False
    return True


@dataclass
class ProviderConfig:
    """An RPC provider and its runtime state."""

    name: str
    http_endpoint: str
    rate_limit_per_second: float = 10.0
    priority: int = 1  # lower = tried first

    last_request_time: float = field(default=0.0, repr=False)
    consecutive_errors: int = field(default=0, repr=False)
    total_requests: int = field(default=0, repr=False)
    total_errors: int = field(default=0, repr=False)
    backoff_until: float = field(default=0.0, repr=False)


class RpcTransactionFetcher:
    """getTransaction over aiohttp with provider fallback."""

    HTTP_OK = 200
    HTTP_RATE_LIMITED = 429

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout: float = 10.0,
        rate_limit_per_second: float = 10.0,
        max_retries: int = 3,
        commitment: str = "confirmed",
        session: aiohttp.ClientSession | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        if not endpoints:
            raise ValueError("at least one RPC endpoint is required")
        self.providers = [
            ProviderConfig(
                name=_provider_name(url, index),
                http_endpoint=url,
                rate_limit_per_second=rate_limit_per_second,
                priority=index,
            )
            for index, url in enumerate(endpoints)
        ]
        self.timeout = timeout
        self.commitment = commitment
        self._retry = RetryConfig(
            max_attempts=max_retries,
            base_delay=0.5,
            max_delay=10.0,
            retryable_exceptions=(FetchError,),
        )
        self._breaker = breaker or CircuitBreaker(
            "rpc_fetcher", CircuitBreakerConfig(failure_threshold=5, timeout_seconds=30.0)
        )
        self._session = session
        self._owns_session = session is None
        self._metrics = {
            "total_requests": 0,
            "successful_requests": 0,
            "rate_limited": 0,
            "fallback_used": 0,
            "batch_requests": 0,
            "single_requests": 0,
        }

    @classmethod
    def from_config(cls, config: ParserConfig, session: aiohttp.ClientSession | None = None) -> "RpcTransactionFetcher":
        return cls(
            endpoints=config.rpc_endpoints,
            timeout=config.rpc_timeout_seconds,
            rate_limit_per_second=config.rpc_rate_limit_per_second,
            max_retries=config.rpc_max_retries,
            commitment=config.commitment,
            session=session,
        )

    async def __aenter__(self) -> "RpcTransactionFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                connector=aiohttp.TCPConnector(limit=50, limit_per_host=10),
            )
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _available_providers(self) -> list[ProviderConfig]:
        now = time.time()
        return sorted(
            (p for p in self.providers if now >= p.backoff_until),
            key=lambda p: p.priority,
        )

    async def _wait_for_rate_limit(self, provider: ProviderConfig) -> None:
        min_interval = 1.0 / provider.rate_limit_per_second
        time_since_last = time.time() - provider.last_request_time
        if time_since_last < min_interval:
            await asyncio.sleep(min_interval - time_since_last)
        provider.last_request_time = time.time()

    def _handle_rate_limit(self, provider: ProviderConfig) -> float:
        provider.consecutive_errors += 1
        provider.total_errors += 1
        self._metrics["rate_limited"] += 1

        # 2s, 4s, 8s, ... max 60s
        backoff = min(2 ** provider.consecutive_errors, 60)
        provider.backoff_until = time.time() + backoff
        logger.warning(
            f"[RPC] {provider.name} rate limited (429), backoff {backoff}s "
            f"(errors: {provider.consecutive_errors})"
        )
        return backoff

    def _handle_success(self, provider: ProviderConfig) -> None:
        provider.consecutive_errors = 0
        provider.total_requests += 1
        self._metrics["successful_requests"] += 1

    async def _post_once(self, body: Any) -> Any:
        """Try each available provider once.

        Raises:
            RateLimitedError: every provider answered 429 or is backing off
            FetchError: every provider failed
        """
        providers = self._available_providers()
        if not providers:
            soonest = min(p.backoff_until for p in self.providers) - time.time()
            raise RateLimitedError(f"all RPC providers backing off ({soonest:.1f}s)", retry_after=max(soonest, 0.0))

        session = self._get_session()
        last_error: Exception | None = None
        rate_limited = 0

        for position, provider in enumerate(providers):
            if position:
                self._metrics["fallback_used"] += 1
            await self._wait_for_rate_limit(provider)
            self._metrics["total_requests"] += 1
            try:
                async with session.post(
                    provider.http_endpoint,
                    json=body,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    headers={"Content-Type": "application/json"},
                ) as resp:
                    if resp.status == self.HTTP_OK:
                        data = await resp.json(content_type=None)
                        self._handle_success(provider)
                        return data
                    if resp.status == self.HTTP_RATE_LIMITED:
                        self._handle_rate_limit(provider)
                        rate_limited += 1
                        last_error = RateLimitedError(f"{provider.name} HTTP 429")
                        continue
                    logger.warning(f"[RPC] {provider.name} HTTP {resp.status}")
                    last_error = FetchError(f"{provider.name} HTTP {resp.status}")
            except asyncio.TimeoutError:
                logger.warning(f"[RPC] {provider.name} timeout ({self.timeout}s)")
                last_error = FetchError(f"{provider.name} timeout")
            except (aiohttp.ClientError, ValueError) as e:
                logger.warning(f"[RPC] {provider.name} client error: {e}")
                last_error = FetchError(f"{provider.name}: {e}")
            provider.consecutive_errors += 1
            provider.total_errors += 1

        if rate_limited == len(providers):
            raise RateLimitedError("all RPC providers rate limited")
        raise last_error or FetchError("no RPC provider answered")

    async def _post(self, body: Any) -> Any:
        return await self._breaker.call(retry_with_backoff, self._post_once, self._retry, body)

    def _request(self, signature: str, request_id: int = 1, commitment: str | None = None) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "getTransaction",
            "params": [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": commitment or self.commitment,
                },
            ],
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_one(self, signature: str, commitment: str | None = None) -> TransactionRecord | None:
        """Fetch one transaction. None when it does not exist.

        Raises:
            FetchError: transport failure after retries (CircuitOpenError when
                the breaker is open)
        """
        if not is_valid_signature(signature):
            logger.debug(f"[RPC] Invalid signature: {signature!r}")
            return None

        self._metrics["single_requests"] += 1
        response = await self._post(self._request(signature, commitment=commitment))
        if not isinstance(response, dict):
            raise FetchError("unexpected JSON-RPC response shape")
        if response.get("error"):
            raise FetchError(f"RPC error: {response['error']}")
        return _to_record(response.get("result"), signature)

    async def fetch_batch(
        self, signatures: Sequence[str], commitment: str | None = None
    ) -> list[TransactionRecord | None]:
        """Fetch up to 50 transactions in one JSON-RPC batch request.

        Raises:
            FetchError: the batch request failed as a whole
        """
        if len(signatures) > MAX_BATCH_SIZE:
            raise ValueError(f"batch of {len(signatures)} exceeds {MAX_BATCH_SIZE}")

        results: list[TransactionRecord | None] = [None] * len(signatures)
        requests = [
            self._request(sig, request_id=index, commitment=commitment)
            for index, sig in enumerate(signatures)
            if is_valid_signature(sig)
        ]
        if not requests:
            return results

        self._metrics["batch_requests"] += 1
        response = await self._post(requests)
        if not isinstance(response, list):
            # Providers without batch support answer with a single error object
            raise FetchError(f"batch request rejected: {str(response)[:200]}")

        for item in response:
            if not isinstance(item, dict):
                continue
            index = item.get("id")
            if not isinstance(index, int) or not 0 <= index < len(signatures):
                continue
            if item.get("error"):
                logger.debug(f"[RPC] {signatures[index][:16]}: {item['error']}")
                continue
            results[index] = _to_record(item.get("result"), signatures[index])

        found = sum(1 for r in results if r is not None)
        logger.debug(f"[RPC] Batch fetched {found}/{len(signatures)} transactions")
        return results

    def get_metrics(self) -> dict[str, Any]:
        return {
            **self._metrics,
            "breaker": self._breaker.get_stats(),
            "providers": {
                p.name: {
                    "total_requests": p.total_requests,
                    "total_errors": p.total_errors,
                    "consecutive_errors": p.consecutive_errors,
                    "in_backoff": time.time() < p.backoff_until,
                }
                for p in self.providers
            },
        }

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None


def _to_record(result: Any, signature: str) -> TransactionRecord | None:
    if not result:
        return None
    try:
        return TransactionRecord.from_rpc(result, signature)
    except MalformedTransactionError as e:
        logger.debug(f"[RPC] {signature[:16]}: {e}")
        return None


def _provider_name(url: str, index: int) -> str:
    host = url.split("://", 1)[-1].split("/", 1)[0].split("?", 1)[0]
    return f"{host or 'rpc'}#{index}"
