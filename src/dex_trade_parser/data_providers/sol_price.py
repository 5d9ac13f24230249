"""
SOL/USD price from the Jupiter price API, cached for a few seconds.
"""

import asyncio
import os
import time
from typing import Optional, Protocol

import aiohttp

from dex_trade_parser.core.constants import SOL_MINT
from dex_trade_parser.utils.logger import get_logger

logger = get_logger(__name__)


class NativePriceSource(Protocol):
    async def current_price(self) -> Optional[float]:
        ...


class JupiterSolPriceSource:
    """``current_price()`` -> SOL price in USD, None when unavailable."""

    PRICE_URL = "https://api.jup.ag/price/v3"

    def __init__(
        self,
        price_url: Optional[str] = None,
        cache_seconds: float = 10.0,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.price_url = price_url or self.PRICE_URL
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self.api_key = api_key or os.getenv("JUPITER_API_KEY")
        self._session = session
        self._owns_session = session is None
        self._cache = {"price": None, "ts": 0.0}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def current_price(self) -> Optional[float]:
        now = time.time()
        if self._cache["price"] and (now - self._cache["ts"]) < self.cache_seconds:
            return self._cache["price"]

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        try:
            session = await self._get_session()
            async with session.get(
                self.price_url,
                params={"ids": SOL_MINT},
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status == 200:
                    data = await resp.json(content_type=None)
                    price = _extract_price(data)
                    if price:
                        self._cache["price"] = price
                        self._cache["ts"] = now
                        return price
                else:
                    logger.debug(f"[PRICE] SOL price HTTP {resp.status}")
        except (asyncio.TimeoutError, aiohttp.ClientError, ValueError) as e:
            logger.debug(f"[PRICE] SOL price unavailable: {e}")

        # Last known price beats none
        return self._cache["price"]

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None


def _extract_price(data) -> Optional[float]:
    """v3 body is {mint: {usdPrice}}, v2 is {data: {mint: {price}}}."""
    if not isinstance(data, dict):
        return None
    entry = data.get(SOL_MINT)
    if entry is None and isinstance(data.get("data"), dict):
        entry = data["data"].get(SOL_MINT)
    if not isinstance(entry, dict):
        return None
    value = entry.get("usdPrice", entry.get("price"))
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None
