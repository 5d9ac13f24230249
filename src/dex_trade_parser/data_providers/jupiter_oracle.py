"""
Jupiter transaction lookup used as an external trade oracle.

GET {base_url}/{signature} returns the swap Jupiter routed for that
signature (input/output mints and raw amounts). Any timeout, non-2xx answer
or malformed body is treated as "no data": ``lookup`` returns None and never
raises.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import aiohttp

from dex_trade_parser.core.constants import is_native_mint

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 6


@dataclass(frozen=True)
class OracleTrade:
    """A trade as reported by the oracle, amounts in UI units."""
    input_mint: str
    output_mint: str
    input_amount: float
    output_amount: float
    input_decimals: int = DEFAULT_DECIMALS
    output_decimals: int = DEFAULT_DECIMALS
    input_symbol: Optional[str] = None
    output_symbol: Optional[str] = None
    price: Optional[float] = None
    fee: Optional[float] = None

    @classmethod
    def from_api(cls, data: Any) -> Optional["OracleTrade"]:
        """Parse an API body. None unless both mints and amounts are present."""
        if not isinstance(data, dict):
            return None
        input_mint = data.get("inputMint")
        output_mint = data.get("outputMint")
        if not input_mint or not output_mint:
            return None
        try:
            input_decimals = int(data.get("inputDecimals") or DEFAULT_DECIMALS)
            output_decimals = int(data.get("outputDecimals") or DEFAULT_DECIMALS)
            input_amount = float(data.get("inputAmount") or 0) / 10 ** input_decimals
            output_amount = float(data.get("outputAmount") or 0) / 10 ** output_decimals
            price = float(data["price"]) if data.get("price") is not None else None
            fee = float(data["fee"]) if data.get("fee") is not None else None
        except (TypeError, ValueError):
            return None
        return cls(
            input_mint=input_mint,
            output_mint=output_mint,
            input_amount=input_amount,
            output_amount=output_amount,
            input_decimals=input_decimals,
            output_decimals=output_decimals,
            input_symbol=data.get("inputSymbol"),
            output_symbol=data.get("outputSymbol"),
            price=price,
            fee=fee,
        )

    def is_plausible(self, min_native_amount: float = 0.01) -> bool:
        """Both amounts positive, native side not below the partial-fill floor."""
        if self.input_amount <= 0 or self.output_amount <= 0:
            return False
        if is_native_mint(self.input_mint) and self.input_amount < min_native_amount:
            return False
        if is_native_mint(self.output_mint) and self.output_amount < min_native_amount:
            return False
        return True


class TradeOracle(Protocol):
    async def lookup(self, signature: str) -> Optional[OracleTrade]:
        ...


class JupiterTradeOracle:
    """Signature -> OracleTrade via the Jupiter transactions endpoint."""

    BASE_URL = "https://api.jup.ag/transactions"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 2.0,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.api_key = api_key or os.getenv("JUPITER_API_KEY")
        self._session = session
        self._owns_session = session is None
        self.stats = {"lookups": 0, "found": 0, "misses": 0, "errors": 0}

    def _get_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def lookup(self, signature: str) -> Optional[OracleTrade]:
        self.stats["lookups"] += 1
        try:
            session = await self._get_session()
            async with session.get(
                f"{self.base_url}/{signature}",
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    self.stats["misses"] += 1
                    return None
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            self.stats["errors"] += 1
            logger.debug(f"[ORACLE] {signature[:16]} timeout ({self.timeout}s)")
            return None
        except (aiohttp.ClientError, ValueError) as e:
            self.stats["errors"] += 1
            logger.debug(f"[ORACLE] {signature[:16]} error: {e}")
            return None

        trade = OracleTrade.from_api(data)
        if trade is None:
            self.stats["misses"] += 1
        else:
            self.stats["found"] += 1
        return trade

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None
