"""Data model, constants, errors and shared infrastructure."""

from .constants import SOL_MINT, DexIdentity
from .errors import (
    CircuitOpenError,
    ConfigError,
    FetchError,
    MalformedTransactionError,
    RateLimitedError,
    TradeParserError,
)
from .models import (
    BuyTrade,
    SellTrade,
    SwapTrade,
    TokenAmount,
    TradeOutcome,
    TradeType,
    TransactionRecord,
    TransferTrade,
)
from .cache import ResultCache

__all__ = [
    "SOL_MINT",
    "DexIdentity",
    # Errors
    "TradeParserError",
    "MalformedTransactionError",
    "FetchError",
    "RateLimitedError",
    "CircuitOpenError",
    "ConfigError",
    # Model
    "TransactionRecord",
    "TradeType",
    "TradeOutcome",
    "TokenAmount",
    "BuyTrade",
    "SellTrade",
    "SwapTrade",
    "TransferTrade",
    # Cache
    "ResultCache",
]
