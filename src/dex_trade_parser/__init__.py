"""
Solana DEX trade parser.

Usage:
    from dex_trade_parser import ParserConfig, build_classifier

    config = ParserConfig.from_env()
    classifier, pipeline = build_classifier(config)
    trade = await classifier.classify(signature)
    trades = await pipeline.classify_many(signatures)
"""

from typing import Optional

import aiohttp

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.cache import ResultCache
from dex_trade_parser.core.constants import DexIdentity
from dex_trade_parser.core.models import TradeOutcome, TradeType, TransactionRecord
from dex_trade_parser.core.rpc_fetcher import RpcTransactionFetcher
from dex_trade_parser.data_providers.jupiter_oracle import JupiterTradeOracle
from dex_trade_parser.data_providers.sol_price import JupiterSolPriceSource
from dex_trade_parser.parsing.classifier import ClassifyOptions, TradeClassifier
from dex_trade_parser.parsing.pipeline import BatchParseResult, BatchParsingPipeline

__version__ = "0.1.0"


def build_classifier(
    config: Optional[ParserConfig] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> tuple[TradeClassifier, BatchParsingPipeline]:
    """Wire fetcher, oracle, price source and cache from one config."""
    config = (config or ParserConfig()).validate()
    fetcher = RpcTransactionFetcher.from_config(config, session=session)
    classifier = TradeClassifier(
        fetcher=fetcher,
        oracle=JupiterTradeOracle(
            base_url=config.oracle_url,
            timeout=config.oracle_timeout_seconds,
            session=session,
        ),
        price_source=JupiterSolPriceSource(
            price_url=config.price_url,
            cache_seconds=config.price_cache_seconds,
            session=session,
        ),
        cache=ResultCache(config.cache_capacity, config.cache_ttl_seconds),
        config=config,
    )
    return classifier, BatchParsingPipeline(classifier, fetcher, config)


__all__ = [
    "ParserConfig",
    "ResultCache",
    "DexIdentity",
    "TradeOutcome",
    "TradeType",
    "TransactionRecord",
    "RpcTransactionFetcher",
    "JupiterTradeOracle",
    "JupiterSolPriceSource",
    "ClassifyOptions",
    "TradeClassifier",
    "BatchParseResult",
    "BatchParsingPipeline",
    "build_classifier",
]
