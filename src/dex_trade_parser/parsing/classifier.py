"""
Trade classifier.

Resolution order for one signature:
1. result cache
2. oracle lookup and transaction fetch, concurrently
3. strategy chain (see parsing.protocols), first outcome wins
4. USD price, cache insert

A single-signature classification never raises: every failure is logged and
turns into "no outcome".
"""

import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.cache import ResultCache
from dex_trade_parser.core.constants import STABLE_MINTS
from dex_trade_parser.core.errors import MalformedTransactionError
from dex_trade_parser.core.models import (
    BuyTrade,
    PairedTrade,
    SellTrade,
    SwapTrade,
    TradeOutcome,
    TransactionRecord,
    compute_price,
)
from dex_trade_parser.core.rpc_fetcher import TransactionFetcher, is_valid_signature
from dex_trade_parser.data_providers.jupiter_oracle import OracleTrade, TradeOracle
from dex_trade_parser.data_providers.sol_price import NativePriceSource
from dex_trade_parser.parsing.diagnostics import build_diagnostics
from dex_trade_parser.parsing.protocols import ClassificationContext, ClassifierStrategy, default_strategies
from dex_trade_parser.utils.log_context import parse_context
from dex_trade_parser.utils.logger import get_logger, log_trade_event

logger = get_logger(__name__)

TransactionInput = Union[TransactionRecord, dict, None]


@dataclass(frozen=True)
class ClassifyOptions:
    use_oracle: bool = True
    use_cache: bool = True
    # Passed to the fetcher; None keeps the fetcher's own default
    commitment: Optional[str] = None


BATCH_OPTIONS = ClassifyOptions(use_oracle=False, use_cache=True)


def needs_native_price(outcome: Optional[TradeOutcome]) -> bool:
    return isinstance(outcome, (BuyTrade, SellTrade)) and outcome.price_usd is None


def apply_usd_price(outcome: Optional[TradeOutcome], sol_usd: Optional[float]) -> Optional[TradeOutcome]:
    """Fill ``price_usd``: native price times SOL/USD, or the stable-side ratio."""
    if not isinstance(outcome, PairedTrade) or outcome.price_usd is not None:
        return outcome

    if isinstance(outcome, (BuyTrade, SellTrade)):
        if sol_usd is None or outcome.price is None or sol_usd <= 0:
            return outcome
        return outcome.with_changes(price_usd=outcome.price * sol_usd)

    if isinstance(outcome, SwapTrade):
        sold, bought = outcome.sold_token, outcome.bought_token
        if bought.mint in STABLE_MINTS:
            price_usd = compute_price(bought.amount, sold.amount)
        elif sold.mint in STABLE_MINTS:
            price_usd = compute_price(sold.amount, bought.amount)
        else:
            return outcome
        if price_usd is not None:
            return outcome.with_changes(price_usd=price_usd)
    return outcome


def to_record(tx: TransactionInput, signature: Optional[str] = None) -> Optional[TransactionRecord]:
    """Normalize a caller-supplied transaction; None if it is malformed."""
    if tx is None or isinstance(tx, TransactionRecord):
        return tx
    try:
        return TransactionRecord.from_rpc(tx, signature)
    except MalformedTransactionError as e:
        logger.debug(f"[CLASSIFIER] Malformed transaction: {e}")
        return None


class TradeClassifier:
    """Signature or transaction -> TradeOutcome."""

    def __init__(
        self,
        fetcher: Optional[TransactionFetcher] = None,
        oracle: Optional[TradeOracle] = None,
        price_source: Optional[NativePriceSource] = None,
        cache: Optional[ResultCache] = None,
        config: Optional[ParserConfig] = None,
        strategies: Optional[Iterable[ClassifierStrategy]] = None,
    ):
        self.config = config or ParserConfig()
        self.fetcher = fetcher
        self.oracle = oracle
        self.price_source = price_source
        self.cache = cache if cache is not None else ResultCache(
            capacity=self.config.cache_capacity,
            ttl_seconds=self.config.cache_ttl_seconds,
        )
        self.strategies = list(strategies) if strategies is not None else default_strategies(self.config)
        self._stats = {
            "total": 0,
            "parsed": 0,
            "cache_hits": 0,
            "not_found": 0,
            "unclassified": 0,
            "strategy_errors": 0,
            "errors": 0,
        }
        self._by_source: Counter = Counter()

    # ------------------------------------------------------------------
    # Synchronous core
    # ------------------------------------------------------------------

    def resolve(
        self,
        record: Optional[TransactionRecord],
        oracle_trade: Optional[OracleTrade] = None,
        signature: Optional[str] = None,
    ) -> Optional[TradeOutcome]:
        """Run the strategy chain. A failing strategy counts as no outcome."""
        ctx = ClassificationContext(record, self.config, oracle_trade, signature)
        for strategy in self.strategies:
            try:
                if not strategy.applies(ctx):
                    continue
                outcome = strategy.classify(ctx)
            except Exception as e:
                self._stats["strategy_errors"] += 1
                logger.debug(f"[CLASSIFIER] {strategy.name} failed: {type(e).__name__}: {e}")
                continue
            if outcome is not None:
                if outcome.signature is None and ctx.signature:
                    outcome = outcome.with_changes(signature=ctx.signature)
                return outcome
        return None

    def classify_record(
        self,
        record: TransactionInput,
        options: ClassifyOptions = BATCH_OPTIONS,
        sol_usd: Optional[float] = None,
        signature: Optional[str] = None,
    ) -> Optional[TradeOutcome]:
        """Classify an already-fetched transaction without any I/O."""
        self._stats["total"] += 1
        record = to_record(record, signature)
        signature = signature or (record.signature if record else None)
        with parse_context(signature):
            if options.use_cache and signature:
                cached = self.cache.get(signature)
                if cached is not None:
                    self._stats["cache_hits"] += 1
                    return cached
            if record is None:
                self._stats["not_found"] += 1
                return None
            try:
                outcome = apply_usd_price(self.resolve(record, None, signature), sol_usd)
            except Exception as e:
                self._stats["errors"] += 1
                logger.warning(f"[CLASSIFIER] Unexpected error: {type(e).__name__}: {e}")
                return None
            self._finish(signature, outcome, options)
            return outcome

    # ------------------------------------------------------------------
    # Async entry points
    # ------------------------------------------------------------------

    async def classify(
        self,
        signature: str,
        tx: TransactionInput = None,
        options: Optional[ClassifyOptions] = None,
    ) -> Optional[TradeOutcome]:
        """Classify one signature, fetching the transaction unless ``tx`` is given."""
        outcome, _ = await self._classify(signature, tx, options or ClassifyOptions(), fetch=tx is None)
        return outcome

    async def classify_with_record(
        self,
        signature: str,
        record: Optional[TransactionRecord],
        options: Optional[ClassifyOptions] = None,
    ) -> Optional[TradeOutcome]:
        """Like ``classify`` but never fetches; ``record`` may be None (oracle only)."""
        outcome, _ = await self._classify(signature, record, options or ClassifyOptions(), fetch=False)
        return outcome

    async def parse_report(self, signature: str, options: Optional[ClassifyOptions] = None) -> dict[str, Any]:
        """Classification result shaped for API handlers."""
        if not is_valid_signature(signature):
            return {
                "success": False,
                "error": "Invalid transaction signature",
                "hint": "Signatures are base58 encoded, 64 bytes",
                "debug": None,
            }

        outcome, record = await self._classify(signature, None, options or ClassifyOptions(), fetch=True)
        if outcome is not None:
            return {"success": True, "data": outcome.to_dict()}

        if record is None:
            return {
                "success": False,
                "error": "Transaction not found",
                "hint": "Check the signature and the commitment level, or retry later",
                "debug": None,
            }

        debug = build_diagnostics(record, self.config)
        return {
            "success": False,
            "error": "Could not classify transaction",
            "hint": debug["reason"],
            "debug": debug,
        }

    async def native_usd_price(self) -> Optional[float]:
        if self.price_source is None:
            return None
        try:
            return await self.price_source.current_price()
        except Exception as e:
            logger.debug(f"[CLASSIFIER] SOL price unavailable: {e}")
            return None

    async def _lookup_oracle(self, signature: str, options: ClassifyOptions) -> Optional[OracleTrade]:
        if not options.use_oracle or self.oracle is None:
            return None
        try:
            return await self.oracle.lookup(signature)
        except Exception as e:
            logger.debug(f"[ORACLE] Lookup failed: {e}")
            return None

    async def _fetch(self, signature: str, options: ClassifyOptions) -> Optional[TransactionRecord]:
        if self.fetcher is None:
            return None
        try:
            if options.commitment:
                return await self.fetcher.fetch_one(signature, commitment=options.commitment)
            return await self.fetcher.fetch_one(signature)
        except Exception as e:
            logger.warning(f"[CLASSIFIER] Fetch failed: {type(e).__name__}: {e}")
            return None

    async def _classify(
        self,
        signature: str,
        tx: TransactionInput,
        options: ClassifyOptions,
        fetch: bool,
    ) -> tuple[Optional[TradeOutcome], Optional[TransactionRecord]]:
        self._stats["total"] += 1
        record: Optional[TransactionRecord] = None
        with parse_context(signature):
            try:
                if options.use_cache and signature:
                    cached = self.cache.get(signature)
                    if cached is not None:
                        self._stats["cache_hits"] += 1
                        return cached, None

                record = to_record(tx, signature)
                if fetch and record is None:
                    oracle_trade, record = await asyncio.gather(
                        self._lookup_oracle(signature, options),
                        self._fetch(signature, options),
                    )
                else:
                    oracle_trade = await self._lookup_oracle(signature, options)

                if record is None and oracle_trade is None:
                    self._stats["not_found"] += 1
                    logger.debug("[CLASSIFIER] No transaction data")
                    return None, None

                outcome = self.resolve(record, oracle_trade, signature)
                if needs_native_price(outcome):
                    outcome = apply_usd_price(outcome, await self.native_usd_price())
                else:
                    outcome = apply_usd_price(outcome, None)
            except Exception as e:
                self._stats["errors"] += 1
                logger.warning(f"[CLASSIFIER] Unexpected error: {type(e).__name__}: {e}")
                return None, record

            self._finish(signature, outcome, options)
            return outcome, record

    def _finish(self, signature: Optional[str], outcome: Optional[TradeOutcome], options: ClassifyOptions) -> None:
        if outcome is None:
            self._stats["unclassified"] += 1
            logger.debug("[CLASSIFIER] No strategy produced an outcome")
            return

        self._stats["parsed"] += 1
        self._by_source[outcome.source] += 1
        if options.use_cache and signature:
            self.cache.put(signature, outcome)
        logger.debug(
            f"[CLASSIFIER] {outcome.type.value} on {outcome.dex.value} via {outcome.source}"
        )
        log_trade_event(
            "trade_classified",
            signature,
            {"trade_type": outcome.type.value, "dex": outcome.dex.value, "source": outcome.source},
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "by_source": dict(self._by_source),
            "cache": self.cache.get_stats(),
        }
