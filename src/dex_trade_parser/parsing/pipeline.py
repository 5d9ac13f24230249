"""
Batch parsing pipeline.

classify_many(signatures):
- cached signatures are answered without fetching
- the rest are split into batches of at most 50
- each batch is fetched with one bulk request and classified synchronously
  (oracle disabled, cache enabled)
- a batch whose bulk fetch fails falls back to per-signature fetch and
  classification with the oracle enabled
- at most ``max_concurrent_batches`` batches are in flight; once the deadline
  has passed no new batch starts and its signatures are reported as skipped
"""

import asyncio
import time
from typing import Any, Iterable, Optional, Sequence

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.constants import MAX_BATCH_SIZE
from dex_trade_parser.core.models import TradeOutcome, TransactionRecord
from dex_trade_parser.core.rpc_fetcher import TransactionFetcher
from dex_trade_parser.parsing.classifier import (
    BATCH_OPTIONS,
    ClassifyOptions,
    TradeClassifier,
    TransactionInput,
    to_record,
)
from dex_trade_parser.utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_OPTIONS = ClassifyOptions(use_oracle=True, use_cache=True)


class BatchParseResult(dict):
    """signature -> TradeOutcome, plus what happened to the missing signatures.

    unclassified  transaction data was available but no strategy matched
    not_fetched   no transaction data could be obtained
    skipped       the deadline passed before the signature's batch started
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.unclassified: set[str] = set()
        self.not_fetched: set[str] = set()
        self.skipped: set[str] = set()

    def status(self, signature: str) -> str:
        if signature in self:
            return "classified"
        if signature in self.unclassified:
            return "unclassified"
        if signature in self.not_fetched:
            return "not_fetched"
        if signature in self.skipped:
            return "skipped"
        return "unknown"

    def ordered(self, signatures: Sequence[str]) -> list[tuple[str, Optional[TradeOutcome]]]:
        """Outcomes in the caller's signature order, None for missing ones."""
        return [(sig, self.get(sig)) for sig in signatures]

    def summary(self) -> dict[str, int]:
        return {
            "classified": len(self),
            "unclassified": len(self.unclassified),
            "not_fetched": len(self.not_fetched),
            "skipped": len(self.skipped),
        }


def chunk(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BatchParsingPipeline:
    """Many signatures -> BatchParseResult."""

    def __init__(
        self,
        classifier: TradeClassifier,
        fetcher: Optional[TransactionFetcher] = None,
        config: Optional[ParserConfig] = None,
    ):
        self.classifier = classifier
        self.fetcher = fetcher if fetcher is not None else classifier.fetcher
        self.config = config or classifier.config
        self.batch_size = max(1, min(self.config.batch_size, MAX_BATCH_SIZE))
        self.max_concurrent_batches = max(1, self.config.max_concurrent_batches)
        self._stats = {
            "batches": 0,
            "batch_failures": 0,
            "fallback_fetches": 0,
            "fallback_failures": 0,
            "skipped_batches": 0,
        }

    async def classify_many(
        self,
        signatures: Iterable[str],
        deadline: Optional[float] = None,
    ) -> BatchParseResult:
        """Classify every signature.

        Args:
            signatures: transaction signatures, duplicates are ignored
            deadline: ``time.monotonic()`` value after which no new batch starts
        """
        result = BatchParseResult()
        pending = []
        for sig in dict.fromkeys(signatures):
            cached = self.classifier.cache.get(sig)
            if cached is not None:
                result[sig] = cached
            else:
                pending.append(sig)

        if not pending:
            return result
        if self.fetcher is None:
            raise ValueError("classify_many needs a transaction fetcher")

        sol_usd = await self.classifier.native_usd_price()
        semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        batches = chunk(pending, self.batch_size)

        async def run(batch: list[str]) -> None:
            async with semaphore:
                if deadline is not None and time.monotonic() >= deadline:
                    self._stats["skipped_batches"] += 1
                    result.skipped.update(batch)
                    return
                await self._process_batch(batch, result, sol_usd)

        started = time.monotonic()
        await asyncio.gather(*(run(batch) for batch in batches))
        logger.info(
            f"[PIPELINE] {len(pending)} signatures in {len(batches)} batches, "
            f"{time.monotonic() - started:.2f}s: {result.summary()}"
        )
        return result

    async def _process_batch(self, batch: list[str], result: BatchParseResult, sol_usd: Optional[float]) -> None:
        self._stats["batches"] += 1
        try:
            records = await self.fetcher.fetch_batch(batch)
            if len(records) != len(batch):
                raise ValueError(f"fetch_batch returned {len(records)} records for {len(batch)} signatures")
        except Exception as e:
            self._stats["batch_failures"] += 1
            logger.warning(f"[PIPELINE] Batch of {len(batch)} failed ({type(e).__name__}: {e}), fetching individually")
            await self._fallback(batch, result)
            return

        for sig, record in zip(batch, records):
            if record is None:
                result.not_fetched.add(sig)
                continue
            self._store(sig, self.classifier.classify_record(record, BATCH_OPTIONS, sol_usd, sig), result)

    async def _fallback(self, batch: list[str], result: BatchParseResult) -> None:
        for sig in batch:
            self._stats["fallback_fetches"] += 1
            try:
                record = await self.fetcher.fetch_one(sig)
            except Exception as e:
                self._stats["fallback_failures"] += 1
                logger.debug(f"[PIPELINE] {sig[:16]} fetch failed: {e}")
                record = None

            outcome = await self.classifier.classify_with_record(sig, record, FALLBACK_OPTIONS)
            if outcome is None and record is None:
                result.not_fetched.add(sig)
                continue
            self._store(sig, outcome, result)

    @staticmethod
    def _store(sig: str, outcome: Optional[TradeOutcome], result: BatchParseResult) -> None:
        if outcome is None:
            result.unclassified.add(sig)
        else:
            result[sig] = outcome

    async def classify_transactions(self, payloads: Iterable[TransactionInput]) -> BatchParseResult:
        """Classify already-fetched transactions with zero additional fetches."""
        result = BatchParseResult()
        sol_usd = await self.classifier.native_usd_price()
        for payload in payloads:
            signature = _payload_signature(payload)
            if not signature:
                logger.debug("[PIPELINE] Payload without signature skipped")
                continue
            record = to_record(payload, signature)
            if record is None:
                result.not_fetched.add(signature)
                continue
            self._store(signature, self.classifier.classify_record(record, BATCH_OPTIONS, sol_usd, signature), result)
        return result

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "classifier": self.classifier.get_stats()}


def _payload_signature(payload: Any) -> Optional[str]:
    if isinstance(payload, TransactionRecord):
        return payload.signature
    if not isinstance(payload, dict):
        return None
    if payload.get("signature"):
        return payload["signature"]
    tx = payload.get("transaction")
    if isinstance(tx, dict):
        sigs = tx.get("signatures") or []
        if sigs:
            return sigs[0]
    return None
