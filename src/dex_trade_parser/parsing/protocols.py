"""
Classification strategies.

Each strategy turns one ClassificationContext into a TradeOutcome or None.
The classifier walks an ordered list of strategies and stops at the first
outcome; the order is the resolution policy:

    PumpFunParser    authoritative, explicit buy/sell from logs or discriminator
    OracleStrategy   external trade lookup, holder backfilled from the transaction
    RaydiumParser / OrcaParser / JupiterParser
    GenericParser    full balance-delta heuristic, applies to everything
"""

from abc import ABC, abstractmethod
from functools import cached_property
from typing import Optional

import base58

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.constants import (
    DEX_PROGRAMS,
    PUMP_FUN_BUY_DISCRIMINATOR,
    PUMP_FUN_SELL_DISCRIMINATOR,
    DexIdentity,
    token_symbol,
)
from dex_trade_parser.core.models import (
    BuyTrade,
    Instruction,
    NativeDelta,
    SellTrade,
    TokenAmount,
    TokenDelta,
    TradeOutcome,
    TradeType,
    TransactionRecord,
    make_trade,
)
from dex_trade_parser.data_providers.jupiter_oracle import OracleTrade
from dex_trade_parser.parsing.balance_changes import extract_native_deltas, extract_token_deltas
from dex_trade_parser.parsing.dex_identifier import identify_dex
from dex_trade_parser.parsing.trade_analysis import (
    TradeAnalysis,
    acting_wallet,
    is_buy_or_sell,
    is_liquidity_operation,
)
from dex_trade_parser.utils.logger import get_logger

logger = get_logger(__name__)


class ClassificationContext:
    """Per-transaction inputs, derived data computed on first use."""

    def __init__(
        self,
        record: Optional[TransactionRecord],
        config: Optional[ParserConfig] = None,
        oracle_trade: Optional[OracleTrade] = None,
        signature: Optional[str] = None,
    ):
        self.record = record
        self.config = config or ParserConfig()
        self.oracle_trade = oracle_trade
        self.signature = signature or (record.signature if record else None)

    @cached_property
    def dex(self) -> DexIdentity:
        if self.record is None:
            return DexIdentity.UNKNOWN
        return identify_dex(self.record)

    @cached_property
    def token_deltas(self) -> list[TokenDelta]:
        return extract_token_deltas(self.record, self.config.token_dust)

    @cached_property
    def native_deltas(self) -> list[NativeDelta]:
        return extract_native_deltas(self.record, self.config.native_dust_lamports)

    @cached_property
    def analysis(self) -> TradeAnalysis:
        return TradeAnalysis(
            self.record,
            self.token_deltas,
            self.native_deltas,
            native_dust=self.config.heuristic_native_dust,
            pair_dust=self.config.pair_dust,
        )


class ClassifierStrategy(ABC):
    """One way of classifying a transaction."""

    name: str = "strategy"

    def applies(self, ctx: ClassificationContext) -> bool:
        return ctx.record is not None

    @abstractmethod
    def classify(self, ctx: ClassificationContext) -> Optional[TradeOutcome]:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# =============================================================================
# Pump.fun
# =============================================================================


def _pump_programs() -> frozenset[str]:
    return frozenset(DEX_PROGRAMS[DexIdentity.PUMP_FUN])


def pump_scoped_logs(log_messages: tuple[str, ...]) -> list[str]:
    """Log lines emitted while a Pump.fun program frame is on top of the stack.

    All lines when no Pump.fun invocation appears in the logs at all.
    """
    programs = _pump_programs()
    stack: list[str] = []
    scoped: list[str] = []
    seen = False
    for line in log_messages:
        parts = line.split()
        if len(parts) >= 3 and parts[0] == "Program" and parts[2] == "invoke":
            stack.append(parts[1])
            seen = seen or parts[1] in programs
            continue
        if len(parts) >= 3 and parts[0] == "Program" and parts[2] in ("success", "failed:", "failed"):
            if stack and stack[-1] == parts[1]:
                stack.pop()
            continue
        if stack and stack[-1] in programs:
            scoped.append(line)
    return scoped if seen else list(log_messages)


def direction_from_logs(log_messages: tuple[str, ...]) -> Optional[TradeType]:
    """BUY or SELL when the Pump.fun logs name exactly one of them."""
    text = " ".join(pump_scoped_logs(log_messages)).lower()
    is_sell = "instruction: sell" in text or "instruction sell" in text
    is_buy = "instruction: buy" in text or "instruction buy" in text
    if is_sell and not is_buy:
        return TradeType.SELL
    if is_buy and not is_sell:
        return TradeType.BUY
    return None


def direction_from_discriminator(instructions: list[Instruction]) -> Optional[TradeType]:
    """BUY or SELL from the Anchor discriminator of Pump.fun instruction data."""
    found = set()
    for ix in instructions:
        if not ix.data:
            continue
        try:
            raw = base58.b58decode(ix.data)
        except ValueError:
            continue
        prefix = raw[:8]
        if prefix == PUMP_FUN_BUY_DISCRIMINATOR:
            found.add(TradeType.BUY)
        elif prefix == PUMP_FUN_SELL_DISCRIMINATOR:
            found.add(TradeType.SELL)
    if len(found) == 1:
        return found.pop()
    return None


class PumpFunParser(ClassifierStrategy):
    """Pump.fun bonding curve and AMM swaps, always SOL <-> token."""

    name = "pump_fun_parser"

    def applies(self, ctx: ClassificationContext) -> bool:
        return ctx.record is not None and ctx.dex == DexIdentity.PUMP_FUN

    def classify(self, ctx: ClassificationContext) -> Optional[TradeOutcome]:
        tx = ctx.record
        programs = _pump_programs()
        main = [ix for ix in tx.instructions if ix.program_id in programs]
        inner = [ix for ix in tx.iter_inner_instructions() if ix.program_id in programs]
        log_text = " ".join(tx.log_messages).lower()
        in_logs = any(program.lower() in log_text for program in programs)
        if not main and not inner and not in_logs:
            return None

        trade = ctx.analysis.native_token_trade(DexIdentity.PUMP_FUN, self.name)
        if trade is None:
            return None

        direction = direction_from_logs(tx.log_messages)
        if direction is None:
            direction = direction_from_discriminator(main + inner)

        if direction == TradeType.SELL and isinstance(trade, BuyTrade):
            logger.debug("[PUMP] Log direction sell overrides balance-derived buy")
            trade = trade.swapped()
        elif direction == TradeType.BUY and isinstance(trade, SellTrade):
            logger.debug("[PUMP] Log direction buy overrides balance-derived sell")
            trade = trade.swapped()

        return trade.with_changes(routed=bool(inner))


# =============================================================================
# Oracle
# =============================================================================


class OracleStrategy(ClassifierStrategy):
    """Accepts a plausible oracle trade; the transaction only supplies the holder."""

    name = "jupiter_api"

    def __init__(self, min_native_amount: Optional[float] = None):
        self.min_native_amount = min_native_amount

    def applies(self, ctx: ClassificationContext) -> bool:
        return ctx.oracle_trade is not None

    def classify(self, ctx: ClassificationContext) -> Optional[TradeOutcome]:
        trade = ctx.oracle_trade
        floor = self.min_native_amount
        if floor is None:
            floor = ctx.config.oracle_min_native_amount
        if not trade.is_plausible(floor):
            logger.debug(
                f"[ORACLE] Rejected implausible trade {trade.input_amount} -> {trade.output_amount}"
            )
            return None

        record = ctx.record
        holder = None
        fee = trade.fee
        block_time = slot = None
        if record is not None:
            holder = acting_wallet(record, ctx.token_deltas, ctx.native_deltas)
            fee = record.fee / 1_000_000_000 if record.fee else fee
            block_time, slot = record.block_time, record.slot

        dex = ctx.dex if ctx.dex not in (DexIdentity.UNKNOWN, DexIdentity.AGGREGATOR) else DexIdentity.JUPITER
        return make_trade(
            TokenAmount(
                mint=trade.input_mint,
                symbol=token_symbol(trade.input_mint, trade.input_symbol),
                amount=trade.input_amount,
                decimals=trade.input_decimals,
            ),
            TokenAmount(
                mint=trade.output_mint,
                symbol=token_symbol(trade.output_mint, trade.output_symbol),
                amount=trade.output_amount,
                decimals=trade.output_decimals,
            ),
            dex=dex,
            source=self.name,
            holder_address=holder,
            signature=ctx.signature,
            block_time=block_time,
            slot=slot,
            fee=fee,
        )


# =============================================================================
# AMMs, routers, generic
# =============================================================================


class AmmParser(ClassifierStrategy):
    """Single-pool AMM: only SOL <-> token trades are accepted."""

    dex: DexIdentity = DexIdentity.UNKNOWN

    def applies(self, ctx: ClassificationContext) -> bool:
        return ctx.record is not None and ctx.dex == self.dex

    def classify(self, ctx: ClassificationContext) -> Optional[TradeOutcome]:
        trade = ctx.analysis.native_token_trade(self.dex, self.name)
        return trade if is_buy_or_sell(trade) else None


class RaydiumParser(AmmParser):
    name = "raydium_parser"
    dex = DexIdentity.RAYDIUM


class OrcaParser(AmmParser):
    name = "orca_parser"
    dex = DexIdentity.ORCA


class GenericParser(ClassifierStrategy):
    """Balance-delta heuristic tagged with whatever DEX was identified."""

    name = "generic_parser"

    def classify(self, ctx: ClassificationContext) -> Optional[TradeOutcome]:
        if is_liquidity_operation(ctx.record):
            logger.debug("[GENERIC] Liquidity operation, not a trade")
            return None
        return ctx.analysis.infer(ctx.dex, self.name)


class JupiterParser(GenericParser):
    """Jupiter routes are multi-hop; the net wallet change is what matters."""

    name = "jupiter_transaction"

    def applies(self, ctx: ClassificationContext) -> bool:
        return ctx.record is not None and ctx.dex == DexIdentity.JUPITER


def default_strategies(config: Optional[ParserConfig] = None) -> list[ClassifierStrategy]:
    config = config or ParserConfig()
    return [
        PumpFunParser(),
        OracleStrategy(config.oracle_min_native_amount),
        RaydiumParser(),
        OrcaParser(),
        JupiterParser(),
        GenericParser(),
    ]

