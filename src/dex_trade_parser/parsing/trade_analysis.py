"""
Balance-delta heuristics shared by the protocol parsers.

TradeAnalysis works on the extractor output of one transaction:
- acting wallet resolution
- native <-> token trades (buy / sell)
- token -> token swaps
- single-sided transfers
- representative pair selection when several assets moved

Every method returns an outcome or None. Wrapped SOL token deltas are not
treated as tokens: they are the native asset held in a token account.
"""

import logging
import re
from collections import defaultdict
from typing import Iterable, Optional

from dex_trade_parser.core.constants import SOL_DECIMALS, SOL_MINT, DexIdentity, is_native_mint, token_symbol
from dex_trade_parser.core.models import (
    BuyTrade,
    NativeDelta,
    PairedTrade,
    SellTrade,
    TokenAmount,
    TokenDelta,
    TradeOutcome,
    TransactionRecord,
    TransferTrade,
    make_trade,
)

logger = logging.getLogger(__name__)

HEURISTIC_NATIVE_DUST = 0.0001  # SOL
PAIR_DUST = 0.0001
REPRESENTATIVE_PAIR_NOTE = "multiple changes, representative pair selected"

LIQUIDITY_OPERATIONS = ("rebalance", "add_liquidity", "remove_liquidity", "deposit", "withdraw")
_LIQUIDITY_LOG = re.compile(
    r"instruction:\s*(rebalance\w*|add_?liquidity\w*|remove_?liquidity\w*|deposit\w*|withdraw\w*)"
)


def is_liquidity_operation(tx: TransactionRecord) -> bool:
    """True when logs or parsed instruction types name a liquidity operation."""
    for line in tx.log_messages:
        if _LIQUIDITY_LOG.search(line.lower()):
            return True
    instructions = list(tx.instructions) + list(tx.iter_inner_instructions())
    for ix in instructions:
        if not ix.parsed_type:
            continue
        parsed_type = ix.parsed_type.lower().replace("_", "")
        if any(op.replace("_", "") in parsed_type for op in LIQUIDITY_OPERATIONS):
            return True
    return False


def acting_wallet(
    tx: Optional[TransactionRecord],
    token_deltas: Iterable[TokenDelta] = (),
    native_deltas: Iterable[NativeDelta] = (),
) -> Optional[str]:
    """Account the trade is attributed to.

    Signer owning a token delta, else the first signer, else the account
    with the largest native change.
    """
    owners = {d.owner for d in token_deltas}
    signers = tx.signers if tx is not None else []
    for signer in signers:
        if signer in owners:
            return signer
    if signers:
        return signers[0]
    native_deltas = list(native_deltas)
    if native_deltas:
        return max(native_deltas, key=lambda d: abs(d.change)).account
    return None


def _native_amount(amount: float) -> TokenAmount:
    return TokenAmount(mint=SOL_MINT, symbol="SOL", amount=amount, decimals=SOL_DECIMALS)


def _token_amount(mint: str, amount: float, decimals: int) -> TokenAmount:
    return TokenAmount(mint=mint, symbol=token_symbol(mint), amount=amount, decimals=decimals)


class TradeAnalysis:
    """Heuristic classification from balance deltas."""

    def __init__(
        self,
        tx: TransactionRecord,
        token_deltas: list[TokenDelta],
        native_deltas: list[NativeDelta],
        native_dust: float = HEURISTIC_NATIVE_DUST,
        pair_dust: float = PAIR_DUST,
    ):
        self.tx = tx
        self.native_dust = native_dust
        self.pair_dust = pair_dust
        self.all_token_deltas = token_deltas
        self.tokens = [d for d in token_deltas if not is_native_mint(d.mint)]
        self.wrapped_native = [d for d in token_deltas if is_native_mint(d.mint)]
        self.native = [d for d in native_deltas if abs(d.change) > native_dust]
        self.all_native = native_deltas
        self.wallet = acting_wallet(tx, self.tokens, native_deltas)

    # ------------------------------------------------------------------

    def wallet_wrapped_changes(self) -> list[float]:
        """Wrapped SOL balance changes of the acting wallet, in SOL."""
        return [
            d.change for d in self.wrapped_native
            if d.owner == self.wallet and abs(d.change) > self.native_dust
        ]

    @property
    def native_spent(self) -> float:
        """SOL spent across all accounts, plus wrapped SOL spent by the wallet."""
        lamports = sum(-d.change for d in self.native if d.change < 0)
        return lamports + sum(-c for c in self.wallet_wrapped_changes() if c < 0)

    @property
    def native_received(self) -> float:
        lamports = sum(d.change for d in self.native if d.change > 0)
        return lamports + sum(c for c in self.wallet_wrapped_changes() if c > 0)

    def wallet_token_changes(self) -> dict[str, tuple[float, int]]:
        """mint -> (net change, decimals) for the acting wallet."""
        changes: dict[str, list] = defaultdict(lambda: [0.0, 0])
        for delta in self.tokens:
            if delta.owner != self.wallet:
                continue
            entry = changes[delta.mint]
            entry[0] += delta.change
            entry[1] = entry[1] or delta.decimals
        return {mint: (change, decimals) for mint, (change, decimals) in changes.items() if change != 0}

    def _base_fields(self) -> dict:
        return {
            "holder_address": self.wallet,
            "signature": self.tx.signature,
            "block_time": self.tx.block_time,
            "slot": self.tx.slot,
            "fee": self.tx.fee / 1_000_000_000 if self.tx.fee else None,
        }

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def native_token_trade(self, dex: DexIdentity, source: str) -> Optional[PairedTrade]:
        """Buy (native spent, token received) or sell (the reverse)."""
        wallet_changes = self.wallet_token_changes()
        received = [(mint, c, d) for mint, (c, d) in wallet_changes.items() if c > 0]
        sent = [(mint, c, d) for mint, (c, d) in wallet_changes.items() if c < 0]

        spent = self.native_spent
        if spent > 0 and received:
            mint, change, decimals = max(received, key=lambda item: item[1])
            return make_trade(
                _native_amount(spent),
                _token_amount(mint, change, decimals),
                dex=dex, source=source, **self._base_fields(),
            )

        gained = self.native_received
        if gained > 0 and sent:
            mint, change, decimals = min(sent, key=lambda item: item[1])
            return make_trade(
                _token_amount(mint, -change, decimals),
                _native_amount(gained),
                dex=dex, source=source, **self._base_fields(),
            )
        return None

    def token_swap(self, dex: DexIdentity, source: str) -> Optional[PairedTrade]:
        """Token -> token swap: the wallet lost one token and gained another."""
        wallet_changes = self.wallet_token_changes()
        received = [(mint, c, d) for mint, (c, d) in wallet_changes.items() if c > 0]
        sent = [(mint, c, d) for mint, (c, d) in wallet_changes.items() if c < 0]
        if not received or not sent:
            return None
        sold_mint, sold_change, sold_decimals = min(sent, key=lambda item: item[1])
        bought_mint, bought_change, bought_decimals = max(received, key=lambda item: item[1])
        note = REPRESENTATIVE_PAIR_NOTE if len(sent) > 1 or len(received) > 1 else None
        return make_trade(
            _token_amount(sold_mint, -sold_change, sold_decimals),
            _token_amount(bought_mint, bought_change, bought_decimals),
            dex=dex, source=source, note=note, **self._base_fields(),
        )

    def transfer(self, dex: DexIdentity, source: str) -> Optional[TransferTrade]:
        """Single token balance change with no native counter-asset."""
        if self.native or self.wallet_wrapped_changes():
            return None
        wallet_deltas = [d for d in self.tokens if d.owner == self.wallet]
        if len(wallet_deltas) == 1:
            delta = wallet_deltas[0]
        elif not wallet_deltas and len(self.tokens) == 1:
            delta = self.tokens[0]
        else:
            return None

        fields = self._base_fields()
        fields["holder_address"] = delta.owner
        return TransferTrade(
            token=_token_amount(delta.mint, abs(delta.change), delta.decimals),
            direction="in" if delta.change > 0 else "out",
            dex=dex,
            source=source,
            **fields,
        )

    def representative_pair(self, dex: DexIdentity, source: str) -> Optional[PairedTrade]:
        """Largest outflow against largest inflow across every significant delta."""
        changes = [(d.mint, d.change, d.decimals) for d in self.tokens]
        changes += [(SOL_MINT, d.change, SOL_DECIMALS) for d in self.wrapped_native]
        changes += [(SOL_MINT, d.change, SOL_DECIMALS) for d in self.all_native]
        significant = [c for c in changes if abs(c[1]) > self.pair_dust]

        sold = [c for c in significant if c[1] < 0]
        bought = [c for c in significant if c[1] > 0]
        if not sold or not bought:
            return None

        sold_mint, sold_change, sold_decimals = min(sold, key=lambda c: c[1])
        bought_mint, bought_change, bought_decimals = max(bought, key=lambda c: c[1])
        note = REPRESENTATIVE_PAIR_NOTE if len(sold) > 1 or len(bought) > 1 else None
        return make_trade(
            _token_amount(sold_mint, -sold_change, sold_decimals),
            _token_amount(bought_mint, bought_change, bought_decimals),
            dex=dex, source=source, note=note, **self._base_fields(),
        )

    def infer(self, dex: DexIdentity, source: str) -> Optional[TradeOutcome]:
        """Full heuristic, first strategy that produces an outcome wins."""
        for step in (self.token_swap, self.native_token_trade, self.transfer, self.representative_pair):
            outcome = step(dex, source)
            if outcome is not None:
                return outcome
        logger.debug(
            f"[ANALYSIS] No consistent pair: {len(self.tokens)} token / "
            f"{len(self.native)} native changes"
        )
        return None


def is_buy_or_sell(outcome: Optional[TradeOutcome]) -> bool:
    return isinstance(outcome, (BuyTrade, SellTrade))
