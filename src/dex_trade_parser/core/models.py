"""
Data model: normalized transaction records, balance deltas and trade outcomes.

RPC payloads are converted once, in TransactionRecord.from_rpc, so that the
extractor, identifier and parsers never branch on the wire representation
(string vs object account keys, programId vs programIdIndex, null uiAmount).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, ClassVar

from dex_trade_parser.core.constants import DexIdentity, is_native_mint
from dex_trade_parser.core.errors import MalformedTransactionError


# =============================================================================
# Transaction record (read-only input)
# =============================================================================


@dataclass(frozen=True)
class Account:
    address: str
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class TokenBalance:
    account_index: int
    mint: str
    owner: str
    ui_amount: float
    decimals: int


@dataclass(frozen=True)
class Instruction:
    program_id: str | None
    accounts: tuple[str, ...] = ()
    data: str | None = None          # base58, only for unparsed instructions
    parsed_type: str | None = None   # "transfer", "swap", ... for parsed ones


@dataclass(frozen=True)
class TransactionRecord:
    """Decoded transaction, positionally aligned balances included."""

    signature: str | None
    accounts: tuple[Account, ...]
    instructions: tuple[Instruction, ...]
    inner_instructions: dict[int, tuple[Instruction, ...]]
    log_messages: tuple[str, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    pre_token_balances: tuple[TokenBalance, ...]
    post_token_balances: tuple[TokenBalance, ...]
    fee: int = 0
    slot: int | None = None
    block_time: int | None = None
    num_required_signatures: int = 0

    @property
    def account_addresses(self) -> list[str]:
        return [acc.address for acc in self.accounts]

    @property
    def signers(self) -> list[str]:
        return [acc.address for acc in self.accounts if acc.is_signer]

    def iter_inner_instructions(self):
        for index in sorted(self.inner_instructions):
            yield from self.inner_instructions[index]

    @classmethod
    def from_rpc(cls, payload: Any, signature: str | None = None) -> TransactionRecord:
        """Build a record from a getTransaction result (json or jsonParsed).

        Raises:
            MalformedTransactionError: payload has no message or no meta
        """
        if not isinstance(payload, dict):
            raise MalformedTransactionError("transaction payload is not an object")

        tx = payload.get("transaction")
        meta = payload.get("meta")
        if not isinstance(tx, dict) or not isinstance(meta, dict):
            raise MalformedTransactionError("transaction payload has no transaction/meta")
        message = tx.get("message")
        if not isinstance(message, dict):
            raise MalformedTransactionError("transaction has no message")

        header = message.get("header") or {}
        num_required = int(header.get("numRequiredSignatures") or 0)

        pre_balances = _int_list(meta.get("preBalances"))
        post_balances = _int_list(meta.get("postBalances"))

        accounts = [
            _normalize_account(entry, index, num_required)
            for index, entry in enumerate(message.get("accountKeys") or [])
        ]
        # Lookup-table addresses follow the static keys: writable, then readonly.
        # jsonParsed already inlines them, json encoding does not.
        balance_len = max(len(pre_balances), len(post_balances))
        if len(accounts) < balance_len:
            loaded = meta.get("loadedAddresses") or {}
            for addr in loaded.get("writable") or []:
                accounts.append(Account(address=str(addr), is_signer=False, is_writable=True))
            for addr in loaded.get("readonly") or []:
                accounts.append(Account(address=str(addr), is_signer=False, is_writable=False))

        addresses = [acc.address for acc in accounts]

        instructions = tuple(
            _normalize_instruction(ix, addresses) for ix in message.get("instructions") or []
        )
        inner: dict[int, tuple[Instruction, ...]] = {}
        for group in meta.get("innerInstructions") or []:
            if not isinstance(group, dict):
                continue
            index = int(group.get("index", len(inner)))
            inner[index] = tuple(
                _normalize_instruction(ix, addresses) for ix in group.get("instructions") or []
            )

        sig = signature or payload.get("signature")
        if not sig:
            sigs = tx.get("signatures") or []
            sig = sigs[0] if sigs else None

        return cls(
            signature=sig,
            accounts=tuple(accounts),
            instructions=instructions,
            inner_instructions=inner,
            log_messages=tuple(str(line) for line in meta.get("logMessages") or []),
            pre_balances=tuple(pre_balances),
            post_balances=tuple(post_balances),
            pre_token_balances=_token_balances(meta.get("preTokenBalances"), addresses),
            post_token_balances=_token_balances(meta.get("postTokenBalances"), addresses),
            fee=int(meta.get("fee") or 0),
            slot=payload.get("slot"),
            block_time=payload.get("blockTime"),
            num_required_signatures=num_required,
        )


def _int_list(values: Any) -> list[int]:
    if not isinstance(values, list):
        return []
    try:
        return [int(v) for v in values]
    except (TypeError, ValueError):
        return []


def _normalize_account(entry: Any, index: int, num_required: int) -> Account:
    if isinstance(entry, dict):
        address = str(entry.get("pubkey", ""))
        signer = entry.get("signer")
        return Account(
            address=address,
            is_signer=bool(signer) if signer is not None else index < num_required,
            is_writable=bool(entry.get("writable", False)),
        )
    return Account(address=str(entry), is_signer=index < num_required)


def _normalize_instruction(ix: Any, addresses: list[str]) -> Instruction:
    if not isinstance(ix, dict):
        return Instruction(program_id=None)

    program_id = ix.get("programId")
    if program_id is None:
        idx = ix.get("programIdIndex")
        if isinstance(idx, int) and 0 <= idx < len(addresses):
            program_id = addresses[idx]

    accounts: list[str] = []
    for acc in ix.get("accounts") or []:
        if isinstance(acc, int):
            if 0 <= acc < len(addresses):
                accounts.append(addresses[acc])
        else:
            accounts.append(str(acc))

    parsed = ix.get("parsed")
    parsed_type = parsed.get("type") if isinstance(parsed, dict) else None

    return Instruction(
        program_id=str(program_id) if program_id is not None else None,
        accounts=tuple(accounts),
        data=ix.get("data") if isinstance(ix.get("data"), str) else None,
        parsed_type=parsed_type,
    )


def _ui_amount(ui: dict) -> float:
    value = ui.get("uiAmount")
    if value is not None:
        return float(value)
    if ui.get("uiAmountString") not in (None, ""):
        return float(ui["uiAmountString"])
    raw = ui.get("amount")
    if raw not in (None, ""):
        return int(raw) / (10 ** int(ui.get("decimals") or 0))
    return 0.0


def _token_balances(entries: Any, addresses: list[str]) -> tuple[TokenBalance, ...]:
    if not isinstance(entries, list):
        return ()
    balances = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("mint"):
            continue
        index = int(entry.get("accountIndex", -1))
        owner = entry.get("owner")
        if not owner and 0 <= index < len(addresses):
            owner = addresses[index]
        if not owner:
            continue
        ui = entry.get("uiTokenAmount") or {}
        try:
            amount = _ui_amount(ui)
        except (TypeError, ValueError):
            continue
        balances.append(TokenBalance(
            account_index=index,
            mint=entry["mint"],
            owner=owner,
            ui_amount=amount,
            decimals=int(ui.get("decimals") or 0),
        ))
    return tuple(balances)


# =============================================================================
# Balance deltas
# =============================================================================


@dataclass(frozen=True)
class NativeDelta:
    account: str
    is_signer: bool
    is_writable: bool
    pre_amount: float   # SOL
    post_amount: float  # SOL
    change: float       # SOL, post - pre


@dataclass(frozen=True)
class TokenDelta:
    mint: str
    owner: str
    pre_amount: float
    post_amount: float
    change: float
    decimals: int


# =============================================================================
# Trade outcomes
# =============================================================================


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    SWAP = "swap"
    TRANSFER = "transfer"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TokenAmount:
    mint: str
    symbol: str
    amount: float
    decimals: int

    def to_dict(self) -> dict:
        return {
            "mint": self.mint,
            "symbol": self.symbol,
            "amount": self.amount,
            "decimals": self.decimals,
        }


@dataclass(frozen=True, kw_only=True)
class TradeOutcome:
    """Common part of every classified trade; never instantiated directly."""

    type: ClassVar[TradeType] = TradeType.UNKNOWN

    dex: DexIdentity
    source: str
    holder_address: str | None = None
    signature: str | None = None
    block_time: int | None = None
    slot: int | None = None
    fee: float | None = None
    note: str | None = None
    routed: bool = False

    def with_changes(self, **changes) -> TradeOutcome:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "dex": self.dex.value,
            "source": self.source,
            "holderAddress": self.holder_address,
            "signature": self.signature,
            "blockTime": self.block_time,
            "slot": self.slot,
            "fee": self.fee,
            "note": self.note,
            "routed": self.routed,
        }


def _check_price(value: float | None, label: str) -> None:
    if value is None:
        return
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{label} must be finite and non-negative, got {value}")


@dataclass(frozen=True, kw_only=True)
class PairedTrade(TradeOutcome):
    """A trade with both a sold and a bought side."""

    sold_token: TokenAmount
    bought_token: TokenAmount
    price: float | None = None
    price_usd: float | None = None

    def __post_init__(self) -> None:
        if self.sold_token.amount <= 0 or self.bought_token.amount <= 0:
            raise ValueError("trade amounts must be positive")
        _check_price(self.price, "price")
        _check_price(self.price_usd, "price_usd")
        expected = trade_class_for(self.sold_token.mint, self.bought_token.mint)
        if expected is not type(self):
            kind = expected.type.value if expected else "no trade"
            raise ValueError(
                f"{self.sold_token.mint} -> {self.bought_token.mint} is {kind}, not {self.type.value}"
            )

    @property
    def token(self) -> TokenAmount:
        """The non-native side (the bought side for swaps)."""
        if is_native_mint(self.bought_token.mint):
            return self.sold_token
        return self.bought_token

    def swapped(self) -> PairedTrade:
        """Same amounts, opposite direction. Price stays native-per-token."""
        flipped = {TradeType.BUY: SellTrade, TradeType.SELL: BuyTrade, TradeType.SWAP: SwapTrade}
        target = flipped[self.type]
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["sold_token"], values["bought_token"] = self.bought_token, self.sold_token
        if self.type == TradeType.SWAP:
            values["price"] = compute_price(self.sold_token.amount, self.bought_token.amount)
            values["price_usd"] = None
        return target(**values)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "soldToken": self.sold_token.to_dict(),
            "boughtToken": self.bought_token.to_dict(),
            "price": self.price,
            "priceUsd": self.price_usd,
        })
        return data


@dataclass(frozen=True, kw_only=True)
class BuyTrade(PairedTrade):
    type: ClassVar[TradeType] = TradeType.BUY


@dataclass(frozen=True, kw_only=True)
class SellTrade(PairedTrade):
    type: ClassVar[TradeType] = TradeType.SELL


@dataclass(frozen=True, kw_only=True)
class SwapTrade(PairedTrade):
    type: ClassVar[TradeType] = TradeType.SWAP


@dataclass(frozen=True, kw_only=True)
class TransferTrade(TradeOutcome):
    """Single-sided balance change, no counter-asset and therefore no price."""

    type: ClassVar[TradeType] = TradeType.TRANSFER

    token: TokenAmount
    direction: str  # "in" | "out"

    def __post_init__(self) -> None:
        if self.direction not in ("in", "out"):
            raise ValueError(f"unknown transfer direction {self.direction!r}")
        if self.token.amount <= 0:
            raise ValueError("transfer amount must be positive")

    @property
    def sold_token(self) -> TokenAmount | None:
        return self.token if self.direction == "out" else None

    @property
    def bought_token(self) -> TokenAmount | None:
        return self.token if self.direction == "in" else None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "soldToken": self.sold_token.to_dict() if self.sold_token else None,
            "boughtToken": self.bought_token.to_dict() if self.bought_token else None,
            "price": None,
            "direction": self.direction,
        })
        return data


def compute_price(numerator: float, denominator: float) -> float | None:
    """Ratio of two amounts, None when either is zero/negative or not finite."""
    if numerator is None or denominator is None:
        return None
    if numerator <= 0 or denominator <= 0:
        return None
    price = numerator / denominator
    if not math.isfinite(price):
        return None
    return price


def trade_class_for(sold_mint: str, bought_mint: str) -> type[PairedTrade] | None:
    """Pick the outcome variant for a sold/bought mint pair."""
    sold_native = is_native_mint(sold_mint)
    bought_native = is_native_mint(bought_mint)
    if sold_native and not bought_native:
        return BuyTrade
    if bought_native and not sold_native:
        return SellTrade
    if not sold_native and not bought_native and sold_mint != bought_mint:
        return SwapTrade
    return None


def pair_price(trade_class: type[PairedTrade], sold_amount: float, bought_amount: float) -> float | None:
    """Native per token for buys and sells, bought per sold for swaps."""
    if trade_class is BuyTrade:
        return compute_price(sold_amount, bought_amount)
    return compute_price(bought_amount, sold_amount)


def make_trade(
    sold_token: TokenAmount,
    bought_token: TokenAmount,
    **kwargs,
) -> PairedTrade | None:
    """Build the variant matching the sold/bought mints, None if no variant fits."""
    trade_class = trade_class_for(sold_token.mint, bought_token.mint)
    if trade_class is None or sold_token.amount <= 0 or bought_token.amount <= 0:
        return None
    kwargs.setdefault("price", pair_price(trade_class, sold_token.amount, bought_token.amount))
    return trade_class(sold_token=sold_token, bought_token=bought_token, **kwargs)
