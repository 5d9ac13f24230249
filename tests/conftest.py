"""
Pytest fixtures for dex-trade-parser tests.

Payload builders produce getTransaction results (jsonParsed encoding) and the
fakes stand in for the fetcher, oracle and price source, so no test touches
the network.
"""
import asyncio

import base58
import pytest

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.constants import (
    DEX_PROGRAMS,
    PUMP_FUN_CURVE_PROGRAM,
    SOL_MINT,
    DexIdentity,
)
from dex_trade_parser.core.errors import FetchError
from dex_trade_parser.core.models import TransactionRecord

LAMPORTS = 1_000_000_000

WALLET = "Wa11et1111111111111111111111111111111111111"
WALLET_ATA = "Wa11etAta11111111111111111111111111111111111"
WALLET_ATA_2 = "Wa11etAta22222222222222222222222222222222222"
POOL = "Poo11111111111111111111111111111111111111111"
POOL_ATA = "Poo1Ata1111111111111111111111111111111111111"
POOL_ATA_2 = "Poo1Ata2222222222222222222222222222222222222"
RECEIVER = "Receiver11111111111111111111111111111111111"
RECEIVER_ATA = "ReceiverAta1111111111111111111111111111111"

MINT_M = "MintM11111111111111111111111111111111111111"
MINT_N = "MintN11111111111111111111111111111111111111"

RAYDIUM_PROGRAM = DEX_PROGRAMS[DexIdentity.RAYDIUM][0]
JUPITER_PROGRAM = DEX_PROGRAMS[DexIdentity.JUPITER][0]
UNKNOWN_PROGRAM = "SomeProgram111111111111111111111111111111111"


def make_signature(n: int) -> str:
    """A valid base58 signature (64 bytes)."""
    return base58.b58encode(n.to_bytes(4, "big") * 16).decode()


def token_balance(index: int, mint: str, owner: str, amount: float, decimals: int = 6) -> dict:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "uiAmount": amount,
            "decimals": decimals,
            "amount": str(int(round(amount * 10 ** decimals))),
            "uiAmountString": str(amount),
        },
    }


def build_tx(
    accounts,
    pre_balances,
    post_balances,
    pre_tokens=(),
    post_tokens=(),
    instructions=None,
    inner_instructions=(),
    logs=(),
    signature="sig",
    num_signers=1,
    fee=5000,
    slot=250_000_000,
    block_time=1_700_000_000,
) -> dict:
    """getTransaction result with object account keys (jsonParsed)."""
    if instructions is None:
        instructions = [{"programId": UNKNOWN_PROGRAM, "accounts": [], "data": ""}]
    return {
        "slot": slot,
        "blockTime": block_time,
        "transaction": {
            "signatures": [signature],
            "message": {
                "header": {"numRequiredSignatures": num_signers},
                "accountKeys": [
                    {"pubkey": acc, "signer": i < num_signers, "writable": True}
                    for i, acc in enumerate(accounts)
                ],
                "instructions": list(instructions),
            },
        },
        "meta": {
            "err": None,
            "fee": fee,
            "preBalances": list(pre_balances),
            "postBalances": list(post_balances),
            "preTokenBalances": list(pre_tokens),
            "postTokenBalances": list(post_tokens),
            "innerInstructions": list(inner_instructions),
            "logMessages": list(logs),
        },
    }


def buy_tx(signature="sig", sol=1.5, tokens=1_000_000.0, mint=MINT_M, program=RAYDIUM_PROGRAM, **kwargs) -> dict:
    """Wallet spends ``sol`` and receives ``tokens`` of ``mint`` from a pool."""
    lamports = int(round(sol * LAMPORTS))
    kwargs.setdefault("instructions", [{"programId": program, "accounts": [WALLET, POOL], "data": ""}])
    return build_tx(
        accounts=[WALLET, WALLET_ATA, POOL, POOL_ATA, program],
        pre_balances=[10 * LAMPORTS, 0, 50 * LAMPORTS, 2_039_280, 1],
        post_balances=[10 * LAMPORTS - lamports, 2_039_280, 50 * LAMPORTS + lamports, 2_039_280, 1],
        pre_tokens=[token_balance(3, mint, POOL, 5_000_000.0)],
        post_tokens=[
            token_balance(1, mint, WALLET, tokens),
            token_balance(3, mint, POOL, 5_000_000.0 - tokens),
        ],
        signature=signature,
        **kwargs,
    )


def sell_tx(signature="sig", sol=0.8, tokens=500.0, mint=MINT_M, program=RAYDIUM_PROGRAM, **kwargs) -> dict:
    """Wallet sends ``tokens`` of ``mint`` to a pool and receives ``sol``."""
    lamports = int(round(sol * LAMPORTS))
    kwargs.setdefault("instructions", [{"programId": program, "accounts": [WALLET, POOL], "data": ""}])
    return build_tx(
        accounts=[WALLET, WALLET_ATA, POOL, POOL_ATA, program],
        pre_balances=[10 * LAMPORTS, 2_039_280, 50 * LAMPORTS, 2_039_280, 1],
        post_balances=[10 * LAMPORTS + lamports, 2_039_280, 50 * LAMPORTS - lamports, 2_039_280, 1],
        pre_tokens=[
            token_balance(1, mint, WALLET, tokens),
            token_balance(3, mint, POOL, 10_000.0),
        ],
        post_tokens=[
            token_balance(1, mint, WALLET, 0.0),
            token_balance(3, mint, POOL, 10_000.0 + tokens),
        ],
        signature=signature,
        **kwargs,
    )


def swap_tx(signature="sig", sold=10.0, bought=20.0, **kwargs) -> dict:
    """Wallet swaps ``sold`` M for ``bought`` N, no native change."""
    return build_tx(
        accounts=[WALLET, WALLET_ATA, WALLET_ATA_2, POOL, POOL_ATA, POOL_ATA_2],
        pre_balances=[10 * LAMPORTS, 2_039_280, 2_039_280, LAMPORTS, 2_039_280, 2_039_280],
        post_balances=[10 * LAMPORTS, 2_039_280, 2_039_280, LAMPORTS, 2_039_280, 2_039_280],
        pre_tokens=[
            token_balance(1, MINT_M, WALLET, 100.0),
            token_balance(2, MINT_N, WALLET, 0.0),
            token_balance(4, MINT_M, POOL, 1_000.0),
            token_balance(5, MINT_N, POOL, 1_000.0),
        ],
        post_tokens=[
            token_balance(1, MINT_M, WALLET, 100.0 - sold),
            token_balance(2, MINT_N, WALLET, bought),
            token_balance(4, MINT_M, POOL, 1_000.0 + sold),
            token_balance(5, MINT_N, POOL, 1_000.0 - bought),
        ],
        signature=signature,
        **kwargs,
    )


def transfer_tx(signature="sig", amount=100.0, **kwargs) -> dict:
    """Wallet sends ``amount`` of M to another owner."""
    return build_tx(
        accounts=[WALLET, WALLET_ATA, RECEIVER_ATA],
        pre_balances=[10 * LAMPORTS, 2_039_280, 2_039_280],
        post_balances=[10 * LAMPORTS, 2_039_280, 2_039_280],
        pre_tokens=[
            token_balance(1, MINT_M, WALLET, 500.0),
            token_balance(2, MINT_M, RECEIVER, 0.0),
        ],
        post_tokens=[
            token_balance(1, MINT_M, WALLET, 500.0 - amount),
            token_balance(2, MINT_M, RECEIVER, amount),
        ],
        signature=signature,
        **kwargs,
    )


def pump_ix_data(discriminator: bytes) -> str:
    return base58.b58encode(discriminator + (1000).to_bytes(8, "little") + (10).to_bytes(8, "little")).decode()


def pump_logs(instruction_name: str) -> list[str]:
    return [
        f"Program {PUMP_FUN_CURVE_PROGRAM} invoke [1]",
        f"Program log: Instruction: {instruction_name}",
        f"Program {PUMP_FUN_CURVE_PROGRAM} consumed 30000 of 200000 compute units",
        f"Program {PUMP_FUN_CURVE_PROGRAM} success",
    ]


def record(payload: dict) -> TransactionRecord:
    return TransactionRecord.from_rpc(payload)


class FakeFetcher:
    """In-memory TransactionFetcher keyed by signature."""

    def __init__(self, payloads=None, fail_batch=False, fail_one=(), delay=0.0):
        self.payloads = dict(payloads or {})
        self.fail_batch = fail_batch
        self.fail_one = set(fail_one)
        self.delay = delay
        self.batch_calls: list[list[str]] = []
        self.one_calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _record(self, signature):
        payload = self.payloads.get(signature)
        if payload is None:
            return None
        return TransactionRecord.from_rpc(payload, signature)

    async def fetch_one(self, signature, commitment=None):
        self.one_calls.append(signature)
        if signature in self.fail_one:
            raise FetchError(f"cannot fetch {signature}")
        return self._record(signature)

    async def fetch_batch(self, signatures, commitment=None):
        self.batch_calls.append(list(signatures))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_batch:
                raise FetchError("batch request failed")
            return [self._record(sig) for sig in signatures]
        finally:
            self.in_flight -= 1

    @property
    def total_calls(self) -> int:
        return len(self.batch_calls) + len(self.one_calls)


class FakeOracle:
    def __init__(self, trades=None, error=None):
        self.trades = dict(trades or {})
        self.error = error
        self.calls: list[str] = []

    async def lookup(self, signature):
        self.calls.append(signature)
        if self.error:
            raise self.error
        return self.trades.get(signature)


class FakePriceSource:
    def __init__(self, price=150.0):
        self.price = price
        self.calls = 0

    async def current_price(self):
        self.calls += 1
        return self.price


@pytest.fixture
def config():
    return ParserConfig()


@pytest.fixture
def price_source():
    return FakePriceSource()


@pytest.fixture
def sol_mint():
    return SOL_MINT


class FakeResponse:
    def __init__(self, status=200, body=None):
        self.status = status
        self._body = body

    async def json(self, content_type="application/json"):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _FakeRequest:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """aiohttp.ClientSession stand-in answering from per-URL queues.

    Each queue item is a FakeResponse or an exception raised on request.
    The last item of a queue is repeated once the queue runs dry.
    """

    def __init__(self, routes=None):
        self.routes = {url: list(items) for url, items in (routes or {}).items()}
        self.calls: list[tuple[str, str, dict]] = []
        self.closed = False

    def _next(self, url):
        queue = self.routes.get(url)
        if not queue:
            return FakeResponse(404, None)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return _FakeRequest(self._next(url))

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        return _FakeRequest(self._next(url))

    async def close(self):
        self.closed = True


def wsol_trade_tx(signature="sig", wsol_change=-1.5, token_change=1_000_000.0, mint=MINT_M,
                  program=RAYDIUM_PROGRAM, **kwargs) -> dict:
    """Wallet trades through its wrapped SOL account; lamports only pay the fee."""
    kwargs.setdefault("instructions", [{"programId": program, "accounts": [WALLET, POOL], "data": ""}])
    wallet_token_pre = 0.0 if token_change > 0 else -token_change
    return build_tx(
        accounts=[WALLET, WALLET_ATA, WALLET_ATA_2, POOL, POOL_ATA, POOL_ATA_2, program],
        pre_balances=[10 * LAMPORTS, 2_039_280, 2_039_280, 50 * LAMPORTS, 2_039_280, 2_039_280, 1],
        post_balances=[10 * LAMPORTS - 5000, 2_039_280, 2_039_280, 50 * LAMPORTS, 2_039_280, 2_039_280, 1],
        pre_tokens=[
            token_balance(1, mint, WALLET, wallet_token_pre),
            token_balance(2, SOL_MINT, WALLET, 5.0, decimals=9),
            token_balance(4, mint, POOL, 5_000_000.0),
            token_balance(5, SOL_MINT, POOL, 100.0, decimals=9),
        ],
        post_tokens=[
            token_balance(1, mint, WALLET, wallet_token_pre + token_change),
            token_balance(2, SOL_MINT, WALLET, 5.0 + wsol_change, decimals=9),
            token_balance(4, mint, POOL, 5_000_000.0 - token_change),
            token_balance(5, SOL_MINT, POOL, 100.0 - wsol_change, decimals=9),
        ],
        signature=signature,
        **kwargs,
    )
