"""
Chain constants and the static DEX program registry.
"""

from enum import Enum

SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9
LAMPORTS_PER_SOL = 1_000_000_000

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_WORMHOLE_MINT = "FkimKUQhh72rJKxSD6awD7KUdf6yYwhz2weBrRgvSYbX"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

# Mints whose value is pinned to 1 USD
STABLE_MINTS: frozenset[str] = frozenset({USDC_MINT, USDC_WORMHOLE_MINT, USDT_MINT})

TOKEN_SYMBOLS: dict[str, str] = {
    SOL_MINT: "SOL",
    USDC_MINT: "USDC",
    USDC_WORMHOLE_MINT: "USDC",
    USDT_MINT: "USDT",
}

# Largest signature list a single getTransaction batch may carry
MAX_BATCH_SIZE = 50


class DexIdentity(str, Enum):
    """Protocol a transaction was executed on."""

    PUMP_FUN = "pump_fun"
    RAYDIUM = "raydium"
    ORCA = "orca"
    JUPITER = "jupiter"
    METEORA = "meteora"
    DFLOW = "dflow"
    AGGREGATOR = "aggregator"
    UNKNOWN = "unknown"


PUMP_FUN_AMM_PROGRAM = "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA"
PUMP_FUN_CURVE_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"

DEX_PROGRAMS: dict[DexIdentity, tuple[str, ...]] = {
    DexIdentity.PUMP_FUN: (
        PUMP_FUN_AMM_PROGRAM,
        PUMP_FUN_CURVE_PROGRAM,
    ),
    DexIdentity.RAYDIUM: (
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",  # AMM v4
        "27haf8L6oxUeXrHrgEgsexjSY5hbVUWEmvv9Nyxg8vQv",  # AMM v3
        "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK",  # CLMM
        "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C",  # CPMM
    ),
    DexIdentity.ORCA: (
        "9W959DqEETiGZocYWCQPaJ6sBmUzgfxXfqGeTEdp3aQP",  # token swap v2
        "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc",  # whirlpools
        "DjVE6JNiYqPL2QXyCUUh8rNjHrbz9hXHNYt99MQ59qw1",  # token swap v1
    ),
    DexIdentity.JUPITER: (
        "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",  # v6
        "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB",  # v4
        "JUP3c2Uh3WA4Ng34tw6kPd2G4C5BB21Xo36Je1s32Ph",  # v3
        "JUP2jxvXaqu7NQY1GmNF4m1vodw12LVXYxbFL2uN9oQp",  # v2
    ),
    DexIdentity.METEORA: (
        "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo",  # DLMM
        "Eo7WjKq67rjJQSZxS6z3YkapzY3eMj6Xy8X5EQVn5UaB",  # dynamic pools
        "MERLuDFBMmsHnsBPZw2sDQZHvXFMwp8EdjudcU2HKky",  # mercurial stable swap
    ),
    DexIdentity.DFLOW: (
        "DF1ow4tspfHX9JwWJsAb9epbkA8hmpSEAtxXy1V27QBH",
    ),
}

# Executing AMMs first, routers after them
DEX_PRIORITY: tuple[DexIdentity, ...] = (
    DexIdentity.PUMP_FUN,
    DexIdentity.RAYDIUM,
    DexIdentity.ORCA,
    DexIdentity.JUPITER,
    DexIdentity.METEORA,
    DexIdentity.DFLOW,
)

# Anchor discriminators (sha256("global:<name>")[:8]) shared by the
# bonding-curve and AMM programs
PUMP_FUN_BUY_DISCRIMINATOR = bytes([102, 6, 61, 18, 1, 218, 235, 234])
PUMP_FUN_SELL_DISCRIMINATOR = bytes([51, 230, 133, 164, 1, 127, 131, 173])


def is_native_mint(mint: str | None) -> bool:
    return mint == SOL_MINT or mint == "SOL"


def token_symbol(mint: str | None, default: str | None = None) -> str:
    """Resolve a display symbol: known mint, then caller hint, then 'Unknown'."""
    if not mint:
        return default or "Unknown"
    if is_native_mint(mint):
        return "SOL"
    if mint in TOKEN_SYMBOLS:
        return TOKEN_SYMBOLS[mint]
    if default and default not in ("Token", "Unknown"):
        return default
    return "Unknown"
