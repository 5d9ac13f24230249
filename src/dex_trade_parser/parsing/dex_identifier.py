"""
DEX identification.

Order, first match wins:
1. program ids of inner instructions, then top-level instructions, matched
   against the registry in DEX_PRIORITY order
2. keywords in the concatenated (lowercased) log text
3. structural heuristic for routed transactions
"""

import logging

from dex_trade_parser.core.constants import (
    DEX_PRIORITY,
    DEX_PROGRAMS,
    PUMP_FUN_AMM_PROGRAM,
    PUMP_FUN_CURVE_PROGRAM,
    DexIdentity,
)
from dex_trade_parser.core.models import TransactionRecord
from dex_trade_parser.parsing.balance_changes import extract_token_deltas

logger = logging.getLogger(__name__)

# Structural heuristic thresholds
ROUTED_MIN_INSTRUCTIONS = 3
ROUTED_MIN_ACCOUNTS = 10
ROUTED_MIN_LAMPORTS_CHANGE = 1_000_000


def collect_program_ids(tx: TransactionRecord) -> list[str]:
    """Inner-instruction program ids first, then top-level ones."""
    inner = [ix.program_id for ix in tx.iter_inner_instructions() if ix.program_id]
    main = [ix.program_id for ix in tx.instructions if ix.program_id]
    return inner + main


def log_text(tx: TransactionRecord) -> str:
    return " ".join(tx.log_messages).lower()


def _identify_by_program_ids(program_ids: list[str]) -> DexIdentity | None:
    present = set(program_ids)
    for dex in DEX_PRIORITY:
        if any(program in present for program in DEX_PROGRAMS.get(dex, ())):
            return dex
    return None


def _identify_by_logs(text: str) -> DexIdentity | None:
    if not text:
        return None
    if PUMP_FUN_AMM_PROGRAM.lower() in text or PUMP_FUN_CURVE_PROGRAM.lower() in text:
        return DexIdentity.PUMP_FUN
    if "pamm" in text and ("instruction: sell" in text or "instruction: buy" in text):
        return DexIdentity.PUMP_FUN
    if "meteora" in text or "dlmm" in text:
        return DexIdentity.METEORA
    if "dflow" in text or "aggregator" in text:
        return DexIdentity.DFLOW
    return None


def _looks_routed(tx: TransactionRecord) -> bool:
    if len(tx.instructions) <= ROUTED_MIN_INSTRUCTIONS or len(tx.accounts) <= ROUTED_MIN_ACCOUNTS:
        return False
    if not extract_token_deltas(tx):
        return False
    if len(tx.pre_balances) != len(tx.post_balances):
        return False
    return any(
        abs(post - pre) > ROUTED_MIN_LAMPORTS_CHANGE
        for pre, post in zip(tx.pre_balances, tx.post_balances)
    )


def identify_dex(tx: TransactionRecord) -> DexIdentity:
    """Classify the protocol a transaction was executed on."""
    dex = _identify_by_program_ids(collect_program_ids(tx))
    if dex is not None:
        return dex

    dex = _identify_by_logs(log_text(tx))
    if dex is not None:
        return dex

    if _looks_routed(tx):
        logger.debug(
            f"[DEX] Routed by structure: {len(tx.instructions)} instructions, "
            f"{len(tx.accounts)} accounts"
        )
        return DexIdentity.AGGREGATOR

    return DexIdentity.UNKNOWN
