"""
Diagnostics for transactions no strategy could classify.
"""

from typing import Any, Optional

from dex_trade_parser.config import ParserConfig
from dex_trade_parser.core.models import TransactionRecord
from dex_trade_parser.parsing.balance_changes import extract_native_deltas, extract_token_deltas
from dex_trade_parser.parsing.dex_identifier import collect_program_ids, identify_dex
from dex_trade_parser.parsing.trade_analysis import is_liquidity_operation

SAMPLE_SIZE = 5


def _short(address: Optional[str]) -> Optional[str]:
    if not address:
        return address
    return address[:8] + "..." if len(address) > 8 else address


def explain(record: TransactionRecord, token_count: int, native_count: int) -> str:
    if is_liquidity_operation(record):
        return "liquidity operation, not a trade"
    if not token_count and not native_count:
        return "no balance changes above dust thresholds"
    if not token_count:
        return "only native balance changes (fees or plain SOL transfer)"
    return "no consistent sold/bought pair in balance changes"


def build_diagnostics(record: TransactionRecord, config: Optional[ParserConfig] = None) -> dict[str, Any]:
    """Summary of what the classifier saw, for "could not classify" reports."""
    config = config or ParserConfig()
    token_deltas = extract_token_deltas(record, config.token_dust)
    native_deltas = extract_native_deltas(record, config.native_dust_lamports)
    program_ids = list(dict.fromkeys(collect_program_ids(record)))

    return {
        "signature": record.signature,
        "dex": identify_dex(record).value,
        "programIds": program_ids[:10],
        "instructionCount": len(record.instructions),
        "innerInstructionCount": sum(len(group) for group in record.inner_instructions.values()),
        "accountCount": len(record.accounts),
        "signers": [_short(s) for s in record.signers],
        "totalTokenChanges": len(token_deltas),
        "totalSolChanges": len(native_deltas),
        "tokenChangesSummary": [
            {"mint": _short(d.mint), "owner": _short(d.owner), "change": d.change}
            for d in token_deltas[:SAMPLE_SIZE]
        ],
        "solChangesSummary": [
            {"account": _short(d.account), "change": d.change, "isSigner": d.is_signer}
            for d in native_deltas[:SAMPLE_SIZE]
        ],
        "reason": explain(record, len(token_deltas), len(native_deltas)),
    }
