"""
Balance-change extraction.

Pure functions over a TransactionRecord. They never raise: absent or
misaligned balance arrays produce empty lists.
"""

import logging

from dex_trade_parser.core.constants import LAMPORTS_PER_SOL
from dex_trade_parser.core.models import NativeDelta, TokenBalance, TokenDelta, TransactionRecord

logger = logging.getLogger(__name__)

TOKEN_DUST = 0.000001          # UI units
NATIVE_DUST_LAMPORTS = 100_000  # ~0.0001 SOL


def _sum_by_owner_mint(
    balances: tuple[TokenBalance, ...],
) -> dict[tuple[str, str], tuple[float, int]]:
    """(owner, mint) -> (total ui amount, decimals). Multiple token accounts
    of the same owner and mint are folded into one entry."""
    totals: dict[tuple[str, str], tuple[float, int]] = {}
    for tb in balances:
        key = (tb.owner, tb.mint)
        amount, decimals = totals.get(key, (0.0, tb.decimals))
        totals[key] = (amount + tb.ui_amount, decimals or tb.decimals)
    return totals


def extract_token_deltas(
    tx: TransactionRecord | None,
    dust: float = TOKEN_DUST,
) -> list[TokenDelta]:
    """Per (owner, mint) token balance changes larger than ``dust``."""
    if tx is None:
        return []
    try:
        pre = _sum_by_owner_mint(tx.pre_token_balances)
        post = _sum_by_owner_mint(tx.post_token_balances)
    except (AttributeError, TypeError) as e:
        logger.debug(f"[BALANCES] Bad token balances: {e}")
        return []

    changes: dict[tuple[str, str], TokenDelta] = {}

    for key, (post_amount, decimals) in post.items():
        pre_amount = pre.get(key, (0.0, decimals))[0]
        if abs(post_amount - pre_amount) > dust:
            changes[key] = TokenDelta(
                mint=key[1],
                owner=key[0],
                pre_amount=pre_amount,
                post_amount=post_amount,
                change=post_amount - pre_amount,
                decimals=decimals,
            )

    # Token account closed during the transaction: full exit
    for key, (pre_amount, decimals) in pre.items():
        if key in changes or key in post:
            continue
        if pre_amount > dust:
            changes[key] = TokenDelta(
                mint=key[1],
                owner=key[0],
                pre_amount=pre_amount,
                post_amount=0.0,
                change=-pre_amount,
                decimals=decimals,
            )

    # Token account created during the transaction
    for key, (post_amount, decimals) in post.items():
        if key in changes or key in pre:
            continue
        if post_amount > dust:
            changes[key] = TokenDelta(
                mint=key[1],
                owner=key[0],
                pre_amount=0.0,
                post_amount=post_amount,
                change=post_amount,
                decimals=decimals,
            )

    return list(changes.values())


def extract_native_deltas(
    tx: TransactionRecord | None,
    dust_lamports: int = NATIVE_DUST_LAMPORTS,
) -> list[NativeDelta]:
    """Per account SOL balance changes larger than ``dust_lamports``."""
    if tx is None:
        return []
    pre_balances = tx.pre_balances
    post_balances = tx.post_balances
    if not post_balances or len(pre_balances) != len(post_balances):
        if post_balances:
            logger.debug(
                f"[BALANCES] Misaligned native balances "
                f"({len(pre_balances)} pre / {len(post_balances)} post)"
            )
        return []

    changes = []
    for index, (pre, post) in enumerate(zip(pre_balances, post_balances)):
        diff = post - pre
        if abs(diff) <= dust_lamports:
            continue
        if index < len(tx.accounts):
            account = tx.accounts[index]
            address, is_signer, is_writable = account.address, account.is_signer, account.is_writable
        else:
            address, is_signer, is_writable = f"account_{index}", False, False
        changes.append(NativeDelta(
            account=address,
            is_signer=is_signer,
            is_writable=is_writable,
            pre_amount=pre / LAMPORTS_PER_SOL,
            post_amount=post / LAMPORTS_PER_SOL,
            change=diff / LAMPORTS_PER_SOL,
        ))
    return changes
