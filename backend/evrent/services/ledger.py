# backend/evrent/services/ledger.py
"""
Wallet ledger.

The only code path allowed to write wallets.balance. Every balance change
is paired with an append-only wallet_transactions row in the same unit of
work, so the balance is always the sum of the user's transactions.

Functions flush but never commit: the caller owns the transaction.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InsufficientFunds, InvalidState, NotFound, ValidationError
from ..models import Users as DBUser, Wallets as DBWallet, WalletTransactions as DBTransaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce to Decimal cents, round-half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def get_or_create_wallet(db: Session, user_id: int, lock: bool = False) -> DBWallet:
    """
    Get wallet by user_id or create if not exists.
    Raises NotFound if the user doesn't exist.
    """
    query = db.query(DBWallet).filter(DBWallet.user_id == user_id)
    if lock:
        query = query.with_for_update()
    wallet = query.first()
    if wallet:
        return wallet

    if not db.get(DBUser, user_id):
        raise NotFound(f"User {user_id} not found", entity="user", id=user_id)

    wallet = DBWallet(
        user_id=user_id,
        balance=Decimal("0.00"),
        currency=settings.currency,
        is_blocked=False,
    )
    db.add(wallet)
    db.flush()
    return wallet


def _check_amount(amount) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError(f"Amount must be positive, got {amount}", field="amount")
    return amount


def _check_not_blocked(wallet: DBWallet) -> None:
    if wallet.is_blocked:
        raise InvalidState(
            "Wallet is blocked",
            entity="wallet",
            id=wallet.id,
            state="blocked",
        )


def _append(
    db: Session,
    wallet: DBWallet,
    amount: Decimal,
    kind: str,
    reason: Optional[str],
    booking_id: Optional[int],
    session_id: Optional[int],
) -> DBTransaction:
    tx = DBTransaction(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        amount=amount,
        kind=kind,
        reason=reason,
        booking_id=booking_id,
        session_id=session_id,
    )
    db.add(tx)
    wallet.balance = to_money(wallet.balance) + amount
    db.flush()
    return tx


# ──────────────────────────────────────────────────────────────────────────────
# Operations
# ──────────────────────────────────────────────────────────────────────────────

def get_balance(db: Session, user_id: int) -> Decimal:
    return to_money(get_or_create_wallet(db, user_id).balance)


def credit(
    db: Session,
    user_id: int,
    amount,
    reason: str,
    booking_id: Optional[int] = None,
    session_id: Optional[int] = None,
) -> DBTransaction:
    """Add funds. Positive transaction amount."""
    amount = _check_amount(amount)
    wallet = get_or_create_wallet(db, user_id, lock=True)
    _check_not_blocked(wallet)

    tx = _append(db, wallet, amount, "credit", reason, booking_id, session_id)
    logger.info(f"Wallet {wallet.id} (user {user_id}) credited +{amount}: {reason}")
    return tx


def debit(
    db: Session,
    user_id: int,
    amount,
    reason: str,
    booking_id: Optional[int] = None,
    session_id: Optional[int] = None,
    allow_negative: bool = False,
) -> DBTransaction:
    """
    Withdraw funds. Negative transaction amount.

    Rejected with InsufficientFunds if the balance would go negative, unless
    allow_negative (service already rendered, see sessions.stop_session).
    """
    amount = _check_amount(amount)
    wallet = get_or_create_wallet(db, user_id, lock=True)
    _check_not_blocked(wallet)

    balance = to_money(wallet.balance)
    if not allow_negative and balance < amount:
        raise InsufficientFunds(
            f"Insufficient balance: {balance:.2f} < {amount:.2f}",
            user_id=user_id,
            balance=str(balance),
            amount=str(amount),
        )

    tx = _append(db, wallet, -amount, "debit", reason, booking_id, session_id)
    logger.info(f"Wallet {wallet.id} (user {user_id}) debited -{amount}: {reason}")
    return tx


def transfer(
    db: Session,
    from_user_id: int,
    to_user_id: int,
    amount,
    reason: Optional[str] = None,
) -> tuple[DBTransaction, DBTransaction]:
    """Move funds between two wallets in one unit of work."""
    if from_user_id == to_user_id:
        raise ValidationError("Cannot transfer to the same wallet", field="to_user_id")
    reason = reason or "Transfer"
    # Lock in id order so two opposite transfers can't deadlock
    for uid in sorted((from_user_id, to_user_id)):
        get_or_create_wallet(db, uid, lock=True)
    tx_out = debit(db, from_user_id, amount, f"{reason} to user #{to_user_id}")
    tx_in = credit(db, to_user_id, amount, f"{reason} from user #{from_user_id}")
    return tx_out, tx_in


def list_transactions(
    db: Session,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[DBTransaction]:
    """Transaction history, newest first."""
    wallet = get_or_create_wallet(db, user_id)
    return (
        db.query(DBTransaction)
        .filter(DBTransaction.wallet_id == wallet.id)
        .order_by(DBTransaction.created_at.desc(), DBTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def ledger_sum(db: Session, user_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(DBTransaction.amount), 0))
        .filter(DBTransaction.user_id == user_id)
        .scalar()
    )
    return to_money(total)


def verify_wallet(db: Session, user_id: int) -> dict:
    """Recompute the balance from the ledger and compare with the cached one."""
    wallet = get_or_create_wallet(db, user_id)
    balance = to_money(wallet.balance)
    total = ledger_sum(db, user_id)
    if balance != total:
        logger.error(f"Wallet {wallet.id} drift: balance={balance} ledger={total}")
    return {
        "wallet_id": wallet.id,
        "balance": balance,
        "ledger_sum": total,
        "consistent": balance == total,
    }
