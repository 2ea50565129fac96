# backend/evrent/routers/wallets.py
"""
Wallet Domain API: the caller's wallet.

Every balance change goes through services.ledger, which writes the
wallet_transactions row in the same unit of work. There is no endpoint that
sets a balance directly.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db, transaction
from ..schemas.wallets import (
    WalletDeposit,
    WalletOperationResponse,
    WalletRead,
    WalletTransactionRead,
    WalletTransfer,
    WalletVerifyRead,
)
from ..services import ledger
from .deps import CurrentUser, get_current_user

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.get("/me", response_model=WalletRead)
def get_wallet(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get user wallet.
    Creates wallet with balance=0 if not exists.
    """
    with transaction(db):
        wallet = ledger.get_or_create_wallet(db, user.id)
    db.refresh(wallet)
    return wallet


@router.get("/me/transactions", response_model=list[WalletTransactionRead])
def get_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get wallet transaction history.
    Ordered by created_at DESC (newest first).
    """
    return ledger.list_transactions(db, user.id, limit, offset)


@router.post("/me/deposit", response_model=WalletOperationResponse)
def deposit(
    data: WalletDeposit,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Deposit funds to wallet.
    Increases balance by amount.
    """
    with transaction(db):
        tx = ledger.credit(db, user.id, data.amount, data.description or "Deposit")
        wallet = tx.wallet
    db.refresh(wallet)

    return WalletOperationResponse(
        success=True,
        wallet_id=wallet.id,
        new_balance=wallet.balance,
        transaction_id=tx.id,
        message=f"Deposited {data.amount:.2f} {wallet.currency}",
    )


@router.post("/me/transfer", response_model=WalletOperationResponse)
def transfer(
    data: WalletTransfer,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Transfer funds to another user's wallet.
    Requires sufficient balance.
    """
    with transaction(db):
        tx_out, _ = ledger.transfer(db, user.id, data.to_user_id, data.amount, data.description)
        wallet = tx_out.wallet
    db.refresh(wallet)

    return WalletOperationResponse(
        success=True,
        wallet_id=wallet.id,
        new_balance=wallet.balance,
        transaction_id=tx_out.id,
        message=f"Transferred {data.amount:.2f} {wallet.currency} to user #{data.to_user_id}",
    )


@router.get("/me/verify", response_model=WalletVerifyRead)
def verify(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Recompute balance from the ledger and compare."""
    with transaction(db):
        result = ledger.verify_wallet(db, user.id)
    return result
