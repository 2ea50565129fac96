# backend/evrent/schemas/wallets.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────────────────────
# Read Schemas
# ──────────────────────────────────────────────────────────────────────────────

class WalletRead(BaseModel):
    """Response for GET /wallets/me"""
    id: int
    user_id: int
    balance: Decimal
    currency: str
    is_blocked: bool

    model_config = {"from_attributes": True}


class WalletTransactionRead(BaseModel):
    """Transaction item in history list"""
    id: int
    wallet_id: int
    booking_id: Optional[int] = None
    session_id: Optional[int] = None
    amount: Decimal
    kind: str  # debit, credit
    reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WalletVerifyRead(BaseModel):
    """Response for GET /wallets/me/verify"""
    wallet_id: int
    balance: Decimal
    ledger_sum: Decimal
    consistent: bool


# ──────────────────────────────────────────────────────────────────────────────
# Operation Request Schemas
# ──────────────────────────────────────────────────────────────────────────────

class WalletDeposit(BaseModel):
    """Request body for POST /wallets/me/deposit"""
    amount: Decimal = Field(..., gt=0, description="Amount to deposit (must be > 0)")
    description: Optional[str] = None


class WalletTransfer(BaseModel):
    """Request body for POST /wallets/me/transfer"""
    to_user_id: int
    amount: Decimal = Field(..., gt=0, description="Amount to transfer (must be > 0)")
    description: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Operation Response Schema
# ──────────────────────────────────────────────────────────────────────────────

class WalletOperationResponse(BaseModel):
    """Response after any wallet operation"""
    success: bool
    wallet_id: int
    new_balance: Decimal
    transaction_id: int
    message: Optional[str] = None
