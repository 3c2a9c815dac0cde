"""Pydantic schemas for wallet, earnings and payouts."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from fleetledger.models.ledger import PayoutRequestStatus
from fleetledger.schemas.base import BaseResponseSchema, BaseCreateSchema, PositiveMoney


class WalletBalanceResponse(BaseResponseSchema):
    wallet_balance: Decimal
    total_earned: Decimal
    total_paid: Decimal


class EarningResponse(BaseResponseSchema):
    id: UUID
    assignment_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    amount: Decimal
    earning_type: str
    description: Optional[str] = None
    created_at: datetime


class ReconcileResponse(BaseResponseSchema):
    agent_id: UUID
    wallet_balance: Decimal
    total_earned: Decimal
    total_paid: Decimal
    ledger_earned: Decimal
    ledger_paid: Decimal
    is_consistent: bool


# ==================== Payout Requests ====================

class PayoutRequestCreate(BaseCreateSchema):
    amount: PositiveMoney
    notes: Optional[str] = Field(None, max_length=1000)


class PayoutApproveRequest(BaseCreateSchema):
    notes: Optional[str] = Field(None, max_length=1000)


class PayoutRejectRequest(BaseCreateSchema):
    reason: str = Field(..., min_length=1, max_length=1000)


class PayoutMarkPaidRequest(BaseCreateSchema):
    transaction_reference: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class PayoutRequestResponse(BaseResponseSchema):
    id: UUID
    agent_id: UUID
    amount: Decimal
    status: PayoutRequestStatus
    agent_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[UUID] = None


# ==================== Payouts ====================

class DirectPayoutCreate(BaseCreateSchema):
    agent_id: UUID
    amount: PositiveMoney
    transaction_reference: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class PayoutResponse(BaseResponseSchema):
    id: UUID
    agent_id: UUID
    payout_request_id: Optional[UUID] = None
    amount: Decimal
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    paid_by: Optional[UUID] = None
    paid_at: datetime
