"""Pydantic schemas for zones, agents and delivery assignments."""

import re
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import Field, computed_field, field_validator

from fleetledger.models.delivery import DeliveryStatus, PaymentType
from fleetledger.schemas.base import (
    BaseResponseSchema,
    BaseCreateSchema,
    BaseUpdateSchema,
    NonNegativeMoney,
)


PINCODE_PATTERN = r"^[0-9A-Za-z\- ]{3,10}$"


def _clean_pincodes(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    cleaned = []
    for value in values:
        pincode = value.strip()
        if not pincode:
            continue
        if not re.match(PINCODE_PATTERN, pincode):
            raise ValueError(f"Invalid pincode '{pincode}'")
        if pincode not in cleaned:
            cleaned.append(pincode)
    return cleaned


# ==================== Zones ====================

class DeliveryZoneCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    pincodes: List[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("pincodes")
    @classmethod
    def clean_pincodes(cls, v):
        return _clean_pincodes(v)


class DeliveryZoneUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    pincodes: Optional[List[str]] = Field(None, description="Replaces the full pincode list")

    @field_validator("pincodes")
    @classmethod
    def clean_pincodes(cls, v):
        return _clean_pincodes(v)


class DeliveryZoneResponse(BaseResponseSchema):
    id: UUID
    name: str
    description: Optional[str] = None
    is_active: bool
    pincodes: List[str] = []
    created_at: datetime
    updated_at: datetime


# ==================== Agents ====================

class DeliveryAgentBase(BaseCreateSchema):
    full_name: str = Field(..., min_length=2, max_length=200)
    mobile_number: str = Field(..., pattern=r"^\+?[0-9]{10,15}$")

    payment_type: PaymentType = PaymentType.FIXED_PER_ORDER
    monthly_salary: Optional[NonNegativeMoney] = None
    per_order_amount: Optional[NonNegativeMoney] = None
    percentage_value: Optional[Decimal] = Field(None, ge=0, le=100, description="Percent of order total (0-100)")

    account_holder_name: Optional[str] = Field(None, max_length=200)
    account_number: Optional[str] = Field(None, max_length=30)
    ifsc_code: Optional[str] = Field(None, pattern=r"^[A-Z]{4}0[A-Z0-9]{6}$")
    upi_id: Optional[str] = Field(None, max_length=100)


class DeliveryAgentCreate(DeliveryAgentBase):
    zone_ids: List[UUID] = Field(default_factory=list)


class DeliveryAgentUpdate(BaseUpdateSchema):
    """Profile and rate changes. Wallet fields are not updatable."""
    full_name: Optional[str] = Field(None, min_length=2, max_length=200)
    mobile_number: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")

    payment_type: Optional[PaymentType] = None
    monthly_salary: Optional[NonNegativeMoney] = None
    per_order_amount: Optional[NonNegativeMoney] = None
    percentage_value: Optional[Decimal] = Field(None, ge=0, le=100)

    account_holder_name: Optional[str] = Field(None, max_length=200)
    account_number: Optional[str] = Field(None, max_length=30)
    ifsc_code: Optional[str] = Field(None, pattern=r"^[A-Z]{4}0[A-Z0-9]{6}$")
    upi_id: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None


class AgentZonesUpdate(BaseUpdateSchema):
    zone_ids: List[UUID]


class DeliveryAgentResponse(BaseResponseSchema):
    id: UUID
    full_name: str
    mobile_number: str
    payment_type: PaymentType
    monthly_salary: Optional[Decimal] = None
    per_order_amount: Optional[Decimal] = None
    percentage_value: Optional[Decimal] = None
    wallet_balance: Decimal
    total_earned: Decimal
    total_paid: Decimal
    account_holder_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    upi_id: Optional[str] = None
    is_active: bool
    zone_ids: List[UUID] = []
    created_at: datetime


# ==================== Assignments ====================

class OrderSummary(BaseResponseSchema):
    id: UUID
    order_number: str
    total: Decimal
    delivery_pincode: str


class DeliveryAssignmentResponse(BaseResponseSchema):
    id: UUID
    order_id: UUID
    zone_id: Optional[UUID] = None
    agent_id: Optional[UUID] = None
    status: DeliveryStatus
    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    cod_collected: Optional[Decimal] = None
    notes: Optional[str] = None
    order: Optional[OrderSummary] = None
    created_at: datetime
    updated_at: datetime

    # Lets the agent app render only the buttons the server will accept
    @computed_field
    @property
    def allowed_transitions(self) -> List[DeliveryStatus]:
        from fleetledger.services.delivery_state_machine import get_allowed_transitions
        return get_allowed_transitions(self.status)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        from fleetledger.services.delivery_state_machine import is_terminal
        return is_terminal(self.status)


class OpenAssignmentRequest(BaseCreateSchema):
    order_id: UUID


class AdminAssignRequest(BaseCreateSchema):
    agent_id: UUID


class StatusUpdateRequest(BaseCreateSchema):
    status: DeliveryStatus
    notes: Optional[str] = Field(None, max_length=2000)
    cod_collected: Optional[NonNegativeMoney] = None


class StatusLogResponse(BaseResponseSchema):
    id: UUID
    old_status: Optional[DeliveryStatus] = None
    new_status: DeliveryStatus
    actor_type: str
    actor_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class SyncAssignmentsResponse(BaseResponseSchema):
    created: int
