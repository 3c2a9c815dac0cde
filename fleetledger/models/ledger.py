"""
Agent earnings ledger models.

Earnings and payouts are immutable ledger rows: inserted once, never
updated or deleted. Payout requests carry the approval workflow:

pending → approved → paid
pending → rejected
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Text
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fleetledger.database import Base
from fleetledger.db_types import UUIDType, MoneyType


class PayoutRequestStatus(str, Enum):
    """Payout request status."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class DeliveryEarning(Base):
    """
    Credit to an agent's wallet.

    assignment_id is unique: a delivered assignment can be credited once.
    Non-order earnings (adjustments) leave it NULL.
    """
    __tablename__ = "delivery_earnings"
    __table_args__ = (
        UniqueConstraint("assignment_id", name="uq_delivery_earning_assignment"),
        Index("ix_delivery_earnings_agent_created", "agent_id", "created_at"),
        CheckConstraint(
            "amount > 0 OR (amount = 0 AND earning_type = 'monthly_salary')",
            name="ck_delivery_earnings_amount_positive",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_agents.id", ondelete="RESTRICT"),
        nullable=False
    )
    assignment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("delivery_assignments.id", ondelete="RESTRICT"),
        nullable=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    earning_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="Payment type at time of credit, or 'adjustment'"
    )
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DeliveryEarning(agent={self.agent_id}, assignment={self.assignment_id}, amount={self.amount})>"


class DeliveryPayoutRequest(Base):
    """Agent-initiated withdrawal, reviewed by a tenant admin."""
    __tablename__ = "delivery_payout_requests"
    __table_args__ = (
        Index("ix_delivery_payout_requests_agent_status", "agent_id", "status"),
        CheckConstraint("amount > 0", name="ck_delivery_payout_requests_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_agents.id", ondelete="RESTRICT"),
        nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PayoutRequestStatus.PENDING.value
    )

    agent_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    def __repr__(self) -> str:
        return f"<DeliveryPayoutRequest(agent={self.agent_id}, amount={self.amount}, status={self.status})>"


class DeliveryPayout(Base):
    """Settlement that debited an agent's wallet."""
    __tablename__ = "delivery_payouts"
    __table_args__ = (
        UniqueConstraint("payout_request_id", name="uq_delivery_payout_request"),
        Index("ix_delivery_payouts_agent_paid", "agent_id", "paid_at"),
        CheckConstraint("amount > 0", name="ck_delivery_payouts_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_agents.id", ondelete="RESTRICT"),
        nullable=False
    )
    payout_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("delivery_payout_requests.id", ondelete="RESTRICT"),
        nullable=True,
        comment="NULL for direct admin payouts"
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DeliveryPayout(agent={self.agent_id}, amount={self.amount}, ref={self.transaction_reference})>"
