"""
Delivery dispatch models.

Zones route unclaimed work to agents by pincode; assignments track one
order's delivery from claim to a terminal state; status logs are the
append-only audit trail of every transition.

Assignment Flow:
unassigned → assigned → picked_up → out_for_delivery → delivered
                                                     ↘ failed / returned
assigned / picked_up → failed (abort)
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, Numeric
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleetledger.database import Base
from fleetledger.db_types import UUIDType, MoneyType

if TYPE_CHECKING:
    from fleetledger.models.order import Order


class DeliveryStatus(str, Enum):
    """Assignment status. Transitions live in services/delivery_state_machine.py."""
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class PaymentType(str, Enum):
    """How a delivery agent is paid."""
    MONTHLY_SALARY = "monthly_salary"           # Settled out-of-band, no per-order credit
    FIXED_PER_ORDER = "fixed_per_order"         # per_order_amount per delivery
    PERCENTAGE_PER_ORDER = "percentage_per_order"  # percentage_value % of order total


class ActorType(str, Enum):
    """Who caused a status change."""
    AGENT = "agent"
    ADMIN = "admin"
    SYSTEM = "system"


class DeliveryZone(Base):
    """
    Named set of pincodes used to route unclaimed assignments.

    Example:
    - "Andheri West" covers 400053, 400058, 400061
    """
    __tablename__ = "delivery_zones"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_delivery_zone_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    pincode_rows: Mapped[List["DeliveryZonePincode"]] = relationship(
        "DeliveryZonePincode",
        back_populates="zone",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliveryZonePincode.pincode",
    )

    @property
    def pincodes(self) -> list[str]:
        return sorted(row.pincode for row in self.pincode_rows)

    def __repr__(self) -> str:
        return f"<DeliveryZone(name='{self.name}', pincodes={len(self.pincode_rows)})>"


class DeliveryZonePincode(Base):
    """One pincode covered by a zone (single pincode per row for easier querying)."""
    __tablename__ = "delivery_zone_pincodes"
    __table_args__ = (
        UniqueConstraint("zone_id", "pincode", name="uq_delivery_zone_pincode"),
        Index("ix_delivery_zone_pincodes_pincode", "pincode"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    zone_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_zones.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    pincode: Mapped[str] = mapped_column(String(10), nullable=False)

    zone: Mapped["DeliveryZone"] = relationship("DeliveryZone", back_populates="pincode_rows")


class DeliveryAgent(Base):
    """
    Delivery agent with a payment configuration and a running wallet.

    wallet_balance, total_earned and total_paid are only ever changed by
    SQL increments in WalletLedger / PayoutService so that
    wallet_balance == total_earned - total_paid holds under concurrency.
    """
    __tablename__ = "delivery_agents"
    __table_args__ = (
        UniqueConstraint("tenant_id", "mobile_number", name="uq_delivery_agent_mobile"),
        CheckConstraint("wallet_balance >= 0", name="ck_delivery_agents_wallet_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)

    # Payment configuration
    payment_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=PaymentType.FIXED_PER_ORDER.value,
        comment="monthly_salary, fixed_per_order, percentage_per_order"
    )
    monthly_salary: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    per_order_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    percentage_value: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Percent of order total (0-100)"
    )

    # Wallet (changed only through SQL deltas)
    wallet_balance: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False,
        comment="Available balance for withdrawal"
    )
    total_earned: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0.00"), nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0.00"), nullable=False)

    # Payout details
    account_holder_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    ifsc_code: Mapped[Optional[str]] = mapped_column(String(11), nullable=True)
    upi_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DeliveryAgent(name='{self.full_name}', type={self.payment_type}, balance={self.wallet_balance})>"


class AgentZone(Base):
    """Zones an agent covers."""
    __tablename__ = "delivery_agent_zones"
    __table_args__ = (
        UniqueConstraint("agent_id", "zone_id", name="uq_delivery_agent_zone"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    zone_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_zones.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )


class DeliveryAssignment(Base):
    """
    One delivery per order.

    Created unassigned by the order collaborator, mutated only through
    AssignmentService (conditional UPDATEs), never deleted.
    """
    __tablename__ = "delivery_assignments"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_delivery_assignment_order"),
        Index("ix_delivery_assignments_tenant_status", "tenant_id", "status"),
        Index("ix_delivery_assignments_agent", "agent_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False
    )
    zone_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("delivery_zones.id", ondelete="SET NULL"),
        nullable=True,
        comment="Zone resolved from the order pincode; NULL = unroutable"
    )
    agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("delivery_agents.id", ondelete="RESTRICT"),
        nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=DeliveryStatus.UNASSIGNED.value
    )

    # Phase timestamps
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    out_for_delivery_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cod_collected: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Cash collected on delivery, if any"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    order: Mapped["Order"] = relationship("Order", lazy="joined")

    def __repr__(self) -> str:
        return f"<DeliveryAssignment(order={self.order_id}, status={self.status}, agent={self.agent_id})>"


class DeliveryStatusLog(Base):
    """Append-only audit row, one per status transition."""
    __tablename__ = "delivery_status_logs"
    __table_args__ = (
        Index("ix_delivery_status_logs_assignment", "assignment_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_assignments.id", ondelete="RESTRICT"),
        nullable=False
    )

    old_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)

    actor_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="agent, admin, system"
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DeliveryStatusLog({self.old_status} -> {self.new_status}, by={self.actor_type})>"
