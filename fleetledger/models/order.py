import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from fleetledger.database import Base
from fleetledger.db_types import UUIDType, MoneyType


class Order(Base):
    """
    Storefront order as published by checkout.

    Owned and written by the checkout service; the delivery engine only
    reads the total (for percentage earnings) and the delivery pincode
    (for zone routing).
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_tenant_pincode", "tenant_id", "delivery_pincode"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)

    total: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0.00")
    )
    delivery_pincode: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="Shipping address pincode used for zone routing"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Order(number={self.order_number}, total={self.total}, pincode={self.delivery_pincode})>"
