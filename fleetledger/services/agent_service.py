"""
Zone and delivery agent administration.

Wallet columns are never written here; WalletLedger owns them.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.core.exceptions import ConflictError, ValidationError
from fleetledger.core.tenant_context import get_tenant_row
from fleetledger.models.delivery import (
    AgentZone,
    DeliveryAgent,
    DeliveryZone,
    DeliveryZonePincode,
    PaymentType,
)
from fleetledger.schemas.delivery import (
    DeliveryAgentCreate,
    DeliveryAgentUpdate,
    DeliveryZoneCreate,
    DeliveryZoneUpdate,
)
from fleetledger.services.earnings_calculator import parse_amount, parse_payment_type, round_money

logger = logging.getLogger(__name__)


# Rate column used by each payment type
RATE_FIELDS: Dict[PaymentType, str] = {
    PaymentType.MONTHLY_SALARY: "monthly_salary",
    PaymentType.FIXED_PER_ORDER: "per_order_amount",
    PaymentType.PERCENTAGE_PER_ORDER: "percentage_value",
}


def validate_rates(payment_type: Any, rates: Dict[str, Any]) -> Dict[str, Optional[Decimal]]:
    """
    Resolve the three rate columns for a payment type.

    Only the column matching the type may carry a value; it is required
    and must be non-negative (percentages at most 100).

    Raises:
        ValidationError: Unknown type, missing/negative rate, or a rate
            for a different payment type
    """
    payment_type = parse_payment_type(payment_type)
    own_field = RATE_FIELDS[payment_type]

    resolved: Dict[str, Optional[Decimal]] = {}
    for field in RATE_FIELDS.values():
        value = rates.get(field)
        if field != own_field:
            if value is not None:
                raise ValidationError(
                    f"{field} does not apply to payment type {payment_type.value}",
                    payment_type=payment_type.value,
                )
            resolved[field] = None
            continue

        if value is None:
            raise ValidationError(f"{field} is required for payment type {payment_type.value}")
        value = round_money(value) if field == "percentage_value" else parse_amount(value)
        if value < 0:
            raise ValidationError(f"{field} cannot be negative", **{field: str(value)})
        if field == "percentage_value" and value > 100:
            raise ValidationError("percentage_value cannot exceed 100", percentage_value=str(value))
        resolved[field] = value

    return resolved


class AgentService:
    """Tenant admin operations on zones and agents."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Zones ====================

    async def _ensure_zone_name_free(
        self,
        tenant_id: uuid.UUID,
        name: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        stmt = select(DeliveryZone.id).where(
            DeliveryZone.tenant_id == tenant_id,
            func.lower(DeliveryZone.name) == name.lower(),
        )
        if exclude_id:
            stmt = stmt.where(DeliveryZone.id != exclude_id)
        if (await self.db.execute(stmt)).first():
            raise ConflictError(f"Zone '{name}' already exists")

    async def _get_zone(self, tenant_id: uuid.UUID, zone_id: uuid.UUID) -> DeliveryZone:
        return await get_tenant_row(self.db, DeliveryZone, zone_id, tenant_id, "Delivery zone")

    async def create_zone(self, tenant_id: uuid.UUID, data: DeliveryZoneCreate) -> DeliveryZone:
        try:
            await self._ensure_zone_name_free(tenant_id, data.name)

            zone = DeliveryZone(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                name=data.name.strip(),
                description=data.description,
                is_active=data.is_active,
            )
            zone.pincode_rows = [DeliveryZonePincode(pincode=p) for p in data.pincodes]
            self.db.add(zone)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Created zone '{zone.name}' with {len(data.pincodes)} pincodes for tenant {tenant_id}")
        return zone

    async def update_zone(
        self,
        tenant_id: uuid.UUID,
        zone_id: uuid.UUID,
        data: DeliveryZoneUpdate,
    ) -> DeliveryZone:
        """Update zone fields; a given pincode list replaces the old one."""
        update_data = data.model_dump(exclude_unset=True)
        pincodes = update_data.pop("pincodes", None)
        try:
            zone = await self._get_zone(tenant_id, zone_id)
            if update_data.get("name"):
                await self._ensure_zone_name_free(tenant_id, update_data["name"], exclude_id=zone_id)

            for field, value in update_data.items():
                if field == "name" and value is None:
                    continue
                setattr(zone, field, value)
            zone.updated_at = datetime.now(timezone.utc)

            if pincodes is not None:
                await self.db.execute(
                    delete(DeliveryZonePincode).where(DeliveryZonePincode.zone_id == zone_id)
                )
                self.db.add_all([DeliveryZonePincode(zone_id=zone_id, pincode=p) for p in pincodes])

            await self.db.flush()
            await self.db.refresh(zone, attribute_names=["pincode_rows"])
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Updated zone {zone_id}: {sorted(update_data)}{' + pincodes' if pincodes is not None else ''}")
        return zone

    async def get_zone(self, tenant_id: uuid.UUID, zone_id: uuid.UUID) -> DeliveryZone:
        zone = await self._get_zone(tenant_id, zone_id)
        await self.db.refresh(zone, attribute_names=["pincode_rows"])
        return zone

    async def list_zones(self, tenant_id: uuid.UUID, include_inactive: bool = True) -> List[DeliveryZone]:
        stmt = select(DeliveryZone).where(DeliveryZone.tenant_id == tenant_id)
        if not include_inactive:
            stmt = stmt.where(DeliveryZone.is_active == True)  # noqa: E712
        stmt = stmt.order_by(DeliveryZone.name).execution_options(populate_existing=True)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ==================== Agents ====================

    async def _ensure_mobile_free(
        self,
        tenant_id: uuid.UUID,
        mobile_number: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        stmt = select(DeliveryAgent.id).where(
            DeliveryAgent.tenant_id == tenant_id,
            DeliveryAgent.mobile_number == mobile_number,
        )
        if exclude_id:
            stmt = stmt.where(DeliveryAgent.id != exclude_id)
        if (await self.db.execute(stmt)).first():
            raise ConflictError(f"Mobile number {mobile_number} is already registered")

    async def _replace_zones(self, tenant_id: uuid.UUID, agent_id: uuid.UUID, zone_ids: List[uuid.UUID]) -> None:
        unique_ids = list(dict.fromkeys(zone_ids))
        for zone_id in unique_ids:
            await self._get_zone(tenant_id, zone_id)

        await self.db.execute(delete(AgentZone).where(AgentZone.agent_id == agent_id))
        self.db.add_all([AgentZone(id=uuid.uuid4(), agent_id=agent_id, zone_id=z) for z in unique_ids])

    async def create_agent(self, tenant_id: uuid.UUID, data: DeliveryAgentCreate) -> DeliveryAgent:
        """
        Register a delivery agent with a zero wallet.

        Flow:
        1. Validate mobile number is unused in this tenant
        2. Validate payment type / rate combination
        3. Create agent and link zones
        """
        payload = data.model_dump()
        zone_ids = payload.pop("zone_ids")
        try:
            await self._ensure_mobile_free(tenant_id, data.mobile_number)
            rates = validate_rates(data.payment_type, payload)

            agent = DeliveryAgent(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                full_name=data.full_name.strip(),
                mobile_number=data.mobile_number,
                payment_type=parse_payment_type(data.payment_type).value,
                account_holder_name=data.account_holder_name,
                account_number=data.account_number,
                ifsc_code=data.ifsc_code,
                upi_id=data.upi_id,
                wallet_balance=Decimal("0.00"),
                total_earned=Decimal("0.00"),
                total_paid=Decimal("0.00"),
                is_active=True,
                **rates,
            )
            self.db.add(agent)
            await self.db.flush()

            if zone_ids:
                await self._replace_zones(tenant_id, agent.id, zone_ids)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Created delivery agent {agent.id} ({agent.full_name}, {agent.payment_type})")
        return agent

    async def update_agent(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        data: DeliveryAgentUpdate,
    ) -> DeliveryAgent:
        """Update profile, payout details or payment configuration."""
        update_data = data.model_dump(exclude_unset=True)
        try:
            agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")

            if update_data.get("mobile_number"):
                await self._ensure_mobile_free(tenant_id, update_data["mobile_number"], exclude_id=agent_id)

            rate_keys = set(RATE_FIELDS.values()) | {"payment_type"}
            if rate_keys & update_data.keys():
                payment_type = parse_payment_type(update_data.get("payment_type") or agent.payment_type)
                own_field = RATE_FIELDS[payment_type]
                rates = {field: update_data.get(field) for field in RATE_FIELDS.values()}
                if own_field not in update_data and payment_type.value == agent.payment_type:
                    rates[own_field] = getattr(agent, own_field)
                resolved = validate_rates(payment_type, rates)

                agent.payment_type = payment_type.value
                for field, value in resolved.items():
                    setattr(agent, field, value)

            for field, value in update_data.items():
                if field in rate_keys:
                    continue
                if value is None and field in ("full_name", "mobile_number", "is_active"):
                    continue
                setattr(agent, field, value)

            agent.updated_at = datetime.now(timezone.utc)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Updated delivery agent {agent_id}: {sorted(update_data)}")
        return agent

    async def set_agent_active(self, tenant_id: uuid.UUID, agent_id: uuid.UUID, is_active: bool) -> DeliveryAgent:
        try:
            agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
            agent.is_active = is_active
            agent.updated_at = datetime.now(timezone.utc)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Delivery agent {agent_id} {'activated' if is_active else 'deactivated'}")
        return agent

    async def set_agent_zones(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        zone_ids: List[uuid.UUID],
    ) -> List[uuid.UUID]:
        """Replace the agent's zone coverage."""
        try:
            await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
            await self._replace_zones(tenant_id, agent_id, zone_ids)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Delivery agent {agent_id} now covers {len(set(zone_ids))} zones")
        return await self.agent_zone_ids(agent_id)

    async def agent_zone_ids(self, agent_id: uuid.UUID) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(AgentZone.zone_id).where(AgentZone.agent_id == agent_id)
        )
        return list(result.scalars().all())

    async def get_agent(self, tenant_id: uuid.UUID, agent_id: uuid.UUID) -> DeliveryAgent:
        return await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")

    async def list_agents(
        self,
        tenant_id: uuid.UUID,
        is_active: Optional[bool] = None,
        zone_id: Optional[uuid.UUID] = None,
    ) -> List[DeliveryAgent]:
        stmt = select(DeliveryAgent).where(DeliveryAgent.tenant_id == tenant_id)
        if is_active is not None:
            stmt = stmt.where(DeliveryAgent.is_active == is_active)
        if zone_id:
            stmt = stmt.join(AgentZone, AgentZone.agent_id == DeliveryAgent.id).where(AgentZone.zone_id == zone_id)
        stmt = stmt.order_by(DeliveryAgent.full_name).execution_options(populate_existing=True)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

