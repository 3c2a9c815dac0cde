"""
Zone-based visibility of delivery assignments.

An agent sees an assignment when it is already theirs, or when it is
still unassigned, the agent is active and the order's delivery pincode
belongs to one of the agent's active zones. Pure set membership: no
geocoding.

Listing and claiming both go through _visible_clause(), and every
pincode comparison goes through pincode_key(), so the two can never
disagree about what an agent may take.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select, and_, or_, exists, func, literal
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.models.order import Order
from fleetledger.models.delivery import (
    DeliveryStatus,
    DeliveryAgent,
    DeliveryZone,
    DeliveryZonePincode,
    AgentZone,
    DeliveryAssignment,
)

logger = logging.getLogger(__name__)


def pincode_key(expr):
    """Normalised form of a pincode column or value for zone matching."""
    return func.trim(expr)


class AreaMatcher:
    """Database-backed zone lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _agent_pincodes_subquery(self, tenant_id: uuid.UUID, agent_id: uuid.UUID):
        return (
            select(pincode_key(DeliveryZonePincode.pincode))
            .join(DeliveryZone, DeliveryZone.id == DeliveryZonePincode.zone_id)
            .join(AgentZone, AgentZone.zone_id == DeliveryZone.id)
            .where(
                AgentZone.agent_id == agent_id,
                DeliveryZone.tenant_id == tenant_id,
                DeliveryZone.is_active == True,  # noqa: E712
            )
        )

    def _visible_clause(self, tenant_id: uuid.UUID, agent_id: uuid.UUID):
        """WHERE clause over DeliveryAssignment joined to Order."""
        agent_active = exists().where(
            DeliveryAgent.id == agent_id,
            DeliveryAgent.tenant_id == tenant_id,
            DeliveryAgent.is_active == True,  # noqa: E712
        )
        in_agent_zone = pincode_key(Order.delivery_pincode).in_(
            self._agent_pincodes_subquery(tenant_id, agent_id)
        )
        return or_(
            DeliveryAssignment.agent_id == agent_id,
            and_(
                DeliveryAssignment.status == DeliveryStatus.UNASSIGNED.value,
                DeliveryAssignment.agent_id.is_(None),
                agent_active,
                in_agent_zone,
            ),
        )

    async def is_visible(self, tenant_id: uuid.UUID, agent_id: uuid.UUID, assignment_id: uuid.UUID) -> bool:
        """Would list_visible() return this assignment to the agent right now?"""
        stmt = (
            select(DeliveryAssignment.id)
            .join(Order, Order.id == DeliveryAssignment.order_id)
            .where(
                DeliveryAssignment.id == assignment_id,
                DeliveryAssignment.tenant_id == tenant_id,
                self._visible_clause(tenant_id, agent_id),
            )
        )
        return (await self.db.execute(stmt)).first() is not None

    async def zones_for_pincode(self, tenant_id: uuid.UUID, pincode: str) -> List[DeliveryZone]:
        """Active zones of this tenant that contain the pincode."""
        stmt = (
            select(DeliveryZone)
            .join(DeliveryZonePincode, DeliveryZonePincode.zone_id == DeliveryZone.id)
            .where(
                DeliveryZone.tenant_id == tenant_id,
                DeliveryZone.is_active == True,  # noqa: E712
                pincode_key(DeliveryZonePincode.pincode) == pincode_key(literal(pincode)),
            )
            .order_by(DeliveryZone.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all())

    async def resolve_zone_id(self, tenant_id: uuid.UUID, pincode: Optional[str]) -> Optional[uuid.UUID]:
        """First matching active zone (by name) or None when unroutable."""
        if not pincode:
            return None
        zones = await self.zones_for_pincode(tenant_id, pincode)
        return zones[0].id if zones else None

    async def list_visible(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        status: Optional[DeliveryStatus] = None,
    ) -> List[DeliveryAssignment]:
        """
        Assignments the agent may see, newest first.

        Expressed as one query: own assignments, plus unassigned ones whose
        order pincode is in the agent's active zones.
        """
        stmt = (
            select(DeliveryAssignment)
            .join(Order, Order.id == DeliveryAssignment.order_id)
            .where(
                DeliveryAssignment.tenant_id == tenant_id,
                self._visible_clause(tenant_id, agent_id),
            )
            .order_by(DeliveryAssignment.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(DeliveryAssignment.status == status.value)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def unroutable(self, tenant_id: uuid.UUID) -> List[DeliveryAssignment]:
        """Unassigned assignments whose pincode is in no active zone."""
        covered = exists().where(
            pincode_key(DeliveryZonePincode.pincode) == pincode_key(Order.delivery_pincode),
            DeliveryZonePincode.zone_id == DeliveryZone.id,
            DeliveryZone.tenant_id == tenant_id,
            DeliveryZone.is_active == True,  # noqa: E712
        )
        stmt = (
            select(DeliveryAssignment)
            .join(Order, Order.id == DeliveryAssignment.order_id)
            .where(
                DeliveryAssignment.tenant_id == tenant_id,
                DeliveryAssignment.status == DeliveryStatus.UNASSIGNED.value,
                ~covered,
            )
            .order_by(DeliveryAssignment.created_at)
        )
        result = await self.db.execute(stmt)
        rows = list(result.scalars().all())
        if rows:
            logger.warning(f"Tenant {tenant_id}: {len(rows)} unassigned deliveries match no active zone")
        return rows
