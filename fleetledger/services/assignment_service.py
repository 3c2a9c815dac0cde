"""
Delivery assignment service.

Owns every write to delivery_assignments:
- open_assignment / open_missing_assignments: one unassigned row per order
- claim / assign_to_agent: compare-and-swap on status = 'unassigned'
- transition: compare-and-swap on the observed status; reaching
  'delivered' credits the agent's wallet in the same transaction

Each public mutation commits on success and rolls back on any error.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.config import settings
from fleetledger.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from fleetledger.core.tenant_context import get_tenant_row
from fleetledger.database import insert_ignore
from fleetledger.models.order import Order
from fleetledger.models.delivery import (
    ActorType,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
    DeliveryStatusLog,
    PaymentType,
)
from fleetledger.services.area_matcher import AreaMatcher
from fleetledger.services.delivery_state_machine import (
    get_transition_action,
    is_terminal,
    parse_status,
    timestamp_field,
    validate_transition,
)
from fleetledger.services.earnings_calculator import compute_earning, describe_earning, parse_amount, ZERO
from fleetledger.services.wallet_ledger import WalletLedger

logger = logging.getLogger(__name__)


class AssignmentService:
    """Claim, dispatch and status transitions for delivery assignments."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.matcher = AreaMatcher(db)
        self.ledger = WalletLedger(db)

    # ==================== Helpers ====================

    async def _get_assignment(self, tenant_id: uuid.UUID, assignment_id: uuid.UUID) -> DeliveryAssignment:
        return await get_tenant_row(self.db, DeliveryAssignment, assignment_id, tenant_id, "Assignment")

    async def _get_active_agent(self, tenant_id: uuid.UUID, agent_id: uuid.UUID) -> DeliveryAgent:
        try:
            agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
        except NotFoundError:
            raise UnauthorizedError("Unknown delivery agent", agent_id=str(agent_id))
        if not agent.is_active:
            logger.warning(f"Inactive agent {agent_id} attempted to take an assignment")
            raise UnauthorizedError("Delivery agent is inactive", agent_id=str(agent_id))
        return agent

    def _log_status(
        self,
        assignment: DeliveryAssignment,
        old_status: Optional[str],
        new_status: str,
        actor_type: ActorType,
        actor_id: Optional[uuid.UUID],
        notes: Optional[str] = None,
    ) -> None:
        self.db.add(DeliveryStatusLog(
            id=uuid.uuid4(),
            tenant_id=assignment.tenant_id,
            assignment_id=assignment.id,
            old_status=old_status,
            new_status=new_status,
            actor_type=actor_type.value,
            actor_id=actor_id,
            notes=notes or (get_transition_action(old_status, new_status) if old_status else None),
            created_at=datetime.now(timezone.utc),
        ))

    async def _take(
        self,
        assignment: DeliveryAssignment,
        agent_id: uuid.UUID,
        actor_type: ActorType,
        actor_id: uuid.UUID,
    ) -> None:
        """CAS unassigned -> assigned. Exactly one concurrent caller wins."""
        validate_transition(DeliveryStatus.UNASSIGNED, DeliveryStatus.ASSIGNED)
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(DeliveryAssignment)
            .where(
                DeliveryAssignment.id == assignment.id,
                DeliveryAssignment.tenant_id == assignment.tenant_id,
                DeliveryAssignment.status == DeliveryStatus.UNASSIGNED.value,
                DeliveryAssignment.agent_id.is_(None),
            )
            .values(
                agent_id=agent_id,
                status=DeliveryStatus.ASSIGNED.value,
                assigned_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(f"Claim lost: assignment {assignment.id} already taken (agent {agent_id})")
            raise ConflictError("Assignment already claimed", assignment_id=str(assignment.id))

        self._log_status(
            assignment,
            DeliveryStatus.UNASSIGNED.value,
            DeliveryStatus.ASSIGNED.value,
            actor_type,
            actor_id,
        )

    # ==================== Creation ====================

    async def _insert_unassigned(self, order: Order) -> bool:
        zone_id = await self.matcher.resolve_zone_id(order.tenant_id, order.delivery_pincode)
        now = datetime.now(timezone.utc)
        assignment_id = uuid.uuid4()
        inserted = await insert_ignore(
            self.db,
            DeliveryAssignment,
            {
                "id": assignment_id,
                "tenant_id": order.tenant_id,
                "order_id": order.id,
                "zone_id": zone_id,
                "status": DeliveryStatus.UNASSIGNED.value,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["order_id"],
        )
        if inserted:
            self.db.add(DeliveryStatusLog(
                id=uuid.uuid4(),
                tenant_id=order.tenant_id,
                assignment_id=assignment_id,
                old_status=None,
                new_status=DeliveryStatus.UNASSIGNED.value,
                actor_type=ActorType.SYSTEM.value,
                actor_id=None,
                notes="Order placed" if zone_id else "Order placed; no delivery zone covers this pincode",
                created_at=now,
            ))
            if zone_id is None:
                logger.warning(f"Order {order.order_number}: pincode {order.delivery_pincode} is unroutable")
        return inserted

    async def open_assignment(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> DeliveryAssignment:
        """
        Create the unassigned delivery for an order.

        Idempotent: calling it again for the same order returns the
        existing assignment unchanged.
        """
        try:
            order = await get_tenant_row(self.db, Order, order_id, tenant_id, "Order")
            created = await self._insert_unassigned(order)

            assignment = (await self.db.execute(
                select(DeliveryAssignment)
                .where(DeliveryAssignment.order_id == order_id)
                .execution_options(populate_existing=True)
            )).scalar_one()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if created:
            logger.info(f"Opened assignment {assignment.id} for order {order.order_number}")
        return assignment

    async def open_missing_assignments(self, tenant_id: uuid.UUID) -> int:
        """Back-fill assignments for this tenant's orders that lack one."""
        try:
            has_assignment = select(DeliveryAssignment.id).where(DeliveryAssignment.order_id == Order.id).exists()
            orders = (await self.db.execute(
                select(Order)
                .where(Order.tenant_id == tenant_id, ~has_assignment)
                .order_by(Order.created_at)
            )).scalars().all()

            created = 0
            for order in orders:
                if await self._insert_unassigned(order):
                    created += 1
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Tenant {tenant_id}: opened {created} missing assignments")
        return created

    # ==================== Claim / Dispatch ====================

    async def claim(
        self,
        tenant_id: uuid.UUID,
        assignment_id: uuid.UUID,
        agent_id: uuid.UUID,
    ) -> DeliveryAssignment:
        """
        Agent self-claims an unassigned delivery in one of their zones.

        Raises:
            NotFoundError: Unknown assignment
            UnauthorizedError: Other tenant, inactive agent, pincode outside agent zones
            ConflictError: Someone else claimed it first
        """
        try:
            assignment = await self._get_assignment(tenant_id, assignment_id)
            await self._get_active_agent(tenant_id, agent_id)

            if assignment.status != DeliveryStatus.UNASSIGNED.value or assignment.agent_id is not None:
                raise ConflictError("Assignment already claimed", assignment_id=str(assignment_id))

            if not await self.matcher.is_visible(tenant_id, agent_id, assignment_id):
                assignment = await self._get_assignment(tenant_id, assignment_id)
                if assignment.agent_id is not None:
                    raise ConflictError("Assignment already claimed", assignment_id=str(assignment_id))
                pincode = assignment.order.delivery_pincode if assignment.order else None
                logger.warning(f"Agent {agent_id} tried to claim {assignment_id} outside their zones ({pincode})")
                raise UnauthorizedError("Assignment is outside your delivery zones", assignment_id=str(assignment_id))

            await self._take(assignment, agent_id, ActorType.AGENT, agent_id)
            assignment = await self._get_assignment(tenant_id, assignment_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Agent {agent_id} claimed assignment {assignment_id}")
        return assignment

    async def assign_to_agent(
        self,
        tenant_id: uuid.UUID,
        assignment_id: uuid.UUID,
        agent_id: uuid.UUID,
        admin_id: uuid.UUID,
    ) -> DeliveryAssignment:
        """Admin dispatch: same CAS as claim, without the zone check."""
        try:
            assignment = await self._get_assignment(tenant_id, assignment_id)
            await self._get_active_agent(tenant_id, agent_id)

            if assignment.status != DeliveryStatus.UNASSIGNED.value or assignment.agent_id is not None:
                raise ConflictError("Assignment already claimed", assignment_id=str(assignment_id))

            await self._take(assignment, agent_id, ActorType.ADMIN, admin_id)
            assignment = await self._get_assignment(tenant_id, assignment_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Admin {admin_id} assigned {assignment_id} to agent {agent_id}")
        return assignment

    # ==================== Status Transitions ====================

    async def transition(
        self,
        tenant_id: uuid.UUID,
        assignment_id: uuid.UUID,
        agent_id: uuid.UUID,
        new_status: Any,
        notes: Optional[str] = None,
        cod_collected: Optional[Any] = None,
    ) -> DeliveryAssignment:
        """
        Move an assignment along its delivery path.

        Raises:
            NotFoundError: Unknown assignment
            UnauthorizedError: Other tenant, or not this agent's assignment
            InvalidTransitionError: Edge not allowed / terminal source
            ValidationError: cod_collected on a non-delivered status, or negative
        """
        try:
            assignment = await self._get_assignment(tenant_id, assignment_id)
            if assignment.agent_id != agent_id:
                logger.warning(f"Agent {agent_id} tried to update assignment {assignment_id} owned by {assignment.agent_id}")
                raise UnauthorizedError("Assignment belongs to another agent", assignment_id=str(assignment_id))

            observed = assignment.status
            target = validate_transition(observed, new_status)

            now = datetime.now(timezone.utc)
            values: dict[str, Any] = {"status": target.value, "updated_at": now}
            ts_field = timestamp_field(target)
            if ts_field:
                values[ts_field] = now
            if notes:
                values["notes"] = notes
            if cod_collected is not None:
                if target != DeliveryStatus.DELIVERED:
                    raise ValidationError("cod_collected is only recorded on delivery")
                cod = parse_amount(cod_collected)
                if cod < ZERO:
                    raise ValidationError("cod_collected cannot be negative", cod_collected=str(cod))
                values["cod_collected"] = cod

            result = await self.db.execute(
                update(DeliveryAssignment)
                .where(
                    DeliveryAssignment.id == assignment_id,
                    DeliveryAssignment.tenant_id == tenant_id,
                    DeliveryAssignment.agent_id == agent_id,
                    DeliveryAssignment.status == observed,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Someone moved it between our read and write
                current = await self._get_assignment(tenant_id, assignment_id)
                validate_transition(current.status, target)
                raise ConflictError("Assignment was updated concurrently", assignment_id=str(assignment_id))

            self._log_status(assignment, observed, target.value, ActorType.AGENT, agent_id, notes)

            if target == DeliveryStatus.DELIVERED:
                await self._settle_delivery(assignment, agent_id)

            assignment = await self._get_assignment(tenant_id, assignment_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Assignment {assignment_id}: {observed} -> {target.value} by agent {agent_id}"
            f"{' (final)' if is_terminal(target) else ''}"
        )
        return assignment

    async def _settle_delivery(self, assignment: DeliveryAssignment, agent_id: uuid.UUID) -> Decimal:
        """Compute and credit the delivery earning inside the current transaction."""
        agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, assignment.tenant_id, "Delivery agent")
        order = assignment.order
        amount = compute_earning(agent, order)

        if amount > ZERO:
            await self.ledger.credit(
                assignment.tenant_id,
                agent_id,
                assignment.id,
                assignment.order_id,
                amount,
                agent.payment_type,
                describe_earning(order),
            )
        elif agent.payment_type == PaymentType.MONTHLY_SALARY.value and settings.RECORD_SALARIED_DELIVERIES:
            await self.ledger.record_salaried_delivery(
                assignment.tenant_id,
                agent_id,
                assignment.id,
                assignment.order_id,
                describe_earning(order),
            )
        else:
            logger.info(f"No earning for assignment {assignment.id} ({agent.payment_type})")
        return amount

    # ==================== Queries ====================

    async def list_for_agent(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        status: Optional[Any] = None,
    ) -> List[DeliveryAssignment]:
        return await self.matcher.list_visible(
            tenant_id, agent_id, parse_status(status) if status is not None else None
        )

    async def status_history(
        self,
        tenant_id: uuid.UUID,
        assignment_id: uuid.UUID,
        agent_id: Optional[uuid.UUID] = None,
    ) -> List[DeliveryStatusLog]:
        """Status log for one assignment, oldest first. Agents only see their own."""
        assignment = await get_tenant_row(self.db, DeliveryAssignment, assignment_id, tenant_id, "Assignment")
        if agent_id is not None and assignment.agent_id != agent_id:
            raise UnauthorizedError("Assignment belongs to another agent", assignment_id=str(assignment_id))
        result = await self.db.execute(
            select(DeliveryStatusLog)
            .where(
                DeliveryStatusLog.tenant_id == tenant_id,
                DeliveryStatusLog.assignment_id == assignment_id,
            )
            .order_by(DeliveryStatusLog.created_at)
        )
        return list(result.scalars().all())
