"""
Payout workflow.

    pending -> approved -> paid
    pending -> rejected

Requests never touch the wallet. Only mark_paid (and admin direct
payouts) debit it, with a guarded decrement that fails closed when the
balance has dropped below the amount since approval.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.core.exceptions import (
    InsufficientBalanceError,
    InvalidTransitionError,
    ValidationError,
)
from fleetledger.core.tenant_context import get_tenant_row
from fleetledger.models.delivery import DeliveryAgent
from fleetledger.models.ledger import (
    DeliveryPayout,
    DeliveryPayoutRequest,
    PayoutRequestStatus,
)
from fleetledger.services.earnings_calculator import parse_amount, round_money, ZERO
from fleetledger.services.wallet_ledger import WalletLedger

logger = logging.getLogger(__name__)


PAYOUT_TRANSITIONS: Dict[PayoutRequestStatus, List[PayoutRequestStatus]] = {
    PayoutRequestStatus.PENDING: [PayoutRequestStatus.APPROVED, PayoutRequestStatus.REJECTED],
    PayoutRequestStatus.APPROVED: [PayoutRequestStatus.PAID],
    PayoutRequestStatus.PAID: [],
    PayoutRequestStatus.REJECTED: [],
}


def _positive_amount(amount: Any):
    value = parse_amount(amount)
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero", amount=str(value))
    return value


class PayoutService:
    """Agent payout requests and admin settlement."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = WalletLedger(db)

    async def _get_request(self, tenant_id: uuid.UUID, request_id: uuid.UUID) -> DeliveryPayoutRequest:
        return await get_tenant_row(self.db, DeliveryPayoutRequest, request_id, tenant_id, "Payout request")

    async def _advance(
        self,
        request: DeliveryPayoutRequest,
        target: PayoutRequestStatus,
        admin_id: uuid.UUID,
        **values: Any,
    ) -> None:
        """CAS the request from its only valid source status to target."""
        source = next(s for s, targets in PAYOUT_TRANSITIONS.items() if target in targets)
        if request.status != source.value:
            raise InvalidTransitionError(
                f"Cannot move payout request from '{request.status}' to '{target.value}'",
                current=request.status,
                requested=target.value,
            )

        result = await self.db.execute(
            update(DeliveryPayoutRequest)
            .where(
                DeliveryPayoutRequest.id == request.id,
                DeliveryPayoutRequest.tenant_id == request.tenant_id,
                DeliveryPayoutRequest.status == source.value,
            )
            .values(
                status=target.value,
                processed_at=datetime.now(timezone.utc),
                processed_by=admin_id,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self._get_request(request.tenant_id, request.id)
            raise InvalidTransitionError(
                f"Cannot move payout request from '{current.status}' to '{target.value}'",
                current=current.status,
                requested=target.value,
            )

    # ==================== Agent ====================

    async def request_payout(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        amount: Any,
        notes: Optional[str] = None,
    ) -> DeliveryPayoutRequest:
        """
        Create a pending payout request.

        Raises:
            ValidationError: amount <= 0
            InsufficientBalanceError: amount exceeds current wallet balance
        """
        amount = _positive_amount(amount)
        try:
            agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
            if amount > agent.wallet_balance:
                logger.info(f"Payout request refused for agent {agent_id}: {amount} > {agent.wallet_balance}")
                raise InsufficientBalanceError(
                    "Requested amount exceeds wallet balance",
                    requested=amount,
                    available=agent.wallet_balance,
                )

            request = DeliveryPayoutRequest(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                agent_id=agent_id,
                amount=amount,
                status=PayoutRequestStatus.PENDING.value,
                agent_notes=notes,
                requested_at=datetime.now(timezone.utc),
            )
            self.db.add(request)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Agent {agent_id} requested payout {request.id} of {amount}")
        return request

    # ==================== Admin ====================

    async def approve(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        admin_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> DeliveryPayoutRequest:
        try:
            request = await self._get_request(tenant_id, request_id)
            await self._advance(request, PayoutRequestStatus.APPROVED, admin_id, admin_notes=notes)
            request = await self._get_request(tenant_id, request_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Payout request {request_id} approved by {admin_id}")
        return request

    async def reject(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        admin_id: uuid.UUID,
        reason: str,
    ) -> DeliveryPayoutRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        try:
            request = await self._get_request(tenant_id, request_id)
            await self._advance(request, PayoutRequestStatus.REJECTED, admin_id, rejection_reason=reason.strip())
            request = await self._get_request(tenant_id, request_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Payout request {request_id} rejected by {admin_id}: {reason}")
        return request

    async def mark_paid(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        admin_id: uuid.UUID,
        transaction_reference: str,
        notes: Optional[str] = None,
    ) -> DeliveryPayout:
        """
        Settle an approved request.

        One transaction: request -> paid, guarded wallet debit, payout row.
        If the balance no longer covers the amount, nothing is written.
        """
        if not transaction_reference or not transaction_reference.strip():
            raise ValidationError("transaction_reference is required")
        try:
            request = await self._get_request(tenant_id, request_id)
            await self._advance(request, PayoutRequestStatus.PAID, admin_id)
            await self.ledger.debit(tenant_id, request.agent_id, request.amount)

            payout = DeliveryPayout(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                agent_id=request.agent_id,
                payout_request_id=request.id,
                amount=round_money(request.amount),
                transaction_reference=transaction_reference.strip(),
                notes=notes,
                paid_by=admin_id,
                paid_at=datetime.now(timezone.utc),
            )
            self.db.add(payout)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Payout request {request_id} paid: {payout.amount} to agent {payout.agent_id} (ref {payout.transaction_reference})")
        return payout

    async def record_direct_payout(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        amount: Any,
        admin_id: uuid.UUID,
        transaction_reference: str,
        notes: Optional[str] = None,
    ) -> DeliveryPayout:
        """Admin settlement without a prior request."""
        amount = _positive_amount(amount)
        if not transaction_reference or not transaction_reference.strip():
            raise ValidationError("transaction_reference is required")
        try:
            await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
            await self.ledger.debit(tenant_id, agent_id, amount)

            payout = DeliveryPayout(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                agent_id=agent_id,
                payout_request_id=None,
                amount=amount,
                transaction_reference=transaction_reference.strip(),
                notes=notes,
                paid_by=admin_id,
                paid_at=datetime.now(timezone.utc),
            )
            self.db.add(payout)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Direct payout of {amount} to agent {agent_id} by {admin_id}")
        return payout

    # ==================== Queries ====================

    async def list_requests(
        self,
        tenant_id: uuid.UUID,
        agent_id: Optional[uuid.UUID] = None,
        status: Optional[PayoutRequestStatus] = None,
    ) -> List[DeliveryPayoutRequest]:
        stmt = select(DeliveryPayoutRequest).where(DeliveryPayoutRequest.tenant_id == tenant_id)
        if agent_id:
            stmt = stmt.where(DeliveryPayoutRequest.agent_id == agent_id)
        if status:
            stmt = stmt.where(DeliveryPayoutRequest.status == PayoutRequestStatus(status).value)
        stmt = stmt.order_by(DeliveryPayoutRequest.requested_at.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_payouts(
        self,
        tenant_id: uuid.UUID,
        agent_id: Optional[uuid.UUID] = None,
    ) -> List[DeliveryPayout]:
        stmt = select(DeliveryPayout).where(DeliveryPayout.tenant_id == tenant_id)
        if agent_id:
            stmt = stmt.where(DeliveryPayout.agent_id == agent_id)
        stmt = stmt.order_by(DeliveryPayout.paid_at.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())
