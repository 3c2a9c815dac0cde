"""
Agent wallet ledger.

Balances move only through SQL increments, never read-modify-write:

    credit:  total_earned += amount, wallet_balance += amount
    debit:   total_paid   += amount, wallet_balance -= amount
             (only WHERE wallet_balance >= amount)

Nothing here commits. Callers (AssignmentService, PayoutService) own the
transaction so a status change and its money movement land together or
not at all.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.config import settings
from fleetledger.core.exceptions import NotFoundError, ValidationError, InsufficientBalanceError
from fleetledger.core.tenant_context import get_tenant_row
from fleetledger.database import insert_ignore
from fleetledger.models.delivery import DeliveryAgent, PaymentType
from fleetledger.models.ledger import DeliveryEarning, DeliveryPayout
from fleetledger.services.earnings_calculator import parse_amount, round_money, ZERO

logger = logging.getLogger(__name__)


class WalletLedger:
    """Credits, guarded debits and read models over an agent's wallet."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Mutations ====================

    async def credit(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        assignment_id: Optional[uuid.UUID],
        order_id: Optional[uuid.UUID],
        amount: Any,
        earning_type: str,
        description: Optional[str] = None,
    ) -> bool:
        """
        Record an earning and add it to the wallet.

        Idempotent on assignment_id: a second credit for the same
        assignment writes nothing and returns False.

        Raises:
            ValidationError: amount <= 0
            NotFoundError: agent missing in this tenant
        """
        amount = parse_amount(amount)
        if amount <= ZERO:
            raise ValidationError("Credit amount must be positive", amount=str(amount))

        inserted = await insert_ignore(
            self.db,
            DeliveryEarning,
            {
                "id": uuid.uuid4(),
                "tenant_id": tenant_id,
                "agent_id": agent_id,
                "assignment_id": assignment_id,
                "order_id": order_id,
                "amount": amount,
                "earning_type": earning_type,
                "description": description,
                "created_at": datetime.now(timezone.utc),
            },
            conflict_columns=["assignment_id"],
        )
        if not inserted:
            logger.warning(
                f"Duplicate credit ignored: assignment {assignment_id} already credited (agent {agent_id})"
            )
            return False

        result = await self.db.execute(
            update(DeliveryAgent)
            .where(
                DeliveryAgent.id == agent_id,
                DeliveryAgent.tenant_id == tenant_id,
            )
            .values(
                wallet_balance=DeliveryAgent.wallet_balance + amount,
                total_earned=DeliveryAgent.total_earned + amount,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Delivery agent not found", id=str(agent_id))

        logger.info(f"Credited {amount} to agent {agent_id} for assignment {assignment_id} ({earning_type})")
        return True

    async def record_salaried_delivery(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        assignment_id: uuid.UUID,
        order_id: Optional[uuid.UUID],
        description: Optional[str] = None,
    ) -> bool:
        """Zero-amount reporting row for a monthly_salary delivery. Balance untouched."""
        inserted = await insert_ignore(
            self.db,
            DeliveryEarning,
            {
                "id": uuid.uuid4(),
                "tenant_id": tenant_id,
                "agent_id": agent_id,
                "assignment_id": assignment_id,
                "order_id": order_id,
                "amount": ZERO,
                "earning_type": PaymentType.MONTHLY_SALARY.value,
                "description": description,
                "created_at": datetime.now(timezone.utc),
            },
            conflict_columns=["assignment_id"],
        )
        if inserted:
            logger.info(f"Recorded salaried delivery for agent {agent_id}, assignment {assignment_id}")
        return inserted

    async def debit(self, tenant_id: uuid.UUID, agent_id: uuid.UUID, amount: Any) -> None:
        """
        Guarded payout debit.

        Raises:
            ValidationError: amount <= 0
            InsufficientBalanceError: wallet_balance < amount at execution time
        """
        amount = parse_amount(amount)
        if amount <= ZERO:
            raise ValidationError("Payout amount must be positive", amount=str(amount))

        result = await self.db.execute(
            update(DeliveryAgent)
            .where(
                DeliveryAgent.id == agent_id,
                DeliveryAgent.tenant_id == tenant_id,
                DeliveryAgent.wallet_balance >= amount,
            )
            .values(
                wallet_balance=DeliveryAgent.wallet_balance - amount,
                total_paid=DeliveryAgent.total_paid + amount,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
            logger.warning(
                f"Payout debit refused for agent {agent_id}: requested {amount}, available {agent.wallet_balance}"
            )
            raise InsufficientBalanceError(
                "Insufficient wallet balance",
                requested=amount,
                available=agent.wallet_balance,
            )
        logger.info(f"Debited {amount} from agent {agent_id}")

    # ==================== Queries ====================

    async def balance(self, tenant_id: uuid.UUID, agent_id: uuid.UUID) -> Dict[str, Decimal]:
        agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
        return {
            "wallet_balance": round_money(agent.wallet_balance),
            "total_earned": round_money(agent.total_earned),
            "total_paid": round_money(agent.total_paid),
        }

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return settings.HISTORY_DEFAULT_LIMIT
        if limit <= 0:
            raise ValidationError("limit must be positive", limit=limit)
        return min(limit, settings.HISTORY_MAX_LIMIT)

    async def iter_history(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        limit: Optional[int] = None,
    ) -> AsyncIterator[DeliveryEarning]:
        """
        Earnings newest first, fetched lazily in keyset pages.

        Each call starts a fresh scan, so a consumer can stop early and
        restart without server-side cursor state.
        """
        await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")
        remaining = self._clamp_limit(limit)
        page_size = max(1, settings.HISTORY_PAGE_SIZE)
        last: Optional[DeliveryEarning] = None

        while remaining > 0:
            stmt = (
                select(DeliveryEarning)
                .where(
                    DeliveryEarning.tenant_id == tenant_id,
                    DeliveryEarning.agent_id == agent_id,
                )
                .order_by(DeliveryEarning.created_at.desc(), DeliveryEarning.id.desc())
                .limit(min(page_size, remaining))
            )
            if last is not None:
                stmt = stmt.where(
                    or_(
                        DeliveryEarning.created_at < last.created_at,
                        and_(
                            DeliveryEarning.created_at == last.created_at,
                            DeliveryEarning.id < last.id,
                        ),
                    )
                )

            page = list((await self.db.execute(stmt)).scalars().all())
            for earning in page:
                yield earning
            remaining -= len(page)
            if len(page) < page_size:
                break
            last = page[-1]

    async def history(
        self,
        tenant_id: uuid.UUID,
        agent_id: uuid.UUID,
        limit: Optional[int] = None,
    ) -> List[DeliveryEarning]:
        return [earning async for earning in self.iter_history(tenant_id, agent_id, limit)]

    async def reconcile(self, tenant_id: uuid.UUID, agent_id: uuid.UUID) -> Dict[str, Any]:
        """
        Recompute totals from ledger rows and compare with the counters.

        Read-only; a mismatch is reported and logged, never auto-corrected.
        """
        agent = await get_tenant_row(self.db, DeliveryAgent, agent_id, tenant_id, "Delivery agent")

        earned = (await self.db.execute(
            select(func.coalesce(func.sum(DeliveryEarning.amount), 0))
            .where(DeliveryEarning.tenant_id == tenant_id, DeliveryEarning.agent_id == agent_id)
        )).scalar_one()
        paid = (await self.db.execute(
            select(func.coalesce(func.sum(DeliveryPayout.amount), 0))
            .where(DeliveryPayout.tenant_id == tenant_id, DeliveryPayout.agent_id == agent_id)
        )).scalar_one()

        ledger_earned = round_money(earned)
        ledger_paid = round_money(paid)
        total_earned = round_money(agent.total_earned)
        total_paid = round_money(agent.total_paid)
        wallet_balance = round_money(agent.wallet_balance)

        is_consistent = (
            ledger_earned == total_earned
            and ledger_paid == total_paid
            and wallet_balance == total_earned - total_paid
        )
        if not is_consistent:
            logger.error(
                f"Wallet mismatch for agent {agent_id}: counters earned={total_earned} paid={total_paid} "
                f"balance={wallet_balance}, ledger earned={ledger_earned} paid={ledger_paid}"
            )

        return {
            "agent_id": agent.id,
            "wallet_balance": wallet_balance,
            "total_earned": total_earned,
            "total_paid": total_paid,
            "ledger_earned": ledger_earned,
            "ledger_paid": ledger_paid,
            "is_consistent": is_consistent,
        }
