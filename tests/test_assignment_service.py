"""Tests for opening, claiming and advancing delivery assignments."""

import asyncio
import uuid
from decimal import Decimal

import pytest

from fleetledger.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from fleetledger.models import DeliveryStatus, PaymentType
from fleetledger.services import AgentService, AssignmentService


async def _advance(session_factory, tenant_id, assignment_id, agent_id, *statuses, **kwargs):
    assignment = None
    for status in statuses:
        async with session_factory() as session:
            assignment = await AssignmentService(session).transition(
                tenant_id, assignment_id, agent_id, status, **kwargs
            )
    return assignment


async def _history(session_factory, tenant_id, assignment_id):
    async with session_factory() as session:
        return await AssignmentService(session).status_history(tenant_id, assignment_id)


class TestOpenAssignment:
    async def test_open_is_idempotent_per_order(self, seed, session_factory, tenant_id):
        await seed.zone(tenant_id, "Andheri", ["400053"])
        order_id = await seed.order(tenant_id, pincode="400053")

        async with session_factory() as session:
            first = await AssignmentService(session).open_assignment(tenant_id, order_id)
        async with session_factory() as session:
            second = await AssignmentService(session).open_assignment(tenant_id, order_id)

        assert first.id == second.id
        assert first.status == DeliveryStatus.UNASSIGNED.value
        assert first.zone_id is not None

        history = await _history(session_factory, tenant_id, first.id)
        assert [(h.old_status, h.new_status, h.actor_type) for h in history] == [
            (None, "unassigned", "system")
        ]

    async def test_open_unknown_order(self, session_factory, tenant_id):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await AssignmentService(session).open_assignment(tenant_id, uuid.uuid4())

    async def test_open_other_tenants_order(self, seed, session_factory, tenant_id):
        order_id = await seed.order(uuid.uuid4())
        async with session_factory() as session:
            with pytest.raises(UnauthorizedError):
                await AssignmentService(session).open_assignment(tenant_id, order_id)

    async def test_backfill_opens_only_missing(self, seed, session_factory, tenant_id):
        await seed.assignment(tenant_id)
        await seed.order(tenant_id)
        await seed.order(tenant_id)
        await seed.order(uuid.uuid4())

        async with session_factory() as session:
            assert await AssignmentService(session).open_missing_assignments(tenant_id) == 2
        async with session_factory() as session:
            assert await AssignmentService(session).open_missing_assignments(tenant_id) == 0


class TestClaim:
    async def test_claim_sets_agent_and_logs(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_id = await seed.agent(tenant_id, [zone_id])
        assignment_id = await seed.assignment(tenant_id)

        async with session_factory() as session:
            assignment = await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

        assert assignment.agent_id == agent_id
        assert assignment.status == "assigned"
        assert assignment.assigned_at is not None

        history = await _history(session_factory, tenant_id, assignment_id)
        assert [h.new_status for h in history] == ["unassigned", "assigned"]
        assert history[-1].actor_id == agent_id

    async def test_second_claim_conflicts(self, delivered_path, seed, session_factory, tenant_id):
        rival = await seed.agent(tenant_id, [delivered_path["zone_id"]])
        async with session_factory() as session:
            with pytest.raises(ConflictError):
                await AssignmentService(session).claim(tenant_id, delivered_path["assignment_id"], rival)

        assignment = await seed.get_assignment(delivered_path["assignment_id"])
        assert assignment.agent_id == delivered_path["agent_id"]

    async def test_concurrent_claims_have_one_winner(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_ids = [await seed.agent(tenant_id, [zone_id]) for _ in range(5)]
        assignment_id = await seed.assignment(tenant_id)

        async def attempt(agent_id):
            async with session_factory() as session:
                return await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

        results = await asyncio.gather(*(attempt(a) for a in agent_ids), return_exceptions=True)

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert all(isinstance(e, ConflictError) for e in losers)

        assignment = await seed.get_assignment(assignment_id)
        assert assignment.agent_id == winners[0].agent_id

        history = await _history(session_factory, tenant_id, assignment_id)
        assert [h.new_status for h in history].count("assigned") == 1

    async def test_unknown_assignment(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await AssignmentService(session).claim(tenant_id, uuid.uuid4(), agent_id)

    async def test_outside_zone_is_unauthorized(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Bandra", ["400050"])
        agent_id = await seed.agent(tenant_id, [zone_id])
        assignment_id = await seed.assignment(tenant_id, pincode="400053")

        async with session_factory() as session:
            with pytest.raises(UnauthorizedError):
                await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

    async def test_inactive_agent_is_unauthorized(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_id = await seed.agent(tenant_id, [zone_id])
        assignment_id = await seed.assignment(tenant_id)
        async with session_factory() as session:
            await AgentService(session).set_agent_active(tenant_id, agent_id, False)

        async with session_factory() as session:
            with pytest.raises(UnauthorizedError):
                await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

    async def test_cross_tenant_claim_is_unauthorized(self, seed, session_factory, tenant_id):
        other_tenant = uuid.uuid4()
        zone_id = await seed.zone(other_tenant, "Andheri", ["400053"])
        outsider = await seed.agent(other_tenant, [zone_id])
        assignment_id = await seed.assignment(tenant_id)

        async with session_factory() as session:
            with pytest.raises(UnauthorizedError):
                await AssignmentService(session).claim(other_tenant, assignment_id, outsider)

    async def test_admin_dispatch_skips_zone_check(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        assignment_id = await seed.assignment(tenant_id, pincode="999999")
        admin_id = uuid.uuid4()

        async with session_factory() as session:
            assignment = await AssignmentService(session).assign_to_agent(tenant_id, assignment_id, agent_id, admin_id)
        assert assignment.agent_id == agent_id

        history = await _history(session_factory, tenant_id, assignment_id)
        assert (history[-1].actor_type, history[-1].actor_id) == ("admin", admin_id)


class TestTransition:
    async def test_full_path_credits_wallet(self, delivered_path, seed, session_factory, tenant_id):
        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]

        assignment = await _advance(
            session_factory, tenant_id, assignment_id, agent_id,
            "picked_up", "out_for_delivery",
        )
        assert assignment.picked_up_at is not None
        assert assignment.out_for_delivery_at is not None

        async with session_factory() as session:
            assignment = await AssignmentService(session).transition(
                tenant_id, assignment_id, agent_id, DeliveryStatus.DELIVERED, cod_collected=Decimal("500")
            )
        assert assignment.status == "delivered"
        assert assignment.delivered_at is not None
        assert assignment.cod_collected == Decimal("500.00")

        agent = await seed.get_agent(agent_id)
        assert agent.wallet_balance == Decimal("30.00")
        assert agent.total_earned == Decimal("30.00")
        assert agent.wallet_balance == agent.total_earned - agent.total_paid

        earnings = await seed.earnings(agent_id)
        assert len(earnings) == 1
        assert earnings[0].assignment_id == assignment_id
        assert earnings[0].earning_type == "fixed_per_order"
        assert earnings[0].description.startswith("Delivery for order #ORD-")

        history = await _history(session_factory, tenant_id, assignment_id)
        assert [h.new_status for h in history] == [
            "unassigned", "assigned", "picked_up", "out_for_delivery", "delivered",
        ]
        for previous, current in zip(history, history[1:]):
            assert current.old_status == previous.new_status
        assert [h.notes for h in history] == [
            "Order placed", "Assign", "Pick Up", "Out for Delivery", "Deliver",
        ]

    async def test_concurrent_deliveries_credit_once(self, delivered_path, seed, session_factory, tenant_id):
        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]
        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery")

        results = await asyncio.gather(
            *(_advance(session_factory, tenant_id, assignment_id, agent_id, "delivered") for _ in range(4)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert winners[0].status == "delivered"
        assert all(isinstance(e, (InvalidTransitionError, ConflictError)) for e in losers)

        assert len(await seed.earnings(agent_id)) == 1
        agent = await seed.get_agent(agent_id)
        assert agent.wallet_balance == Decimal("30.00")
        assert agent.total_earned == Decimal("30.00")

        history = await _history(session_factory, tenant_id, assignment_id)
        assert [h.new_status for h in history].count("delivered") == 1

    async def test_repeated_delivery_is_rejected_and_credits_once(self, delivered_path, seed, session_factory, tenant_id):
        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]
        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery", "delivered")

        with pytest.raises(InvalidTransitionError):
            await _advance(session_factory, tenant_id, assignment_id, agent_id, "delivered")

        assert len(await seed.earnings(agent_id)) == 1
        assert (await seed.get_agent(agent_id)).wallet_balance == Decimal("30.00")

    async def test_percentage_agent_earns_share(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_id = await seed.agent(
            tenant_id, [zone_id], payment_type=PaymentType.PERCENTAGE_PER_ORDER, percentage_value=Decimal("5")
        )
        assignment_id = await seed.assignment(tenant_id, total="500.00")
        async with session_factory() as session:
            await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery", "delivered")

        assert (await seed.get_agent(agent_id)).wallet_balance == Decimal("25.00")

    async def test_salaried_agent_gets_no_credit(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_id = await seed.agent(tenant_id, [zone_id], payment_type=PaymentType.MONTHLY_SALARY)
        assignment_id = await seed.assignment(tenant_id)
        async with session_factory() as session:
            await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery", "delivered")

        agent = await seed.get_agent(agent_id)
        assert agent.wallet_balance == Decimal("0.00")
        assert await seed.earnings(agent_id) == []

    async def test_salaried_delivery_recorded_when_enabled(self, seed, session_factory, tenant_id, monkeypatch):
        from fleetledger.config import settings
        monkeypatch.setattr(settings, "RECORD_SALARIED_DELIVERIES", True)

        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_id = await seed.agent(tenant_id, [zone_id], payment_type=PaymentType.MONTHLY_SALARY)
        assignment_id = await seed.assignment(tenant_id)
        async with session_factory() as session:
            await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)

        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery", "delivered")

        earnings = await seed.earnings(agent_id)
        assert [(e.amount, e.earning_type) for e in earnings] == [(Decimal("0.00"), "monthly_salary")]
        assert (await seed.get_agent(agent_id)).wallet_balance == Decimal("0.00")

    async def test_other_agent_cannot_transition(self, delivered_path, seed, session_factory, tenant_id):
        stranger = await seed.agent(tenant_id, [delivered_path["zone_id"]])
        with pytest.raises(UnauthorizedError):
            await _advance(session_factory, tenant_id, delivered_path["assignment_id"], stranger, "picked_up")

    async def test_skip_is_invalid(self, delivered_path, session_factory, tenant_id):
        with pytest.raises(InvalidTransitionError):
            await _advance(
                session_factory, tenant_id, delivered_path["assignment_id"], delivered_path["agent_id"], "delivered"
            )

    async def test_abort_after_pickup(self, delivered_path, seed, session_factory, tenant_id):
        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]
        assignment = await _advance(
            session_factory, tenant_id, assignment_id, agent_id, "picked_up", "failed", notes="Customer unreachable"
        )
        assert assignment.status == "failed"
        assert assignment.failed_at is not None
        assert assignment.notes == "Customer unreachable"
        assert (await seed.get_agent(agent_id)).wallet_balance == Decimal("0.00")

        with pytest.raises(InvalidTransitionError):
            await _advance(session_factory, tenant_id, assignment_id, agent_id, "out_for_delivery")

    async def test_cod_only_on_delivery(self, delivered_path, session_factory, tenant_id):
        with pytest.raises(ValidationError):
            await _advance(
                session_factory, tenant_id, delivered_path["assignment_id"], delivered_path["agent_id"],
                "picked_up", cod_collected=Decimal("100"),
            )

    async def test_sub_paisa_cod_rejected(self, delivered_path, seed, session_factory, tenant_id):
        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]
        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery")

        with pytest.raises(ValidationError):
            await _advance(session_factory, tenant_id, assignment_id, agent_id, "delivered", cod_collected="499.995")
        assert (await seed.get_assignment(assignment_id)).status == "out_for_delivery"
        assert await seed.earnings(agent_id) == []

    async def test_failed_credit_rolls_back_status(self, delivered_path, seed, session_factory, tenant_id, monkeypatch):
        from fleetledger.services.wallet_ledger import WalletLedger

        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]
        await _advance(session_factory, tenant_id, assignment_id, agent_id, "picked_up", "out_for_delivery")

        async def broken_credit(self, *args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(WalletLedger, "credit", broken_credit)
        with pytest.raises(RuntimeError):
            await _advance(session_factory, tenant_id, assignment_id, agent_id, "delivered")

        assignment = await seed.get_assignment(assignment_id)
        assert assignment.status == "out_for_delivery"
        assert assignment.delivered_at is None

        history = await _history(session_factory, tenant_id, assignment_id)
        assert history[-1].new_status == "out_for_delivery"
