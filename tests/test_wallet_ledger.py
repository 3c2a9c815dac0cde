"""Tests for wallet credits, history paging and reconciliation."""

import asyncio
import uuid
from decimal import Decimal

import pytest

from fleetledger.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from fleetledger.services import AssignmentService, WalletLedger


async def _credit(session_factory, tenant_id, agent_id, assignment_id, amount, order_id=None):
    async with session_factory() as session:
        credited = await WalletLedger(session).credit(
            tenant_id, agent_id, assignment_id, order_id, amount, "fixed_per_order", "test credit"
        )
        await session.commit()
        return credited


class TestCredit:
    async def test_credit_is_idempotent_per_assignment(self, delivered_path, seed, session_factory, tenant_id):
        agent_id, assignment_id = delivered_path["agent_id"], delivered_path["assignment_id"]

        assert await _credit(session_factory, tenant_id, agent_id, assignment_id, "30") is True
        assert await _credit(session_factory, tenant_id, agent_id, assignment_id, "30") is False

        agent = await seed.get_agent(agent_id)
        assert agent.wallet_balance == Decimal("30.00")
        assert len(await seed.earnings(agent_id)) == 1

    async def test_concurrent_credits_for_one_agent_both_land(self, seed, session_factory, tenant_id):
        zone_id = await seed.zone(tenant_id, "Andheri", ["400053"])
        agent_id = await seed.agent(tenant_id, [zone_id])
        assignment_ids = []
        for _ in range(2):
            assignment_id = await seed.assignment(tenant_id)
            async with session_factory() as session:
                await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)
            assignment_ids.append(assignment_id)

        await asyncio.gather(*(
            _credit(session_factory, tenant_id, agent_id, a, "30") for a in assignment_ids
        ))

        agent = await seed.get_agent(agent_id)
        assert agent.wallet_balance == Decimal("60.00")
        assert agent.total_earned == Decimal("60.00")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    async def test_non_positive_amount_rejected(self, seed, session_factory, tenant_id, amount):
        agent_id = await seed.agent(tenant_id)
        with pytest.raises(ValidationError):
            await _credit(session_factory, tenant_id, agent_id, None, amount)

    @pytest.mark.parametrize("amount", ["10.005", "0.001"])
    async def test_sub_paisa_amount_rejected(self, seed, session_factory, tenant_id, amount):
        agent_id = await seed.agent(tenant_id)
        with pytest.raises(ValidationError):
            await _credit(session_factory, tenant_id, agent_id, None, amount)
        assert await seed.earnings(agent_id) == []

    async def test_debit_rejects_sub_paisa_amount(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        await seed.credit(tenant_id, agent_id, "50")
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await WalletLedger(session).debit(tenant_id, agent_id, "20.499")
        assert (await seed.get_agent(agent_id)).wallet_balance == Decimal("50.00")

    async def test_credit_for_unknown_agent(self, session_factory, tenant_id):
        with pytest.raises(NotFoundError):
            await _credit(session_factory, tenant_id, uuid.uuid4(), None, "10")


class TestBalanceAndHistory:
    async def test_balance(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        await seed.credit(tenant_id, agent_id, "125.50")

        async with session_factory() as session:
            balance = await WalletLedger(session).balance(tenant_id, agent_id)
        assert balance == {
            "wallet_balance": Decimal("125.50"),
            "total_earned": Decimal("125.50"),
            "total_paid": Decimal("0.00"),
        }

    async def test_balance_other_tenant(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        async with session_factory() as session:
            with pytest.raises(UnauthorizedError):
                await WalletLedger(session).balance(uuid.uuid4(), agent_id)

    async def test_history_newest_first_across_pages(self, seed, session_factory, tenant_id, monkeypatch):
        from fleetledger.config import settings
        monkeypatch.setattr(settings, "HISTORY_PAGE_SIZE", 2)

        agent_id = await seed.agent(tenant_id)
        for amount in ["1", "2", "3", "4", "5"]:
            await seed.credit(tenant_id, agent_id, amount)

        async with session_factory() as session:
            history = await WalletLedger(session).history(tenant_id, agent_id)
        assert [e.amount for e in history] == [Decimal(x) for x in ["5", "4", "3", "2", "1"]]

        async with session_factory() as session:
            limited = await WalletLedger(session).history(tenant_id, agent_id, limit=3)
        assert [e.amount for e in limited] == [Decimal("5"), Decimal("4"), Decimal("3")]

    async def test_iter_history_can_stop_early_and_restart(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        for amount in ["10", "20", "30"]:
            await seed.credit(tenant_id, agent_id, amount)

        async with session_factory() as session:
            ledger = WalletLedger(session)
            first = None
            async for earning in ledger.iter_history(tenant_id, agent_id):
                first = earning
                break
            again = [e async for e in ledger.iter_history(tenant_id, agent_id)]

        assert first.amount == Decimal("30")
        assert [e.amount for e in again] == [Decimal("30"), Decimal("20"), Decimal("10")]

    async def test_history_limit_must_be_positive(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await WalletLedger(session).history(tenant_id, agent_id, limit=0)


class TestReconcile:
    async def test_consistent_after_credits(self, seed, session_factory, tenant_id):
        agent_id = await seed.agent(tenant_id)
        await seed.credit(tenant_id, agent_id, "40")
        await seed.credit(tenant_id, agent_id, "2.25")

        async with session_factory() as session:
            report = await WalletLedger(session).reconcile(tenant_id, agent_id)
        assert report["is_consistent"] is True
        assert report["ledger_earned"] == Decimal("42.25")
        assert report["ledger_paid"] == Decimal("0.00")
