"""Shared fixtures: per-test SQLite database, seed helpers and an API client."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./fleetledger-test.db")
os.environ.setdefault("SECRET_KEY", "fleetledger-test-secret")

import uuid
from decimal import Decimal
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine

import fleetledger.models  # noqa: F401
from fleetledger.core.security import create_access_token, ROLE_AGENT, ROLE_ADMIN
from fleetledger.database import Base, configure_sqlite_engine, make_session_factory, get_db, get_read_db
from fleetledger.models import DeliveryAgent, DeliveryAssignment, DeliveryEarning, Order, PaymentType
from fleetledger.schemas.delivery import DeliveryAgentCreate, DeliveryZoneCreate
from fleetledger.services import AgentService, AssignmentService, WalletLedger


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = configure_sqlite_engine(
        create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
            connect_args={"timeout": 30},
        )
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


class Seeder:
    """Builds tenants' zones, agents, orders and assignments, one session per call."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._mobile = 9000000000

    async def zone(self, tenant_id: uuid.UUID, name: str, pincodes: list[str], is_active: bool = True) -> uuid.UUID:
        async with self.session_factory() as session:
            zone = await AgentService(session).create_zone(
                tenant_id, DeliveryZoneCreate(name=name, pincodes=pincodes, is_active=is_active)
            )
            return zone.id

    async def agent(
        self,
        tenant_id: uuid.UUID,
        zone_ids: Optional[list[uuid.UUID]] = None,
        payment_type: PaymentType = PaymentType.FIXED_PER_ORDER,
        **rates,
    ) -> uuid.UUID:
        if payment_type == PaymentType.FIXED_PER_ORDER:
            rates.setdefault("per_order_amount", Decimal("30"))
        elif payment_type == PaymentType.PERCENTAGE_PER_ORDER:
            rates.setdefault("percentage_value", Decimal("5"))
        elif payment_type == PaymentType.MONTHLY_SALARY:
            rates.setdefault("monthly_salary", Decimal("15000"))

        self._mobile += 1
        async with self.session_factory() as session:
            agent = await AgentService(session).create_agent(
                tenant_id,
                DeliveryAgentCreate(
                    full_name=f"Agent {self._mobile}",
                    mobile_number=str(self._mobile),
                    payment_type=payment_type,
                    zone_ids=zone_ids or [],
                    **rates,
                ),
            )
            return agent.id

    async def order(self, tenant_id: uuid.UUID, total="500.00", pincode: str = "400053") -> uuid.UUID:
        order_id = uuid.uuid4()
        async with self.session_factory() as session:
            session.add(Order(
                id=order_id,
                tenant_id=tenant_id,
                order_number=f"ORD-{order_id.hex[:8].upper()}",
                total=Decimal(str(total)),
                delivery_pincode=pincode,
            ))
            await session.commit()
        return order_id

    async def assignment(self, tenant_id: uuid.UUID, total="500.00", pincode: str = "400053") -> uuid.UUID:
        order_id = await self.order(tenant_id, total=total, pincode=pincode)
        async with self.session_factory() as session:
            assignment = await AssignmentService(session).open_assignment(tenant_id, order_id)
            return assignment.id

    async def credit(self, tenant_id: uuid.UUID, agent_id: uuid.UUID, amount) -> None:
        """Fund a wallet with an adjustment earning."""
        async with self.session_factory() as session:
            await WalletLedger(session).credit(
                tenant_id, agent_id, None, None, amount, "adjustment", "Opening balance"
            )
            await session.commit()

    async def get_agent(self, agent_id: uuid.UUID) -> DeliveryAgent:
        async with self.session_factory() as session:
            return await session.get(DeliveryAgent, agent_id)

    async def get_assignment(self, assignment_id: uuid.UUID) -> DeliveryAssignment:
        async with self.session_factory() as session:
            return (await session.execute(
                select(DeliveryAssignment).where(DeliveryAssignment.id == assignment_id)
            )).scalar_one()

    async def earnings(self, agent_id: uuid.UUID) -> list[DeliveryEarning]:
        async with self.session_factory() as session:
            result = await session.execute(select(DeliveryEarning).where(DeliveryEarning.agent_id == agent_id))
            return list(result.scalars().all())


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest_asyncio.fixture
async def delivered_path(seed, session_factory, tenant_id):
    """Zone 400053, one fixed-30 agent and a claimed ₹500 assignment."""
    zone_id = await seed.zone(tenant_id, "Andheri West", ["400053", "400058"])
    agent_id = await seed.agent(tenant_id, [zone_id])
    assignment_id = await seed.assignment(tenant_id, total="500.00", pincode="400053")
    async with session_factory() as session:
        await AssignmentService(session).claim(tenant_id, assignment_id, agent_id)
    return {"zone_id": zone_id, "agent_id": agent_id, "assignment_id": assignment_id}


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

def auth_headers(subject: uuid.UUID, tenant_id: uuid.UUID, role: str) -> dict:
    token = create_access_token(subject, tenant_id, role)
    return {"Authorization": f"Bearer {token}"}


def agent_headers(agent_id: uuid.UUID, tenant_id: uuid.UUID) -> dict:
    return auth_headers(agent_id, tenant_id, ROLE_AGENT)


def admin_headers(admin_id: uuid.UUID, tenant_id: uuid.UUID) -> dict:
    return auth_headers(admin_id, tenant_id, ROLE_ADMIN)


@pytest_asyncio.fixture
async def client(session_factory):
    from fleetledger.main import app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _get_read_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_read_db] = _get_read_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
