"""Delivery agent endpoints: assignments, status updates, wallet and payout requests."""
from typing import List, Optional
import uuid

from fastapi import APIRouter, Query, status

from fleetledger.api.deps import DB, ReadDB, CurrentAgent
from fleetledger.config import settings
from fleetledger.models.delivery import DeliveryStatus
from fleetledger.schemas.delivery import (
    DeliveryAssignmentResponse,
    StatusLogResponse,
    StatusUpdateRequest,
)
from fleetledger.schemas.ledger import (
    EarningResponse,
    PayoutRequestCreate,
    PayoutRequestResponse,
    WalletBalanceResponse,
)
from fleetledger.services import AssignmentService, PayoutService, WalletLedger

router = APIRouter(tags=["Delivery Agent"])


# ---------- assignments ----------

@router.get("/assignments", response_model=List[DeliveryAssignmentResponse])
async def list_assignments(
    db: ReadDB,
    agent: CurrentAgent,
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
):
    """Own assignments plus unassigned ones in the agent's zones. Safe to poll."""
    assignments = await AssignmentService(db).list_for_agent(agent.tenant_id, agent.id, status_filter)
    return [DeliveryAssignmentResponse.model_validate(a) for a in assignments]


@router.post("/assignments/{assignment_id}/claim", response_model=DeliveryAssignmentResponse)
async def claim_assignment(
    assignment_id: uuid.UUID,
    db: DB,
    agent: CurrentAgent,
):
    """Claim an unassigned delivery. 409 when another agent got there first."""
    assignment = await AssignmentService(db).claim(agent.tenant_id, assignment_id, agent.id)
    return DeliveryAssignmentResponse.model_validate(assignment)


@router.post("/assignments/{assignment_id}/status", response_model=DeliveryAssignmentResponse)
async def update_assignment_status(
    assignment_id: uuid.UUID,
    data: StatusUpdateRequest,
    db: DB,
    agent: CurrentAgent,
):
    assignment = await AssignmentService(db).transition(
        agent.tenant_id,
        assignment_id,
        agent.id,
        data.status,
        notes=data.notes,
        cod_collected=data.cod_collected,
    )
    return DeliveryAssignmentResponse.model_validate(assignment)


@router.get("/assignments/{assignment_id}/history", response_model=List[StatusLogResponse])
async def assignment_history(
    assignment_id: uuid.UUID,
    db: ReadDB,
    agent: CurrentAgent,
):
    logs = await AssignmentService(db).status_history(agent.tenant_id, assignment_id, agent_id=agent.id)
    return [StatusLogResponse.model_validate(log) for log in logs]


# ---------- wallet ----------

@router.get("/wallet", response_model=WalletBalanceResponse)
async def get_wallet(db: ReadDB, agent: CurrentAgent):
    return await WalletLedger(db).balance(agent.tenant_id, agent.id)


@router.get("/wallet/earnings", response_model=List[EarningResponse])
async def list_earnings(
    db: ReadDB,
    agent: CurrentAgent,
    limit: Optional[int] = Query(None, ge=1, le=settings.HISTORY_MAX_LIMIT),
):
    """Earnings newest first."""
    earnings = await WalletLedger(db).history(agent.tenant_id, agent.id, limit)
    return [EarningResponse.model_validate(e) for e in earnings]


# ---------- payout requests ----------

@router.post(
    "/payout-requests",
    response_model=PayoutRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payout_request(
    data: PayoutRequestCreate,
    db: DB,
    agent: CurrentAgent,
):
    request = await PayoutService(db).request_payout(agent.tenant_id, agent.id, data.amount, data.notes)
    return PayoutRequestResponse.model_validate(request)


@router.get("/payout-requests", response_model=List[PayoutRequestResponse])
async def list_my_payout_requests(db: ReadDB, agent: CurrentAgent):
    requests = await PayoutService(db).list_requests(agent.tenant_id, agent_id=agent.id)
    return [PayoutRequestResponse.model_validate(r) for r in requests]
