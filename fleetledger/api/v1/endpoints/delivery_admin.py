"""Tenant admin endpoints: dispatch, zones, agents and payout settlement."""
from typing import List, Optional
import uuid

from fastapi import APIRouter, Query, status

from fleetledger.api.deps import DB, ReadDB, CurrentAdmin
from fleetledger.models.delivery import DeliveryAgent
from fleetledger.models.ledger import PayoutRequestStatus
from fleetledger.schemas.delivery import (
    AdminAssignRequest,
    AgentZonesUpdate,
    DeliveryAgentCreate,
    DeliveryAgentResponse,
    DeliveryAgentUpdate,
    DeliveryAssignmentResponse,
    DeliveryZoneCreate,
    DeliveryZoneResponse,
    DeliveryZoneUpdate,
    OpenAssignmentRequest,
    SyncAssignmentsResponse,
)
from fleetledger.schemas.ledger import (
    DirectPayoutCreate,
    PayoutApproveRequest,
    PayoutMarkPaidRequest,
    PayoutRejectRequest,
    PayoutRequestResponse,
    PayoutResponse,
    ReconcileResponse,
    WalletBalanceResponse,
)
from fleetledger.services import (
    AgentService,
    AreaMatcher,
    AssignmentService,
    PayoutService,
    WalletLedger,
)

router = APIRouter(tags=["Delivery Admin"])


# ---------- helpers ----------

async def _agent_response(service: AgentService, agent: DeliveryAgent) -> DeliveryAgentResponse:
    response = DeliveryAgentResponse.model_validate(agent)
    response.zone_ids = await service.agent_zone_ids(agent.id)
    return response


# ---------- assignments ----------

@router.post(
    "/assignments",
    response_model=DeliveryAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_assignment(data: OpenAssignmentRequest, db: DB, admin: CurrentAdmin):
    """Create the unassigned delivery for an order (idempotent per order)."""
    assignment = await AssignmentService(db).open_assignment(admin.tenant_id, data.order_id)
    return DeliveryAssignmentResponse.model_validate(assignment)


@router.post("/assignments/sync", response_model=SyncAssignmentsResponse)
async def sync_assignments(db: DB, admin: CurrentAdmin):
    """Open assignments for orders that do not have one yet."""
    created = await AssignmentService(db).open_missing_assignments(admin.tenant_id)
    return SyncAssignmentsResponse(created=created)


@router.get("/assignments/unroutable", response_model=List[DeliveryAssignmentResponse])
async def unroutable_assignments(db: ReadDB, admin: CurrentAdmin):
    """Unassigned deliveries whose pincode no active zone covers."""
    assignments = await AreaMatcher(db).unroutable(admin.tenant_id)
    return [DeliveryAssignmentResponse.model_validate(a) for a in assignments]


@router.post("/assignments/{assignment_id}/assign", response_model=DeliveryAssignmentResponse)
async def assign_assignment(
    assignment_id: uuid.UUID,
    data: AdminAssignRequest,
    db: DB,
    admin: CurrentAdmin,
):
    assignment = await AssignmentService(db).assign_to_agent(
        admin.tenant_id, assignment_id, data.agent_id, admin.id
    )
    return DeliveryAssignmentResponse.model_validate(assignment)


# ---------- payout requests ----------

@router.get("/payout-requests", response_model=List[PayoutRequestResponse])
async def list_payout_requests(
    db: ReadDB,
    admin: CurrentAdmin,
    agent_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[PayoutRequestStatus] = Query(None, alias="status"),
):
    requests = await PayoutService(db).list_requests(admin.tenant_id, agent_id=agent_id, status=status_filter)
    return [PayoutRequestResponse.model_validate(r) for r in requests]


@router.post("/payout-requests/{request_id}/approve", response_model=PayoutRequestResponse)
async def approve_payout_request(
    request_id: uuid.UUID,
    db: DB,
    admin: CurrentAdmin,
    data: Optional[PayoutApproveRequest] = None,
):
    request = await PayoutService(db).approve(
        admin.tenant_id, request_id, admin.id, notes=data.notes if data else None
    )
    return PayoutRequestResponse.model_validate(request)


@router.post("/payout-requests/{request_id}/reject", response_model=PayoutRequestResponse)
async def reject_payout_request(
    request_id: uuid.UUID,
    data: PayoutRejectRequest,
    db: DB,
    admin: CurrentAdmin,
):
    request = await PayoutService(db).reject(admin.tenant_id, request_id, admin.id, data.reason)
    return PayoutRequestResponse.model_validate(request)


@router.post("/payout-requests/{request_id}/mark-paid", response_model=PayoutResponse)
async def mark_payout_paid(
    request_id: uuid.UUID,
    data: PayoutMarkPaidRequest,
    db: DB,
    admin: CurrentAdmin,
):
    """Debit the wallet and record the payout. 422 if the balance no longer covers it."""
    payout = await PayoutService(db).mark_paid(
        admin.tenant_id, request_id, admin.id, data.transaction_reference, data.notes
    )
    return PayoutResponse.model_validate(payout)


# ---------- payouts ----------

@router.get("/payouts", response_model=List[PayoutResponse])
async def list_payouts(
    db: ReadDB,
    admin: CurrentAdmin,
    agent_id: Optional[uuid.UUID] = Query(None),
):
    payouts = await PayoutService(db).list_payouts(admin.tenant_id, agent_id=agent_id)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.post("/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def create_direct_payout(data: DirectPayoutCreate, db: DB, admin: CurrentAdmin):
    payout = await PayoutService(db).record_direct_payout(
        admin.tenant_id,
        data.agent_id,
        data.amount,
        admin.id,
        data.transaction_reference,
        data.notes,
    )
    return PayoutResponse.model_validate(payout)


# ---------- zones ----------

@router.get("/zones", response_model=List[DeliveryZoneResponse])
async def list_zones(
    db: ReadDB,
    admin: CurrentAdmin,
    include_inactive: bool = Query(True),
):
    zones = await AgentService(db).list_zones(admin.tenant_id, include_inactive=include_inactive)
    return [DeliveryZoneResponse.model_validate(z) for z in zones]


@router.post("/zones", response_model=DeliveryZoneResponse, status_code=status.HTTP_201_CREATED)
async def create_zone(data: DeliveryZoneCreate, db: DB, admin: CurrentAdmin):
    zone = await AgentService(db).create_zone(admin.tenant_id, data)
    return DeliveryZoneResponse.model_validate(zone)


@router.put("/zones/{zone_id}", response_model=DeliveryZoneResponse)
async def update_zone(
    zone_id: uuid.UUID,
    data: DeliveryZoneUpdate,
    db: DB,
    admin: CurrentAdmin,
):
    zone = await AgentService(db).update_zone(admin.tenant_id, zone_id, data)
    return DeliveryZoneResponse.model_validate(zone)


# ---------- agents ----------

@router.get("/agents", response_model=List[DeliveryAgentResponse])
async def list_agents(
    db: ReadDB,
    admin: CurrentAdmin,
    is_active: Optional[bool] = Query(None),
    zone_id: Optional[uuid.UUID] = Query(None),
):
    service = AgentService(db)
    agents = await service.list_agents(admin.tenant_id, is_active=is_active, zone_id=zone_id)
    return [await _agent_response(service, a) for a in agents]


@router.post("/agents", response_model=DeliveryAgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(data: DeliveryAgentCreate, db: DB, admin: CurrentAdmin):
    service = AgentService(db)
    agent = await service.create_agent(admin.tenant_id, data)
    return await _agent_response(service, agent)


@router.put("/agents/{agent_id}", response_model=DeliveryAgentResponse)
async def update_agent(
    agent_id: uuid.UUID,
    data: DeliveryAgentUpdate,
    db: DB,
    admin: CurrentAdmin,
):
    service = AgentService(db)
    agent = await service.update_agent(admin.tenant_id, agent_id, data)
    return await _agent_response(service, agent)


@router.put("/agents/{agent_id}/zones", response_model=DeliveryAgentResponse)
async def set_agent_zones(
    agent_id: uuid.UUID,
    data: AgentZonesUpdate,
    db: DB,
    admin: CurrentAdmin,
):
    service = AgentService(db)
    await service.set_agent_zones(admin.tenant_id, agent_id, data.zone_ids)
    agent = await service.get_agent(admin.tenant_id, agent_id)
    return await _agent_response(service, agent)


@router.get("/agents/{agent_id}/wallet", response_model=WalletBalanceResponse)
async def get_agent_wallet(agent_id: uuid.UUID, db: ReadDB, admin: CurrentAdmin):
    return await WalletLedger(db).balance(admin.tenant_id, agent_id)


@router.get("/agents/{agent_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_agent_wallet(agent_id: uuid.UUID, db: ReadDB, admin: CurrentAdmin):
    """Recompute totals from ledger rows and compare with the wallet counters."""
    return await WalletLedger(db).reconcile(admin.tenant_id, agent_id)
