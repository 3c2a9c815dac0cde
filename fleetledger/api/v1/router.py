from fastapi import APIRouter

from fleetledger.api.v1.endpoints import (
    delivery_agent,
    delivery_admin,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Delivery Agent (self-service) ====================
api_router.include_router(
    delivery_agent.router,
    prefix="/delivery",
    tags=["Delivery Agent"]
)

# ==================== Delivery Administration ====================
api_router.include_router(
    delivery_admin.router,
    prefix="/delivery/admin",
    tags=["Delivery Admin"]
)
