"""
Tenant scoping helpers.

Every delivery entity carries a tenant_id. Services load rows through
these helpers so that a row from another tenant is reported as
Unauthorized instead of leaking across the partition.

Usage:

    assignment = await get_tenant_row(
        self.db, DeliveryAssignment, assignment_id, tenant_id, "Assignment"
    )
"""

import logging
import uuid
from typing import Any, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.core.exceptions import NotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_same_tenant(entity: Any, tenant_id: uuid.UUID, label: str = "Resource") -> None:
    """Raise UnauthorizedError if the entity belongs to another tenant."""
    if entity.tenant_id != tenant_id:
        logger.warning(
            f"Cross-tenant access denied: {label} {entity.id} belongs to "
            f"tenant {entity.tenant_id}, caller tenant {tenant_id}"
        )
        raise UnauthorizedError(f"{label} does not belong to this tenant")


async def get_tenant_row(
    db: AsyncSession,
    model: Type[T],
    row_id: uuid.UUID,
    tenant_id: uuid.UUID,
    label: Optional[str] = None,
    refresh: bool = True,
) -> T:
    """
    Load a row by primary key and verify its tenant.

    Args:
        db: Session (primary or read replica)
        model: Mapped class
        row_id: Primary key
        tenant_id: Caller's tenant
        label: Name used in error messages
        refresh: Re-read column values even if the row is already in the
            identity map (sessions here keep objects across commits)

    Raises:
        NotFoundError: No row with that id
        UnauthorizedError: Row belongs to another tenant
    """
    label = label or model.__name__
    stmt = select(model).where(model.id == row_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)

    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"{label} not found", id=str(row_id))

    ensure_same_tenant(row, tenant_id, label)
    return row
