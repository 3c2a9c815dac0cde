from dataclasses import dataclass
from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from fleetledger.database import get_db, get_read_db
from fleetledger.core.security import verify_access_token, ROLE_AGENT, ROLE_ADMIN


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """Caller identity taken from the bearer token."""
    id: uuid.UUID
    tenant_id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Principal:
    """
    Dependency to get the authenticated principal.

    Tokens are issued by the platform auth service; only the signature,
    expiry and the sub / tenant_id / role claims are checked here.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = verify_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        principal_id = uuid.UUID(claims["sub"])
        tenant_id = uuid.UUID(claims["tenant_id"])
    except ValueError:
        logger.warning(f"Malformed identifiers in token: sub={claims.get('sub')} tenant={claims.get('tenant_id')}")
        raise credentials_exception

    return Principal(id=principal_id, tenant_id=tenant_id, role=claims["role"])


def require_role(role: str):
    """Dependency factory restricting a route to one principal role."""
    async def checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
    ) -> Principal:
        if principal.role != role:
            logger.warning(f"{principal.role} {principal.id} denied access to {role}-only route")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires the {role} role"
            )
        return principal
    return checker


# Type aliases for dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
ReadDB = Annotated[AsyncSession, Depends(get_read_db)]  # Replica when DATABASE_READ_URL is set
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
CurrentAgent = Annotated[Principal, Depends(require_role(ROLE_AGENT))]
CurrentAdmin = Annotated[Principal, Depends(require_role(ROLE_ADMIN))]
