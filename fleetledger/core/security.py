from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from fleetledger.config import settings


# Principal roles understood by the delivery engine
ROLE_AGENT = "agent"
ROLE_ADMIN = "admin"


def create_access_token(
    subject: str | uuid.UUID,
    tenant_id: str | uuid.UUID,
    role: str,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    The platform auth service issues these in production; the engine only
    needs the helper for service-to-service calls and tests.

    Args:
        subject: Agent ID or admin user ID
        tenant_id: Tenant the principal belongs to
        role: "agent" or "admin"
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "tenant_id": str(tenant_id),
        "role": role,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify an access token and return its claims.

    Returns None unless the token is a valid access token carrying a
    subject, a tenant and a known role.
    """
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.get("type") != "access":
        return None

    if not payload.get("sub") or not payload.get("tenant_id"):
        return None

    if payload.get("role") not in (ROLE_AGENT, ROLE_ADMIN):
        return None

    return payload
