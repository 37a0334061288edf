"""
Bearer-token handling.

Identity is owned by the external identity provider; this service only
verifies the JWT it issued and reads two claims:
  - sub:  opaque claimant identity
  - role: "admin" for administrative actors
"""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from seathold.core.config import get_settings
from seathold.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

ADMIN_ROLE = "admin"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    claimant_id: str
    is_admin: bool = False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token. Used by tests and local tooling; production tokens come from the IdP."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def _principal_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[Principal]:
    if credentials is None:
        return None
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as e:
        logger.warning("token_rejected", error=str(e))
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    return Principal(claimant_id=str(subject), is_admin=payload.get("role") == ADMIN_ROLE)


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    principal = _principal_from_credentials(credentials)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required",
        )
    return principal


async def require_payment_caller(
    x_payment_signature: Optional[str] = Header(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Confirmation is a trusted operation: either the payment provider's
    callback presenting the shared secret, or an administrator.
    Returns a label for the caller, used in logs.
    """
    if x_payment_signature is not None and hmac.compare_digest(
        x_payment_signature.encode(), settings.PAYMENT_CALLBACK_SECRET.encode()
    ):
        return "payment_callback"

    principal = _principal_from_credentials(credentials)
    if principal is not None and principal.is_admin:
        return f"admin:{principal.claimant_id}"

    logger.warning("confirm_caller_rejected", has_signature=x_payment_signature is not None)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Confirmation requires the payment callback signature or an administrator",
    )
