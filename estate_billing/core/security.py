"""
Security and Authentication
Verifies Supabase-issued JWTs and builds the request-scoped caller context
"""
from dataclasses import dataclass
from typing import Optional
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from estate_billing.core.config import settings

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for JWT, missing headers are handled below
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class RequestContext:
    """Who is calling, passed explicitly into every repository."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def actor(self) -> str:
        return self.email or self.user_id or "system"

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


ANONYMOUS = RequestContext()


def decode_access_token(token: str) -> Optional[dict]:
    """Decode a Supabase access token, returns None when invalid"""
    if not settings.SUPABASE_JWT_SECRET:
        logger.error("SUPABASE_JWT_SECRET is not configured, cannot verify tokens")
        return None
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None


async def get_request_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> RequestContext:
    """
    Build the caller context from the Authorization header.
    Returns 401 if the token is missing or invalid while auth is required.
    """
    if credentials is None:
        if not settings.AUTH_REQUIRED:
            return ANONYMOUS
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return RequestContext(
        user_id=payload["sub"],
        email=payload.get("email"),
        role=payload.get("role"),
        access_token=credentials.credentials,
    )
