# ============================================================================
# FILE: app/api/dependencies.py
# Caller identity and request deadline dependencies
# ============================================================================
from fastapi import Depends, HTTPException, status, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from app.config.settings import settings
from app.core.deadline import Deadline
from app.schemas.booking import Actor

# ============================================================================
# Security Schemes
# ============================================================================

jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Access token issued by the auth service"
)


# ============================================================================
# JWT Token Functions
# ============================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Tokens are normally minted by the auth service; this is used by tooling
    and tests that need a token the engine accepts.

    Args:
        data: Claims, must include 'sub' and 'role' ('business_id' for business actors)
        expires_delta: Optional custom expiration time
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access"
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


# ============================================================================
# Caller Dependencies
# ============================================================================

def get_current_actor(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
) -> Actor:
    """
    Dependency resolving the verified caller.

    Usage in routes:
        @router.post("/bookings")
        def create_booking(actor: Actor = Depends(get_current_actor)):
            ...

    Raises:
        HTTPException 401: missing subject or unknown role in the token
    """
    payload = verify_access_token(credentials.credentials)

    try:
        return Actor(
            actor_id=payload.get("sub") or "",
            role=payload.get("role"),
            business_id=payload.get("business_id"),
        )
    except PydanticValidationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token does not identify a customer, business or admin",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_request_deadline(
        x_request_timeout: Optional[float] = Header(None, gt=0, description="Seconds the caller will wait"),
) -> Deadline:
    """Deadline for storage work in this request"""
    return Deadline.after(x_request_timeout or settings.REQUEST_TIMEOUT_SECONDS)
