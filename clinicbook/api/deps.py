from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from typing import List, Optional
import logging
import redis

from ..core.config import settings
from ..core.database import get_redis
from ..core.exceptions import AuthorizationError
from ..core.security import (
    security, verify_token, AuthenticationError, Principal, TokenPayload, UserRole
)

logger = logging.getLogger(__name__)

async def get_current_user_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    if credentials is None:
        raise AuthenticationError("No token provided. Access denied.")

    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_principal(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> Principal:
    """Build the caller's principal from verified token claims."""
    if token_payload.sub is None or not token_payload.role:
        raise AuthenticationError("Invalid token payload")

    try:
        role = UserRole(token_payload.role)
    except ValueError:
        raise AuthenticationError("Invalid token role")

    return Principal(id=token_payload.sub, role=role, email=token_payload.email)

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        principal: Principal = Depends(get_current_principal)
    ) -> Principal:
        if principal.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return principal

    return role_checker

# Specific role dependencies
async def get_admin(
    principal: Principal = Depends(require_role([UserRole.ADMIN]))
) -> Principal:
    """Require admin role."""
    return principal

async def get_doctor(
    principal: Principal = Depends(require_role([UserRole.DOCTOR]))
) -> Principal:
    """Require doctor role."""
    return principal

async def get_staff(
    principal: Principal = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN]))
) -> Principal:
    """Require doctor or admin role."""
    return principal

async def get_patient(
    principal: Principal = Depends(require_role([UserRole.PATIENT]))
) -> Principal:
    """Require patient role."""
    return principal

# Rate limiting dependency
def booking_rate_limit(
    principal: Principal = Depends(get_patient),
    redis_client = Depends(get_redis)
) -> None:
    """Cap how many bookings a patient can attempt per window."""
    key = f"booking_rate_limit:{principal.id}"

    try:
        current_requests = redis_client.get(key)
        if current_requests is None:
            redis_client.setex(key, settings.BOOKING_RATE_WINDOW_SECONDS, 1)
            return
        if int(current_requests) >= settings.BOOKING_RATE_LIMIT:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many booking attempts. Please try again later."
            )
        redis_client.incr(key)
    except redis.RedisError as exc:
        logger.warning(f"Booking rate limit unavailable: {str(exc)}")
