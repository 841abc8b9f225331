from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings
from .errors import Unauthenticated, Unauthorized
from .models.user import UserRole

logger = logging.getLogger(__name__)

# Roles allowed to mutate records.
WRITE_ROLES = (UserRole.ADMIN, UserRole.POLITICIAN, UserRole.STAFF)
# Roles allowed to delete records.
DELETE_ROLES = (UserRole.ADMIN, UserRole.POLITICIAN)
ADMIN_ROLES = (UserRole.ADMIN,)

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """
    The caller, as resolved from the bearer token of the current request.
    """
    user_id: int
    role: UserRole
    email: Optional[str] = None


def authorize(role: Optional[UserRole], required_roles: Iterable[UserRole]) -> bool:
    """
    Pure capability check: does `role` satisfy any of `required_roles`?
    An empty requirement means "any authenticated caller".
    """
    required = tuple(required_roles)
    if role is None:
        return False
    if not required:
        return True
    return role in required


def create_access_token(
    user_id: int,
    role: UserRole,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint a signed bearer token. Used by the seed script and tests; real
    credential issuance happens outside this service.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "role": UserRole(role).value,
        "exp": expire,
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        logger.info("Rejected bearer token: invalid or expired")
        raise Unauthenticated("Invalid or expired token")

    try:
        user_id = int(payload.get("sub"))
        role = UserRole(payload.get("role"))
    except (TypeError, ValueError):
        logger.info("Rejected bearer token: malformed claims")
        raise Unauthenticated("Invalid or expired token")

    return CurrentUser(user_id=user_id, role=role, email=payload.get("email"))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CurrentUser:
    """
    FastAPI dependency: resolve the Authorization header into a CurrentUser.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Authorization token required")
    return decode_access_token(credentials.credentials)


def require_roles(*roles: UserRole) -> Callable[..., CurrentUser]:
    """
    Build a dependency that authenticates the caller and checks the role gate:

        actor: CurrentUser = Depends(require_roles(*WRITE_ROLES))
    """

    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not authorize(user.role, roles):
            logger.info("Role %s denied; requires one of %s", user.role.value, [r.value for r in roles])
            raise Unauthorized("Insufficient permissions")
        return user

    return _dependency
