"""
Authentication & Role Guards

Access tokens are HS256 JWTs issued by the platform's identity service.
The claims this service relies on are:

    sub    user id, stored on orders as ``customer_id``
    role   one of ``customer``, ``staff``, ``admin``
    name   display name (optional)
    email  (optional)

Route handlers depend on one of:
    - get_optional_user: anonymous callers allowed, ``None`` when no token
    - require_user: 401 without a valid token
    - require_staff: 401 without a token, 403 for non-staff roles
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError

from tableside.core.config import get_settings
from tableside.core.exceptions import AuthenticationRequired, PermissionDenied

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


STAFF_ROLES = (Role.STAFF, Role.ADMIN)


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller, built from token claims."""
    id: str
    role: Role
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def owns(self, customer_id: Optional[str]) -> bool:
        return customer_id is not None and str(customer_id) == self.id


def create_access_token(
    user_id: str,
    role: Role = Role.CUSTOMER,
    name: Optional[str] = None,
    email: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
) -> str:
    """
    Mint a signed access token.

    Used by scripts and tests; production tokens come from the identity
    service and share the same secret.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires_in = expires_in or timedelta(minutes=settings.access_token_expire_minutes)

    claims = {
        "sub": str(user_id),
        "role": Role(role).value,
        "iat": now,
        "exp": now + expires_in,
    }
    if name:
        claims["name"] = name
    if email:
        claims["email"] = email

    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> CurrentUser:
    """
    Verify a token and return the user it identifies.

    Raises:
        AuthenticationRequired: If the token is invalid, expired or lacks claims
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as e:
        logger.info(f"Rejected access token: {e}")
        raise AuthenticationRequired("Invalid or expired token")

    try:
        role = Role(payload.get("role", Role.CUSTOMER.value))
    except ValueError:
        raise AuthenticationRequired("Token carries an unknown role")

    return CurrentUser(
        id=str(payload["sub"]),
        role=role,
        name=payload.get("name"),
        email=payload.get("email"),
    )


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[CurrentUser]:
    """Resolve the caller if a bearer token was sent. A bad token is still a 401."""
    if credentials is None:
        return None
    return decode_access_token(credentials.credentials)


async def require_user(
    user: Optional[CurrentUser] = Depends(get_optional_user),
) -> CurrentUser:
    if user is None:
        raise AuthenticationRequired()
    return user


async def require_staff(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not user.is_staff:
        raise PermissionDenied("Staff or admin role required")
    return user
