"""Identity resolution and role checks.

Credentials are issued elsewhere; this module only maps a bearer token to
the ``(tenant_id, user_id)`` pair every counting operation is scoped by.
"""

from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from stockcount.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC."""

    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"


# Role hierarchy: owner > manager > staff
ROLE_HIERARCHY = {
    UserRole.OWNER: 3,
    UserRole.MANAGER: 2,
    UserRole.STAFF: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's database ID.
        tenant_id: The tenant (client) the user acts for.
        email: The user's email address.
        role: The user's role (owner/manager/staff).
    """

    def __init__(self, user_id: int, tenant_id: int, email: str, role: UserRole):
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.email = email
        self.role = role


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> TokenData:
    """Resolve the caller's identity from the JWT token.

    Checks in order:
    1. Authorization: Bearer <token> header
    2. access_token cookie (HttpOnly)

    Any failure is reported uniformly as 401 and never retried.
    """
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        cookie_token = request.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if payload is None:
        raise _unauthorized("Not authenticated")

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    email = payload.get("email")
    role = payload.get("role")

    if user_id is None or tenant_id is None or email is None or role is None:
        raise _unauthorized("Invalid token payload")

    try:
        user_role = UserRole(role)
        return TokenData(
            user_id=int(user_id), tenant_id=int(tenant_id), email=email, role=user_role,
        )
    except ValueError:
        raise _unauthorized("Invalid token payload")


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


# Common role dependencies
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
