"""
Permission checks for the sourcing portal.

A user holds a permission either through the ``permissions`` claim of the
token or through one of the roles that implicitly grant it.
"""
from enum import Enum
from typing import Optional
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from procurement.core.errors import ForbiddenError
from procurement.core.security import decode_token, security, optional_security


class Permission(str, Enum):
    RFX_MANAGE = "rfx.manage"
    RFX_RESPOND = "rfx.respond"
    CONTRACTS_MANAGE = "contracts.manage"


# Roles that grant a permission without an explicit claim
ROLE_GRANTS = {
    Permission.RFX_MANAGE: {"scm", "procurementspecialist"},
    Permission.RFX_RESPOND: {"supplier", "contractmanager"},
    Permission.CONTRACTS_MANAGE: {"scm"},
}


def build_user_context(payload: dict) -> dict:
    """Normalize a decoded token payload into the user context dict."""
    user_id_raw = payload.get("sub") or payload.get("user_id") or payload.get("id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    try:
        user_id = int(user_id_raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: malformed user identifier",
        )

    permissions = payload.get("permissions") or []
    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "role": str(payload.get("role") or "").strip().lower(),
        "permissions": {str(p) for p in permissions},
    }


def has_permission(user: Optional[dict], permission: Permission) -> bool:
    if not user:
        return False
    if permission.value in user.get("permissions", ()):
        return True
    return user.get("role", "") in ROLE_GRANTS.get(permission, set())


def can_manage_rfx(user: Optional[dict]) -> bool:
    return has_permission(user, Permission.RFX_MANAGE)


def can_respond_to_rfx(user: Optional[dict]) -> bool:
    return has_permission(user, Permission.RFX_RESPOND) or can_manage_rfx(user)


async def get_current_user_context(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """Authenticated user context; 401/403 when the bearer token is missing or invalid."""
    return build_user_context(decode_token(credentials.credentials))


async def get_optional_user_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security)
) -> Optional[dict]:
    """User context when a bearer token is sent, ``None`` for anonymous callers."""
    if credentials is None:
        return None
    return build_user_context(decode_token(credentials.credentials))


class PermissionChecker:
    """Dependency for checking a named permission."""

    def __init__(self, permission: Permission, message: str):
        self.permission = permission
        self.message = message

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> dict:
        user = build_user_context(decode_token(credentials.credentials))
        if not has_permission(user, self.permission):
            raise ForbiddenError(self.message)
        return user


require_rfx_manage = PermissionChecker(
    Permission.RFX_MANAGE, "You are not authorized to manage RFX events"
)
require_contracts_manage = PermissionChecker(
    Permission.CONTRACTS_MANAGE, "You are not authorized to manage suppliers"
)
