from typing import Optional

from fastapi import Depends, HTTPException, status

from attendance_engine.auth.dependencies import get_current_user
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.core.exceptions import AuthorizationError

ADMIN_ROLES = ("SUPER_ADMIN", "ADMIN")

SCOPE_ALL = "all"
SCOPE_OWN = "own"


def permission_scope(user: CurrentUser, module: str) -> str:
    """Scope the user's role holds on a module: "all" or "own" (own course assignments)."""
    if user.role in ADMIN_ROLES:
        return SCOPE_ALL
    module_perms = (user.permissions or {}).get(module, {})
    return module_perms.get("scope") or SCOPE_ALL


def has_permission(user: CurrentUser, module: str, action: str, scope: Optional[str] = None) -> bool:
    """
    True if the user's role grants module.action.

    When scope is given, the role's scope on the module must cover it:
    an "all" scope covers "own", an "own" scope only covers "own".
    """
    if user.role in ADMIN_ROLES:
        return True
    module_perms = (user.permissions or {}).get(module, {})
    if not module_perms.get(action, False):
        return False
    if scope is None:
        return True
    held = module_perms.get("scope") or SCOPE_ALL
    return held == SCOPE_ALL or held == scope


def ensure_permission(user: CurrentUser, module: str, action: str, scope: Optional[str] = None) -> None:
    """Service-level guard: short-circuits before any state change."""
    if not has_permission(user, module, action, scope):
        raise AuthorizationError(f"Missing permission {module}.{action}")


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.

    Example:
        Depends(check_permission("attendance", "create"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if not has_permission(current_user, module, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker
