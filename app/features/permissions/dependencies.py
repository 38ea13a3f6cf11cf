"""
Permission guards for route protection.

Every guard asks the resolution engine; no route reads role grants or
feature entitlements on its own.
"""
from typing import Iterable, Optional
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import AuthorizationError
from app.features.permissions.resolution import check_permissions, has_permission
from app.features.permissions.roles import get_user
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

# Permission letting tenant staff resolve other users of their tenant
READ_OTHER_USERS = "users.read"


def require_permission(permission_key: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles/create")
        async def create_role(
            user: User = Depends(require_permission("roles.create"))
        ):
            pass

    Raises:
        HTTPException: 403 if the user does not effectively hold the permission
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user)
    ) -> User:
        if not await has_permission(db, current_user, permission_key):
            log.info(f"User {current_user.id} denied {permission_key}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {permission_key}"
            )
        return current_user

    return permission_dependency


def require_any_permission(permission_keys: Iterable[str]):
    """FastAPI dependency to require ANY of the given permissions."""
    keys = list(permission_keys)

    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user)
    ) -> User:
        results = await check_permissions(db, current_user, keys)
        if not any(results.values()):
            log.info(f"User {current_user.id} denied all of {keys}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires one of {keys}"
            )
        return current_user

    return permission_dependency


async def resolve_target_user(db: AsyncSession, actor: User, user_id: Optional[int]) -> User:
    """
    User whose access an endpoint should resolve.

    The caller by default. Super-admins may name anyone; other callers may
    name users of their own tenant when they hold ``users.read``.
    """
    if user_id is None or user_id == actor.id:
        return actor

    target = await get_user(db, user_id)
    if actor.is_super_admin:
        return target
    if actor.tenant_id is not None and target.tenant_id == actor.tenant_id:
        if await has_permission(db, actor, READ_OTHER_USERS):
            return target
    raise AuthorizationError("Not allowed to resolve access of this user", user_id=user_id)
