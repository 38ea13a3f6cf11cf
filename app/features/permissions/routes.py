"""
Access-control API routes.

Provides endpoints for the permission catalog, roles, role grants, user-role
links, effective-permission resolution and permission checks. Every endpoint
is a POST taking a JSON body.
"""
from typing import Dict, List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions import catalog, resolution, roles
from app.features.permissions.schemas import (
    AccessCheckResponse,
    IdRequest,
    MultiplePermissionCheckRequest,
    PermissionCheckRequest,
    PermissionCreate,
    PermissionListRequest,
    PermissionResponse,
    PermissionUpdate,
    RoleClone,
    RoleCreate,
    RoleListRequest,
    RolePermissionEntry,
    RolePermissionsAssign,
    RolePermissionsAssignResponse,
    RolePermissionsListRequest,
    RoleResponse,
    RoleUpdate,
    UserRolesAssign,
    UserRolesAssignResponse,
    UserTarget,
)
from app.features.permissions.dependencies import require_permission, resolve_target_user
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Resolution Routes
# ============================================================================

@router.post("/effective-permissions", response_model=List[PermissionResponse])
@limiter.limit(config.RATE_LIMIT)
async def effective_permissions(
    request: Request,
    body: UserTarget,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Permissions the user (default: the caller) effectively holds."""
    user = await resolve_target_user(db, current_user, body.user_id)
    return await resolution.effective_permissions(db, user)


@router.post("/check-permission", response_model=AccessCheckResponse)
@limiter.limit(config.RATE_LIMIT)
async def check_permission(
    request: Request,
    body: PermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    user = await resolve_target_user(db, current_user, body.user_id)
    return {"has_access": await resolution.has_permission(db, user, body.permission_slug)}


@router.post("/check-multiple-permissions", response_model=Dict[str, bool])
@limiter.limit(config.RATE_LIMIT)
async def check_multiple_permissions(
    request: Request,
    body: MultiplePermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Map each permission key to whether the user holds it."""
    user = await resolve_target_user(db, current_user, body.user_id)
    return await resolution.check_permissions(db, user, body.permission_slugs)


# ============================================================================
# Role Grant Routes
# ============================================================================

@router.post("/role-permissions/list", response_model=List[RolePermissionEntry])
async def list_role_permissions(
    body: RolePermissionsListRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.read"))
):
    """Every catalog permission with the role's grant state."""
    return await roles.get_role_permissions(
        db, body.role_id, body.include_subscription_permissions, actor=current_user
    )


@router.post("/role-permissions/assign", response_model=RolePermissionsAssignResponse)
async def assign_role_permissions(
    body: RolePermissionsAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.manage"))
):
    """Replace the whole grant set of a role."""
    count = await roles.assign_role_permissions(db, current_user, body.role_id, body.permission_ids)
    return {"message": "Permissions assigned successfully", "assigned_count": count}


@router.post("/user-roles/assign", response_model=UserRolesAssignResponse)
async def assign_user_roles(
    body: UserRolesAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.manage"))
):
    """Replace the roles of a user."""
    count = await roles.assign_user_roles(db, current_user, body.user_id, body.role_ids)
    return {"message": "Roles assigned successfully", "assigned_count": count}


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles/list", response_model=List[RoleResponse])
async def list_roles(
    body: RoleListRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.read"))
):
    return await roles.list_roles(
        db, current_user,
        search=body.search,
        include_system_roles=body.include_system_roles,
        tenant_id=body.tenant_id,
    )


@router.post("/roles/create", response_model=RoleResponse)
async def create_role(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.create"))
):
    return await roles.create_role(db, current_user, body)


@router.post("/roles/update", response_model=RoleResponse)
async def update_role(
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.update"))
):
    return await roles.update_role(db, current_user, body)


@router.post("/roles/delete", response_model=RoleResponse)
async def delete_role(
    body: IdRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.delete"))
):
    return await roles.delete_role(db, current_user, body.id)


@router.post("/roles/clone", response_model=RoleResponse)
async def clone_role(
    body: RoleClone,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("roles.create"))
):
    """Copy a role and its grants."""
    return await roles.clone_role(db, current_user, body)


# ============================================================================
# Permission Routes
# ============================================================================

@router.post("/permissions/list", response_model=List[PermissionResponse])
async def list_permissions(
    body: PermissionListRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.view"))
):
    return await catalog.list_permissions(
        db,
        search=body.search,
        category=body.category,
        resource=body.resource,
        include_system=body.include_system_permissions,
    )


@router.post("/permissions/create", response_model=PermissionResponse)
async def create_permission(
    body: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    return await catalog.create_permission(db, current_user, body)


@router.post("/permissions/update", response_model=PermissionResponse)
async def update_permission(
    body: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    return await catalog.update_permission(db, current_user, body)


@router.post("/permissions/delete", response_model=PermissionResponse)
async def delete_permission(
    body: IdRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    return await catalog.delete_permission(db, current_user, body.id)
