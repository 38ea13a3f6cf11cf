"""
Menu API routes: the resolved menu of a user and menu entry management.
"""
from typing import Dict, List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.menus import catalog, visibility
from app.features.menus.schemas import (
    MenuAccessRequest,
    MenuEntryCreate,
    MenuEntryResponse,
    MenuEntryUpdate,
    MenuItem,
    MenuListRequest,
    MenuNode,
    MultipleMenuAccessRequest,
)
from app.features.permissions.dependencies import require_any_permission, require_permission, resolve_target_user
from app.features.permissions.schemas import AccessCheckResponse, IdRequest, UserTarget
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter()


# ============================================================================
# Resolved Menu Routes
# ============================================================================

@router.post("/menus/for-user", response_model=List[MenuItem])
@limiter.limit(config.RATE_LIMIT)
async def menus_for_user(
    request: Request,
    body: UserTarget,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Visible menu entries, parents before their children."""
    user = await resolve_target_user(db, current_user, body.user_id)
    return await visibility.menus_for_user(db, user)


@router.post("/menus/tree", response_model=List[MenuNode])
@limiter.limit(config.RATE_LIMIT)
async def menu_tree(
    request: Request,
    body: UserTarget,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    user = await resolve_target_user(db, current_user, body.user_id)
    return await visibility.visible_menu(db, user)


@router.post("/check-menu-access", response_model=AccessCheckResponse)
@limiter.limit(config.RATE_LIMIT)
async def check_menu_access(
    request: Request,
    body: MenuAccessRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    user = await resolve_target_user(db, current_user, body.user_id)
    results = await visibility.check_menu_access(db, user, [body.menu_key])
    return {"has_access": results[body.menu_key]}


@router.post("/check-multiple-menu-access", response_model=Dict[str, bool])
@limiter.limit(config.RATE_LIMIT)
async def check_multiple_menu_access(
    request: Request,
    body: MultipleMenuAccessRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    user = await resolve_target_user(db, current_user, body.user_id)
    return await visibility.check_menu_access(db, user, body.menu_keys)


# ============================================================================
# Menu Entry Routes
# ============================================================================

@router.post("/menu-permissions/list", response_model=List[MenuEntryResponse])
async def list_menu_entries(
    body: MenuListRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_any_permission(["menus.view", "menus.manage"]))
):
    return await catalog.list_menu_entries(
        db, current_user,
        search=body.search,
        include_inactive=body.include_inactive,
        tenant_id=body.tenant_id,
    )


@router.post("/menu-permissions/create", response_model=MenuEntryResponse)
async def create_menu_entry(
    body: MenuEntryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("menus.manage"))
):
    return await catalog.create_menu_entry(db, current_user, body)


@router.post("/menu-permissions/update", response_model=MenuEntryResponse)
async def update_menu_entry(
    body: MenuEntryUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("menus.manage"))
):
    return await catalog.update_menu_entry(db, current_user, body)


@router.post("/menu-permissions/delete", response_model=MenuEntryResponse)
async def delete_menu_entry(
    body: IdRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("menus.manage"))
):
    return await catalog.delete_menu_entry(db, current_user, body.id)
