"""
Subscription API routes.

Plans, features, the permissions features unlock and tenant plan
assignment. Writes are reserved to super-admins.
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import AuthorizationError
from app.features.permissions.dependencies import require_permission
from app.features.permissions.schemas import IdRequest, PermissionResponse
from app.features.subscriptions import service
from app.features.subscriptions.schemas import (
    FeatureCreate,
    FeatureListRequest,
    FeaturePermissionsAssign,
    FeaturePermissionsAssignResponse,
    FeatureResponse,
    FeatureUpdate,
    PlanCreate,
    PlanListRequest,
    PlanResponse,
    PlanUpdate,
    SubscriptionPermissionsRequest,
    TenantPlanAssign,
    TenantResponse,
)
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter()


# ============================================================================
# Plan Routes
# ============================================================================

@router.post("/plans/list", response_model=List[PlanResponse])
async def list_plans(
    body: PlanListRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("subscriptions.view"))
):
    return await service.list_plans(db, include_inactive=body.include_inactive)


@router.post("/plans/get", response_model=PlanResponse)
async def get_plan(
    body: IdRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("subscriptions.view"))
):
    return await service.get_plan(db, body.id)


@router.post("/plans/create", response_model=PlanResponse)
async def create_plan(
    body: PlanCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.create_plan(db, current_user, body)


@router.post("/plans/update", response_model=PlanResponse)
async def update_plan(
    body: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.update_plan(db, current_user, body)


@router.post("/plans/delete", response_model=PlanResponse)
async def delete_plan(
    body: IdRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.delete_plan(db, current_user, body.id)


# ============================================================================
# Feature Routes
# ============================================================================

@router.post("/features/list", response_model=List[FeatureResponse])
async def list_features(
    body: FeatureListRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("subscriptions.view"))
):
    return await service.list_features(db, body.subscription_id, include_deleted=body.include_deleted)


@router.post("/features/create", response_model=FeatureResponse)
async def create_feature(
    body: FeatureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.create_feature(db, current_user, body)


@router.post("/features/update", response_model=FeatureResponse)
async def update_feature(
    body: FeatureUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.update_feature(db, current_user, body)


@router.post("/features/delete", response_model=FeatureResponse)
async def delete_feature(
    body: IdRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Soft-delete a feature."""
    return await service.delete_feature(db, current_user, body.id)


@router.post("/feature-permissions/assign", response_model=FeaturePermissionsAssignResponse)
async def assign_feature_permissions(
    body: FeaturePermissionsAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Replace the permissions a feature unlocks."""
    count = await service.assign_feature_permissions(
        db, current_user, body.subscription_id, body.feature_id, body.permission_ids
    )
    return {"message": "Feature permissions assigned successfully", "assigned_count": count}


# ============================================================================
# Tenant Routes
# ============================================================================

@router.post("/tenant-plan/assign", response_model=TenantResponse)
async def assign_tenant_plan(
    body: TenantPlanAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.assign_tenant_plan(db, current_user, body.tenant_id, body.subscription_id)


@router.post("/subscription-permissions", response_model=List[PermissionResponse])
async def subscription_permissions(
    body: SubscriptionPermissionsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Permissions the tenant's plan unlocks.

    Defaults to the caller's tenant; only super-admins may ask about another
    tenant, and they always receive the whole catalog.
    """
    tenant_id = body.tenant_id if body.tenant_id is not None else current_user.tenant_id
    if tenant_id != current_user.tenant_id and not current_user.is_super_admin:
        raise AuthorizationError("Not allowed to read another tenant's subscription", tenant_id=tenant_id)
    return await service.get_entitled_permissions(db, tenant_id, caller=current_user)
