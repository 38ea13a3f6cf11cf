"""
Subscription entitlement mapper and subscription catalog.

A tenant's entitlement is the union of the permissions unlocked by the
non-deleted features of its plan, provided the tenant is active and the plan
is assigned and active. Anything else entitles nothing. Every subscription
write is reserved to super-admins.
"""
from typing import Iterable, List, Optional
from sqlalchemy import select, delete, insert, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CacheKeys, resolution_cache
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SubscriptionMismatchError,
)
from app.features.permissions.audit import record_audit
from app.features.permissions.catalog import ensure_permissions_exist
from app.features.permissions.models import Permission
from app.features.subscriptions.models import FeaturePermission, SubscriptionFeature, SubscriptionPlan
from app.features.subscriptions.schemas import FeatureCreate, FeatureUpdate, PlanCreate, PlanUpdate
from app.features.tenants.models import Tenant
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _require_super_admin(actor: User) -> None:
    if not actor.is_super_admin:
        raise AuthorizationError("Only super-admins can manage subscriptions")


def _plan_tag(plan_id: int) -> str:
    return CacheKeys.format(CacheKeys.PLAN, plan_id=plan_id)


# ============================================================================
# Entitlements
# ============================================================================

async def _compute_entitled(db: AsyncSession, tenant_id: int):
    tags = {CacheKeys.format(CacheKeys.TENANT, tenant_id=tenant_id)}

    tenant = await db.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active or tenant.subscription_id is None:
        return frozenset(), tags

    tags.add(_plan_tag(tenant.subscription_id))
    plan = await db.get(SubscriptionPlan, tenant.subscription_id)
    if plan is None or not plan.is_active:
        return frozenset(), tags

    result = await db.execute(
        select(FeaturePermission.permission_id)
        .join(SubscriptionFeature, SubscriptionFeature.id == FeaturePermission.feature_id)
        .where(
            FeaturePermission.subscription_id == plan.id,
            FeaturePermission.is_deleted.is_(False),
            SubscriptionFeature.subscription_id == plan.id,
            SubscriptionFeature.is_deleted.is_(False),
        )
    )
    return frozenset(result.scalars().all()), tags


async def get_entitled_permission_ids(db: AsyncSession, tenant_id: int) -> frozenset[int]:
    """Permission ids the tenant's active plan unlocks (empty without one)."""
    key = CacheKeys.format(CacheKeys.ENTITLED_PERMISSIONS, tenant_id=tenant_id)
    return await resolution_cache.get_or_compute(key, lambda: _compute_entitled(db, tenant_id))


async def get_entitled_permissions(
    db: AsyncSession,
    tenant_id: Optional[int],
    caller: Optional[User] = None,
) -> List[Permission]:
    """
    Entitled permissions of a tenant, ordered by key.

    Super-admin callers receive the whole catalog. Without a tenant the
    globally-scoped permissions are returned.
    """
    stmt = select(Permission).order_by(Permission.permission_key)
    if caller is not None and caller.is_super_admin:
        return list((await db.execute(stmt)).scalars().all())

    if tenant_id is None:
        ids = await global_permission_ids(db)
    else:
        ids = await get_entitled_permission_ids(db, tenant_id)
    if not ids:
        return []
    return list((await db.execute(stmt.where(Permission.id.in_(ids)))).scalars().all())


async def _compute_global(db: AsyncSession):
    sold = select(FeaturePermission.permission_id).where(FeaturePermission.is_deleted.is_(False))
    result = await db.execute(select(Permission.id).where(Permission.id.not_in(sold)))
    return frozenset(result.scalars().all()), {CacheKeys.GLOBAL}


async def global_permission_ids(db: AsyncSession) -> frozenset[int]:
    """Ids of the permissions no feature sells."""
    return await resolution_cache.get_or_compute(
        CacheKeys.GLOBAL_PERMISSIONS, lambda: _compute_global(db)
    )


# ============================================================================
# Plans
# ============================================================================

async def list_plans(db: AsyncSession, include_inactive: bool = False) -> List[SubscriptionPlan]:
    stmt = select(SubscriptionPlan)
    if not include_inactive:
        stmt = stmt.where(SubscriptionPlan.is_active.is_(True))
    result = await db.execute(stmt.order_by(SubscriptionPlan.sort_order, SubscriptionPlan.plan_name))
    return list(result.scalars().all())


async def get_plan(db: AsyncSession, plan_id: int) -> SubscriptionPlan:
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise NotFoundError(f"Subscription plan {plan_id} not found", subscription_id=plan_id)
    return plan


async def _ensure_slug_available(db: AsyncSession, slug: str, exclude_id: Optional[int] = None):
    stmt = select(SubscriptionPlan.id).where(SubscriptionPlan.plan_slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(SubscriptionPlan.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ConflictError(f"Plan '{slug}' already exists", plan_slug=slug)


async def _clear_other_default_plans(db: AsyncSession, plan_id: int) -> None:
    await db.execute(
        update(SubscriptionPlan)
        .where(SubscriptionPlan.id != plan_id, SubscriptionPlan.is_default.is_(True))
        .values(is_default=False)
    )


async def create_plan(db: AsyncSession, actor: User, data: PlanCreate) -> SubscriptionPlan:
    _require_super_admin(actor)
    await _ensure_slug_available(db, data.plan_slug)

    plan = SubscriptionPlan(**data.model_dump())
    db.add(plan)
    try:
        await db.flush()
        if plan.is_default:
            await _clear_other_default_plans(db, plan.id)
        record_audit(db, actor, "create", "subscription_plan", plan.id, details={"plan_slug": plan.plan_slug})
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Plan '{data.plan_slug}' already exists")

    await db.refresh(plan)
    log.info(f"Created subscription plan {plan.plan_slug} (id={plan.id})")
    return plan


async def update_plan(db: AsyncSession, actor: User, data: PlanUpdate) -> SubscriptionPlan:
    _require_super_admin(actor)
    plan = await get_plan(db, data.id)

    changes = data.model_dump(exclude_unset=True, exclude={"id"})
    for key, value in changes.items():
        if value is not None:
            setattr(plan, key, value)

    if changes.get("is_default"):
        await _clear_other_default_plans(db, plan.id)
    record_audit(db, actor, "update", "subscription_plan", plan.id, details=data.model_dump(mode="json", exclude_unset=True))
    await db.commit()

    await resolution_cache.invalidate(_plan_tag(plan.id))
    await db.refresh(plan)
    return plan


async def delete_plan(db: AsyncSession, actor: User, plan_id: int) -> SubscriptionPlan:
    """
    Delete a plan with its features and feature permissions.

    Raises:
        ConflictError: tenants are still subscribed to the plan
    """
    _require_super_admin(actor)
    plan = await get_plan(db, plan_id)

    tenants = await db.scalar(
        select(func.count()).select_from(Tenant).where(Tenant.subscription_id == plan_id)
    )
    if tenants:
        raise ConflictError(
            f"Plan '{plan.plan_slug}' is assigned to {tenants} tenant(s)",
            tenants=tenants,
        )

    await db.execute(delete(FeaturePermission).where(FeaturePermission.subscription_id == plan_id))
    await db.execute(delete(SubscriptionFeature).where(SubscriptionFeature.subscription_id == plan_id))
    await db.delete(plan)
    record_audit(db, actor, "delete", "subscription_plan", plan_id, details={"plan_slug": plan.plan_slug})
    await db.commit()

    await resolution_cache.invalidate(_plan_tag(plan_id), CacheKeys.GLOBAL)
    log.info(f"Deleted subscription plan {plan.plan_slug} (id={plan_id})")
    return plan


# ============================================================================
# Features
# ============================================================================

async def list_features(
    db: AsyncSession,
    subscription_id: int,
    include_deleted: bool = False,
) -> List[SubscriptionFeature]:
    await get_plan(db, subscription_id)
    stmt = select(SubscriptionFeature).where(SubscriptionFeature.subscription_id == subscription_id)
    if not include_deleted:
        stmt = stmt.where(SubscriptionFeature.is_deleted.is_(False))
    result = await db.execute(stmt.order_by(SubscriptionFeature.name, SubscriptionFeature.id))
    return list(result.scalars().all())


async def get_feature(db: AsyncSession, feature_id: int) -> SubscriptionFeature:
    feature = await db.get(SubscriptionFeature, feature_id)
    if feature is None or feature.is_deleted:
        raise NotFoundError(f"Subscription feature {feature_id} not found", feature_id=feature_id)
    return feature


async def create_feature(db: AsyncSession, actor: User, data: FeatureCreate) -> SubscriptionFeature:
    _require_super_admin(actor)
    await get_plan(db, data.subscription_id)

    feature = SubscriptionFeature(**data.model_dump())
    db.add(feature)
    await db.flush()
    record_audit(db, actor, "create", "subscription_feature", feature.id, details={"name": feature.name})
    await db.commit()

    await db.refresh(feature)
    log.info(f"Created feature {feature.name} on plan {feature.subscription_id}")
    return feature


async def update_feature(db: AsyncSession, actor: User, data: FeatureUpdate) -> SubscriptionFeature:
    _require_super_admin(actor)
    feature = await get_feature(db, data.id)

    for key, value in data.model_dump(exclude_unset=True, exclude={"id"}).items():
        if value is not None:
            setattr(feature, key, value)
    record_audit(db, actor, "update", "subscription_feature", feature.id, details=data.model_dump(mode="json", exclude_unset=True))
    await db.commit()

    await db.refresh(feature)
    return feature


async def delete_feature(db: AsyncSession, actor: User, feature_id: int) -> SubscriptionFeature:
    """Soft-delete a feature together with the permissions it unlocked."""
    _require_super_admin(actor)
    feature = await get_feature(db, feature_id)

    feature.is_deleted = True
    await db.execute(
        update(FeaturePermission)
        .where(FeaturePermission.feature_id == feature_id)
        .values(is_deleted=True)
    )
    record_audit(db, actor, "delete", "subscription_feature", feature_id, details={"name": feature.name})
    await db.commit()

    await resolution_cache.invalidate(_plan_tag(feature.subscription_id), CacheKeys.GLOBAL)
    await db.refresh(feature)
    log.info(f"Deleted feature {feature.name} (id={feature_id})")
    return feature


async def assign_feature_permissions(
    db: AsyncSession,
    actor: User,
    subscription_id: int,
    feature_id: int,
    permission_ids: Iterable[int],
) -> int:
    """
    Replace the permissions unlocked by a feature of a plan.

    Raises:
        SubscriptionMismatchError: the feature belongs to another plan
    """
    _require_super_admin(actor)
    await get_plan(db, subscription_id)
    feature = await get_feature(db, feature_id)
    if feature.subscription_id != subscription_id:
        raise SubscriptionMismatchError(
            f"Feature {feature_id} does not belong to plan {subscription_id}",
            subscription_id=subscription_id,
            feature_id=feature_id,
        )

    ids = await ensure_permissions_exist(db, permission_ids)
    await db.execute(delete(FeaturePermission).where(FeaturePermission.feature_id == feature_id))
    if ids:
        await db.execute(
            insert(FeaturePermission),
            [
                {
                    "subscription_id": subscription_id,
                    "feature_id": feature_id,
                    "permission_id": permission_id,
                    "is_deleted": False,
                }
                for permission_id in sorted(ids)
            ],
        )
    record_audit(
        db, actor, "assign_permissions", "subscription_feature", feature_id,
        details={"subscription_id": subscription_id, "permission_ids": sorted(ids)},
    )
    await db.commit()

    await resolution_cache.invalidate(_plan_tag(subscription_id), CacheKeys.GLOBAL)
    log.info(f"Assigned {len(ids)} permissions to feature {feature.name} (id={feature_id})")
    return len(ids)


# ============================================================================
# Tenant plan
# ============================================================================

async def assign_tenant_plan(
    db: AsyncSession,
    actor: User,
    tenant_id: int,
    subscription_id: Optional[int],
) -> Tenant:
    """Put a tenant on a plan, or take it off its plan with ``None``."""
    _require_super_admin(actor)
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
    if subscription_id is not None:
        await get_plan(db, subscription_id)

    tenant.subscription_id = subscription_id
    record_audit(db, actor, "assign_plan", "tenant", tenant_id, tenant_id=tenant_id, details={"subscription_id": subscription_id})
    await db.commit()

    await resolution_cache.invalidate(CacheKeys.format(CacheKeys.TENANT, tenant_id=tenant_id))
    await db.refresh(tenant)
    log.info(f"Tenant {tenant_id} now on plan {subscription_id}")
    return tenant
