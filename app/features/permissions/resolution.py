"""
Permission resolution engine.

The single place that decides what a user may do:

    effective = granted-by-roles ∩ entitled-by-subscription

Super-admins hold the whole catalog. Users without a tenant are bounded by
the globally-scoped permissions (those no subscription feature sells).
Every HTTP guard and the menu engine route through this module.
"""
from typing import Dict, Iterable, List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CacheKeys, resolution_cache
from app.features.permissions.catalog import all_permission_ids, get_permissions_by_ids, list_permissions
from app.features.permissions.models import GrantStatus, Permission, Role, RoleGrant
from app.features.subscriptions.service import get_entitled_permission_ids, global_permission_ids
from app.features.tenants.models import Tenant
from app.features.users.models import User, user_roles
from app.utils import get_logger


log = get_logger(__name__)


async def _granted_permission_ids(db: AsyncSession, user: User, tags: set[str]) -> set[int]:
    """Permissions granted by the user's active roles in scope."""
    result = await db.execute(
        select(Role.id, Role.tenant_id, Role.is_active)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user.id)
    )
    role_ids = []
    for role_id, tenant_id, is_active in result.all():
        # Tagged even when skipped: activating the role must drop the entry
        tags.add(CacheKeys.format(CacheKeys.ROLE, role_id=role_id))
        if is_active and tenant_id in (None, user.tenant_id):
            role_ids.append(role_id)
    if not role_ids:
        return set()

    result = await db.execute(
        select(RoleGrant.permission_id).where(
            RoleGrant.role_id.in_(role_ids),
            RoleGrant.granted.is_(True),
            RoleGrant.status == GrantStatus.ACTIVE,
        )
    )
    return set(result.scalars().all())


async def _entitled_permission_ids(db: AsyncSession, user: User, tags: set[str]) -> frozenset[int]:
    if user.tenant_id is None:
        tags.add(CacheKeys.GLOBAL)
        return await global_permission_ids(db)

    tags.add(CacheKeys.format(CacheKeys.TENANT, tenant_id=user.tenant_id))
    plan_id = await db.scalar(select(Tenant.subscription_id).where(Tenant.id == user.tenant_id))
    if plan_id is not None:
        tags.add(CacheKeys.format(CacheKeys.PLAN, plan_id=plan_id))
    return await get_entitled_permission_ids(db, user.tenant_id)


async def _compute_effective(db: AsyncSession, user: User):
    tags = {CacheKeys.format(CacheKeys.USER, user_id=user.id)}
    granted = await _granted_permission_ids(db, user, tags)
    entitled = await _entitled_permission_ids(db, user, tags)
    effective = frozenset(granted & entitled)
    log.debug(
        f"Resolved user {user.id}: {len(granted)} granted, {len(entitled)} entitled, {len(effective)} effective"
    )
    return effective, tags


async def effective_permission_ids(db: AsyncSession, user: User) -> frozenset[int]:
    """Ids of the permissions ``user`` effectively holds."""
    if user.is_super_admin:
        return await all_permission_ids(db)
    key = CacheKeys.format(CacheKeys.EFFECTIVE_PERMISSIONS, user_id=user.id)
    return await resolution_cache.get_or_compute(key, lambda: _compute_effective(db, user))


async def effective_permissions(db: AsyncSession, user: User) -> List[Permission]:
    """Effective permissions of ``user``, ordered by key."""
    if user.is_super_admin:
        return await list_permissions(db)
    return await get_permissions_by_ids(db, await effective_permission_ids(db, user))


async def check_permissions(db: AsyncSession, user: User, permission_keys: Iterable[str]) -> Dict[str, bool]:
    """
    Map each requested key to whether ``user`` holds it.

    Unknown keys are reported as not held.
    """
    keys = list(dict.fromkeys(permission_keys))
    if not keys:
        return {}

    held = await effective_permission_ids(db, user)
    result = await db.execute(
        select(Permission.id, Permission.permission_key).where(Permission.permission_key.in_(keys))
    )
    ids_by_key = {key: permission_id for permission_id, key in result.all()}
    return {key: ids_by_key.get(key) in held for key in keys}


async def has_permission(db: AsyncSession, user: User, permission_key: str) -> bool:
    return (await check_permissions(db, user, [permission_key]))[permission_key]
