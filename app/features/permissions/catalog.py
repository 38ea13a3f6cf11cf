"""
Permission catalog.

Read queries over the defined permissions and the controlled write path that
creates, edits and retires them. System permissions are protected: only a
super-admin may touch them. Retiring a permission never cascades into live
grants or feature entitlements.
"""
import re
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import select, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import resolution_cache
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.features.menus.models import MenuRequirement
from app.features.permissions.audit import record_audit
from app.features.permissions.models import GrantStatus, Permission, RoleGrant
from app.features.permissions.schemas import PermissionCreate, PermissionUpdate
from app.features.subscriptions.models import FeaturePermission
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

PERMISSION_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*$")


def split_permission_key(
    permission_key: str,
    resource: Optional[str] = None,
    action: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Validate ``permission_key`` and return its (resource, action).

    Raises:
        ValidationError: malformed key, or resource/action disagreeing with it
    """
    if not PERMISSION_KEY_PATTERN.match(permission_key):
        raise ValidationError(
            f"Permission key '{permission_key}' must have the form 'resource.action'",
            field="permission_key",
        )
    key_resource, key_action = permission_key.split(".")
    if resource is not None and resource != key_resource:
        raise ValidationError(
            f"Resource '{resource}' does not match permission key '{permission_key}'",
            field="resource",
        )
    if action is not None and action != key_action:
        raise ValidationError(
            f"Action '{action}' does not match permission key '{permission_key}'",
            field="action",
        )
    return key_resource, key_action


# ============================================================================
# Queries
# ============================================================================

async def get_permission(db: AsyncSession, permission_id: int) -> Permission:
    permission = await db.get(Permission, permission_id)
    if permission is None:
        raise NotFoundError(f"Permission {permission_id} not found", permission_id=permission_id)
    return permission


async def list_permissions(
    db: AsyncSession,
    search: Optional[str] = None,
    category: Optional[str] = None,
    resource: Optional[str] = None,
    include_system: bool = True,
) -> List[Permission]:
    """List catalog permissions, ordered and deduplicated by key."""
    stmt = select(Permission)

    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Permission.permission_key).like(pattern),
                func.lower(Permission.description).like(pattern),
                func.lower(Permission.category).like(pattern),
            )
        )
    if category:
        stmt = stmt.where(Permission.category == category)
    if resource:
        stmt = stmt.where(Permission.resource == resource)
    if not include_system:
        stmt = stmt.where(Permission.is_system_permission.is_(False))

    result = await db.execute(stmt.order_by(Permission.permission_key, Permission.id))
    unique: dict[str, Permission] = {}
    for permission in result.scalars().all():
        unique.setdefault(permission.permission_key, permission)
    return list(unique.values())


async def all_permission_ids(db: AsyncSession) -> frozenset[int]:
    result = await db.execute(select(Permission.id))
    return frozenset(result.scalars().all())


async def get_permissions_by_ids(db: AsyncSession, permission_ids: Iterable[int]) -> List[Permission]:
    """Load permissions by id, ordered by key."""
    ids = set(permission_ids)
    if not ids:
        return []
    result = await db.execute(
        select(Permission).where(Permission.id.in_(ids)).order_by(Permission.permission_key)
    )
    return list(result.scalars().all())


async def ensure_permissions_exist(db: AsyncSession, permission_ids: Iterable[int]) -> set[int]:
    """
    Return the given ids as a set, or raise if any is unknown.

    Raises:
        NotFoundError: listing the missing ids
    """
    ids = set(permission_ids)
    if not ids:
        return ids
    result = await db.execute(select(Permission.id).where(Permission.id.in_(ids)))
    missing = ids - set(result.scalars().all())
    if missing:
        raise NotFoundError(
            f"Permissions not found: {sorted(missing)}",
            permission_ids=sorted(missing),
        )
    return ids


async def _ensure_key_available(db: AsyncSession, permission_key: str, exclude_id: Optional[int] = None):
    stmt = select(Permission.id).where(Permission.permission_key == permission_key)
    if exclude_id is not None:
        stmt = stmt.where(Permission.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ConflictError(
            f"Permission '{permission_key}' already exists",
            permission_key=permission_key,
        )


# ============================================================================
# Write path
# ============================================================================

async def create_permission(db: AsyncSession, actor: User, data: PermissionCreate) -> Permission:
    """Create a permission (system permissions: super-admin only)."""
    resource, action = split_permission_key(data.permission_key, data.resource, data.action)

    if data.is_system_permission and not actor.is_super_admin:
        raise AuthorizationError("Only super-admins can create system permissions")

    await _ensure_key_available(db, data.permission_key)

    permission = Permission(
        permission_key=data.permission_key,
        resource=resource,
        action=action,
        category=data.category,
        scope=data.scope,
        description=data.description,
        is_system_permission=data.is_system_permission,
    )
    db.add(permission)
    try:
        await db.flush()
        record_audit(
            db, actor, "create", "permission", permission.id,
            details=data.model_dump(mode="json"),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Permission '{data.permission_key}' already exists")

    await resolution_cache.invalidate_all()
    await db.refresh(permission)
    log.info(f"Created permission {permission.permission_key} (id={permission.id})")
    return permission


async def update_permission(db: AsyncSession, actor: User, data: PermissionUpdate) -> Permission:
    """Update a permission; system permissions only by super-admins."""
    permission = await get_permission(db, data.id)
    changes = data.model_dump(exclude_unset=True, exclude={"id"})

    if not actor.is_super_admin:
        if permission.is_system_permission:
            raise AuthorizationError(f"Permission '{permission.permission_key}' is a system permission")
        if changes.get("is_system_permission"):
            raise AuthorizationError("Only super-admins can mark permissions as system permissions")

    if {"permission_key", "resource", "action"} & changes.keys():
        if changes.get("permission_key"):
            new_key = changes["permission_key"]
            resource, action = split_permission_key(new_key, changes.get("resource"), changes.get("action"))
        else:
            resource = changes.get("resource") or permission.resource
            action = changes.get("action") or permission.action
            new_key = f"{resource}.{action}"
            split_permission_key(new_key)
        if new_key != permission.permission_key:
            await _ensure_key_available(db, new_key, exclude_id=permission.id)
        changes.update(permission_key=new_key, resource=resource, action=action)

    for key, value in changes.items():
        if value is None and key in ("scope", "is_system_permission"):
            continue
        setattr(permission, key, value)

    try:
        record_audit(
            db, actor, "update", "permission", permission.id,
            details=data.model_dump(mode="json", exclude_unset=True),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Permission '{changes.get('permission_key')}' already exists")

    await resolution_cache.invalidate_all()
    await db.refresh(permission)
    return permission


async def delete_permission(db: AsyncSession, actor: User, permission_id: int) -> Permission:
    """
    Delete a permission that nothing live references.

    Inactive grants and soft-deleted feature rows pointing at it carry no
    access and are removed with it.

    Raises:
        AuthorizationError: system permission and actor is not a super-admin
        ConflictError: still referenced by an active grant, a feature or a menu
    """
    permission = await get_permission(db, permission_id)

    if permission.is_system_permission and not actor.is_super_admin:
        raise AuthorizationError(f"Permission '{permission.permission_key}' is a system permission")

    active_grants = await db.scalar(
        select(func.count()).select_from(RoleGrant).where(
            RoleGrant.permission_id == permission_id,
            RoleGrant.status == GrantStatus.ACTIVE,
        )
    )
    feature_refs = await db.scalar(
        select(func.count()).select_from(FeaturePermission).where(
            FeaturePermission.permission_id == permission_id,
            FeaturePermission.is_deleted.is_(False),
        )
    )
    menu_refs = await db.scalar(
        select(func.count()).select_from(MenuRequirement).where(
            MenuRequirement.permission_id == permission_id
        )
    )
    if active_grants or feature_refs or menu_refs:
        raise ConflictError(
            f"Permission '{permission.permission_key}' is still in use",
            role_grants=active_grants,
            feature_permissions=feature_refs,
            menu_entries=menu_refs,
        )

    await db.execute(delete(RoleGrant).where(RoleGrant.permission_id == permission_id))
    await db.execute(delete(FeaturePermission).where(FeaturePermission.permission_id == permission_id))
    await db.delete(permission)
    record_audit(
        db, actor, "delete", "permission", permission_id,
        details={"permission_key": permission.permission_key},
    )
    await db.commit()

    await resolution_cache.invalidate_all()
    log.info(f"Deleted permission {permission.permission_key} (id={permission_id})")
    return permission
