"""
Role catalog and role-grant store.

Implements:
- Role CRUD and cloning with system-role protection
- Full-replace assignment of a role's permission grants
- Full-replace assignment of a user's roles

Grant replacement for one role is serialized: an in-process lock per role
plus a row lock on the role where the database supports ``FOR UPDATE``.
The delete and the inserts share one transaction, so readers see either the
old set or the new one.
"""
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Iterable, List, Optional
from sqlalchemy import select, delete, insert, update, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CacheKeys, resolution_cache
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.features.permissions.audit import record_audit
from app.features.permissions.catalog import ensure_permissions_exist, list_permissions
from app.features.permissions.models import GrantStatus, Role, RoleGrant
from app.features.permissions.schemas import (
    PermissionResponse,
    RoleClone,
    RoleCreate,
    RolePermissionEntry,
    RoleUpdate,
)
from app.features.subscriptions.service import get_entitled_permission_ids
from app.features.tenants.models import Tenant
from app.features.users.models import User, user_roles
from app.utils import get_logger


log = get_logger(__name__)

# Fields a non-super-admin may still edit on system and global roles
PROTECTED_ROLE_EDITABLE_FIELDS = {"display_name", "description", "hierarchy_level", "is_default"}


class KeyedLocks:
    """One asyncio lock per key, dropped once nobody holds or waits for it."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: defaultdict[int, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: int):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)


role_grant_locks = KeyedLocks()


def _display_name(name: str) -> str:
    return name.replace("_", " ").replace("-", " ").title()


def _role_tag(role_id: int) -> str:
    return CacheKeys.format(CacheKeys.ROLE, role_id=role_id)


# ============================================================================
# Role lookups and access rules
# ============================================================================

async def get_role(db: AsyncSession, role_id: int, for_update: bool = False) -> Role:
    stmt = select(Role).where(Role.id == role_id)
    if for_update:
        stmt = stmt.with_for_update()
    role = (await db.execute(stmt)).scalars().first()
    if role is None:
        raise NotFoundError(f"Role {role_id} not found", role_id=role_id)
    return role


def _ensure_tenant_access(actor: User, role: Role) -> None:
    """Non-super-admins only reach global roles and roles of their own tenant."""
    if actor.is_super_admin:
        return
    if role.tenant_id is not None and role.tenant_id != actor.tenant_id:
        raise AuthorizationError("Role belongs to another tenant", role_id=role.id)


def _ensure_can_manage_grants(actor: User, role: Role) -> None:
    _ensure_tenant_access(actor, role)
    if not actor.is_super_admin and role.tenant_id is None:
        raise AuthorizationError(
            f"Grants of global role '{role.name}' can only be changed by super-admins",
            role_id=role.id,
        )


async def _ensure_name_available(
    db: AsyncSession, tenant_id: Optional[int], name: str, exclude_id: Optional[int] = None
) -> None:
    tenant_match = Role.tenant_id.is_(None) if tenant_id is None else Role.tenant_id == tenant_id
    stmt = select(Role.id).where(tenant_match, Role.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Role.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ConflictError(f"Role '{name}' already exists", name=name, tenant_id=tenant_id)


async def _clear_other_defaults(db: AsyncSession, role: Role) -> None:
    tenant_match = Role.tenant_id.is_(None) if role.tenant_id is None else Role.tenant_id == role.tenant_id
    await db.execute(
        update(Role)
        .where(tenant_match, Role.id != role.id, Role.is_default.is_(True))
        .values(is_default=False)
    )


# ============================================================================
# Role catalog
# ============================================================================

async def list_roles(
    db: AsyncSession,
    actor: User,
    search: Optional[str] = None,
    include_system_roles: bool = True,
    tenant_id: Optional[int] = None,
) -> List[Role]:
    """List the roles visible to ``actor``: global roles plus a tenant's own."""
    stmt = select(Role)

    scope_tenant = tenant_id if actor.is_super_admin else actor.tenant_id
    if scope_tenant is not None:
        stmt = stmt.where(or_(Role.tenant_id == scope_tenant, Role.tenant_id.is_(None)))
    elif not actor.is_super_admin:
        stmt = stmt.where(Role.tenant_id.is_(None))

    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(func.lower(Role.name).like(pattern), func.lower(Role.display_name).like(pattern))
        )
    if not include_system_roles:
        stmt = stmt.where(Role.is_system_role.is_(False))

    result = await db.execute(stmt.order_by(Role.hierarchy_level.desc(), Role.name, Role.id))
    return list(result.scalars().all())


async def create_role(db: AsyncSession, actor: User, data: RoleCreate) -> Role:
    """Create a role in the actor's tenant (super-admins: any scope)."""
    tenant_id = data.tenant_id
    if not actor.is_super_admin:
        if data.is_system_role:
            raise AuthorizationError("Only super-admins can create system roles")
        if tenant_id is None:
            tenant_id = actor.tenant_id
        if tenant_id is None:
            raise AuthorizationError("Only super-admins can create global roles")
        if tenant_id != actor.tenant_id:
            raise AuthorizationError("Not authorized to create roles in this tenant")
    elif tenant_id is not None and await db.get(Tenant, tenant_id) is None:
        raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)

    await _ensure_name_available(db, tenant_id, data.name)

    role = Role(
        tenant_id=tenant_id,
        name=data.name,
        display_name=data.display_name or _display_name(data.name),
        description=data.description,
        is_system_role=data.is_system_role,
        is_default=data.is_default,
        is_active=data.is_active,
        hierarchy_level=data.hierarchy_level,
    )
    db.add(role)
    try:
        await db.flush()
        if role.is_default:
            await _clear_other_defaults(db, role)
        record_audit(
            db, actor, "create", "role", role.id, tenant_id=tenant_id,
            details=data.model_dump(mode="json"),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Role '{data.name}' already exists")

    await db.refresh(role)
    log.info(f"Created role {role.name} (id={role.id}, tenant={tenant_id})")
    return role


async def update_role(db: AsyncSession, actor: User, data: RoleUpdate) -> Role:
    """
    Update a role.

    Raises:
        AuthorizationError: non-super-admin changing anything but the display
            fields of a system or global role, or a role of another tenant
    """
    role = await get_role(db, data.id)
    _ensure_tenant_access(actor, role)

    changes = {
        key: value
        for key, value in data.model_dump(exclude_unset=True, exclude={"id"}).items()
        if (value is not None or key == "description") and getattr(role, key) != value
    }

    if not actor.is_super_admin:
        if role.is_system_role or role.tenant_id is None:
            forbidden = sorted(changes.keys() - PROTECTED_ROLE_EDITABLE_FIELDS)
            if forbidden:
                raise AuthorizationError(
                    f"Cannot change {', '.join(forbidden)} of protected role '{role.name}'",
                    role_id=role.id,
                    fields=forbidden,
                )
        elif changes.get("is_system_role"):
            raise AuthorizationError("Only super-admins can mark roles as system roles")

    if changes.get("name"):
        await _ensure_name_available(db, role.tenant_id, changes["name"], exclude_id=role.id)

    for key, value in changes.items():
        setattr(role, key, value)

    try:
        if changes.get("is_default"):
            await _clear_other_defaults(db, role)
        record_audit(
            db, actor, "update", "role", role.id, tenant_id=role.tenant_id,
            details=data.model_dump(mode="json", exclude_unset=True),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Role '{changes.get('name')}' already exists")

    if "is_active" in changes:
        await resolution_cache.invalidate(_role_tag(role.id))
    await db.refresh(role)
    return role


async def delete_role(db: AsyncSession, actor: User, role_id: int) -> Role:
    """Delete a role with its grants and user links."""
    role = await get_role(db, role_id)
    _ensure_tenant_access(actor, role)
    if not actor.is_super_admin:
        if role.is_system_role:
            raise AuthorizationError(f"System role '{role.name}' cannot be deleted", role_id=role_id)
        if role.tenant_id is None:
            raise AuthorizationError(f"Global role '{role.name}' cannot be deleted", role_id=role_id)

    async with role_grant_locks.hold(role_id):
        await db.execute(delete(RoleGrant).where(RoleGrant.role_id == role_id))
        await db.execute(delete(user_roles).where(user_roles.c.role_id == role_id))
        await db.delete(role)
        record_audit(
            db, actor, "delete", "role", role_id, tenant_id=role.tenant_id,
            details={"name": role.name},
        )
        await db.commit()

    await resolution_cache.invalidate(_role_tag(role_id))
    log.info(f"Deleted role {role.name} (id={role_id})")
    return role


async def clone_role(db: AsyncSession, actor: User, data: RoleClone) -> Role:
    """Copy a role and its grants into a new, non-system role."""
    source = await get_role(db, data.source_role_id)
    _ensure_tenant_access(actor, source)

    tenant_id = source.tenant_id if actor.is_super_admin else actor.tenant_id
    if tenant_id is None and not actor.is_super_admin:
        raise AuthorizationError("Only super-admins can create global roles")
    await _ensure_name_available(db, tenant_id, data.new_name)

    clone = Role(
        tenant_id=tenant_id,
        name=data.new_name,
        display_name=data.new_display_name or _display_name(data.new_name),
        description=data.new_description if data.new_description is not None else source.description,
        is_system_role=False,
        is_default=False,
        is_active=True,
        hierarchy_level=source.hierarchy_level,
    )
    db.add(clone)
    try:
        await db.flush()
        grants = (
            await db.execute(select(RoleGrant).where(RoleGrant.role_id == source.id))
        ).scalars().all()
        db.add_all(
            RoleGrant(
                role_id=clone.id,
                permission_id=grant.permission_id,
                granted=grant.granted,
                status=grant.status,
            )
            for grant in grants
        )
        record_audit(
            db, actor, "clone", "role", clone.id, tenant_id=tenant_id,
            details={"source_role_id": source.id, "grants": len(grants)},
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Role '{data.new_name}' already exists")

    await db.refresh(clone)
    log.info(f"Cloned role {source.name} into {clone.name} (id={clone.id})")
    return clone


# ============================================================================
# Role grants
# ============================================================================

async def assign_role_permissions(
    db: AsyncSession,
    actor: User,
    role_id: int,
    permission_ids: Iterable[int],
) -> int:
    """
    Replace the whole grant set of a role.

    Every previous row for the role is deleted and one active grant is
    inserted per distinct permission id, in one transaction. Calling it twice
    with the same ids leaves the same rows behind.

    Returns:
        Number of grants now stored for the role
    """
    ids = set(permission_ids)

    async with role_grant_locks.hold(role_id):
        role = await get_role(db, role_id, for_update=True)
        _ensure_can_manage_grants(actor, role)
        await ensure_permissions_exist(db, ids)

        await db.execute(delete(RoleGrant).where(RoleGrant.role_id == role_id))
        if ids:
            await db.execute(
                insert(RoleGrant),
                [
                    {
                        "role_id": role_id,
                        "permission_id": permission_id,
                        "granted": True,
                        "status": GrantStatus.ACTIVE,
                    }
                    for permission_id in sorted(ids)
                ],
            )
        record_audit(
            db, actor, "assign_permissions", "role", role_id, tenant_id=role.tenant_id,
            details={"permission_ids": sorted(ids)},
        )
        await db.commit()

    await resolution_cache.invalidate(_role_tag(role_id))
    log.info(f"Assigned {len(ids)} permissions to role {role.name} (id={role_id})")
    return len(ids)


async def get_role_permissions(
    db: AsyncSession,
    role_id: int,
    include_subscription_permissions: bool = False,
    actor: Optional[User] = None,
) -> List[RolePermissionEntry]:
    """
    Every catalog permission annotated with the role's grant state.

    With ``include_subscription_permissions`` a tenant role's rows also say
    whether the tenant's plan unlocks the permission.
    """
    role = await get_role(db, role_id)
    if actor is not None:
        _ensure_tenant_access(actor, role)
    permissions = await list_permissions(db)
    grants = {
        grant.permission_id: grant
        for grant in (
            await db.execute(select(RoleGrant).where(RoleGrant.role_id == role_id))
        ).scalars().all()
    }

    entitled: Optional[frozenset[int]] = None
    if include_subscription_permissions and role.tenant_id is not None:
        entitled = await get_entitled_permission_ids(db, role.tenant_id)

    entries = []
    for permission in permissions:
        grant = grants.get(permission.id)
        entries.append(
            RolePermissionEntry(
                **PermissionResponse.model_validate(permission).model_dump(),
                granted=grant.granted if grant else False,
                status=grant.status if grant else None,
                entitled=(permission.id in entitled) if entitled is not None else None,
            )
        )
    return entries


# ============================================================================
# User roles
# ============================================================================

async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
    return user


async def assign_user_roles(
    db: AsyncSession,
    actor: User,
    user_id: int,
    role_ids: Iterable[int],
) -> int:
    """Replace the roles of a user. Roles must be global or in the user's tenant."""
    user = await get_user(db, user_id)
    if not actor.is_super_admin and user.tenant_id != actor.tenant_id:
        raise AuthorizationError("User belongs to another tenant", user_id=user_id)

    ids = set(role_ids)
    roles = (await db.execute(select(Role).where(Role.id.in_(ids)))).scalars().all() if ids else []
    missing = ids - {role.id for role in roles}
    if missing:
        raise NotFoundError(f"Roles not found: {sorted(missing)}", role_ids=sorted(missing))
    foreign = sorted(role.id for role in roles if role.tenant_id not in (None, user.tenant_id))
    if foreign:
        raise ValidationError(
            f"Roles {foreign} do not belong to the user's tenant",
            role_ids=foreign,
        )

    await db.execute(delete(user_roles).where(user_roles.c.user_id == user_id))
    if ids:
        await db.execute(
            insert(user_roles),
            [{"user_id": user_id, "role_id": role_id} for role_id in sorted(ids)],
        )
    record_audit(
        db, actor, "assign_roles", "user", user_id, tenant_id=user.tenant_id,
        details={"role_ids": sorted(ids)},
    )
    await db.commit()

    await resolution_cache.invalidate(CacheKeys.format(CacheKeys.USER, user_id=user_id))
    log.info(f"Assigned {len(ids)} roles to user {user_id}")
    return len(ids)
