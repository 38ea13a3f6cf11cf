"""
Menu entry catalog: listing and the validated write path.

An entry's parent is looked up by key in the entry's own catalog: a global
entry sees global entries only, a tenant entry sees its tenant's entries
and, under them, the global ones. Parent assignments are checked for cycles
by walking the parent chain upwards, for a global entry also in each tenant
catalog that shadows part of its chain.
"""
from typing import Dict, Iterable, List, Optional
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    CyclicMenuError,
    NotFoundError,
    ValidationError,
)
from app.features.menus.models import MenuEntry, MenuRequirement, MenuStatus
from app.features.menus.schemas import MenuEntryCreate, MenuEntryUpdate
from app.features.permissions.audit import record_audit
from app.features.permissions.catalog import ensure_permissions_exist
from app.features.tenants.models import Tenant
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

INITIAL_STATUSES = {MenuStatus.DRAFT, MenuStatus.ACTIVE}

ALLOWED_TRANSITIONS = {
    (MenuStatus.DRAFT, MenuStatus.ACTIVE),
    (MenuStatus.ACTIVE, MenuStatus.INACTIVE),
    (MenuStatus.INACTIVE, MenuStatus.ACTIVE),
}


def _tenant_filter(tenant_id: Optional[int]):
    """Entries visible from a tenant scope (global ones always are)."""
    if tenant_id is None:
        return MenuEntry.tenant_id.is_(None)
    return or_(MenuEntry.tenant_id.is_(None), MenuEntry.tenant_id == tenant_id)


def shadow_global_entries(entries: Iterable[MenuEntry]) -> List[MenuEntry]:
    """Keep one entry per key, preferring the tenant's over the global one."""
    by_key: Dict[str, MenuEntry] = {}
    for entry in entries:
        current = by_key.get(entry.menu_key)
        if current is None or (current.tenant_id is None and entry.tenant_id is not None):
            by_key[entry.menu_key] = entry
    return list(by_key.values())


async def load_menu_catalog(
    db: AsyncSession,
    tenant_id: Optional[int],
    include_inactive: bool = False,
) -> List[MenuEntry]:
    """
    Global plus tenant entries with tenant shadowing, ordered for display.

    A deactivated tenant entry still hides the global entry it shadows.
    """
    result = await db.execute(select(MenuEntry).where(_tenant_filter(tenant_id)))
    entries = shadow_global_entries(result.scalars().all())
    if not include_inactive:
        entries = [e for e in entries if e.is_active and e.status != MenuStatus.INACTIVE]
    return sorted(entries, key=lambda e: (e.display_order, e.menu_key))


# ============================================================================
# Queries
# ============================================================================

async def get_menu_entry(db: AsyncSession, menu_id: int) -> MenuEntry:
    entry = await db.get(MenuEntry, menu_id)
    if entry is None:
        raise NotFoundError(f"Menu entry {menu_id} not found", menu_id=menu_id)
    return entry


async def list_menu_entries(
    db: AsyncSession,
    actor: User,
    search: Optional[str] = None,
    include_inactive: bool = False,
    tenant_id: Optional[int] = None,
) -> List[MenuEntry]:
    """
    List menu entries of the actor's catalog.

    Inactive entries are left out unless ``include_inactive``; drafts are
    listed so they can be edited and activated.
    """
    scope_tenant = tenant_id if actor.is_super_admin else actor.tenant_id
    stmt = select(MenuEntry).where(_tenant_filter(scope_tenant))
    if not include_inactive:
        stmt = stmt.where(MenuEntry.status != MenuStatus.INACTIVE, MenuEntry.is_active.is_(True))
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(MenuEntry.menu_key).like(pattern),
                func.lower(MenuEntry.menu_name).like(pattern),
            )
        )
    result = await db.execute(
        stmt.order_by(MenuEntry.display_order, MenuEntry.menu_key, MenuEntry.tenant_id)
    )
    return list(result.scalars().all())


async def _find_entry(db: AsyncSession, tenant_id: Optional[int], menu_key: str) -> Optional[MenuEntry]:
    """Entry ``menu_key`` as seen from ``tenant_id`` (tenant entry first)."""
    result = await db.execute(
        select(MenuEntry).where(_tenant_filter(tenant_id), MenuEntry.menu_key == menu_key)
    )
    candidates = shadow_global_entries(result.scalars().all())
    return candidates[0] if candidates else None


async def _ensure_no_cycle(
    db: AsyncSession,
    tenant_id: Optional[int],
    menu_key: str,
    parent_menu_key: Optional[str],
) -> List[str]:
    """
    Reject ``parent_menu_key`` if the entry would become its own ancestor.

    Returns the keys of the ancestor chain, nearest first.

    Raises:
        CyclicMenuError: self-parenting or a parent chain leading back
        NotFoundError: no parent entry with that key in scope
    """
    if parent_menu_key is None:
        return []
    if parent_menu_key == menu_key:
        raise CyclicMenuError(f"Menu '{menu_key}' cannot be its own parent", menu_key=menu_key)

    parent = await _find_entry(db, tenant_id, parent_menu_key)
    if parent is None:
        raise NotFoundError(
            f"Parent menu '{parent_menu_key}' not found",
            parent_menu_key=parent_menu_key,
        )

    chain: List[str] = []
    visited = {menu_key}
    key: Optional[str] = parent_menu_key
    while key is not None:
        if key in visited:
            raise CyclicMenuError(
                f"Setting '{parent_menu_key}' as parent of '{menu_key}' creates a cycle",
                menu_key=menu_key,
                parent_menu_key=parent_menu_key,
                tenant_id=tenant_id,
            )
        visited.add(key)
        chain.append(key)
        ancestor = parent if key == parent_menu_key else await _find_entry(db, tenant_id, key)
        if ancestor is None:
            break
        key = ancestor.parent_menu_key
    return chain


async def _ensure_no_cycle_in_tenant_views(
    db: AsyncSession,
    menu_key: str,
    parent_menu_key: Optional[str],
    chain: List[str],
) -> None:
    """
    Repeat the cycle check for a global entry in every tenant catalog it reaches.

    A tenant sees the global chain unchanged unless it shadows one of the
    chain's keys, so only those tenants are walked. Tenants shadowing
    ``menu_key`` itself never see the global entry.
    """
    if not chain:
        return
    result = await db.execute(
        select(MenuEntry.tenant_id)
        .where(MenuEntry.tenant_id.is_not(None), MenuEntry.menu_key.in_(chain))
        .distinct()
    )
    tenant_ids = set(result.scalars().all())
    if not tenant_ids:
        return
    shadowing = await db.execute(
        select(MenuEntry.tenant_id).where(
            MenuEntry.tenant_id.in_(tenant_ids), MenuEntry.menu_key == menu_key
        )
    )
    for tenant_id in sorted(tenant_ids - set(shadowing.scalars().all())):
        await _ensure_no_cycle(db, tenant_id, menu_key, parent_menu_key)


async def _ensure_key_available(
    db: AsyncSession,
    tenant_id: Optional[int],
    menu_key: str,
    exclude_id: Optional[int] = None,
) -> None:
    tenant_match = MenuEntry.tenant_id.is_(None) if tenant_id is None else MenuEntry.tenant_id == tenant_id
    stmt = select(MenuEntry.id).where(tenant_match, MenuEntry.menu_key == menu_key)
    if exclude_id is not None:
        stmt = stmt.where(MenuEntry.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ConflictError(f"Menu '{menu_key}' already exists", menu_key=menu_key, tenant_id=tenant_id)


async def _count_children(db: AsyncSession, entry: MenuEntry) -> int:
    stmt = select(func.count()).select_from(MenuEntry).where(
        MenuEntry.parent_menu_key == entry.menu_key,
        MenuEntry.id != entry.id,
    )
    if entry.tenant_id is not None:
        stmt = stmt.where(MenuEntry.tenant_id == entry.tenant_id)
    return await db.scalar(stmt)


def _set_requirements(entry: MenuEntry, permission_ids: Iterable[int]) -> None:
    """Replace the required permissions, keeping rows that stay."""
    current = {req.permission_id: req for req in entry.requirements}
    requirements = []
    for position, permission_id in enumerate(dict.fromkeys(permission_ids)):
        requirement = current.get(permission_id) or MenuRequirement(permission_id=permission_id)
        requirement.position = position
        requirements.append(requirement)
    entry.requirements = requirements


def _ensure_can_write(actor: User, tenant_id: Optional[int]) -> None:
    if actor.is_super_admin:
        return
    if tenant_id is None:
        raise AuthorizationError("Only super-admins can manage global menu entries")
    if tenant_id != actor.tenant_id:
        raise AuthorizationError("Menu entry belongs to another tenant")


# ============================================================================
# Write path
# ============================================================================

async def create_menu_entry(db: AsyncSession, actor: User, data: MenuEntryCreate) -> MenuEntry:
    """Create a menu entry in ``draft`` or ``active`` status."""
    tenant_id = data.tenant_id
    if tenant_id is None and not actor.is_super_admin:
        tenant_id = actor.tenant_id
    _ensure_can_write(actor, tenant_id)
    if tenant_id is not None and await db.get(Tenant, tenant_id) is None:
        raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)

    if data.status not in INITIAL_STATUSES:
        raise ValidationError(
            f"New menu entries start as draft or active, not {data.status.value}",
            field="status",
        )

    await _ensure_key_available(db, tenant_id, data.menu_key)
    chain = await _ensure_no_cycle(db, tenant_id, data.menu_key, data.parent_menu_key)
    if tenant_id is None:
        await _ensure_no_cycle_in_tenant_views(db, data.menu_key, data.parent_menu_key, chain)
    await ensure_permissions_exist(db, data.permission_ids)

    entry = MenuEntry(
        tenant_id=tenant_id,
        menu_key=data.menu_key,
        menu_name=data.menu_name,
        parent_menu_key=data.parent_menu_key,
        description=data.description,
        match_type=data.match_type,
        display_order=data.display_order,
        icon=data.icon,
        route=data.route,
        status=data.status,
        is_active=True,
        requirements=[],
    )
    _set_requirements(entry, data.permission_ids)
    db.add(entry)
    try:
        await db.flush()
        record_audit(
            db, actor, "create", "menu_entry", entry.id, tenant_id=tenant_id,
            details=data.model_dump(mode="json"),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Menu '{data.menu_key}' already exists")

    await db.refresh(entry)
    log.info(f"Created menu entry {entry.menu_key} (id={entry.id}, tenant={tenant_id})")
    return entry


async def update_menu_entry(db: AsyncSession, actor: User, data: MenuEntryUpdate) -> MenuEntry:
    """
    Update a menu entry.

    Raises:
        ValidationError: status change outside draft→active→inactive→active
        CyclicMenuError: new parent makes the entry its own ancestor
        ConflictError: duplicate key, or renaming an entry that has children
    """
    entry = await get_menu_entry(db, data.id)
    _ensure_can_write(actor, entry.tenant_id)
    changes = data.model_dump(exclude_unset=True, exclude={"id"})

    new_status = changes.get("status")
    if new_status is not None and new_status != entry.status:
        if (entry.status, new_status) not in ALLOWED_TRANSITIONS:
            raise ValidationError(
                f"Menu status cannot change from {entry.status.value} to {new_status.value}",
                field="status",
            )

    new_key = changes.get("menu_key") or entry.menu_key
    if new_key != entry.menu_key:
        await _ensure_key_available(db, entry.tenant_id, new_key, exclude_id=entry.id)
        if await _count_children(db, entry):
            raise ConflictError(
                f"Menu '{entry.menu_key}' has children and cannot be renamed",
                menu_key=entry.menu_key,
            )

    new_parent = changes["parent_menu_key"] if "parent_menu_key" in changes else entry.parent_menu_key
    if "parent_menu_key" in changes or new_key != entry.menu_key:
        chain = await _ensure_no_cycle(db, entry.tenant_id, new_key, new_parent)
        if entry.tenant_id is None:
            await _ensure_no_cycle_in_tenant_views(db, new_key, new_parent, chain)

    permission_ids = changes.pop("permission_ids", None)
    if permission_ids is not None:
        await ensure_permissions_exist(db, permission_ids)
        _set_requirements(entry, permission_ids)

    for key, value in changes.items():
        if value is None and key not in ("parent_menu_key", "description", "route"):
            continue
        setattr(entry, key, value)
    if new_status is not None:
        entry.is_active = new_status != MenuStatus.INACTIVE

    try:
        record_audit(
            db, actor, "update", "menu_entry", entry.id, tenant_id=entry.tenant_id,
            details=data.model_dump(mode="json", exclude_unset=True),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Menu '{new_key}' already exists")

    await db.refresh(entry)
    return entry


async def delete_menu_entry(db: AsyncSession, actor: User, menu_id: int) -> MenuEntry:
    """Delete a childless menu entry with its requirements."""
    entry = await get_menu_entry(db, menu_id)
    _ensure_can_write(actor, entry.tenant_id)

    children = await _count_children(db, entry)
    if children:
        raise ConflictError(
            f"Menu '{entry.menu_key}' still has {children} child entries",
            menu_key=entry.menu_key,
            children=children,
        )

    await db.delete(entry)
    record_audit(
        db, actor, "delete", "menu_entry", menu_id, tenant_id=entry.tenant_id,
        details={"menu_key": entry.menu_key},
    )
    await db.commit()
    log.info(f"Deleted menu entry {entry.menu_key} (id={menu_id})")
    return entry
