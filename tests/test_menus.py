"""
Tests for menu visibility, tree assembly and the menu entry write path.
"""
import itertools

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    CyclicMenuError,
    NotFoundError,
    ValidationError,
)
from app.features.menus.catalog import (
    create_menu_entry,
    delete_menu_entry,
    list_menu_entries,
    load_menu_catalog,
    update_menu_entry,
)
from app.features.menus.models import MatchType, MenuEntry, MenuRequirement, MenuStatus
from app.features.menus.schemas import MenuEntryCreate, MenuEntryUpdate
from app.features.menus.visibility import (
    build_menu_tree,
    check_menu_access,
    flatten_menu,
    matches,
    menus_for_user,
    visible_menu,
)


_ids = itertools.count(1)


def entry(key, parent=None, required=(), match_type=MatchType.ANY, order=0, status=MenuStatus.ACTIVE):
    """Unsaved menu entry for the pure visibility functions."""
    return MenuEntry(
        id=next(_ids),
        menu_key=key,
        menu_name=key.title(),
        parent_menu_key=parent,
        match_type=match_type,
        display_order=order,
        icon="",
        route=f"/{key}",
        status=status,
        is_active=status != MenuStatus.INACTIVE,
        requirements=[MenuRequirement(permission_id=pid, position=i) for i, pid in enumerate(required)],
    )


def keys(nodes):
    return [node.menu_key for node in nodes]


class TestMatching:

    HELD = {1, 2, 3}

    @pytest.mark.parametrize("match_type,required,expected", [
        (MatchType.ALL, [1, 2], True),
        (MatchType.ALL, [1, 9], False),
        (MatchType.ANY, [1, 9], True),
        (MatchType.ANY, [9], False),
        (MatchType.ANY, [], True),
        (MatchType.NONE, [9], True),
        (MatchType.NONE, [1], False),
        (MatchType.ALL, [], True),
    ])
    def test_match_types(self, match_type, required, expected):
        assert matches(match_type, required, self.HELD) is expected


class TestTreeAssembly:

    def test_children_of_hidden_parent_are_dropped(self):
        """A visible child is not shown when its parent is hidden."""
        entries = [
            entry("billing", required=[9]),
            entry("invoices", parent="billing", required=[1]),
            entry("front_desk", required=[1]),
        ]

        tree = build_menu_tree(entries, {1})

        assert keys(tree) == ["front_desk"]

    def test_parent_without_visible_children_is_shown(self):
        entries = [
            entry("reports", required=[1]),
            entry("revenue", parent="reports", required=[9]),
        ]

        tree = build_menu_tree(entries, {1})

        assert keys(tree) == ["reports"]
        assert tree[0].children == []

    def test_orphan_is_dropped(self):
        entries = [entry("night_audit", parent="missing")]

        assert build_menu_tree(entries, set()) == []

    def test_siblings_ordered_by_display_order_then_key(self):
        entries = [
            entry("settings", order=9),
            entry("rooms", order=1),
            entry("bookings", order=1),
            entry("walk_in", parent="bookings", order=2),
            entry("arrivals", parent="bookings", order=2),
            entry("departures", parent="bookings", order=1),
        ]

        tree = build_menu_tree(entries, set())

        assert keys(tree) == ["bookings", "rooms", "settings"]
        assert keys(tree[0].children) == ["departures", "arrivals", "walk_in"]

    def test_output_independent_of_input_order(self):
        entries = [
            entry("bookings", order=1),
            entry("arrivals", parent="bookings"),
            entry("rooms", order=2),
        ]

        forward = [item.model_dump() for item in flatten_menu(entries, set())]
        backward = [item.model_dump() for item in flatten_menu(list(reversed(entries)), set())]

        assert forward == backward

    def test_flattened_menu_is_pre_order_with_depth(self):
        entries = [
            entry("bookings", order=1),
            entry("arrivals", parent="bookings"),
            entry("rooms", order=2),
        ]

        items = flatten_menu(entries, set())

        assert [(item.menu_key, item.depth) for item in items] == [
            ("bookings", 0), ("arrivals", 1), ("rooms", 0)
        ]

    def test_draft_entry_is_not_visible(self):
        entries = [entry("spa", status=MenuStatus.DRAFT)]

        assert build_menu_tree(entries, set()) == []


class TestUserMenu:

    async def test_menu_follows_effective_permissions(self, db, make, hotel):
        perms = hotel["permissions"]
        role = await make.role("receptionist", hotel["tenant"], [perms["bookings.read"], perms["reports.read"]])
        user = await make.user(hotel["tenant"], roles=[role])
        await make.menu("bookings", permissions=[perms["bookings.read"]], display_order=1)
        await make.menu("new_booking", parent="bookings", permissions=[perms["bookings.create"]])
        await make.menu("reports", permissions=[perms["reports.read"]], display_order=2)

        tree = await visible_menu(db, user)

        # reports.read is granted but not sold by the plan
        assert keys(tree) == ["bookings"]
        assert tree[0].children == []

    async def test_tenant_entry_shadows_global(self, db, make, hotel):
        """A tenant entry replaces the global entry with the same key."""
        perms = hotel["permissions"]
        role = await make.role("receptionist", hotel["tenant"], [perms["bookings.read"]])
        user = await make.user(hotel["tenant"], roles=[role])
        await make.menu("bookings", permissions=[perms["bookings.read"]])
        await make.menu("bookings", permissions=[perms["bookings.delete"]], tenant=hotel["tenant"])

        assert await visible_menu(db, user) == []

    async def test_inactive_tenant_entry_still_shadows(self, db, make, hotel):
        await make.menu("spa")
        await make.menu("spa", tenant=hotel["tenant"], status=MenuStatus.INACTIVE)

        assert await load_menu_catalog(db, hotel["tenant"].id) == []
        assert [e.menu_key for e in await load_menu_catalog(db, None)] == ["spa"]

    async def test_menus_for_user_and_access_check(self, db, make, hotel):
        perms = hotel["permissions"]
        role = await make.role("receptionist", hotel["tenant"], [perms["bookings.read"]])
        user = await make.user(hotel["tenant"], roles=[role])
        await make.menu("bookings", permissions=[perms["bookings.read"]])
        await make.menu("cancellations", parent="bookings", permissions=[perms["bookings.delete"]])

        items = await menus_for_user(db, user)
        access = await check_menu_access(db, user, ["bookings", "cancellations", "unknown"])

        assert [item.menu_key for item in items] == ["bookings"]
        assert access == {"bookings": True, "cancellations": False, "unknown": False}

    async def test_super_admin_menu_applies_match_rules(self, db, make, hotel):
        admin = await make.super_admin()
        await make.menu("bookings", permissions=[hotel["permissions"]["bookings.read"]])
        await make.menu("guest_portal", permissions=[hotel["permissions"]["reports.read"]],
                        match_type=MatchType.NONE)

        assert keys(await visible_menu(db, admin)) == ["bookings"]


class TestMenuWrites:

    async def test_create_with_requirements_in_order(self, db, make, hotel):
        admin = await make.super_admin()
        perms = hotel["permissions"]

        created = await create_menu_entry(db, admin, MenuEntryCreate(
            menu_key=" bookings ",
            menu_name="Bookings",
            match_type=MatchType.ALL,
            permission_ids=[perms["bookings.create"].id, perms["bookings.read"].id],
        ))

        assert created.menu_key == "bookings"
        assert created.required_permission_ids == [perms["bookings.create"].id, perms["bookings.read"].id]

    async def test_create_with_unknown_parent(self, db, make):
        admin = await make.super_admin()

        with pytest.raises(NotFoundError):
            await create_menu_entry(db, admin, MenuEntryCreate(
                menu_key="arrivals", menu_name="Arrivals", parent_menu_key="bookings"
            ))

    async def test_create_inactive_is_rejected(self, db, make):
        admin = await make.super_admin()

        with pytest.raises(ValidationError):
            await create_menu_entry(db, admin, MenuEntryCreate(
                menu_key="spa", menu_name="Spa", status=MenuStatus.INACTIVE
            ))

    async def test_duplicate_key_conflicts(self, db, make):
        admin = await make.super_admin()
        await make.menu("bookings")

        with pytest.raises(ConflictError):
            await create_menu_entry(db, admin, MenuEntryCreate(menu_key="bookings", menu_name="Bookings"))

    async def test_tenant_user_cannot_write_global_entries(self, db, make, hotel):
        actor = await make.user(hotel["tenant"])
        global_entry = await make.menu("bookings")

        with pytest.raises(AuthorizationError):
            await update_menu_entry(db, actor, MenuEntryUpdate(id=global_entry.id, menu_name="Stays"))

        # Without a tenant_id the entry lands in the actor's tenant
        own = await create_menu_entry(db, actor, MenuEntryCreate(menu_key="bookings", menu_name="Stays"))
        assert own.tenant_id == hotel["tenant"].id

    async def test_self_parent_is_cyclic(self, db, make):
        admin = await make.super_admin()
        bookings = await make.menu("bookings")

        with pytest.raises(CyclicMenuError):
            await update_menu_entry(db, admin, MenuEntryUpdate(id=bookings.id, parent_menu_key="bookings"))

    async def test_parent_chain_cycle(self, db, make):
        """Making an ancestor the child of its descendant is rejected."""
        admin = await make.super_admin()
        front_desk = await make.menu("front_desk")
        await make.menu("bookings", parent="front_desk")
        await make.menu("arrivals", parent="bookings")

        with pytest.raises(CyclicMenuError):
            await update_menu_entry(db, admin, MenuEntryUpdate(id=front_desk.id, parent_menu_key="arrivals"))

    async def test_status_transitions(self, db, make):
        admin = await make.super_admin()
        spa = await make.menu("spa", status=MenuStatus.DRAFT)

        with pytest.raises(ValidationError):
            await update_menu_entry(db, admin, MenuEntryUpdate(id=spa.id, status=MenuStatus.INACTIVE))

        spa = await update_menu_entry(db, admin, MenuEntryUpdate(id=spa.id, status=MenuStatus.ACTIVE))
        assert spa.is_active

        spa = await update_menu_entry(db, admin, MenuEntryUpdate(id=spa.id, status=MenuStatus.INACTIVE))
        assert not spa.is_active

        with pytest.raises(ValidationError):
            await update_menu_entry(db, admin, MenuEntryUpdate(id=spa.id, status=MenuStatus.DRAFT))

    async def test_replacing_requirements(self, db, make, hotel):
        admin = await make.super_admin()
        perms = hotel["permissions"]
        bookings = await make.menu("bookings", permissions=[perms["bookings.read"], perms["bookings.create"]])

        updated = await update_menu_entry(db, admin, MenuEntryUpdate(
            id=bookings.id,
            permission_ids=[perms["bookings.delete"].id, perms["bookings.read"].id],
        ))

        assert updated.required_permission_ids == [perms["bookings.delete"].id, perms["bookings.read"].id]
        rows = (await db.execute(select(MenuRequirement))).scalars().all()
        assert len(rows) == 2

    async def test_rename_with_children_conflicts(self, db, make):
        admin = await make.super_admin()
        bookings = await make.menu("bookings")
        await make.menu("arrivals", parent="bookings")

        with pytest.raises(ConflictError):
            await update_menu_entry(db, admin, MenuEntryUpdate(id=bookings.id, menu_key="stays"))

    async def test_delete_with_children_conflicts(self, db, make):
        admin = await make.super_admin()
        bookings = await make.menu("bookings")
        arrivals = await make.menu("arrivals", parent="bookings")

        with pytest.raises(ConflictError):
            await delete_menu_entry(db, admin, bookings.id)

        await delete_menu_entry(db, admin, arrivals.id)
        await delete_menu_entry(db, admin, bookings.id)
        assert (await db.execute(select(MenuEntry))).first() is None

    async def test_listing_keeps_drafts_and_hides_inactive(self, db, make):
        admin = await make.super_admin()
        await make.menu("bookings", display_order=1)
        await make.menu("spa", status=MenuStatus.DRAFT, display_order=2)
        await make.menu("legacy", status=MenuStatus.INACTIVE)

        listed = await list_menu_entries(db, admin)
        everything = await list_menu_entries(db, admin, include_inactive=True)

        assert [e.menu_key for e in listed] == ["bookings", "spa"]
        assert len(everything) == 3

    async def test_global_parent_change_cyclic_in_tenant_view(self, db, make, hotel):
        """A tenant entry shadowing part of the chain can close a cycle."""
        admin = await make.super_admin()
        front_desk = await make.menu("front_desk")
        await make.menu("bookings")
        await make.menu("bookings", parent="front_desk", tenant=hotel["tenant"])

        with pytest.raises(CyclicMenuError) as exc:
            await update_menu_entry(db, admin, MenuEntryUpdate(id=front_desk.id, parent_menu_key="bookings"))

        assert exc.value.details["tenant_id"] == hotel["tenant"].id
        await db.refresh(front_desk)
        assert front_desk.parent_menu_key is None
        assert keys(await visible_menu(db, admin)) == ["bookings", "front_desk"]

    async def test_global_parent_change_ignored_by_shadowing_tenant(self, db, make, hotel):
        """A tenant with its own copy of the entry never sees the global one."""
        admin = await make.super_admin()
        front_desk = await make.menu("front_desk")
        await make.menu("bookings")
        await make.menu("bookings", parent="front_desk", tenant=hotel["tenant"])
        await make.menu("front_desk", tenant=hotel["tenant"])

        updated = await update_menu_entry(db, admin, MenuEntryUpdate(id=front_desk.id, parent_menu_key="bookings"))

        assert updated.parent_menu_key == "bookings"

    async def test_global_create_cyclic_in_tenant_view(self, db, make, hotel):
        admin = await make.super_admin()
        await make.menu("front_desk")
        await make.menu("front_desk", parent="bookings", tenant=hotel["tenant"])

        with pytest.raises(CyclicMenuError):
            await create_menu_entry(db, admin, MenuEntryCreate(
                menu_key="bookings", menu_name="Bookings", parent_menu_key="front_desk"
            ))

    async def test_global_keys_are_unique_in_the_database(self, make):
        await make.menu("bookings")

        with pytest.raises(IntegrityError):
            await make.menu("bookings")
