"""
Tests for the permission catalog write path.
"""
import pytest
from sqlalchemy import select

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.features.permissions.catalog import (
    create_permission,
    delete_permission,
    list_permissions,
    update_permission,
)
from app.features.permissions.models import AuditLog, GrantStatus, Permission, RoleGrant
from app.features.permissions.schemas import PermissionCreate, PermissionUpdate


class TestCreatePermission:

    async def test_create_derives_resource_and_action(self, db, make):
        """Resource and action come from the key when omitted."""
        admin = await make.super_admin()

        permission = await create_permission(
            db, admin, PermissionCreate(permission_key="Housekeeping.Assign", category="Housekeeping")
        )

        assert permission.permission_key == "housekeeping.assign"
        assert permission.resource == "housekeeping"
        assert permission.action == "assign"

        audit = (await db.execute(select(AuditLog))).scalars().one()
        assert audit.action == "create"
        assert audit.resource_id == permission.id

    async def test_malformed_key_is_rejected(self, db, make):
        admin = await make.super_admin()

        with pytest.raises(ValidationError):
            await create_permission(db, admin, PermissionCreate(permission_key="bookings"))

        assert (await db.execute(select(Permission))).first() is None

    async def test_resource_must_match_key(self, db, make):
        admin = await make.super_admin()

        with pytest.raises(ValidationError):
            await create_permission(
                db, admin, PermissionCreate(permission_key="bookings.read", resource="rooms")
            )

    async def test_duplicate_key_conflicts(self, db, make):
        admin = await make.super_admin()
        await make.permission("bookings.read")

        with pytest.raises(ConflictError):
            await create_permission(db, admin, PermissionCreate(permission_key="bookings.read"))

    async def test_tenant_admin_cannot_create_system_permission(self, db, make, hotel):
        actor = await make.user(hotel["tenant"])

        with pytest.raises(AuthorizationError):
            await create_permission(
                db, actor, PermissionCreate(permission_key="audit.export", is_system_permission=True)
            )


class TestUpdatePermission:

    async def test_system_permission_is_protected(self, db, make, hotel):
        """Only super-admins may edit system permissions."""
        actor = await make.user(hotel["tenant"])
        admin = await make.super_admin()
        permission = await make.permission("platform.configure", is_system=True)

        with pytest.raises(AuthorizationError):
            await update_permission(db, actor, PermissionUpdate(id=permission.id, description="changed"))

        updated = await update_permission(db, admin, PermissionUpdate(id=permission.id, description="changed"))
        assert updated.description == "changed"

    async def test_renaming_action_rebuilds_key(self, db, make):
        admin = await make.super_admin()
        permission = await make.permission("bookings.cancel")

        updated = await update_permission(db, admin, PermissionUpdate(id=permission.id, action="void"))

        assert updated.permission_key == "bookings.void"

    async def test_rename_onto_existing_key_conflicts(self, db, make):
        admin = await make.super_admin()
        await make.permission("bookings.read")
        other = await make.permission("bookings.view")

        with pytest.raises(ConflictError):
            await update_permission(
                db, admin, PermissionUpdate(id=other.id, permission_key="bookings.read")
            )

    async def test_unknown_permission(self, db, make):
        admin = await make.super_admin()

        with pytest.raises(NotFoundError):
            await update_permission(db, admin, PermissionUpdate(id=999, description="x"))


class TestDeletePermission:

    async def test_delete_blocked_by_active_grant(self, db, make):
        admin = await make.super_admin()
        permission = await make.permission("rooms.read")
        await make.role("housekeeper", None, [permission])

        with pytest.raises(ConflictError):
            await delete_permission(db, admin, permission.id)

    async def test_delete_blocked_by_feature(self, db, make, hotel):
        admin = await make.super_admin()

        with pytest.raises(ConflictError):
            await delete_permission(db, admin, hotel["permissions"]["bookings.read"].id)

    async def test_delete_blocked_by_menu_requirement(self, db, make):
        admin = await make.super_admin()
        permission = await make.permission("rooms.read")
        await make.menu("rooms", permissions=[permission])

        with pytest.raises(ConflictError):
            await delete_permission(db, admin, permission.id)

    async def test_delete_removes_inactive_grants(self, db, make):
        """Inactive grants carry no access and go away with the permission."""
        admin = await make.super_admin()
        permission = await make.permission("rooms.read")
        await make.role("housekeeper", None, [permission], grant_status=GrantStatus.INACTIVE)

        await delete_permission(db, admin, permission.id)

        assert (await db.execute(select(RoleGrant))).first() is None
        assert await db.get(Permission, permission.id) is None

    async def test_tenant_admin_cannot_delete_system_permission(self, db, make, hotel):
        actor = await make.user(hotel["tenant"])
        permission = await make.permission("platform.configure", is_system=True)

        with pytest.raises(AuthorizationError):
            await delete_permission(db, actor, permission.id)


class TestListPermissions:

    async def test_ordered_by_key(self, db, make):
        await make.permissions("rooms.read", "bookings.read", "bookings.create")

        result = await list_permissions(db)

        assert [p.permission_key for p in result] == ["bookings.create", "bookings.read", "rooms.read"]

    async def test_filters(self, db, make):
        await make.permissions("rooms.read", "bookings.read")
        await make.permission("platform.configure", is_system=True)

        assert [p.permission_key for p in await list_permissions(db, resource="rooms")] == ["rooms.read"]
        assert [p.permission_key for p in await list_permissions(db, search="BOOK")] == ["bookings.read"]
        assert "platform.configure" not in {
            p.permission_key for p in await list_permissions(db, include_system=False)
        }
