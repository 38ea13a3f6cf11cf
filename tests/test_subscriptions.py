"""
Tests for subscription entitlements and the subscription catalog.
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, SubscriptionMismatchError
from app.features.subscriptions.models import FeaturePermission, SubscriptionFeature
from app.features.subscriptions.schemas import FeatureCreate, PlanCreate, PlanUpdate
from app.features.subscriptions.service import (
    assign_feature_permissions,
    assign_tenant_plan,
    create_feature,
    create_plan,
    delete_feature,
    delete_plan,
    get_entitled_permission_ids,
    get_entitled_permissions,
    global_permission_ids,
    list_features,
    list_plans,
    update_plan,
)
from app.features.users.models import UserType


def keys(permissions):
    return {permission.permission_key for permission in permissions}


class TestEntitlements:

    async def test_plan_features_define_entitlement(self, db, make, hotel):
        result = await get_entitled_permissions(db, hotel["tenant"].id)

        assert keys(result) == {"bookings.read", "bookings.create", "bookings.delete"}

    async def test_tenant_without_plan_is_entitled_to_nothing(self, db, make, hotel):
        tenant = await make.tenant("Unpaid Lodge")

        assert await get_entitled_permission_ids(db, tenant.id) == frozenset()

    async def test_inactive_plan_entitles_nothing(self, db, make, hotel):
        admin = await make.super_admin()

        await update_plan(db, admin, PlanUpdate(id=hotel["plan"].id, is_active=False))

        assert await get_entitled_permission_ids(db, hotel["tenant"].id) == frozenset()

    async def test_super_admin_caller_gets_catalog(self, db, make, hotel):
        admin = await make.super_admin()

        result = await get_entitled_permissions(db, hotel["tenant"].id, caller=admin)

        assert keys(result) == set(hotel["permissions"])

    async def test_no_tenant_gets_global_permissions(self, db, make, hotel):
        result = await get_entitled_permissions(db, None)

        assert keys(result) == {"reports.read"}

    async def test_deleted_feature_stops_entitling(self, db, make, hotel):
        admin = await make.super_admin()
        perms = hotel["permissions"]
        assert perms["reports.read"].id in await global_permission_ids(db)

        await delete_feature(db, admin, hotel["feature"].id)

        assert await get_entitled_permission_ids(db, hotel["tenant"].id) == frozenset()
        rows = (await db.execute(select(FeaturePermission))).scalars().all()
        assert rows and all(row.is_deleted for row in rows)
        # Unsold once the feature is gone
        assert perms["bookings.read"].id in await global_permission_ids(db)


class TestFeaturePermissions:

    async def test_assign_replaces_feature_permissions(self, db, make, hotel):
        admin = await make.super_admin()
        perms = hotel["permissions"]

        count = await assign_feature_permissions(
            db, admin, hotel["plan"].id, hotel["feature"].id, [perms["reports.read"].id]
        )

        assert count == 1
        assert keys(await get_entitled_permissions(db, hotel["tenant"].id)) == {"reports.read"}

    async def test_feature_of_other_plan_mismatches(self, db, make, hotel):
        """Assigning through the wrong plan is rejected without writing."""
        admin = await make.super_admin()
        other_plan = await make.plan("basic")

        with pytest.raises(SubscriptionMismatchError):
            await assign_feature_permissions(
                db, admin, other_plan.id, hotel["feature"].id, [hotel["permissions"]["reports.read"].id]
            )

        assert len((await db.execute(select(FeaturePermission))).scalars().all()) == 3

    async def test_unknown_permission(self, db, make, hotel):
        admin = await make.super_admin()

        with pytest.raises(NotFoundError):
            await assign_feature_permissions(db, admin, hotel["plan"].id, hotel["feature"].id, [9999])

    async def test_subscription_writes_need_super_admin(self, db, make, hotel):
        actor = await make.user(hotel["tenant"], user_type=UserType.TENANT_ADMIN)

        with pytest.raises(AuthorizationError):
            await assign_feature_permissions(db, actor, hotel["plan"].id, hotel["feature"].id, [])
        with pytest.raises(AuthorizationError):
            await assign_tenant_plan(db, actor, hotel["tenant"].id, None)


class TestPlanCatalog:

    async def test_create_plan_and_feature(self, db, make):
        admin = await make.super_admin()

        plan = await create_plan(db, admin, PlanCreate(
            plan_name="Enterprise", plan_slug=" Enterprise ", price_monthly=Decimal("499.00"), max_rooms=500,
        ))
        feature = await create_feature(db, admin, FeatureCreate(subscription_id=plan.id, name="Channel Manager"))

        assert plan.plan_slug == "enterprise"
        assert [f.id for f in await list_features(db, plan.id)] == [feature.id]

    async def test_duplicate_slug_conflicts(self, db, make, hotel):
        admin = await make.super_admin()

        with pytest.raises(ConflictError):
            await create_plan(db, admin, PlanCreate(plan_name="Pro", plan_slug="professional"))

    async def test_listing_hides_inactive_plans(self, db, make, hotel):
        await make.plan("legacy", is_active=False)

        assert [p.plan_slug for p in await list_plans(db)] == ["professional"]
        assert len(await list_plans(db, include_inactive=True)) == 2

    async def test_delete_plan_in_use_conflicts(self, db, make, hotel):
        admin = await make.super_admin()

        with pytest.raises(ConflictError):
            await delete_plan(db, admin, hotel["plan"].id)

    async def test_delete_unused_plan_removes_features(self, db, make, hotel):
        admin = await make.super_admin()
        await assign_tenant_plan(db, admin, hotel["tenant"].id, None)

        await delete_plan(db, admin, hotel["plan"].id)

        assert (await db.execute(select(SubscriptionFeature))).first() is None
        assert (await db.execute(select(FeaturePermission))).first() is None

    async def test_assign_unknown_plan(self, db, make, hotel):
        admin = await make.super_admin()

        with pytest.raises(NotFoundError):
            await assign_tenant_plan(db, admin, hotel["tenant"].id, 9999)
