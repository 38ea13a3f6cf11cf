"""
Seed script to populate the default access-control catalog.

Run this script after database initialization to create:
- The hotel permission catalog
- Default system roles and their grants
- Default subscription plans, their features and the permissions they unlock
- The default global menu tree

Existing rows are left untouched, so the script can be run repeatedly.

Usage:
    uv run python -m scripts.seed_access_control
"""
import asyncio
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.menus.models import MatchType, MenuEntry, MenuRequirement, MenuStatus
from app.features.permissions.models import GrantStatus, Permission, Role, RoleGrant
from app.features.subscriptions.models import FeaturePermission, SubscriptionFeature, SubscriptionPlan
from app.utils import get_logger


log = get_logger(__name__)


# (permission_key, category, description, is_system_permission)
DEFAULT_PERMISSIONS = [
    # Platform administration
    ("tenants.create", "Platform", "Create tenants", True),
    ("tenants.read", "Platform", "View tenants", True),
    ("tenants.update", "Platform", "Update tenants", True),
    ("subscriptions.manage", "Platform", "Manage subscription plans", True),
    ("permissions.manage", "Platform", "Manage the permission catalog", True),

    # Access control
    ("permissions.view", "Access Control", "View permissions", True),
    ("roles.read", "Access Control", "View roles", True),
    ("roles.create", "Access Control", "Create roles", True),
    ("roles.update", "Access Control", "Update roles", True),
    ("roles.delete", "Access Control", "Delete roles", True),
    ("roles.manage", "Access Control", "Assign permissions and roles", True),
    ("menus.view", "Access Control", "View menu entries", True),
    ("menus.manage", "Access Control", "Manage menu entries", True),
    ("subscriptions.view", "Access Control", "View subscription plans", True),

    # Staff
    ("users.create", "Staff", "Create staff accounts", False),
    ("users.read", "Staff", "View staff accounts", False),
    ("users.update", "Staff", "Update staff accounts", False),
    ("users.delete", "Staff", "Delete staff accounts", False),
    ("invitations.send", "Staff", "Invite staff", False),
    ("invitations.manage", "Staff", "Manage invitations", False),

    # Operations
    ("dashboard.read", "Operations", "View the dashboard", False),
    ("hotels.create", "Operations", "Create hotels", False),
    ("hotels.read", "Operations", "View hotels", False),
    ("hotels.update", "Operations", "Update hotels", False),
    ("hotels.delete", "Operations", "Delete hotels", False),
    ("rooms.create", "Operations", "Create rooms", False),
    ("rooms.read", "Operations", "View rooms", False),
    ("rooms.update", "Operations", "Update rooms", False),
    ("rooms.delete", "Operations", "Delete rooms", False),
    ("room_types.create", "Operations", "Create room types", False),
    ("room_types.read", "Operations", "View room types", False),
    ("room_types.update", "Operations", "Update room types", False),
    ("room_types.delete", "Operations", "Delete room types", False),

    # Front desk
    ("bookings.create", "Front Desk", "Create bookings", False),
    ("bookings.read", "Front Desk", "View bookings", False),
    ("bookings.update", "Front Desk", "Update bookings", False),
    ("bookings.delete", "Front Desk", "Cancel bookings", False),
    ("guests.create", "Front Desk", "Register guests", False),
    ("guests.read", "Front Desk", "View guests", False),
    ("guests.update", "Front Desk", "Update guests", False),
    ("guests.delete", "Front Desk", "Delete guests", False),

    # Billing
    ("invoices.create", "Billing", "Create invoices", False),
    ("invoices.read", "Billing", "View invoices", False),
    ("invoices.update", "Billing", "Update invoices", False),
    ("invoices.delete", "Billing", "Delete invoices", False),
    ("payments.create", "Billing", "Record payments", False),
    ("payments.read", "Billing", "View payments", False),
    ("payments.update", "Billing", "Update payments", False),
    ("payments.delete", "Billing", "Delete payments", False),

    # Reporting
    ("reports.read", "Reporting", "View reports", False),
    ("reports.create", "Reporting", "Create reports", False),
    ("reports.export", "Reporting", "Export reports", False),

    # Settings
    ("settings.read", "Settings", "View settings", False),
    ("settings.update", "Settings", "Update settings", False),
]

PLATFORM_PERMISSIONS = {"tenants.create", "tenants.read", "tenants.update", "subscriptions.manage", "permissions.manage"}


# Global system roles
DEFAULT_ROLES = {
    "tenant_admin": {
        "display_name": "Tenant Admin",
        "description": "Administrator of a hotel group",
        "hierarchy_level": 100,
        "permissions": "TENANT",  # Every permission but the platform ones
    },
    "hotel_manager": {
        "display_name": "Hotel Manager",
        "description": "Runs day-to-day hotel operations",
        "hierarchy_level": 80,
        "permissions": [
            "dashboard.read", "users.read", "roles.read",
            "hotels.read", "hotels.update",
            "rooms.create", "rooms.read", "rooms.update", "rooms.delete",
            "room_types.create", "room_types.read", "room_types.update", "room_types.delete",
            "bookings.create", "bookings.read", "bookings.update", "bookings.delete",
            "guests.create", "guests.read", "guests.update",
            "invoices.read", "payments.read",
            "reports.read", "reports.create", "reports.export",
            "settings.read",
        ],
    },
    "receptionist": {
        "display_name": "Receptionist",
        "description": "Front desk staff",
        "hierarchy_level": 40,
        "is_default": True,
        "permissions": [
            "dashboard.read",
            "rooms.read", "room_types.read",
            "bookings.create", "bookings.read", "bookings.update",
            "guests.create", "guests.read", "guests.update",
            "payments.create", "payments.read",
        ],
    },
    "accountant": {
        "display_name": "Accountant",
        "description": "Billing and financial reporting",
        "hierarchy_level": 50,
        "permissions": [
            "dashboard.read",
            "invoices.create", "invoices.read", "invoices.update",
            "payments.create", "payments.read", "payments.update",
            "reports.read", "reports.export",
        ],
    },
}


CORE_FEATURE = [
    "dashboard.read", "permissions.view", "menus.view", "menus.manage", "subscriptions.view",
    "roles.read", "roles.create", "roles.update", "roles.delete", "roles.manage",
    "users.create", "users.read", "users.update", "users.delete",
    "invitations.send", "invitations.manage",
    "hotels.create", "hotels.read", "hotels.update", "hotels.delete",
    "rooms.create", "rooms.read", "rooms.update", "rooms.delete",
    "room_types.create", "room_types.read", "room_types.update", "room_types.delete",
    "settings.read", "settings.update",
]
FRONT_DESK_FEATURE = [
    "bookings.create", "bookings.read", "bookings.update", "bookings.delete",
    "guests.create", "guests.read", "guests.update", "guests.delete",
]
BILLING_FEATURE = [
    "invoices.create", "invoices.read", "invoices.update", "invoices.delete",
    "payments.create", "payments.read", "payments.update", "payments.delete",
]
REPORTING_FEATURE = ["reports.read", "reports.create", "reports.export"]

DEFAULT_PLANS = {
    "basic": {
        "plan_name": "Basic",
        "price_monthly": Decimal("49.00"),
        "price_yearly": Decimal("490.00"),
        "trial_days": 14,
        "max_staff": 10,
        "max_rooms": 50,
        "max_branches": 1,
        "sort_order": 1,
        "is_default": True,
        "features": {"Core": CORE_FEATURE, "Front Desk": FRONT_DESK_FEATURE},
    },
    "professional": {
        "plan_name": "Professional",
        "price_monthly": Decimal("149.00"),
        "price_yearly": Decimal("1490.00"),
        "trial_days": 14,
        "max_staff": 50,
        "max_rooms": 250,
        "max_branches": 5,
        "sort_order": 2,
        "features": {"Core": CORE_FEATURE, "Front Desk": FRONT_DESK_FEATURE, "Billing": BILLING_FEATURE},
    },
    "enterprise": {
        "plan_name": "Enterprise",
        "price_monthly": Decimal("499.00"),
        "price_yearly": Decimal("4990.00"),
        "max_staff": 1000,
        "max_rooms": 5000,
        "max_branches": 100,
        "sort_order": 3,
        "features": {
            "Core": CORE_FEATURE,
            "Front Desk": FRONT_DESK_FEATURE,
            "Billing": BILLING_FEATURE,
            "Reporting": REPORTING_FEATURE,
        },
    },
}


# (menu_key, menu_name, parent_menu_key, route, icon, display_order, match_type, required permissions)
DEFAULT_MENUS = [
    ("dashboard", "Dashboard", None, "/dashboard", "home", 0, MatchType.ANY, ["dashboard.read"]),
    ("properties", "Properties", None, None, "building", 10, MatchType.ANY,
     ["hotels.read", "rooms.read", "room_types.read"]),
    ("hotels", "Hotels", "properties", "/dashboard/hotels", "hotel", 0, MatchType.ANY, ["hotels.read"]),
    ("rooms", "Rooms", "properties", "/dashboard/rooms", "bed", 1, MatchType.ANY, ["rooms.read"]),
    ("room_types", "Room Types", "properties", "/dashboard/room-types", "layers", 2, MatchType.ANY,
     ["room_types.read"]),
    ("front_desk", "Front Desk", None, None, "concierge-bell", 20, MatchType.ANY,
     ["bookings.read", "guests.read"]),
    ("bookings", "Bookings", "front_desk", "/dashboard/bookings", "calendar", 0, MatchType.ANY,
     ["bookings.read"]),
    ("guests", "Guests", "front_desk", "/dashboard/guests", "users", 1, MatchType.ANY, ["guests.read"]),
    ("billing", "Billing", None, None, "credit-card", 30, MatchType.ANY, ["invoices.read", "payments.read"]),
    ("invoices", "Invoices", "billing", "/dashboard/invoices", "file-text", 0, MatchType.ANY,
     ["invoices.read"]),
    ("payments", "Payments", "billing", "/dashboard/payments", "wallet", 1, MatchType.ANY, ["payments.read"]),
    ("reports", "Reports", None, "/dashboard/reports", "bar-chart", 40, MatchType.ANY, ["reports.read"]),
    ("access_control", "Access Control", None, None, "shield", 50, MatchType.ANY,
     ["roles.read", "permissions.view", "menus.view"]),
    ("roles", "Roles", "access_control", "/dashboard/access-control/roles", "key", 0, MatchType.ALL,
     ["roles.read", "roles.update"]),
    ("permissions", "Permissions", "access_control", "/dashboard/access-control/permissions", "lock", 1,
     MatchType.ANY, ["permissions.view"]),
    ("menu_permissions", "Menus", "access_control", "/dashboard/access-control/menu-permissions", "menu", 2,
     MatchType.ANY, ["menus.view"]),
    ("subscription", "Subscription", None, "/dashboard/subscription", "package", 60, MatchType.ANY,
     ["subscriptions.view"]),
    ("settings", "Settings", None, "/dashboard/settings", "settings", 70, MatchType.ANY, ["settings.read"]),
]


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission keys to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {}

    for key, category, description, is_system in DEFAULT_PERMISSIONS:
        result = await db.execute(select(Permission).where(Permission.permission_key == key))
        existing = result.scalars().first()

        if existing:
            log.debug(f"Permission '{key}' already exists, skipping")
            permissions_map[key] = existing
            continue

        resource, action = key.split(".")
        permission = Permission(
            permission_key=key,
            resource=resource,
            action=action,
            category=category,
            description=description,
            is_system_permission=is_system,
        )
        db.add(permission)
        permissions_map[key] = permission
        log.info(f"Created permission: {key}")

    await db.commit()
    log.info(f"Seeded {len(permissions_map)} permissions")
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]):
    """Create the global system roles with their grants."""
    log.info("Creating default roles...")

    for role_name, role_config in DEFAULT_ROLES.items():
        result = await db.execute(
            select(Role).where(Role.tenant_id.is_(None), Role.name == role_name)
        )
        if result.scalars().first():
            log.debug(f"Role '{role_name}' already exists, skipping")
            continue

        role = Role(
            tenant_id=None,
            name=role_name,
            display_name=role_config["display_name"],
            description=role_config["description"],
            hierarchy_level=role_config["hierarchy_level"],
            is_default=role_config.get("is_default", False),
            is_system_role=True,
        )
        db.add(role)
        await db.flush()

        if role_config["permissions"] == "TENANT":
            keys = [key for key in permissions_map if key not in PLATFORM_PERMISSIONS]
        else:
            keys = role_config["permissions"]

        for key in keys:
            if key not in permissions_map:
                log.warning(f"Permission '{key}' not found for role '{role_name}'")
                continue
            db.add(RoleGrant(
                role_id=role.id,
                permission_id=permissions_map[key].id,
                granted=True,
                status=GrantStatus.ACTIVE,
            ))
        log.info(f"Created role '{role_name}' with {len(keys)} permissions")

    await db.commit()


async def seed_plans(db: AsyncSession, permissions_map: dict[str, Permission]):
    """Create the default plans, their features and feature permissions."""
    log.info("Creating default subscription plans...")

    for slug, plan_config in DEFAULT_PLANS.items():
        result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.plan_slug == slug))
        if result.scalars().first():
            log.debug(f"Plan '{slug}' already exists, skipping")
            continue

        fields = {key: value for key, value in plan_config.items() if key != "features"}
        plan = SubscriptionPlan(plan_slug=slug, **fields)
        db.add(plan)
        await db.flush()

        for feature_name, keys in plan_config["features"].items():
            feature = SubscriptionFeature(subscription_id=plan.id, name=feature_name)
            db.add(feature)
            await db.flush()
            for key in keys:
                db.add(FeaturePermission(
                    subscription_id=plan.id,
                    feature_id=feature.id,
                    permission_id=permissions_map[key].id,
                ))
        log.info(f"Created plan '{slug}' with {len(plan_config['features'])} features")

    await db.commit()


async def seed_menus(db: AsyncSession, permissions_map: dict[str, Permission]):
    """Create the global menu tree (parents are listed before children)."""
    log.info("Creating default menu entries...")

    for key, name, parent, route, icon, order, match_type, required in DEFAULT_MENUS:
        result = await db.execute(
            select(MenuEntry).where(MenuEntry.tenant_id.is_(None), MenuEntry.menu_key == key)
        )
        if result.scalars().first():
            log.debug(f"Menu '{key}' already exists, skipping")
            continue

        db.add(MenuEntry(
            tenant_id=None,
            menu_key=key,
            menu_name=name,
            parent_menu_key=parent,
            route=route,
            icon=icon,
            display_order=order,
            match_type=match_type,
            status=MenuStatus.ACTIVE,
            is_active=True,
            requirements=[
                MenuRequirement(permission_id=permissions_map[permission_key].id, position=position)
                for position, permission_key in enumerate(required)
            ],
        ))
        log.info(f"Created menu entry: {key}")

    await db.commit()


async def main():
    """Main function to seed the access-control catalog."""
    log.info("Starting access-control seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            permissions_map = await seed_permissions(db)
            await seed_roles(db, permissions_map)
            await seed_plans(db, permissions_map)
            await seed_menus(db, permissions_map)
            log.info("Access-control seeding completed successfully!")
        except Exception as e:
            log.error(f"Error seeding access control: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
