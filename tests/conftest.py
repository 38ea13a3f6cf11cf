"""
Pytest configuration and fixtures.

Each test runs against its own SQLite file database.
"""
from typing import Iterable, Optional
import pytest
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient

from app.core.cache import resolution_cache
from app.core.database.engine import create_engine, create_session_factory, get_db, init_db
from app.core.rate_limit import limiter
from app.features.menus.models import MatchType, MenuEntry, MenuRequirement, MenuStatus
from app.features.permissions.models import GrantStatus, Permission, Role, RoleGrant
from app.features.subscriptions.models import FeaturePermission, SubscriptionFeature, SubscriptionPlan
from app.features.tenants.models import Tenant
from app.features.users.models import User, UserType, user_roles


@pytest.fixture(autouse=True)
async def clear_resolution_cache(monkeypatch):
    """Point the resolution cache at an empty in-memory Redis for every test."""
    client = FakeAsyncRedis(decode_responses=True)
    monkeypatch.setattr(resolution_cache, "client", client)
    monkeypatch.setattr(resolution_cache, "ttl", 300)
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
async def engine(tmp_path):
    async_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(async_engine)
    yield async_engine
    await async_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    """Session for arranging data and calling services directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """HTTP client for the app, bound to the test database."""
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
    limiter.enabled = True
    app.dependency_overrides.clear()


class Factory:
    """Inserts committed rows directly, bypassing the services."""

    def __init__(self, session):
        self.db = session
        self._emails = 0

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def tenant(self, name: str = "Grand Hotel Group", plan: Optional[SubscriptionPlan] = None,
                     is_active: bool = True) -> Tenant:
        return await self._save(Tenant(
            name=name,
            is_active=is_active,
            subscription_id=plan.id if plan else None,
        ))

    async def user(self, tenant: Optional[Tenant] = None, user_type: UserType = UserType.STAFF,
                   roles: Iterable[Role] = (), name: str = "Staff Member") -> User:
        self._emails += 1
        user = await self._save(User(
            email=f"user{self._emails}@grandhotel.com",
            name=name,
            user_type=user_type,
            tenant_id=tenant.id if tenant else None,
        ))
        role_ids = [role.id for role in roles]
        if role_ids:
            await self.db.execute(
                user_roles.insert(),
                [{"user_id": user.id, "role_id": role_id} for role_id in role_ids],
            )
            await self.db.commit()
        return user

    async def super_admin(self) -> User:
        return await self.user(user_type=UserType.SUPER_ADMIN, name="Platform Admin")

    async def permission(self, key: str, is_system: bool = False, category: Optional[str] = None) -> Permission:
        resource, action = key.split(".")
        return await self._save(Permission(
            permission_key=key,
            resource=resource,
            action=action,
            category=category or resource.title(),
            description=f"{action} {resource}",
            is_system_permission=is_system,
        ))

    async def permissions(self, *keys: str) -> dict[str, Permission]:
        return {key: await self.permission(key) for key in keys}

    async def role(self, name: str, tenant: Optional[Tenant] = None, permissions: Iterable[Permission] = (),
                   is_system: bool = False, is_active: bool = True,
                   grant_status: GrantStatus = GrantStatus.ACTIVE) -> Role:
        role = await self._save(Role(
            tenant_id=tenant.id if tenant else None,
            name=name,
            display_name=name.replace("_", " ").title(),
            is_system_role=is_system,
            is_active=is_active,
        ))
        for permission in permissions:
            self.db.add(RoleGrant(
                role_id=role.id,
                permission_id=permission.id,
                granted=True,
                status=grant_status,
            ))
        await self.db.commit()
        return role

    async def plan(self, slug: str = "professional", is_active: bool = True) -> SubscriptionPlan:
        return await self._save(SubscriptionPlan(
            plan_name=slug.title(),
            plan_slug=slug,
            is_active=is_active,
        ))

    async def feature(self, plan: SubscriptionPlan, name: str = "Front Desk",
                      permissions: Iterable[Permission] = ()) -> SubscriptionFeature:
        feature = await self._save(SubscriptionFeature(subscription_id=plan.id, name=name))
        for permission in permissions:
            self.db.add(FeaturePermission(
                subscription_id=plan.id,
                feature_id=feature.id,
                permission_id=permission.id,
            ))
        await self.db.commit()
        return feature

    async def menu(self, key: str, parent: Optional[str] = None, permissions: Iterable[Permission] = (),
                   match_type: MatchType = MatchType.ANY, display_order: int = 0,
                   tenant: Optional[Tenant] = None, status: MenuStatus = MenuStatus.ACTIVE) -> MenuEntry:
        return await self._save(MenuEntry(
            tenant_id=tenant.id if tenant else None,
            menu_key=key,
            menu_name=key.replace("_", " ").title(),
            parent_menu_key=parent,
            match_type=match_type,
            display_order=display_order,
            status=status,
            is_active=status != MenuStatus.INACTIVE,
            requirements=[
                MenuRequirement(permission_id=permission.id, position=position)
                for position, permission in enumerate(permissions)
            ],
        ))


@pytest.fixture
def make(db):
    """Factory for committed test rows."""
    return Factory(db)


@pytest.fixture
async def hotel(make):
    """
    A tenant on a plan selling the booking permissions.

    The plan's "Front Desk" feature unlocks bookings.read, bookings.create
    and bookings.delete; reports.read exists but is sold by no feature.
    """
    perms = await make.permissions("bookings.read", "bookings.create", "bookings.delete", "reports.read")
    plan = await make.plan("professional")
    feature = await make.feature(
        plan, "Front Desk",
        [perms["bookings.read"], perms["bookings.create"], perms["bookings.delete"]],
    )
    tenant = await make.tenant(plan=plan)
    return {"tenant": tenant, "plan": plan, "feature": feature, "permissions": perms}
