"""
Permission, Role and RoleGrant models for tenant-scoped RBAC.

- Permissions are ``resource.action`` capabilities with a data scope.
- Roles are global (``tenant_id`` null, system roles) or tenant-specific.
- RoleGrants link roles to permissions; a role's grant set is always
  replaced as a whole.
"""
import enum
from typing import Any, Dict
from sqlalchemy import (
    String, ForeignKey, JSON, Text, Boolean, Integer, UniqueConstraint, Index, Enum as SQLEnum, text
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class PermissionScope(str, enum.Enum):
    ALL = "all"
    OWN = "own"
    TEAM = "team"
    BRANCH = "branch"
    FIRM = "firm"


class GrantStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission model defining one action on one resource.

    Examples:
    - permission_key="bookings.read", resource="bookings", action="read"
    - permission_key="reports.export", resource="reports", action="export", scope="branch"
    """
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Permission definition
    permission_key: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    scope: Mapped[PermissionScope] = mapped_column(
        SQLEnum(PermissionScope, native_enum=False, values_callable=lambda e: [m.value for m in e], length=10),
        default=PermissionScope.ALL,
        nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Provisioned at deployment; only super-admins may change these
    is_system_permission: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.permission_key!r})>"


class Role(Base, TimestampMixin):
    """
    Role model bundling permission grants.

    Roles are tenant-specific or global (``tenant_id`` null).
    Examples: tenant_admin, receptionist, housekeeping_supervisor
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
        # NULL tenant ids never collide in the constraint above
        Index(
            "uq_roles_global_name", "name", unique=True,
            sqlite_where=text("tenant_id IS NULL"), postgresql_where=text("tenant_id IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Link to specific tenant (null = global role)
    tenant_id: Mapped[int | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Role definition
    name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    hierarchy_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, tenant_id={self.tenant_id})>"


class RoleGrant(Base, TimestampMixin):
    """
    Grant of one permission to one role.

    At most one row per (role_id, permission_id).
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
        Index("ix_role_permissions_role_status", "role_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id"), nullable=False, index=True)
    granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[GrantStatus] = mapped_column(
        SQLEnum(GrantStatus, native_enum=False, values_callable=lambda e: [m.value for m in e], length=10),
        default=GrantStatus.ACTIVE,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<RoleGrant(role_id={self.role_id}, permission_id={self.permission_id}, status={self.status.value})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit log for access-control mutations.

    Tracks who changed what, in which tenant.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Actor
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[int | None] = mapped_column(nullable=True, index=True)

    # Context
    tenant_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
