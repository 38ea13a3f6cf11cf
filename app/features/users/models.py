"""
User model.

Users are provisioned by the authentication service; this service reads their
type and tenant/firm/branch scoping and owns only their role links.
"""
import enum
from sqlalchemy import String, Boolean, ForeignKey, Table, Column, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class UserType(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    STAFF = "STAFF"
    GUEST_STAFF = "GUEST_STAFF"


# User-Role relationship (full replace through assign_user_roles)
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base, TimestampMixin):
    """
    User identity and scoping context.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    user_type: Mapped[UserType] = mapped_column(
        SQLEnum(UserType, native_enum=False, length=20),
        default=UserType.STAFF,
        nullable=False
    )

    # Scoping context (null tenant = platform staff)
    tenant_id: Mapped[int | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    firm_id: Mapped[int | None] = mapped_column(nullable=True)
    branch_id: Mapped[int | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_super_admin(self) -> bool:
        return self.user_type == UserType.SUPER_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, type={self.user_type.value})>"
