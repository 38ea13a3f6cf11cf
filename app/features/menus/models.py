"""
Menu entry models.

Menu entries form a tree through ``parent_menu_key``; each entry carries an
ordered set of required permissions and a match type deciding how they are
evaluated against a user's effective permissions.
"""
import enum
from sqlalchemy import String, Boolean, Integer, Text, ForeignKey, Index, UniqueConstraint, Enum as SQLEnum, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin


class MatchType(str, enum.Enum):
    ANY = "ANY"
    ALL = "ALL"
    NONE = "NONE"


class MenuStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class MenuRequirement(Base):
    """Required permission of a menu entry, kept in declaration order."""
    __tablename__ = "menu_permission_requirements"

    menu_id: Mapped[int] = mapped_column(
        ForeignKey("menu_permissions.id", ondelete="CASCADE"),
        primary_key=True
    )
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id"), primary_key=True, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class MenuEntry(Base, TimestampMixin):
    """
    Navigation node gated by a required-permission rule.

    ``menu_key`` is unique per tenant scope (null tenant = global entry).
    """
    __tablename__ = "menu_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "menu_key", name="uq_menu_permissions_tenant_key"),
        # NULL tenant ids never collide in the constraint above
        Index(
            "uq_menu_permissions_global_key", "menu_key", unique=True,
            sqlite_where=text("tenant_id IS NULL"), postgresql_where=text("tenant_id IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[int | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    menu_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    menu_name: Mapped[str] = mapped_column(String(150), nullable=False)
    parent_menu_key: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    match_type: Mapped[MatchType] = mapped_column(
        SQLEnum(MatchType, native_enum=False, length=10),
        default=MatchType.ANY,
        nullable=False
    )
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    icon: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    route: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[MenuStatus] = mapped_column(
        SQLEnum(MenuStatus, native_enum=False, values_callable=lambda e: [m.value for m in e], length=10),
        default=MenuStatus.ACTIVE,
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    requirements: Mapped[list[MenuRequirement]] = relationship(
        MenuRequirement,
        order_by=MenuRequirement.position,
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def required_permission_ids(self) -> list[int]:
        return [req.permission_id for req in self.requirements]

    @property
    def is_visible_candidate(self) -> bool:
        return self.is_active and self.status == MenuStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<MenuEntry(id={self.id}, key={self.menu_key!r}, parent={self.parent_menu_key!r})>"
