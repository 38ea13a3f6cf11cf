"""
Tenant model.

Tenants are hotel groups using the platform. Their lifecycle is owned by the
tenant service; access control only needs to know whether a tenant is active
and which subscription plan it is on.
"""
from sqlalchemy import String, ForeignKey, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """
    Tenant scoping context for roles, users and menu entries.
    """
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Plan the tenant is currently subscribed to (null = no plan)
    subscription_id: Mapped[int | None] = mapped_column(
        ForeignKey("subscription_plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name!r}, plan={self.subscription_id})>"
