"""
Subscription plan, feature and feature-permission models.

A plan is the commercial tier a tenant is on; features are the purchasable
capability bundles of a plan; feature permissions say which permissions a
feature unlocks. Together they form the entitlement ceiling of a tenant.
"""
from decimal import Decimal
from sqlalchemy import String, Boolean, Integer, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin


class SubscriptionPlan(Base, TimestampMixin):
    """
    Subscription tier with its numeric limits.
    """
    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    plan_name: Mapped[str] = mapped_column(String(100), nullable=False)
    plan_slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    plan_type: Mapped[str] = mapped_column(String(50), nullable=False, default="standard")

    # Pricing
    price_monthly: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    price_yearly: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    trial_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Limits
    max_staff: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_rooms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_branches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_storage_gb: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_bookings_per_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_integrations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(id={self.id}, slug={self.plan_slug!r}, active={self.is_active})>"


class SubscriptionFeature(Base, TimestampMixin):
    """
    Purchasable feature of a plan. Deleting a feature only flags it.
    """
    __tablename__ = "subscription_features"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscription_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    feature_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<SubscriptionFeature(id={self.id}, plan={self.subscription_id}, name={self.name!r})>"


class FeaturePermission(Base, TimestampMixin):
    """
    Permission unlocked by a plan's feature.

    ``feature_id`` always belongs to ``subscription_id``.
    """
    __tablename__ = "feature_permissions"
    __table_args__ = (
        UniqueConstraint("feature_id", "permission_id", name="uq_feature_permissions_feature_permission"),
        Index("ix_feature_permissions_plan", "subscription_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscription_plans.id", ondelete="CASCADE"),
        nullable=False
    )
    feature_id: Mapped[int] = mapped_column(
        ForeignKey("subscription_features.id", ondelete="CASCADE"),
        nullable=False
    )
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id"), nullable=False, index=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<FeaturePermission(feature={self.feature_id}, permission={self.permission_id})>"
