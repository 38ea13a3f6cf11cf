"""
Pydantic schemas for the subscription endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Plan Schemas
# ============================================================================

class PlanListRequest(BaseModel):
    include_inactive: bool = False


class PlanBase(BaseModel):
    plan_name: str = Field(..., min_length=1, max_length=100)
    plan_type: str = Field("standard", max_length=50)
    price_monthly: Decimal = Field(Decimal("0"), ge=0)
    price_yearly: Decimal = Field(Decimal("0"), ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    trial_days: int = Field(0, ge=0)
    max_staff: int = Field(0, ge=0)
    max_rooms: int = Field(0, ge=0)
    max_branches: int = Field(0, ge=0)
    max_storage_gb: int = Field(0, ge=0)
    max_bookings_per_month: int = Field(0, ge=0)
    max_integrations: int = Field(0, ge=0)
    sort_order: int = 0
    is_active: bool = True
    is_default: bool = False


class PlanCreate(PlanBase):
    """Schema for creating a subscription plan."""
    plan_slug: str = Field(..., min_length=1, max_length=100)

    @field_validator('plan_slug')
    @classmethod
    def slug_format(cls, v: str) -> str:
        v = v.strip().lower()
        if not v.replace('-', '').replace('_', '').isalnum():
            raise ValueError('Plan slug must contain only alphanumeric characters, hyphens, and underscores')
        return v


class PlanUpdate(BaseModel):
    """Schema for updating a plan; omitted fields are left unchanged."""
    id: int
    plan_name: Optional[str] = Field(None, min_length=1, max_length=100)
    plan_type: Optional[str] = Field(None, max_length=50)
    price_monthly: Optional[Decimal] = Field(None, ge=0)
    price_yearly: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    trial_days: Optional[int] = Field(None, ge=0)
    max_staff: Optional[int] = Field(None, ge=0)
    max_rooms: Optional[int] = Field(None, ge=0)
    max_branches: Optional[int] = Field(None, ge=0)
    max_storage_gb: Optional[int] = Field(None, ge=0)
    max_bookings_per_month: Optional[int] = Field(None, ge=0)
    max_integrations: Optional[int] = Field(None, ge=0)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class PlanResponse(PlanBase):
    id: int
    plan_slug: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Feature Schemas
# ============================================================================

class FeatureListRequest(BaseModel):
    subscription_id: int
    include_deleted: bool = False


class FeatureCreate(BaseModel):
    subscription_id: int
    name: str = Field(..., min_length=1, max_length=100)
    feature_price: Decimal = Field(Decimal("0"), ge=0)


class FeatureUpdate(BaseModel):
    id: int
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    feature_price: Optional[Decimal] = Field(None, ge=0)


class FeatureResponse(BaseModel):
    id: int
    subscription_id: int
    name: str
    feature_price: Decimal
    is_deleted: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FeaturePermissionsAssign(BaseModel):
    """Full replacement of the permissions a feature unlocks."""
    subscription_id: int
    feature_id: int
    permission_ids: List[int] = Field(default_factory=list)


class FeaturePermissionsAssignResponse(BaseModel):
    message: str
    assigned_count: int


# ============================================================================
# Tenant Plan Schemas
# ============================================================================

class TenantPlanAssign(BaseModel):
    tenant_id: int
    subscription_id: Optional[int] = Field(None, description="Null removes the tenant's plan")


class TenantResponse(BaseModel):
    id: int
    name: str
    is_active: bool
    subscription_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class SubscriptionPermissionsRequest(BaseModel):
    tenant_id: Optional[int] = Field(None, description="Defaults to the caller's tenant")
