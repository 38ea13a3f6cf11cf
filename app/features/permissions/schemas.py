"""
Pydantic schemas for the access-control endpoints.

Request and response models for permissions, roles, role grants, user-role
links and permission checks.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.models import GrantStatus, PermissionScope


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionListRequest(BaseModel):
    """Filters for the permission catalog."""
    search: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    resource: Optional[str] = Field(None, max_length=100)
    include_system_permissions: bool = True


class PermissionCreate(BaseModel):
    """Schema for creating a new permission."""
    permission_key: str = Field(..., min_length=3, max_length=150, description="Unique key, format 'resource.action'")
    resource: Optional[str] = Field(None, max_length=100, description="Derived from the key when omitted")
    action: Optional[str] = Field(None, max_length=50, description="Derived from the key when omitted")
    category: Optional[str] = Field(None, max_length=100)
    scope: PermissionScope = PermissionScope.ALL
    description: Optional[str] = Field(None, max_length=1000)
    is_system_permission: bool = False

    @field_validator('permission_key', 'resource', 'action')
    @classmethod
    def lowercase(cls, v: Optional[str]) -> Optional[str]:
        """Keys are compared lowercase."""
        return v.strip().lower() if v is not None else v


class PermissionUpdate(BaseModel):
    """Schema for updating a permission."""
    id: int
    permission_key: Optional[str] = Field(None, min_length=3, max_length=150)
    resource: Optional[str] = Field(None, max_length=100)
    action: Optional[str] = Field(None, max_length=50)
    category: Optional[str] = Field(None, max_length=100)
    scope: Optional[PermissionScope] = None
    description: Optional[str] = Field(None, max_length=1000)
    is_system_permission: Optional[bool] = None

    @field_validator('permission_key', 'resource', 'action')
    @classmethod
    def lowercase(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v is not None else v


class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: int
    permission_key: str
    resource: str
    action: str
    category: Optional[str]
    scope: PermissionScope
    description: Optional[str]
    is_system_permission: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IdRequest(BaseModel):
    """Body of delete endpoints."""
    id: int


# ============================================================================
# Role Schemas
# ============================================================================

class RoleListRequest(BaseModel):
    search: Optional[str] = Field(None, max_length=100)
    include_system_roles: bool = True
    tenant_id: Optional[int] = Field(None, description="Super-admins only; others always see their own tenant")


class RoleCreate(BaseModel):
    """Schema for creating a new role."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name within the tenant")
    display_name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    tenant_id: Optional[int] = Field(None, description="Tenant ID (null for a global role)")
    is_system_role: bool = False
    is_default: bool = False
    is_active: bool = True
    hierarchy_level: int = Field(0, ge=0)

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v.lower()


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    id: int
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    display_name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    is_system_role: Optional[bool] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None
    hierarchy_level: Optional[int] = Field(None, ge=0)

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v.lower() if v is not None else v


class RoleClone(BaseModel):
    """Schema for cloning a role together with its grants."""
    source_role_id: int
    new_name: str = Field(..., min_length=1, max_length=50)
    new_display_name: Optional[str] = Field(None, max_length=100)
    new_description: Optional[str] = Field(None, max_length=1000)

    @field_validator('new_name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v.lower()


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: int
    tenant_id: Optional[int]
    name: str
    display_name: str
    description: Optional[str]
    is_system_role: bool
    is_default: bool
    is_active: bool
    hierarchy_level: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Grant Schemas
# ============================================================================

class RolePermissionsListRequest(BaseModel):
    role_id: int
    include_subscription_permissions: bool = False


class RolePermissionsAssign(BaseModel):
    """Full replacement of a role's grant set."""
    role_id: int
    permission_ids: List[int] = Field(default_factory=list)


class RolePermissionsAssignResponse(BaseModel):
    message: str
    assigned_count: int


class RolePermissionEntry(PermissionResponse):
    """A catalog permission annotated with its grant state for one role."""
    granted: bool
    status: Optional[GrantStatus] = None
    entitled: Optional[bool] = None


# ============================================================================
# User Role Schemas
# ============================================================================

class UserRolesAssign(BaseModel):
    """Full replacement of a user's roles."""
    user_id: int
    role_ids: List[int] = Field(default_factory=list)


class UserRolesAssignResponse(BaseModel):
    message: str
    assigned_count: int


# ============================================================================
# Resolution Schemas
# ============================================================================

class UserTarget(BaseModel):
    """Request naming the user to resolve (defaults to the caller)."""
    user_id: Optional[int] = None


class PermissionCheckRequest(UserTarget):
    permission_slug: str = Field(..., min_length=3, max_length=150)


class MultiplePermissionCheckRequest(UserTarget):
    permission_slugs: List[str] = Field(..., min_length=1)


class AccessCheckResponse(BaseModel):
    has_access: bool
