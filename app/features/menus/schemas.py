"""
Pydantic schemas for menu entries and the resolved menu tree.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.menus.models import MatchType, MenuStatus
from app.features.permissions.schemas import UserTarget


def _normalize_key(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError('Menu key must not be empty')
    return v


# ============================================================================
# Menu Entry Schemas
# ============================================================================

class MenuListRequest(BaseModel):
    search: Optional[str] = Field(None, max_length=100)
    include_inactive: bool = False
    tenant_id: Optional[int] = Field(None, description="Super-admins only; others always see their own tenant")


class MenuEntryCreate(BaseModel):
    """Schema for creating a menu entry."""
    menu_key: str = Field(..., min_length=1, max_length=100)
    menu_name: str = Field(..., min_length=1, max_length=150)
    parent_menu_key: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    match_type: MatchType = MatchType.ANY
    display_order: int = 0
    icon: str = Field("", max_length=50)
    route: Optional[str] = Field(None, max_length=255)
    status: MenuStatus = MenuStatus.ACTIVE
    permission_ids: List[int] = Field(default_factory=list, description="Required permissions, in order")
    tenant_id: Optional[int] = Field(None, description="Null for a global entry")

    @field_validator('menu_key', 'parent_menu_key')
    @classmethod
    def strip_keys(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_key(v)


class MenuEntryUpdate(BaseModel):
    """Schema for updating a menu entry; omitted fields are left unchanged."""
    id: int
    menu_key: Optional[str] = Field(None, min_length=1, max_length=100)
    menu_name: Optional[str] = Field(None, min_length=1, max_length=150)
    parent_menu_key: Optional[str] = Field(None, max_length=100, description="Null makes the entry a root")
    description: Optional[str] = Field(None, max_length=1000)
    match_type: Optional[MatchType] = None
    display_order: Optional[int] = None
    icon: Optional[str] = Field(None, max_length=50)
    route: Optional[str] = Field(None, max_length=255)
    status: Optional[MenuStatus] = None
    permission_ids: Optional[List[int]] = None

    @field_validator('menu_key', 'parent_menu_key')
    @classmethod
    def strip_keys(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_key(v)


class MenuEntryResponse(BaseModel):
    id: int
    tenant_id: Optional[int]
    menu_key: str
    menu_name: str
    parent_menu_key: Optional[str]
    description: Optional[str]
    match_type: MatchType
    display_order: int
    icon: str
    route: Optional[str]
    status: MenuStatus
    is_active: bool
    required_permission_ids: List[int]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Resolved Menu Schemas
# ============================================================================

class MenuItem(BaseModel):
    """Visible menu entry in the flattened (pre-order) menu."""
    id: int
    menu_key: str
    menu_name: str
    parent_menu_key: Optional[str]
    route: Optional[str]
    icon: str
    display_order: int
    depth: int = 0

    model_config = ConfigDict(from_attributes=True)


class MenuNode(BaseModel):
    """Visible menu entry with its visible children."""
    id: int
    menu_key: str
    menu_name: str
    parent_menu_key: Optional[str]
    route: Optional[str]
    icon: str
    display_order: int
    children: List["MenuNode"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


MenuNode.model_rebuild()


class MenuAccessRequest(UserTarget):
    menu_key: str = Field(..., min_length=1, max_length=100)


class MultipleMenuAccessRequest(UserTarget):
    menu_keys: List[str] = Field(..., min_length=1)


class MultipleAccessResponse(BaseModel):
    results: Dict[str, bool]
