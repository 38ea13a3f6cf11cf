"""
Pydantic schemas for user-related responses.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr

from app.features.users.models import UserType


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: int
    email: EmailStr
    name: str
    user_type: UserType
    tenant_id: int | None = None
    firm_id: int | None = None
    branch_id: int | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
