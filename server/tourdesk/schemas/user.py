"""User-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..models.user import ASSIGNABLE_ROLES, UserRole
from .common import PaginatedResponse


class UpdateUserRequest(BaseModel):
    """Admin update of a staff member's name, role and phone."""

    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    role: UserRole
    phone_number: str | None = Field(None, max_length=32)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: UserRole) -> UserRole:
        if v not in ASSIGNABLE_ROLES:
            raise ValueError(f"Role must be one of: {[role.value for role in ASSIGNABLE_ROLES]}")
        return v


class User(BaseModel):
    """User response schema."""

    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    phone_number: str | None = None
    role: UserRole
    created_at: datetime


class ListUsersResponse(PaginatedResponse):
    items: list[User]
