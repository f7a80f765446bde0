"""Pydantic schemas for user and approver administration."""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

Role = Literal["EMPLOYEE", "MANAGER", "ADMIN"]


class AdminUserCreate(BaseModel):
    """Create a user in the admin's company."""
    email: EmailStr
    name: str = Field(min_length=2)
    password: str = Field(min_length=8)
    role: Role = "EMPLOYEE"
    manager_id: uuid.UUID | None = None
    is_approver: bool = False
    approver_level: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _approver_role(self):
        if self.is_approver and self.role == "EMPLOYEE":
            raise ValueError("only MANAGER or ADMIN users can be approvers")
        return self


class AdminUserUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: str | None = Field(default=None, min_length=2)
    role: Role | None = None
    manager_id: uuid.UUID | None = None
    is_approver: bool | None = None
    approver_level: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class AdminUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    email: str
    name: str
    role: str
    manager_id: uuid.UUID | None
    is_approver: bool
    approver_level: int | None
    is_active: bool
    created_at: datetime


class AdminUserListResponse(BaseModel):
    items: list[AdminUserOut]
    total: int
    page: int
    page_size: int


class UserSummary(BaseModel):
    """Short form used by approver and manager pickers."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: str
    approver_level: int | None = None
