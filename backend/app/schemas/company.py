"""Pydantic schemas for company approval settings."""
import uuid

from pydantic import BaseModel, ConfigDict, Field


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    country: str | None
    currency: str
    sequential_approval: bool
    minimum_approval_percent: int
    step_requires_unanimous: bool | None


class ApprovalSettingsUpdate(BaseModel):
    sequential_approval: bool | None = None
    minimum_approval_percent: int | None = Field(default=None, ge=1, le=100)
    step_requires_unanimous: bool | None = None
