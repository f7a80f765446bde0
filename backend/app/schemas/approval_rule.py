"""Pydantic schemas for approval rules."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.approval_rule import RuleType


class ApprovalRuleStepIn(BaseModel):
    user_id: uuid.UUID
    step: int = Field(ge=1)


class ApprovalRuleStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    step: int


def check_rule_shape(rule_type, required_percentage, specific_approver_ids, min_amount, max_amount):
    """Raise ValueError when the fields cannot form a usable rule of ``rule_type``."""
    if rule_type in (RuleType.PERCENTAGE, RuleType.HYBRID) and required_percentage is None:
        raise ValueError(f"{rule_type.value} rules require required_percentage")
    if rule_type in (RuleType.SPECIFIC_APPROVER, RuleType.HYBRID) and not specific_approver_ids:
        raise ValueError(f"{rule_type.value} rules require specific_approver_ids")
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise ValueError("min_amount must not exceed max_amount")


class ApprovalRuleIn(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    min_amount: Decimal | None = Field(default=None, gt=0)
    max_amount: Decimal | None = Field(default=None, gt=0)
    category_ids: list[uuid.UUID] = []
    rule_type: RuleType
    required_percentage: int | None = Field(default=None, ge=1, le=100)
    is_manager_approver: bool = False
    specific_approver_ids: list[uuid.UUID] = []
    steps: list[ApprovalRuleStepIn] = []

    @model_validator(mode="after")
    def _shape(self):
        check_rule_shape(
            self.rule_type, self.required_percentage, self.specific_approver_ids,
            self.min_amount, self.max_amount,
        )
        return self


class ApprovalRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    min_amount: Decimal | None = Field(default=None, gt=0)
    max_amount: Decimal | None = Field(default=None, gt=0)
    category_ids: list[uuid.UUID] | None = None
    rule_type: RuleType | None = None
    required_percentage: int | None = Field(default=None, ge=1, le=100)
    is_manager_approver: bool | None = None
    specific_approver_ids: list[uuid.UUID] | None = None
    is_active: bool | None = None
    steps: list[ApprovalRuleStepIn] | None = None  # replaces existing steps when given


class ApprovalRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    description: str | None
    min_amount: Decimal | None
    max_amount: Decimal | None
    category_ids: list[uuid.UUID]
    rule_type: str
    required_percentage: int | None
    is_manager_approver: bool
    specific_approver_ids: list[uuid.UUID]
    is_active: bool
    steps: list[ApprovalRuleStepOut] = []
    created_at: datetime
    updated_at: datetime
