"""Pydantic schemas for expense endpoints."""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schemas.approval import ApprovalRecordOut


class ExpenseCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    original_amount: Decimal | None = Field(default=None, gt=0)
    original_currency: str | None = Field(default=None, min_length=3, max_length=3)
    category_id: uuid.UUID | None = None
    description: str = Field(min_length=1)
    expense_date: date
    receipt_url: str | None = None
    merchant_name: str | None = None
    submit: bool = True  # start the approval workflow right away

    @model_validator(mode="after")
    def _original_pair(self):
        if (self.original_amount is None) != (self.original_currency is None):
            raise ValueError("original_amount and original_currency must be given together")
        if self.original_currency:
            self.original_currency = self.original_currency.upper()
        return self


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    user_id: uuid.UUID
    category_id: uuid.UUID | None
    approval_rule_id: uuid.UUID | None
    amount: Decimal
    original_amount: Decimal | None
    original_currency: str | None
    exchange_rate: Decimal | None
    description: str
    merchant_name: str | None
    receipt_url: str | None
    expense_date: date
    status: str
    current_step: int
    total_steps: int
    submitted_at: datetime | None
    is_readonly: bool
    created_at: datetime


class ExpenseDetailOut(ExpenseOut):
    approvals: list[ApprovalRecordOut] = []


class ExpenseListResponse(BaseModel):
    items: list[ExpenseOut]
    total: int
    page: int
    limit: int


class DashboardStats(BaseModel):
    timeframe_days: int
    total_expenses: int
    pending_expenses: int
    in_progress_expenses: int
    approved_expenses: int
    rejected_expenses: int
    total_amount: Decimal  # company currency
    pending_approvals: int  # records awaiting the caller at an expense's current step
