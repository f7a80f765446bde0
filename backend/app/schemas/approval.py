"""Pydantic schemas for approval records and decisions."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict


# ─── Approval record output ───

class ApprovalRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    expense_id: uuid.UUID
    approver_id: uuid.UUID
    step: int
    status: str
    comments: str | None
    decided_at: datetime | None
    created_at: datetime


class PendingApprovalOut(ApprovalRecordOut):
    # Expense summary fields (populated by the endpoint)
    expense_description: str | None = None
    expense_amount: Decimal | None = None
    expense_currency: str | None = None
    expense_current_step: int | None = None
    expense_total_steps: int | None = None
    submitter_id: uuid.UUID | None = None


# ─── Decision request / response ───

class ApprovalDecisionRequest(BaseModel):
    action: Literal["APPROVED", "REJECTED"]
    comments: str | None = None


class ApprovalDecisionResponse(BaseModel):
    message: str
    expense_id: uuid.UUID
    outcome: str  # approved, rejected, advanced, waiting
    status: str
    current_step: int
    total_steps: int
