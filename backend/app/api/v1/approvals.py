"""Approval record endpoints.

  POST /approvals/{approval_id}  decide by approval record id
  GET  /approvals/history        recent decisions in the caller's company
"""
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_sync_session
from app.schemas.approval import ApprovalDecisionRequest, ApprovalDecisionResponse, ApprovalRecordOut
from app.services.approval import decide_approval_record, get_approval_history
from app.services.repository import ExpenseRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/history",
    response_model=list[ApprovalRecordOut],
    summary="Recent approval decisions in the company (MANAGER or ADMIN)",
)
def approval_history(
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_role("MANAGER", "ADMIN")),
    limit: int = Query(100, ge=1, le=500),
):
    repo = ExpenseRepository(db)
    records = get_approval_history(repo, current_user.company_id, limit=limit)
    return [ApprovalRecordOut.model_validate(r) for r in records]


@router.post(
    "/{approval_id}",
    response_model=ApprovalDecisionResponse,
    summary="Approve or reject via a specific approval record",
)
def decide_approval(
    approval_id: uuid.UUID,
    body: ApprovalDecisionRequest,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_role("MANAGER", "ADMIN")),
):
    repo = ExpenseRepository(db)
    result = decide_approval_record(
        repo,
        record_id=approval_id,
        approver_id=current_user.id,
        action=body.action,
        comments=body.comments,
    )

    expense = result.expense
    return ApprovalDecisionResponse(
        message=f"Expense {body.action.lower()} successfully",
        expense_id=expense.id,
        outcome=result.transition.outcome,
        status=expense.status,
        current_step=expense.current_step,
        total_steps=expense.total_steps,
    )
