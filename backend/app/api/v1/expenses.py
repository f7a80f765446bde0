"""Expense and approval workflow API endpoints.

  POST /expenses                       create (and by default submit) an expense
  GET  /expenses                       role-filtered list
  GET  /expenses/pending/approvals     records the caller can decide now
  GET  /expenses/{expense_id}          detail with approval records
  POST /expenses/{expense_id}/submit   start the approval workflow
  POST /expenses/{expense_id}/approve  APPROVED / REJECTED decision
  GET  /expenses/stats/dashboard      counts and totals for the caller's view

Workflow endpoints run on the sync session used by the approval service,
so they are plain ``def`` handlers executed in the threadpool.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, require_approver
from app.db.session import get_sync_session
from app.models.expense import Expense, ExpenseCategory, ExpenseStatus
from app.models.user import User
from app.schemas.approval import (
    ApprovalDecisionRequest,
    ApprovalDecisionResponse,
    ApprovalRecordOut,
    PendingApprovalOut,
)
from app.schemas.expense import (
    DashboardStats,
    ExpenseCreate,
    ExpenseDetailOut,
    ExpenseListResponse,
    ExpenseOut,
)
from app.services.approval import (
    convert_expense_currency,
    decide_expense,
    get_pending_approvals_for_approver,
    initialize_workflow,
)
from app.services.repository import ExpenseRepository

logger = logging.getLogger(__name__)

router = APIRouter()


def _team_ids(db: Session, manager_id: uuid.UUID) -> list[uuid.UUID]:
    return list(db.execute(select(User.id).where(User.manager_id == manager_id)).scalars().all())


def _can_view(db: Session, user, expense: Expense) -> bool:
    if str(expense.company_id) != str(user.company_id):
        return False
    if user.role == "ADMIN" or str(expense.user_id) == str(user.id):
        return True
    if user.role == "MANAGER":
        return expense.user_id in _team_ids(db, user.id)
    return False


def _visibility_filters(db: Session, user) -> list:
    """Employees see their own expenses, managers add their team, admins see the company."""
    filters = [Expense.company_id == user.company_id]
    if user.role == "EMPLOYEE":
        filters.append(Expense.user_id == user.id)
    elif user.role == "MANAGER":
        filters.append(Expense.user_id.in_([*_team_ids(db, user.id), user.id]))
    return filters


def _detail(repo: ExpenseRepository, expense: Expense) -> ExpenseDetailOut:
    out = ExpenseOut.model_validate(expense)
    records = repo.list_approval_records(expense.id)
    return ExpenseDetailOut(
        **out.model_dump(),
        approvals=[ApprovalRecordOut.model_validate(r) for r in records],
    )


# ─── Create ───

@router.post(
    "",
    response_model=ExpenseDetailOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an expense (submitted for approval unless submit=false)",
)
def create_expense(
    body: ExpenseCreate,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(get_current_user),
):
    if body.category_id is not None:
        category = db.execute(
            select(ExpenseCategory).where(
                ExpenseCategory.id == body.category_id,
                ExpenseCategory.company_id == current_user.company_id,
                ExpenseCategory.is_active.is_(True),
            )
        ).scalars().first()
        if category is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown expense category.")

    repo = ExpenseRepository(db)
    company = repo.get_company(current_user.company_id)
    if company is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found.")

    expense = Expense(
        company_id=current_user.company_id,
        user_id=current_user.id,
        category_id=body.category_id,
        amount=body.amount,
        original_amount=body.original_amount,
        original_currency=body.original_currency,
        description=body.description,
        merchant_name=body.merchant_name,
        receipt_url=body.receipt_url,
        expense_date=body.expense_date,
        status=ExpenseStatus.PENDING.value,
        current_step=1,
        total_steps=1,
        is_readonly=False,
    )
    convert_expense_currency(expense, company)
    db.add(expense)
    db.commit()
    logger.info("Expense %s created by user %s", expense.id, current_user.id)

    if body.submit:
        expense = initialize_workflow(repo, expense.id, actor_id=current_user.id)
    return _detail(repo, expense)


# ─── List ───

@router.get("", response_model=ExpenseListResponse, summary="List expenses visible to the caller")
def list_expenses(
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(get_current_user),
    status_filter: ExpenseStatus | None = Query(None, alias="status"),
    category_id: uuid.UUID | None = Query(None),
    user_id: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    filters = _visibility_filters(db, current_user)
    if user_id is not None and current_user.role != "EMPLOYEE":
        filters.append(Expense.user_id == user_id)
    if status_filter is not None:
        filters.append(Expense.status == status_filter.value)
    if category_id is not None:
        filters.append(Expense.category_id == category_id)

    total = db.execute(select(func.count()).select_from(Expense).where(*filters)).scalar_one()
    rows = db.execute(
        select(Expense)
        .where(*filters)
        .order_by(Expense.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return ExpenseListResponse(
        items=[ExpenseOut.model_validate(e) for e in rows],
        total=total,
        page=page,
        limit=limit,
    )


# ─── Approval queue ───

@router.get(
    "/pending/approvals",
    response_model=list[PendingApprovalOut],
    summary="Approval records awaiting the caller at the expense's current step",
)
def list_pending_approvals(
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_approver),
):
    repo = ExpenseRepository(db)
    company = repo.get_company(current_user.company_id)
    items: list[PendingApprovalOut] = []
    for record in get_pending_approvals_for_approver(repo, current_user.id):
        out = PendingApprovalOut.model_validate(record)
        expense = repo.get_expense(record.expense_id)
        if expense is not None:
            out.expense_description = expense.description
            out.expense_amount = expense.amount
            out.expense_currency = company.currency if company else None
            out.expense_current_step = expense.current_step
            out.expense_total_steps = expense.total_steps
            out.submitter_id = expense.user_id
        items.append(out)
    return items


# ─── Dashboard ───

@router.get(
    "/stats/dashboard",
    response_model=DashboardStats,
    summary="Expense counts and totals for the caller's view",
)
def dashboard_stats(
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(get_current_user),
    timeframe: int = Query(30, ge=1, le=3650, description="Look-back window in days"),
):
    since = datetime.now(timezone.utc) - timedelta(days=timeframe)
    filters = [*_visibility_filters(db, current_user), Expense.created_at >= since]
    rows = db.execute(
        select(Expense.status, func.count(), func.coalesce(func.sum(Expense.amount), 0))
        .where(*filters)
        .group_by(Expense.status)
    ).all()

    counts = {s.value: 0 for s in ExpenseStatus}
    total_amount = Decimal("0")
    for status_value, count, amount in rows:
        counts[status_value] = count
        total_amount += Decimal(str(amount))

    pending_approvals = 0
    if current_user.is_approver:
        repo = ExpenseRepository(db)
        pending_approvals = len(get_pending_approvals_for_approver(repo, current_user.id))

    return DashboardStats(
        timeframe_days=timeframe,
        total_expenses=sum(counts.values()),
        pending_expenses=counts[ExpenseStatus.PENDING.value],
        in_progress_expenses=counts[ExpenseStatus.IN_PROGRESS.value],
        approved_expenses=counts[ExpenseStatus.APPROVED.value],
        rejected_expenses=counts[ExpenseStatus.REJECTED.value],
        total_amount=total_amount,
        pending_approvals=pending_approvals,
    )


# ─── Detail ───

@router.get("/{expense_id}", response_model=ExpenseDetailOut, summary="Get an expense with its approvals")
def get_expense(
    expense_id: uuid.UUID,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(get_current_user),
):
    repo = ExpenseRepository(db)
    expense = repo.get_expense(expense_id)
    if expense is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found.")
    if not _can_view(db, current_user, expense):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
    return _detail(repo, expense)


# ─── Submit ───

@router.post(
    "/{expense_id}/submit",
    response_model=ExpenseDetailOut,
    summary="Submit a PENDING expense into its approval workflow",
)
def submit_expense(
    expense_id: uuid.UUID,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(get_current_user),
):
    repo = ExpenseRepository(db)
    expense = repo.get_expense(expense_id)
    if expense is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found.")
    if str(expense.user_id) != str(current_user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")

    expense = initialize_workflow(repo, expense_id, actor_id=current_user.id)
    return _detail(repo, expense)


# ─── Decide ───

@router.post(
    "/{expense_id}/approve",
    response_model=ApprovalDecisionResponse,
    summary="Approve or reject the expense at its current step",
)
def approve_expense(
    expense_id: uuid.UUID,
    body: ApprovalDecisionRequest,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(get_current_user),
):
    repo = ExpenseRepository(db)
    result = decide_expense(
        repo,
        expense_id=expense_id,
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
