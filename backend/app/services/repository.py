"""Persistence interface used by the approval workflow services.

The services never build queries themselves; they receive an
``ExpenseRepository`` bound to one sync session (one transaction).
"""
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models.approval import ApprovalStatus, ExpenseApproval
from app.models.approval_rule import ApprovalRule
from app.models.company import Company
from app.models.expense import Expense
from app.models.user import APPROVER_ROLES, User
from app.services import audit as audit_svc


class ExpenseRepository:
    def __init__(self, db: Session):
        self.db = db

    # ─── Reads ───

    def get_expense(self, expense_id: uuid.UUID, for_update: bool = False) -> Expense | None:
        stmt = select(Expense).where(Expense.id == expense_id)
        if for_update:
            # Overwrite any copy already in the identity map with the locked row.
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalars().first()

    def get_company(self, company_id: uuid.UUID) -> Company | None:
        return self.db.execute(
            select(Company).where(Company.id == company_id)
        ).scalars().first()

    def get_user(self, user_id: uuid.UUID) -> User | None:
        return self.db.execute(
            select(User).where(User.id == user_id)
        ).scalars().first()

    def list_eligible_approvers(self, company_id: uuid.UUID) -> list[User]:
        """Active MANAGER/ADMIN approvers, lowest approver_level first."""
        stmt = (
            select(User)
            .where(
                User.company_id == company_id,
                User.is_approver.is_(True),
                User.role.in_(APPROVER_ROLES),
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
            .order_by(User.approver_level.asc().nulls_last(), User.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_approval_records(self, expense_id: uuid.UUID) -> list[ExpenseApproval]:
        stmt = (
            select(ExpenseApproval)
            .where(ExpenseApproval.expense_id == expense_id)
            .order_by(ExpenseApproval.step.asc(), ExpenseApproval.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_approval_record(self, record_id: uuid.UUID) -> ExpenseApproval | None:
        return self.db.execute(
            select(ExpenseApproval).where(ExpenseApproval.id == record_id)
        ).scalars().first()

    def list_decided_records_for_company(self, company_id: uuid.UUID, limit: int = 100) -> list[ExpenseApproval]:
        """Most recently decided records across the company's expenses."""
        stmt = (
            select(ExpenseApproval)
            .join(Expense, Expense.id == ExpenseApproval.expense_id)
            .where(
                Expense.company_id == company_id,
                ExpenseApproval.status != ApprovalStatus.PENDING.value,
            )
            .order_by(ExpenseApproval.decided_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_pending_records_for_approver(self, approver_id: uuid.UUID) -> list[ExpenseApproval]:
        """PENDING records whose expense is currently waiting on that record's step."""
        stmt = (
            select(ExpenseApproval)
            .join(Expense, Expense.id == ExpenseApproval.expense_id)
            .where(
                ExpenseApproval.approver_id == approver_id,
                ExpenseApproval.status == ApprovalStatus.PENDING.value,
                ExpenseApproval.step == Expense.current_step,
                Expense.status == "IN_PROGRESS",
            )
            .order_by(ExpenseApproval.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_active_rules(self, company_id: uuid.UUID) -> list[ApprovalRule]:
        stmt = (
            select(ApprovalRule)
            .options(selectinload(ApprovalRule.steps))
            .where(ApprovalRule.company_id == company_id, ApprovalRule.is_active.is_(True))
            .order_by(ApprovalRule.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_rule(self, rule_id: uuid.UUID) -> ApprovalRule | None:
        stmt = (
            select(ApprovalRule)
            .options(selectinload(ApprovalRule.steps))
            .where(ApprovalRule.id == rule_id)
        )
        return self.db.execute(stmt).scalars().first()

    # ─── Writes (flushed, committed by the caller via commit()) ───

    def add_approval_record(self, expense_id: uuid.UUID, approver_id: uuid.UUID, step: int) -> ExpenseApproval:
        record = ExpenseApproval(
            expense_id=expense_id,
            approver_id=approver_id,
            step=step,
            status=ApprovalStatus.PENDING.value,
        )
        self.db.add(record)
        return record

    def record_decision(
        self, record: ExpenseApproval, status: str, comments: str | None, decided_at: datetime
    ) -> ExpenseApproval:
        record.status = status
        record.comments = comments
        record.decided_at = decided_at
        return record

    def update_expense(self, expense: Expense, **fields: Any) -> Expense:
        for name, value in fields.items():
            setattr(expense, name, value)
        return expense

    def audit(self, **kwargs: Any) -> None:
        audit_svc.log(self.db, **kwargs)

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
