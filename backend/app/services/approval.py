"""Expense approval workflow service.

Two entry points drive an expense through its lifecycle:

  initialize_workflow  once, at submission; assigns approvers to steps.
  decide_expense       per approve/reject action; records the decision
                       and applies the engine's transition.

Both take an ``ExpenseRepository`` (one sync session, one transaction),
hold the per-expense lock plus a row lock while they read-evaluate-write,
and commit exactly once. Any error rolls the whole transaction back.

The policy resolved at submission is stored on the expense; later rule or
company edits do not change how an in-flight expense is decided.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from app.core.exceptions import (
    AlreadyProcessedError,
    ApprovalRecordNotFoundError,
    DoubleInitializationError,
    ExpenseNotFoundError,
    InvalidDecisionError,
    NotCurrentApproverError,
)
from app.models.approval import ApprovalStatus, ExpenseApproval
from app.models.approval_rule import RuleType
from app.models.expense import Expense, ExpenseStatus
from app.rules.approval_engine import (
    DECISIONS,
    ExpenseView,
    RecordView,
    StepAssignment,
    Transition,
    WorkflowPlan,
    apply_decision,
    evaluate_decision,
    plan_from_approvers,
    plan_from_rule_steps,
)
from app.services import fx as fx_svc
from app.services.locks import ExpenseLockRegistry, expense_locks
from app.services.policy import (
    approver_id_set,
    policy_from_snapshot,
    policy_snapshot,
    resolve_policy,
    select_rule,
)
from app.services.repository import ExpenseRepository

logger = logging.getLogger(__name__)


@dataclass
class DecisionResult:
    expense: Expense
    record: ExpenseApproval
    transition: Transition


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(expense: Expense) -> dict:
    return {
        "status": expense.status,
        "current_step": expense.current_step,
        "total_steps": expense.total_steps,
        "amount": expense.amount,
    }


# ─── Currency ───

def _foreign_amount_conversion(expense: Expense, company, rate_source) -> fx_svc.ConversionResult | None:
    """Convert a foreign-currency expense into company currency, if still needed."""
    if not expense.original_amount or not expense.original_currency:
        return None
    if expense.exchange_rate is not None:
        return None
    if expense.original_currency.upper() == company.currency.upper():
        return None
    result = fx_svc.convert_amount(
        Decimal(str(expense.original_amount)),
        expense.original_currency,
        company.currency,
        source=rate_source,
    )
    if result.degraded:
        logger.warning(
            "Expense %s: no %s->%s rate available, keeping original amount %s.",
            expense.id, expense.original_currency, company.currency, expense.original_amount,
        )
    return result


def convert_expense_currency(
    expense: Expense, company, rate_source: fx_svc.RateSource | None = None
) -> fx_svc.ConversionResult | None:
    """Put a new expense's amount into company currency before it is stored.

    A degraded lookup keeps the original amount and leaves ``exchange_rate``
    unset, so submission tries the lookup again.
    """
    result = _foreign_amount_conversion(expense, company, rate_source)
    if result is None:
        return None
    expense.amount = result.amount
    if not result.degraded:
        expense.exchange_rate = result.rate
    return result


# ─── Workflow initialization ───

def eligible_approver_ids(repo: ExpenseRepository, expense: Expense, company) -> list[uuid.UUID]:
    """Company approvers in acting order, minus the submitter."""
    return [u.id for u in repo.list_eligible_approvers(company.id) if u.id != expense.user_id]


def _designated_reachable(rule, approver_ids: list[uuid.UUID]) -> bool:
    """False when a specific-approver rule names nobody who can act on this expense."""
    if rule is None or rule.rule_type != RuleType.SPECIFIC_APPROVER.value:
        return True
    designated = approver_id_set(rule.specific_approver_ids)
    return not designated or bool(designated & set(approver_ids))


def _with_designated_on_first_step(plan: WorkflowPlan, rule, approver_ids: list[uuid.UUID]) -> WorkflowPlan:
    # Under a specific-approver rule the workflow stays on step 1 until a
    # designated approver decides, so each of them needs a step 1 slot.
    if rule is None or rule.rule_type != RuleType.SPECIFIC_APPROVER.value:
        return plan
    on_first = {a.approver_id for a in plan.assignments if a.step == 1}
    designated = approver_id_set(rule.specific_approver_ids)
    extra = [StepAssignment(a, 1) for a in approver_ids if a in designated and a not in on_first]
    return WorkflowPlan(extra + plan.assignments) if extra else plan


def build_workflow_plan(
    repo: ExpenseRepository,
    expense: Expense,
    company,
    rule,
    approver_ids: list[uuid.UUID] | None = None,
) -> WorkflowPlan:
    """Decide who approves the expense and at which step.

    Configured rule steps win over the company approver list. The submitter
    is never asked to approve their own expense.
    """
    if approver_ids is None:
        approver_ids = eligible_approver_ids(repo, expense, company)
    approver_ids = list(approver_ids)

    manager_id = None
    if rule is not None and rule.is_manager_approver:
        submitter = repo.get_user(expense.user_id)
        if submitter is not None and submitter.manager_id in approver_ids:
            manager_id = submitter.manager_id

    if rule is not None and rule.steps:
        steps = [(s.user_id, s.step) for s in rule.steps if s.user_id != expense.user_id]
        if steps or manager_id is not None:
            plan = plan_from_rule_steps(steps, manager_id=manager_id)
            return _with_designated_on_first_step(plan, rule, approver_ids)

    if manager_id is not None:
        approver_ids.remove(manager_id)
        approver_ids.insert(0, manager_id)

    sequential = bool(company.sequential_approval) or (
        rule is not None and rule.rule_type == RuleType.SEQUENTIAL.value
    )
    plan = plan_from_approvers(approver_ids, sequential=sequential)
    return _with_designated_on_first_step(plan, rule, approver_ids)


def initialize_workflow(
    repo: ExpenseRepository,
    expense_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    rate_source: fx_svc.RateSource | None = None,
    locks: ExpenseLockRegistry = expense_locks,
    now: datetime | None = None,
) -> Expense:
    """Attach approval records to a PENDING expense and start its workflow.

    With no eligible approvers the expense is approved on the spot.

    Raises:
        ExpenseNotFoundError: unknown expense (or its company).
        DoubleInitializationError: the workflow was already initialized.
    """
    now = now or _now()

    # Rate lookup happens before any lock is taken.
    expense = repo.get_expense(expense_id)
    if expense is None:
        raise ExpenseNotFoundError(expense_id)
    if expense.is_readonly:
        raise DoubleInitializationError(expense_id)
    company = repo.get_company(expense.company_id)
    if company is None:
        raise ExpenseNotFoundError(expense_id)
    conversion = _foreign_amount_conversion(expense, company, rate_source)

    with locks.hold(expense_id):
        try:
            expense = repo.get_expense(expense_id, for_update=True)
            if expense is None:
                raise ExpenseNotFoundError(expense_id)
            if expense.is_readonly or expense.status != ExpenseStatus.PENDING.value:
                raise DoubleInitializationError(expense_id)

            before = _snapshot(expense)
            if conversion is not None:
                repo.update_expense(
                    expense,
                    amount=conversion.amount,
                    exchange_rate=(conversion.amount / Decimal(str(expense.original_amount))),
                )

            rule = select_rule(
                repo.list_active_rules(company.id), Decimal(str(expense.amount)), expense.category_id
            )
            approver_ids = eligible_approver_ids(repo, expense, company)
            if not _designated_reachable(rule, approver_ids):
                logger.warning(
                    "Approval rule %s names no approver who can act on expense %s; using company fallback.",
                    rule.id, expense.id,
                )
                rule = None
            plan = build_workflow_plan(repo, expense, company, rule, approver_ids)
            policy = resolve_policy(company, rule)

            if plan.is_empty:
                repo.update_expense(
                    expense,
                    status=ExpenseStatus.APPROVED.value,
                    current_step=1,
                    total_steps=1,
                    submitted_at=now,
                    is_readonly=True,
                    approval_rule_id=rule.id if rule is not None else None,
                    approval_policy=policy_snapshot(policy),
                )
                repo.audit(
                    action="expense_auto_approved",
                    entity_type="expense",
                    entity_id=expense.id,
                    actor_id=actor_id,
                    company_id=expense.company_id,
                    before=before,
                    after=_snapshot(expense),
                    notes="No eligible approvers configured; approved automatically.",
                )
                repo.commit()
                logger.info("Expense %s auto-approved: company %s has no approvers.", expense.id, company.id)
                return expense

            for assignment in plan.assignments:
                repo.add_approval_record(expense.id, assignment.approver_id, assignment.step)

            repo.update_expense(
                expense,
                status=ExpenseStatus.IN_PROGRESS.value,
                current_step=1,
                total_steps=plan.total_steps,
                submitted_at=now,
                is_readonly=True,
                approval_rule_id=rule.id if rule is not None else None,
                approval_policy=policy_snapshot(policy),
            )
            repo.audit(
                action="expense_submitted",
                entity_type="expense",
                entity_id=expense.id,
                actor_id=actor_id,
                company_id=expense.company_id,
                before=before,
                after={
                    **_snapshot(expense),
                    "approval_rule_id": str(rule.id) if rule is not None else None,
                    "assignments": [
                        {"approver_id": str(a.approver_id), "step": a.step} for a in plan.assignments
                    ],
                },
            )
            repo.commit()
        except Exception:
            repo.rollback()
            raise

    logger.info(
        "Workflow initialized: expense=%s approvers=%s total_steps=%s rule=%s",
        expense.id, len(plan.assignments), plan.total_steps, rule.id if rule is not None else None,
    )
    return expense


# ─── Decision evaluation ───

def _find_current_record(
    expense: Expense,
    records: list[ExpenseApproval],
    approver_id: uuid.UUID,
    record_id: uuid.UUID | None = None,
) -> ExpenseApproval:
    if record_id is not None:
        record = next((r for r in records if str(r.id) == str(record_id)), None)
        if record is None:
            raise ApprovalRecordNotFoundError(record_id)
        if str(record.approver_id) != str(approver_id):
            raise NotCurrentApproverError(expense.id, approver_id, expense.current_step)
        if record.status != ApprovalStatus.PENDING.value:
            raise AlreadyProcessedError(f"Approval record {record.id} is already {record.status}.")
        if record.step != expense.current_step:
            raise NotCurrentApproverError(expense.id, approver_id, expense.current_step)
        return record

    mine = [r for r in records if str(r.approver_id) == str(approver_id) and r.step == expense.current_step]
    for record in mine:
        if record.status == ApprovalStatus.PENDING.value:
            return record
    if mine:
        raise AlreadyProcessedError(
            f"Approval record {mine[0].id} for expense {expense.id} is already {mine[0].status}."
        )
    raise NotCurrentApproverError(expense.id, approver_id, expense.current_step)


def decide_expense(
    repo: ExpenseRepository,
    expense_id: uuid.UUID,
    approver_id: uuid.UUID,
    action: str,
    comments: str | None = None,
    locks: ExpenseLockRegistry = expense_locks,
    now: datetime | None = None,
    record_id: uuid.UUID | None = None,
) -> DecisionResult:
    """Apply one approver's APPROVED/REJECTED decision to an expense.

    With ``record_id`` the decision goes to that record, which must be the
    approver's PENDING record at the current step.

    Raises:
        InvalidDecisionError: action is not APPROVED or REJECTED.
        ExpenseNotFoundError: unknown expense.
        AlreadyProcessedError: expense is terminal or the record is decided.
        NotCurrentApproverError: approver has no record at the current step.
    """
    if action not in DECISIONS:
        raise InvalidDecisionError(f"Invalid action '{action}'. Must be APPROVED or REJECTED.")
    now = now or _now()

    with locks.hold(expense_id):
        try:
            expense = repo.get_expense(expense_id, for_update=True)
            if expense is None:
                raise ExpenseNotFoundError(expense_id)
            if expense.is_terminal:
                raise AlreadyProcessedError(f"Expense {expense_id} is already {expense.status}.")

            records = repo.list_approval_records(expense.id)
            record = _find_current_record(expense, records, approver_id, record_id)

            company = repo.get_company(expense.company_id)
            if company is None:
                raise ExpenseNotFoundError(expense_id)
            policy = policy_from_snapshot(expense.approval_policy)
            if policy is None:
                rule = repo.get_rule(expense.approval_rule_id) if expense.approval_rule_id else None
                policy = resolve_policy(company, rule)

            expense_view = ExpenseView(
                id=expense.id,
                status=expense.status,
                current_step=expense.current_step,
                total_steps=expense.total_steps,
            )
            views = apply_decision(
                [RecordView(r.id, r.approver_id, r.step, r.status) for r in records],
                record.id,
                action,
            )
            transition = evaluate_decision(policy, expense_view, views, approver_id, action)

            before = _snapshot(expense)
            repo.record_decision(record, action, comments, now)
            if transition.outcome != "waiting":
                repo.update_expense(
                    expense, status=transition.status, current_step=transition.current_step
                )
            repo.audit(
                action=f"expense_{transition.outcome}",
                entity_type="expense",
                entity_id=expense.id,
                actor_id=approver_id,
                company_id=expense.company_id,
                before=before,
                after={
                    **_snapshot(expense),
                    "decision": action,
                    "approval_id": str(record.id),
                    "policy": type(policy).__name__,
                },
                notes=f"{transition.reason}. Comments: {comments}",
            )
            repo.commit()
        except Exception:
            repo.rollback()
            raise

    logger.info(
        "Approval decision: expense=%s approver=%s action=%s outcome=%s step=%s/%s policy=%s",
        expense.id, approver_id, action, transition.outcome,
        expense.current_step, expense.total_steps, type(policy).__name__,
    )
    return DecisionResult(expense=expense, record=record, transition=transition)


def decide_approval_record(
    repo: ExpenseRepository,
    record_id: uuid.UUID,
    approver_id: uuid.UUID,
    action: str,
    comments: str | None = None,
    locks: ExpenseLockRegistry = expense_locks,
    now: datetime | None = None,
) -> DecisionResult:
    """Decide by approval record id rather than expense id.

    Raises:
        ApprovalRecordNotFoundError: unknown record.
        NotCurrentApproverError: the record belongs to someone else or is
            not at the expense's current step.
        AlreadyProcessedError: the record is already decided.
    """
    record = repo.get_approval_record(record_id)
    if record is None:
        raise ApprovalRecordNotFoundError(record_id)
    if str(record.approver_id) != str(approver_id):
        raise NotCurrentApproverError(record.expense_id, approver_id, record.step)
    if record.status != ApprovalStatus.PENDING.value:
        raise AlreadyProcessedError(f"Approval record {record_id} is already {record.status}.")
    return decide_expense(
        repo, record.expense_id, approver_id, action,
        comments=comments, locks=locks, now=now, record_id=record.id,
    )


# ─── Listing ───

def get_pending_approvals_for_approver(repo: ExpenseRepository, approver_id: uuid.UUID) -> list[ExpenseApproval]:
    """Return PENDING records the approver can act on right now."""
    return repo.list_pending_records_for_approver(approver_id)


def get_approval_history(repo: ExpenseRepository, company_id: uuid.UUID, limit: int = 100) -> list[ExpenseApproval]:
    """Return the company's most recent decisions."""
    return repo.list_decided_records_for_company(company_id, limit=limit)
