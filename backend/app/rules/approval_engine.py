"""Approval workflow engine: deterministic expense state transitions.

The engine never touches the database. Callers snapshot the expense, its
approval records and the resolved ``Policy`` (under the per-expense lock),
then ask the engine what a single approve/reject decision does:

    PENDING -> IN_PROGRESS -> APPROVED | REJECTED   (terminal)

``current_step`` only ever moves forward while IN_PROGRESS. Any single
rejection rejects the whole expense whatever the policy.
"""
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, get_args

from app.core.exceptions import AlreadyProcessedError, InvalidDecisionError

logger = logging.getLogger(__name__)

APPROVED = "APPROVED"
REJECTED = "REJECTED"
PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"

DECISIONS = (APPROVED, REJECTED)
TERMINAL = (APPROVED, REJECTED)


# ─── Policies (one variant per approval model) ───

@dataclass(frozen=True)
class SequentialPolicy:
    # False: one approval moves the step on. True: every approver at the step must approve.
    step_requires_unanimous: bool = False


@dataclass(frozen=True)
class PercentagePolicy:
    required_percentage: int


@dataclass(frozen=True)
class SpecificApproverPolicy:
    approver_ids: frozenset[uuid.UUID]


@dataclass(frozen=True)
class HybridPolicy:
    required_percentage: int
    approver_ids: frozenset[uuid.UUID]


@dataclass(frozen=True)
class FallbackPolicy:
    """Company default for parallel approval when no rule applies."""

    minimum_approval_percent: int = 50


Policy = SequentialPolicy | PercentagePolicy | SpecificApproverPolicy | HybridPolicy | FallbackPolicy


# ─── Snapshots ───

@dataclass(frozen=True)
class RecordView:
    id: uuid.UUID
    approver_id: uuid.UUID
    step: int
    status: str = PENDING


@dataclass(frozen=True)
class ExpenseView:
    id: uuid.UUID
    status: str
    current_step: int
    total_steps: int


@dataclass(frozen=True)
class Transition:
    """Result of evaluating one decision.

    outcome is one of: approved, rejected, advanced, waiting.
    """

    outcome: str
    status: str
    current_step: int
    reason: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL


@dataclass(frozen=True)
class StepAssignment:
    approver_id: uuid.UUID
    step: int


@dataclass
class WorkflowPlan:
    assignments: list[StepAssignment] = field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return max((a.step for a in self.assignments), default=1)

    @property
    def is_empty(self) -> bool:
        return not self.assignments


# ─── Initialization planning ───

def plan_from_approvers(approver_ids: Iterable[uuid.UUID], sequential: bool) -> WorkflowPlan:
    """One slot per approver: ascending steps when sequential, all at step 1 otherwise."""
    ids = list(dict.fromkeys(approver_ids))
    if sequential:
        return WorkflowPlan([StepAssignment(a, i + 1) for i, a in enumerate(ids)])
    return WorkflowPlan([StepAssignment(a, 1) for a in ids])


def plan_from_rule_steps(
    steps: Iterable[tuple[uuid.UUID, int]],
    manager_id: uuid.UUID | None = None,
) -> WorkflowPlan:
    """Build a plan from configured (user_id, step) pairs.

    Step numbers are compacted to 1..N keeping their order, so gaps in the
    configuration never leave an empty step. When ``manager_id`` is given
    the manager gets a step of their own ahead of the configured ones.
    """
    pairs = sorted(steps, key=lambda p: p[1])
    distinct_steps = sorted({s for _, s in pairs})
    offset = 1 if manager_id is not None else 0
    renumber = {s: i + 1 + offset for i, s in enumerate(distinct_steps)}

    assignments: list[StepAssignment] = []
    seen: set[tuple[uuid.UUID, int]] = set()
    if manager_id is not None:
        assignments.append(StepAssignment(manager_id, 1))
        seen.add((manager_id, 1))
    for user_id, step in pairs:
        key = (user_id, renumber[step])
        if key in seen:
            continue
        seen.add(key)
        assignments.append(StepAssignment(user_id, renumber[step]))
    return WorkflowPlan(assignments)


# ─── Decision evaluation ───

def apply_decision(
    records: Iterable[RecordView], record_id: uuid.UUID, action: str
) -> list[RecordView]:
    """Return the records with the triggering one moved to ``action``."""
    updated = []
    for r in records:
        if r.id == record_id:
            if r.status != PENDING:
                raise AlreadyProcessedError(f"Approval record {r.id} is already {r.status}.")
            r = replace(r, status=action)
        updated.append(r)
    return updated


def evaluate_decision(
    policy: Policy,
    expense: ExpenseView,
    records: list[RecordView],
    approver_id: uuid.UUID,
    action: str,
) -> Transition:
    """Compute the expense transition caused by one decision.

    ``records`` must already include the triggering decision (see
    ``apply_decision``).
    """
    if action not in DECISIONS:
        raise InvalidDecisionError(f"Invalid action '{action}'. Must be APPROVED or REJECTED.")
    if expense.status in TERMINAL:
        raise AlreadyProcessedError(f"Expense {expense.id} is already {expense.status}.")

    if action == REJECTED:
        return Transition("rejected", REJECTED, expense.current_step, "rejected by approver")

    evaluator = _EVALUATORS.get(type(policy))
    if evaluator is None:
        raise TypeError(f"No evaluator for policy {type(policy).__name__}")

    transition = evaluator(policy, expense, records, approver_id)
    if transition.current_step < expense.current_step:
        raise AssertionError("current_step must never decrease")
    return transition


def _step_records(expense: ExpenseView, records: list[RecordView]) -> list[RecordView]:
    return [r for r in records if r.step == expense.current_step]


def _count(records: list[RecordView], status: str) -> int:
    return sum(1 for r in records if r.status == status)


def _meets_percentage(approved: int, total: int, required: int) -> bool:
    # integer form of approved / total * 100 >= required
    if total == 0:
        return True
    return approved * 100 >= required * total


def _waiting(expense: ExpenseView, reason: str) -> Transition:
    return Transition("waiting", expense.status, expense.current_step, reason)


def _advance_or_approve(expense: ExpenseView, reason: str) -> Transition:
    if expense.current_step < expense.total_steps:
        return Transition("advanced", IN_PROGRESS, expense.current_step + 1, reason)
    return Transition("approved", APPROVED, expense.current_step, reason)


def _evaluate_sequential(
    policy: SequentialPolicy, expense: ExpenseView, records: list[RecordView], approver_id: uuid.UUID
) -> Transition:
    cohort = _step_records(expense, records)
    approved = _count(cohort, APPROVED)
    if policy.step_requires_unanimous:
        step_done = approved == len(cohort)
    else:
        step_done = approved > 0
    if not step_done:
        return _waiting(expense, f"step {expense.current_step}: {approved}/{len(cohort)} approved")
    return _advance_or_approve(expense, f"step {expense.current_step} approved")


def _evaluate_percentage(
    policy: PercentagePolicy, expense: ExpenseView, records: list[RecordView], approver_id: uuid.UUID
) -> Transition:
    cohort = _step_records(expense, records)
    approved = _count(cohort, APPROVED)
    if _meets_percentage(approved, len(cohort), policy.required_percentage):
        return _advance_or_approve(
            expense, f"{approved}/{len(cohort)} approved meets {policy.required_percentage}%"
        )
    return _waiting(expense, f"{approved}/{len(cohort)} approved below {policy.required_percentage}%")


def _evaluate_specific_approver(
    policy: SpecificApproverPolicy, expense: ExpenseView, records: list[RecordView], approver_id: uuid.UUID
) -> Transition:
    if approver_id in policy.approver_ids:
        return Transition("approved", APPROVED, expense.current_step, "approved by designated approver")
    return _waiting(expense, "awaiting a designated approver")


def _evaluate_hybrid(
    policy: HybridPolicy, expense: ExpenseView, records: list[RecordView], approver_id: uuid.UUID
) -> Transition:
    if approver_id in policy.approver_ids:
        return _advance_or_approve(expense, "designated approver approved the step")
    cohort = _step_records(expense, records)
    approved = _count(cohort, APPROVED)
    if _meets_percentage(approved, len(cohort), policy.required_percentage):
        return _advance_or_approve(
            expense, f"{approved}/{len(cohort)} approved meets {policy.required_percentage}%"
        )
    return _waiting(expense, f"{approved}/{len(cohort)} approved below {policy.required_percentage}%")


def _evaluate_fallback(
    policy: FallbackPolicy, expense: ExpenseView, records: list[RecordView], approver_id: uuid.UUID
) -> Transition:
    # Counts over every record, not just the current step.
    total = len(records)
    if total == 0:
        return Transition("approved", APPROVED, expense.current_step, "no approvers assigned")
    approved = _count(records, APPROVED)
    rejected = _count(records, REJECTED)
    remaining = total - approved - rejected
    threshold = policy.minimum_approval_percent

    if _meets_percentage(approved, total, threshold):
        return Transition(
            "approved", APPROVED, expense.current_step,
            f"{approved}/{total} approved meets minimum {threshold}%",
        )
    if not _meets_percentage(approved + remaining, total, threshold):
        return Transition(
            "rejected", REJECTED, expense.current_step,
            f"minimum {threshold}% no longer reachable ({approved} approved, {rejected} rejected of {total})",
        )
    return _waiting(expense, f"{approved}/{total} approved, {remaining} pending")


_EVALUATORS: dict[type, Callable[..., Transition]] = {
    SequentialPolicy: _evaluate_sequential,
    PercentagePolicy: _evaluate_percentage,
    SpecificApproverPolicy: _evaluate_specific_approver,
    HybridPolicy: _evaluate_hybrid,
    FallbackPolicy: _evaluate_fallback,
}

_missing = set(get_args(Policy)) - set(_EVALUATORS)
if _missing:
    raise RuntimeError(f"Policy variants without an evaluator: {sorted(t.__name__ for t in _missing)}")
