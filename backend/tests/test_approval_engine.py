"""Unit tests for the approval workflow engine.

The engine is pure: every test builds plain snapshots and a policy, applies
one decision and inspects the resulting Transition.
"""
import uuid

import pytest

from app.core.exceptions import AlreadyProcessedError, InvalidDecisionError
from app.rules.approval_engine import (
    APPROVED,
    IN_PROGRESS,
    PENDING,
    REJECTED,
    ExpenseView,
    FallbackPolicy,
    HybridPolicy,
    PercentagePolicy,
    RecordView,
    SequentialPolicy,
    SpecificApproverPolicy,
    _EVALUATORS,
    apply_decision,
    evaluate_decision,
    plan_from_approvers,
    plan_from_rule_steps,
)


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _expense(current_step: int = 1, total_steps: int = 1, status: str = IN_PROGRESS) -> ExpenseView:
    return ExpenseView(id=uuid.uuid4(), status=status, current_step=current_step, total_steps=total_steps)


def _records(*steps: int) -> list[RecordView]:
    return [RecordView(id=uuid.uuid4(), approver_id=uuid.uuid4(), step=s) for s in steps]


def _decide(policy, expense, records, index, action=APPROVED, statuses=None):
    """Apply ``statuses`` (index -> status) first, then the triggering decision."""
    for i, status in (statuses or {}).items():
        records = apply_decision(records, records[i].id, status)
    records = apply_decision(records, records[index].id, action)
    return evaluate_decision(policy, expense, records, records[index].approver_id, action)


# ─── Percentage threshold ─────────────────────────────────────────────────────

def test_percentage_exact_boundary_meets_threshold():
    """2 of 4 approved is exactly 50% and must satisfy a 50% rule."""
    records = _records(1, 1, 1, 1)
    t = _decide(PercentagePolicy(50), _expense(), records, 1, statuses={0: APPROVED})
    assert t.outcome == "approved"
    assert t.status == APPROVED


def test_percentage_below_boundary_waits():
    """1 of 3 approved is 33% and must not satisfy a 34% rule."""
    records = _records(1, 1, 1)
    t = _decide(PercentagePolicy(34), _expense(), records, 0)
    assert t.outcome == "waiting"
    assert t.status == IN_PROGRESS


def test_percentage_uses_exact_integer_math():
    """2 of 3 approved is 66.67%; a 67% rule must keep waiting."""
    records = _records(1, 1, 1)
    t = _decide(PercentagePolicy(67), _expense(), records, 1, statuses={0: APPROVED})
    assert t.outcome == "waiting"


def test_percentage_only_counts_current_step():
    records = _records(1, 2, 2)
    t = _decide(PercentagePolicy(100), _expense(1, 2), records, 0)
    assert t.outcome == "advanced"
    assert t.current_step == 2
    assert t.status == IN_PROGRESS


# ─── Fallback (company default) ───────────────────────────────────────────────

def test_fallback_sixty_percent_of_five_approvers():
    """Minimum 60% with 5 approvers: the third approval approves the expense."""
    records = _records(1, 1, 1, 1, 1)
    policy = FallbackPolicy(minimum_approval_percent=60)

    t = _decide(policy, _expense(), records, 1, statuses={0: APPROVED})
    assert t.outcome == "waiting"

    t = _decide(policy, _expense(), records, 2, statuses={0: APPROVED, 1: APPROVED})
    assert t.outcome == "approved"
    assert t.status == APPROVED


def test_fallback_rejects_when_threshold_unreachable():
    """80% of 5 needs four approvals; after two rejections at most three remain possible."""
    records = _records(1, 1, 1, 1, 1)
    policy = FallbackPolicy(minimum_approval_percent=80)
    records = apply_decision(records, records[0].id, REJECTED)
    records = apply_decision(records, records[1].id, REJECTED)
    t = evaluate_decision(policy, _expense(), apply_decision(records, records[2].id, APPROVED),
                          records[2].approver_id, APPROVED)
    assert t.outcome == "rejected"
    assert t.status == REJECTED


def test_fallback_with_no_records_approves():
    t = evaluate_decision(FallbackPolicy(50), _expense(), [], uuid.uuid4(), APPROVED)
    assert t.outcome == "approved"


# ─── Sequential ───────────────────────────────────────────────────────────────

def test_sequential_walks_steps_in_order():
    records = _records(1, 2, 3)
    policy = SequentialPolicy()

    t1 = _decide(policy, _expense(1, 3), records, 0)
    assert (t1.outcome, t1.current_step, t1.status) == ("advanced", 2, IN_PROGRESS)

    records = apply_decision(records, records[0].id, APPROVED)
    t2 = _decide(policy, _expense(2, 3), records, 1)
    assert (t2.outcome, t2.current_step) == ("advanced", 3)

    records = apply_decision(records, records[1].id, APPROVED)
    t3 = _decide(policy, _expense(3, 3), records, 2)
    assert (t3.outcome, t3.status, t3.current_step) == ("approved", APPROVED, 3)


def test_sequential_single_approval_moves_shared_step_by_default():
    records = _records(1, 1, 2)
    t = _decide(SequentialPolicy(step_requires_unanimous=False), _expense(1, 2), records, 0)
    assert t.outcome == "advanced"
    assert t.current_step == 2


def test_sequential_unanimous_waits_for_every_step_approver():
    records = _records(1, 1, 2)
    policy = SequentialPolicy(step_requires_unanimous=True)

    t = _decide(policy, _expense(1, 2), records, 0)
    assert t.outcome == "waiting"
    assert t.current_step == 1

    t = _decide(policy, _expense(1, 2), records, 1, statuses={0: APPROVED})
    assert t.outcome == "advanced"
    assert t.current_step == 2


# ─── Specific approver / hybrid ───────────────────────────────────────────────

def test_specific_approver_short_circuits_remaining_steps():
    records = _records(1, 2, 3)
    policy = SpecificApproverPolicy(approver_ids=frozenset({records[0].approver_id}))
    t = _decide(policy, _expense(1, 3), records, 0)
    assert t.outcome == "approved"
    assert t.status == APPROVED


def test_specific_approver_other_approver_waits():
    records = _records(1, 1)
    policy = SpecificApproverPolicy(approver_ids=frozenset({records[1].approver_id}))
    t = _decide(policy, _expense(), records, 0)
    assert t.outcome == "waiting"
    assert t.status == IN_PROGRESS


def test_hybrid_designated_approver_completes_step():
    records = _records(1, 1, 1, 1)
    policy = HybridPolicy(required_percentage=75, approver_ids=frozenset({records[3].approver_id}))
    t = _decide(policy, _expense(), records, 3)
    assert t.outcome == "approved"


def test_hybrid_percentage_alone_completes_step():
    records = _records(1, 1, 2)
    policy = HybridPolicy(required_percentage=50, approver_ids=frozenset({uuid.uuid4()}))
    t = _decide(policy, _expense(1, 2), records, 0)
    assert t.outcome == "advanced"
    assert t.current_step == 2


# ─── Rejection and terminal states ────────────────────────────────────────────

@pytest.mark.parametrize("policy", [
    SequentialPolicy(),
    PercentagePolicy(1),
    SpecificApproverPolicy(approver_ids=frozenset()),
    HybridPolicy(required_percentage=1, approver_ids=frozenset()),
    FallbackPolicy(1),
])
def test_single_rejection_rejects_under_every_policy(policy):
    records = _records(1, 1, 1)
    t = _decide(policy, _expense(), records, 0, action=REJECTED, statuses={1: APPROVED})
    assert t.outcome == "rejected"
    assert t.status == REJECTED
    assert t.is_terminal


@pytest.mark.parametrize("status", [APPROVED, REJECTED])
def test_terminal_expense_refuses_further_decisions(status):
    records = _records(1)
    with pytest.raises(AlreadyProcessedError):
        evaluate_decision(SequentialPolicy(), _expense(status=status), records, records[0].approver_id, APPROVED)


def test_decided_record_cannot_be_decided_again():
    records = _records(1)
    records = apply_decision(records, records[0].id, APPROVED)
    with pytest.raises(AlreadyProcessedError):
        apply_decision(records, records[0].id, REJECTED)


def test_invalid_action_is_rejected():
    records = _records(1)
    with pytest.raises(InvalidDecisionError):
        evaluate_decision(SequentialPolicy(), _expense(), records, records[0].approver_id, PENDING)


def test_current_step_never_decreases():
    records = _records(1, 2, 3)
    policies = [SequentialPolicy(), PercentagePolicy(50), HybridPolicy(50, frozenset())]
    for policy in policies:
        for step in (1, 2, 3):
            t = _decide(policy, _expense(step, 3), records, step - 1)
            assert t.current_step >= step


def test_every_policy_variant_has_an_evaluator():
    assert set(_EVALUATORS) == {
        SequentialPolicy, PercentagePolicy, SpecificApproverPolicy, HybridPolicy, FallbackPolicy,
    }


# ─── Planning ─────────────────────────────────────────────────────────────────

def test_plan_from_approvers_parallel_puts_everyone_on_step_one():
    ids = [uuid.uuid4() for _ in range(3)]
    plan = plan_from_approvers(ids, sequential=False)
    assert [a.step for a in plan.assignments] == [1, 1, 1]
    assert plan.total_steps == 1


def test_plan_from_approvers_sequential_numbers_steps():
    ids = [uuid.uuid4() for _ in range(3)]
    plan = plan_from_approvers(ids + [ids[0]], sequential=True)
    assert [(a.approver_id, a.step) for a in plan.assignments] == [(ids[0], 1), (ids[1], 2), (ids[2], 3)]
    assert plan.total_steps == 3


def test_plan_from_approvers_empty():
    plan = plan_from_approvers([], sequential=True)
    assert plan.is_empty
    assert plan.total_steps == 1


def test_plan_from_rule_steps_compacts_gaps_and_puts_manager_first():
    a, b, manager = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    plan = plan_from_rule_steps([(b, 7), (a, 3), (a, 3)], manager_id=manager)
    assert [(x.approver_id, x.step) for x in plan.assignments] == [(manager, 1), (a, 2), (b, 3)]
    assert plan.total_steps == 3
