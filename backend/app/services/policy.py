"""Approval rule selection and policy resolution.

Turns persisted ApprovalRule / Company rows into the engine's Policy
values. A rule that cannot be evaluated is never an error: it degrades to
the company's fallback policy with a warning.
"""
import logging
import uuid
from decimal import Decimal
from typing import Iterable

from app.core.config import settings
from app.models.approval_rule import RuleType
from app.rules.approval_engine import (
    FallbackPolicy,
    HybridPolicy,
    PercentagePolicy,
    Policy,
    SequentialPolicy,
    SpecificApproverPolicy,
)

logger = logging.getLogger(__name__)


# ─── Rule selection ───

def rule_applies(rule, amount: Decimal, category_id: uuid.UUID | None) -> bool:
    """Amount within [min_amount, max_amount] (open bounds) and category in scope."""
    amount = Decimal(str(amount))
    if rule.min_amount is not None and amount < Decimal(str(rule.min_amount)):
        return False
    if rule.max_amount is not None and amount > Decimal(str(rule.max_amount)):
        return False
    category_ids = {str(c) for c in (rule.category_ids or [])}
    if category_ids and (category_id is None or str(category_id) not in category_ids):
        return False
    return True


def _specificity(rule) -> tuple[int, int]:
    has_category = 1 if rule.category_ids else 0
    has_bounds = (rule.min_amount is not None) + (rule.max_amount is not None)
    return has_category, has_bounds


def select_rule(rules: Iterable, amount: Decimal, category_id: uuid.UUID | None):
    """Pick the rule governing an expense, or None for the company fallback.

    Category-scoped rules beat unscoped ones, bounded amount ranges beat open
    ones; remaining ties go to the oldest rule (``rules`` arrive oldest first).
    """
    best = None
    for rule in rules:
        if not rule_applies(rule, amount, category_id):
            continue
        if best is None or _specificity(rule) > _specificity(best):
            best = rule
    return best


# ─── Policy resolution ───

def _valid_percentage(value) -> bool:
    try:
        return value is not None and 1 <= int(value) <= 100
    except (TypeError, ValueError):
        return False


def approver_id_set(ids) -> frozenset[uuid.UUID]:
    result = set()
    for raw in ids or []:
        try:
            result.add(uuid.UUID(str(raw)))
        except ValueError:
            logger.warning("Ignoring malformed specific approver id %r", raw)
    return frozenset(result)


def fallback_policy(company, default_unanimous: bool | None = None) -> Policy:
    unanimous = _unanimous(company, default_unanimous)
    if company.sequential_approval:
        return SequentialPolicy(step_requires_unanimous=unanimous)
    percent = company.minimum_approval_percent
    if not _valid_percentage(percent):
        percent = settings.DEFAULT_MINIMUM_APPROVAL_PERCENT
    return FallbackPolicy(minimum_approval_percent=int(percent))


def _unanimous(company, default_unanimous: bool | None) -> bool:
    if getattr(company, "step_requires_unanimous", None) is not None:
        return bool(company.step_requires_unanimous)
    if default_unanimous is not None:
        return default_unanimous
    return settings.STEP_REQUIRES_UNANIMOUS


def resolve_policy(company, rule=None, default_unanimous: bool | None = None) -> Policy:
    """Map (company, rule) to the Policy the engine evaluates."""
    if rule is None:
        return fallback_policy(company, default_unanimous)

    rule_type = rule.rule_type
    approvers = approver_id_set(rule.specific_approver_ids)

    if rule_type == RuleType.SEQUENTIAL.value:
        return SequentialPolicy(step_requires_unanimous=_unanimous(company, default_unanimous))

    if rule_type == RuleType.PERCENTAGE.value and _valid_percentage(rule.required_percentage):
        return PercentagePolicy(required_percentage=int(rule.required_percentage))

    if rule_type == RuleType.SPECIFIC_APPROVER.value and approvers:
        return SpecificApproverPolicy(approver_ids=approvers)

    if rule_type == RuleType.HYBRID.value and approvers and _valid_percentage(rule.required_percentage):
        return HybridPolicy(
            required_percentage=int(rule.required_percentage),
            approver_ids=approvers,
        )

    logger.warning(
        "Approval rule %s (%s) is misconfigured; using company fallback policy.",
        getattr(rule, "id", None), rule_type,
    )
    return fallback_policy(company, default_unanimous)


# ─── Snapshots ───

_POLICY_TYPES = {
    cls.__name__: cls
    for cls in (SequentialPolicy, PercentagePolicy, SpecificApproverPolicy, HybridPolicy, FallbackPolicy)
}


def policy_snapshot(policy: Policy) -> dict:
    """JSON-safe form of a resolved policy, stored on the expense at submission."""
    data = {"type": type(policy).__name__}
    for name, value in vars(policy).items():
        data[name] = sorted(str(v) for v in value) if isinstance(value, frozenset) else value
    return data


def policy_from_snapshot(data: dict | None) -> Policy | None:
    """Rebuild a stored policy; None when there is nothing usable to rebuild."""
    if not data:
        return None
    fields = dict(data)
    cls = _POLICY_TYPES.get(fields.pop("type", None))
    if cls is None:
        logger.warning("Unknown stored approval policy %r; resolving from the rule instead.", data)
        return None
    if "approver_ids" in fields:
        fields["approver_ids"] = approver_id_set(fields["approver_ids"])
    try:
        return cls(**fields)
    except TypeError:
        logger.warning("Malformed stored approval policy %r; resolving from the rule instead.", data)
        return None
