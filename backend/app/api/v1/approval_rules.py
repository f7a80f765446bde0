"""Approval rule administration endpoints (ADMIN only)."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.deps import require_role
from app.db.session import get_session
from app.models.approval_rule import ApprovalRule, ApprovalRuleStep, RuleType
from app.models.audit import AuditLog
from app.models.user import APPROVER_ROLES, User
from app.schemas.approval_rule import (
    ApprovalRuleIn,
    ApprovalRuleOut,
    ApprovalRuleUpdate,
    check_rule_shape,
)
from app.services import audit as audit_svc

router = APIRouter()

_NOT_NULLABLE = ("name", "rule_type", "is_manager_approver", "is_active", "category_ids", "specific_approver_ids")


async def _load_rule(db: AsyncSession, rule_id: uuid.UUID, company_id: uuid.UUID) -> ApprovalRule:
    result = await db.execute(
        select(ApprovalRule)
        .options(selectinload(ApprovalRule.steps))
        .where(ApprovalRule.id == rule_id, ApprovalRule.company_id == company_id)
        .execution_options(populate_existing=True)
    )
    rule = result.scalars().first()
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval rule not found.")
    return rule


async def _ensure_approvers(db: AsyncSession, company_id: uuid.UUID, user_ids: set[uuid.UUID]) -> None:
    """400 unless every id is an active approver of the company."""
    if not user_ids:
        return
    result = await db.execute(
        select(func.count()).select_from(User).where(
            User.id.in_(user_ids),
            User.company_id == company_id,
            User.is_approver.is_(True),
            User.role.in_(APPROVER_ROLES),
            User.is_active.is_(True),
        )
    )
    if result.scalar_one() != len(user_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Every step user and specific approver must be an active approver of this company.",
        )


def _audit(rule: ApprovalRule, actor: User, action: str, after: dict | None = None) -> AuditLog:
    return audit_svc.build_entry(
        action=action,
        entity_type="approval_rule",
        entity_id=rule.id,
        actor_id=actor.id,
        actor_email=actor.email,
        company_id=rule.company_id,
        after=after,
    )


# ─── List / detail ───

@router.get("", response_model=list[ApprovalRuleOut], summary="List the company's approval rules")
async def list_rules(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    result = await db.execute(
        select(ApprovalRule)
        .options(selectinload(ApprovalRule.steps))
        .where(ApprovalRule.company_id == current_user.company_id)
        .order_by(ApprovalRule.created_at.desc())
    )
    return [ApprovalRuleOut.model_validate(r) for r in result.scalars().all()]


@router.get("/{rule_id}", response_model=ApprovalRuleOut, summary="Get one approval rule")
async def get_rule(
    rule_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    return ApprovalRuleOut.model_validate(await _load_rule(db, rule_id, current_user.company_id))


# ─── Create ───

@router.post(
    "",
    response_model=ApprovalRuleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval rule",
)
async def create_rule(
    body: ApprovalRuleIn,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    await _ensure_approvers(
        db,
        current_user.company_id,
        {s.user_id for s in body.steps} | set(body.specific_approver_ids),
    )

    rule = ApprovalRule(
        company_id=current_user.company_id,
        name=body.name,
        description=body.description,
        min_amount=body.min_amount,
        max_amount=body.max_amount,
        category_ids=[str(c) for c in body.category_ids],
        rule_type=body.rule_type.value,
        required_percentage=body.required_percentage,
        is_manager_approver=body.is_manager_approver,
        specific_approver_ids=[str(a) for a in body.specific_approver_ids],
        is_active=True,
        steps=[ApprovalRuleStep(user_id=s.user_id, step=s.step) for s in body.steps],
    )
    db.add(rule)
    await db.flush()
    db.add(_audit(rule, current_user, "approval_rule_created", after=body.model_dump(mode="json")))
    await db.commit()
    return ApprovalRuleOut.model_validate(await _load_rule(db, rule.id, current_user.company_id))


# ─── Update ───

@router.put("/{rule_id}", response_model=ApprovalRuleOut, summary="Update an approval rule")
async def update_rule(
    rule_id: uuid.UUID,
    body: ApprovalRuleUpdate,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    rule = await _load_rule(db, rule_id, current_user.company_id)
    changes = body.model_dump(exclude_unset=True)
    for field in _NOT_NULLABLE:
        if field in changes and changes[field] is None:
            del changes[field]
    new_steps = changes.pop("steps", None)

    rule_type = RuleType(changes.get("rule_type", rule.rule_type))
    specific = changes.get("specific_approver_ids", rule.specific_approver_ids)
    try:
        check_rule_shape(
            rule_type,
            changes.get("required_percentage", rule.required_percentage),
            specific,
            changes.get("min_amount", rule.min_amount),
            changes.get("max_amount", rule.max_amount),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    referenced = {uuid.UUID(str(a)) for a in changes.get("specific_approver_ids") or []}
    if new_steps is not None:
        referenced |= {s["user_id"] for s in new_steps}
    await _ensure_approvers(db, current_user.company_id, referenced)

    for field, value in changes.items():
        if field == "rule_type":
            value = RuleType(value).value
        elif field in ("category_ids", "specific_approver_ids") and value is not None:
            value = [str(v) for v in value]
        setattr(rule, field, value)

    if new_steps is not None:
        rule.steps.clear()
        rule.steps.extend(ApprovalRuleStep(user_id=s["user_id"], step=s["step"]) for s in new_steps)

    db.add(_audit(rule, current_user, "approval_rule_updated", after=body.model_dump(mode="json", exclude_unset=True)))
    await db.commit()
    return ApprovalRuleOut.model_validate(await _load_rule(db, rule.id, current_user.company_id))


# ─── Delete (soft) ───

@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate an approval rule",
)
async def delete_rule(
    rule_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    rule = await _load_rule(db, rule_id, current_user.company_id)
    # In-flight expenses keep the policy stored on them at submission.
    rule.is_active = False
    db.add(_audit(rule, current_user, "approval_rule_deactivated"))
    await db.commit()
