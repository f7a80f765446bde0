"""Company info and fallback approval settings."""
import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_current_user, require_role
from app.db.session import get_session
from app.models.audit import AuditLog
from app.models.company import Company
from app.models.user import User
from app.schemas.company import ApprovalSettingsUpdate, CompanyOut

logger = logging.getLogger(__name__)

router = APIRouter()


async def _load_company(db: AsyncSession, company_id) -> Company:
    result = await db.execute(select(Company).where(Company.id == company_id))
    company = result.scalar_one_or_none()
    if company is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found.")
    return company


@router.get("", response_model=CompanyOut, summary="Get the current user's company")
async def get_company(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return CompanyOut.model_validate(await _load_company(db, current_user.company_id))


@router.patch(
    "/approval-settings",
    response_model=CompanyOut,
    summary="Update the fallback approval policy (ADMIN)",
)
async def update_approval_settings(
    body: ApprovalSettingsUpdate,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    company = await _load_company(db, current_user.company_id)
    changes = body.model_dump(exclude_unset=True)
    for field in ("sequential_approval", "minimum_approval_percent"):
        if changes.get(field, True) is None:
            del changes[field]
    before = {field: getattr(company, field) for field in changes}
    for field, value in changes.items():
        setattr(company, field, value)

    db.add(AuditLog(
        company_id=company.id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        action="company_approval_settings_updated",
        entity_type="company",
        entity_id=company.id,
        before_state=json.dumps(before, default=str),
        after_state=json.dumps(changes, default=str),
    ))
    await db.commit()
    await db.refresh(company)
    logger.info("Company %s approval settings updated: %s", company.id, changes)
    return CompanyOut.model_validate(company)
