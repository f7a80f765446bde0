"""Expense category endpoints. Reads for everyone, writes for ADMIN."""
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_current_user, require_role
from app.db.session import get_session
from app.models.expense import Expense, ExpenseCategory
from app.models.user import User
from app.schemas.category import CategoryIn, CategoryOut, CategoryUpdate
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)

router = APIRouter()


async def _load_category(db: AsyncSession, category_id: uuid.UUID, company_id: uuid.UUID) -> ExpenseCategory:
    result = await db.execute(
        select(ExpenseCategory).where(
            ExpenseCategory.id == category_id,
            ExpenseCategory.company_id == company_id,
        )
    )
    category = result.scalar_one_or_none()
    if category is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found.")
    return category


async def _ensure_unique_name(
    db: AsyncSession, company_id: uuid.UUID, name: str, exclude_id: uuid.UUID | None = None
) -> None:
    stmt = select(ExpenseCategory).where(
        ExpenseCategory.company_id == company_id,
        func.lower(ExpenseCategory.name) == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(ExpenseCategory.id != exclude_id)
    if (await db.execute(stmt)).scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category name already exists.")


def _audit(category: ExpenseCategory, actor: User, action: str, before=None, after=None):
    return audit_svc.build_entry(
        action=action,
        entity_type="expense_category",
        entity_id=category.id,
        actor_id=actor.id,
        actor_email=actor.email,
        company_id=category.company_id,
        before=before,
        after=after,
    )


@router.get("", response_model=list[CategoryOut], summary="List the company's expense categories")
async def list_categories(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
    include_inactive: bool = Query(False),
):
    stmt = select(ExpenseCategory).where(ExpenseCategory.company_id == current_user.company_id)
    if not include_inactive:
        stmt = stmt.where(ExpenseCategory.is_active.is_(True))
    result = await db.execute(stmt.order_by(ExpenseCategory.name.asc()))
    return [CategoryOut.model_validate(c) for c in result.scalars().all()]


@router.get("/{category_id}", response_model=CategoryOut, summary="Get one expense category")
async def get_category(
    category_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return CategoryOut.model_validate(await _load_category(db, category_id, current_user.company_id))


@router.post(
    "",
    response_model=CategoryOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an expense category (ADMIN)",
)
async def create_category(
    body: CategoryIn,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    await _ensure_unique_name(db, current_user.company_id, body.name)
    category = ExpenseCategory(
        company_id=current_user.company_id,
        name=body.name,
        description=body.description,
        is_active=True,
    )
    db.add(category)
    await db.flush()
    db.add(_audit(category, current_user, "category_created", after=body.model_dump()))
    await db.commit()
    await db.refresh(category)
    return CategoryOut.model_validate(category)


@router.put("/{category_id}", response_model=CategoryOut, summary="Update an expense category (ADMIN)")
async def update_category(
    category_id: uuid.UUID,
    body: CategoryUpdate,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    category = await _load_category(db, category_id, current_user.company_id)
    changes = body.model_dump(exclude_unset=True)
    for field in ("name", "is_active"):
        if field in changes and changes[field] is None:
            del changes[field]
    if "name" in changes:
        await _ensure_unique_name(db, current_user.company_id, changes["name"], exclude_id=category.id)

    before = {field: getattr(category, field) for field in changes}
    for field, value in changes.items():
        setattr(category, field, value)
    db.add(_audit(category, current_user, "category_updated", before=before, after=changes))
    await db.commit()
    await db.refresh(category)
    return CategoryOut.model_validate(category)


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unused expense category (ADMIN)",
)
async def delete_category(
    category_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    category = await _load_category(db, category_id, current_user.company_id)
    in_use = (
        await db.execute(select(func.count()).select_from(Expense).where(Expense.category_id == category.id))
    ).scalar_one()
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Category is used by expenses; deactivate it instead.",
        )
    db.add(_audit(category, current_user, "category_deleted", before={"name": category.name}))
    await db.delete(category)
    await db.commit()
    logger.info("Category %s deleted by %s", category.id, current_user.id)
