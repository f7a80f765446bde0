"""User and approver administration.

  GET    /users              paginated company users (ADMIN)
  GET    /users/approvers    active approvers in acting order
  GET    /users/managers     users who can manage a team
  POST   /users              create a user (ADMIN)
  PATCH  /users/{user_id}    role, manager and approver settings (ADMIN)
  DELETE /users/{user_id}    soft delete (ADMIN)

Role, ``manager_id``, ``is_approver`` and ``approver_level`` decide who is
asked to approve at submission, so every change is audited.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_current_user, require_role
from app.core.security import hash_password
from app.db.session import get_session
from app.models.user import APPROVER_ROLES, User
from app.schemas.user import (
    AdminUserCreate,
    AdminUserListResponse,
    AdminUserOut,
    AdminUserUpdate,
    UserSummary,
)
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)

router = APIRouter()

_SNAPSHOT_FIELDS = ("name", "role", "manager_id", "is_approver", "approver_level", "is_active")


def _snapshot(user: User) -> dict:
    return {field: getattr(user, field) for field in _SNAPSHOT_FIELDS}


async def _load_user(db: AsyncSession, user_id: uuid.UUID, company_id: uuid.UUID) -> User:
    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.company_id == company_id,
            User.deleted_at.is_(None),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    return user


async def _ensure_manager(db: AsyncSession, manager_id: uuid.UUID, company_id: uuid.UUID) -> None:
    result = await db.execute(
        select(User).where(
            User.id == manager_id,
            User.company_id == company_id,
            User.role.in_(APPROVER_ROLES),
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
    )
    if result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="manager_id must be an active MANAGER or ADMIN of this company.",
        )


# ─── Lists ───

@router.get(
    "",
    response_model=AdminUserListResponse,
    summary="List company users with pagination (ADMIN)",
)
async def list_users(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    role: str | None = Query(default=None),
):
    stmt = select(User).where(User.company_id == current_user.company_id, User.deleted_at.is_(None))
    if role:
        stmt = stmt.where(User.role == role)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(
        stmt.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return AdminUserListResponse(
        items=[AdminUserOut.model_validate(u) for u in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/approvers", response_model=list[UserSummary], summary="Active approvers, lowest level first")
async def list_approvers(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    result = await db.execute(
        select(User)
        .where(
            User.company_id == current_user.company_id,
            User.is_approver.is_(True),
            User.role.in_(APPROVER_ROLES),
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
        .order_by(User.approver_level.asc().nulls_last(), User.created_at.asc())
    )
    return [UserSummary.model_validate(u) for u in result.scalars().all()]


@router.get("/managers", response_model=list[UserSummary], summary="Users who can be assigned as managers")
async def list_managers(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    result = await db.execute(
        select(User)
        .where(
            User.company_id == current_user.company_id,
            User.role.in_(APPROVER_ROLES),
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
        .order_by(User.name.asc())
    )
    return [UserSummary.model_validate(u) for u in result.scalars().all()]


# ─── Create ───

@router.post(
    "",
    response_model=AdminUserOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user (ADMIN)",
)
async def create_user(
    body: AdminUserCreate,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    existing = await db.execute(select(User).where(User.email == body.email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists.")
    if body.manager_id is not None:
        await _ensure_manager(db, body.manager_id, current_user.company_id)

    user = User(
        company_id=current_user.company_id,
        email=body.email,
        name=body.name,
        password_hash=hash_password(body.password),
        role=body.role,
        manager_id=body.manager_id,
        is_approver=body.is_approver,
        approver_level=body.approver_level,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    db.add(audit_svc.build_entry(
        action="user_created",
        entity_type="user",
        entity_id=user.id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        company_id=current_user.company_id,
        after={"email": user.email, **_snapshot(user)},
    ))
    await db.commit()
    await db.refresh(user)
    logger.info("User %s (%s) created by %s", user.id, user.role, current_user.id)
    return AdminUserOut.model_validate(user)


# ─── Update ───

@router.patch("/{user_id}", response_model=AdminUserOut, summary="Update a user (ADMIN)")
async def update_user(
    user_id: uuid.UUID,
    body: AdminUserUpdate,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    user = await _load_user(db, user_id, current_user.company_id)
    changes = body.model_dump(exclude_unset=True)
    for field in ("name", "role", "is_approver", "is_active"):
        if field in changes and changes[field] is None:
            del changes[field]

    if changes.get("manager_id") is not None:
        if changes["manager_id"] == user.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A user cannot manage themselves.")
        await _ensure_manager(db, changes["manager_id"], current_user.company_id)

    role = changes.get("role", user.role)
    is_approver = changes.get("is_approver", user.is_approver)
    if role == "EMPLOYEE" and is_approver:
        if "is_approver" in changes:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Only MANAGER or ADMIN users can be approvers.",
            )
        # Demoted to EMPLOYEE: drop the approver flag with the role.
        changes["is_approver"] = False

    before = _snapshot(user)
    for field, value in changes.items():
        setattr(user, field, value)

    db.add(audit_svc.build_entry(
        action="user_updated",
        entity_type="user",
        entity_id=user.id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        company_id=current_user.company_id,
        before=before,
        after=_snapshot(user),
    ))
    await db.commit()
    await db.refresh(user)
    logger.info("User %s updated by %s: %s", user.id, current_user.id, sorted(changes))
    return AdminUserOut.model_validate(user)


# ─── Delete (soft) ───

@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Soft-delete a user (ADMIN)")
async def delete_user(
    user_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role("ADMIN"))],
):
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Admins cannot delete themselves.")
    user = await _load_user(db, user_id, current_user.company_id)
    before = _snapshot(user)
    # Existing approval records stay; the user is simply no longer eligible.
    user.is_active = False
    user.deleted_at = datetime.now(timezone.utc)
    db.add(audit_svc.build_entry(
        action="user_deleted",
        entity_type="user",
        entity_id=user.id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        company_id=current_user.company_id,
        before=before,
    ))
    await db.commit()
    logger.info("User %s deleted by %s", user.id, current_user.id)
