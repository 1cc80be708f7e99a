"""Guardians router.

Guardian directory: user records with their linked children. Staff and
admin accounts live in the same directory, distinguished by ``role``.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user, require_permission
from app.core.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from app.core.permissions import (
    GUARDIAN,
    can_change_guardian_links,
    can_manage_guardians,
    can_read_guardian,
    can_update_guardian,
)
from app.core.security import get_password_hash
from app.database import get_db
from app.models.pickup import PickupCode
from app.models.user import User
from app.schemas.guardian import (
    GuardianCreate,
    GuardianResponse,
    GuardianUpdate,
    GuardianWriteResponse,
    Role,
    SyncResult,
)
from app.services.relationship_sync import detach_guardian, sync_guardian_children

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/guardians", tags=["Guardians"])


async def _get_guardian(db: AsyncSession, guardian_id: uuid.UUID) -> User:
    guardian = await db.get(User, guardian_id)
    if guardian is None:
        raise NotFoundError(f"Guardian not found with id of {guardian_id}")
    return guardian


async def _ensure_email_free(db: AsyncSession, email: str, exclude_id=None) -> None:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise ConflictError("Email already registered")


@router.get("/", response_model=list[GuardianResponse])
async def list_guardians(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_guardians)),
    role: Role | None = Query(GUARDIAN, description="Filter by role"),
):
    """List directory entries, guardians by default. Requires admin role."""
    query = select(User).order_by(User.name)
    if role is not None:
        query = query.where(User.role == role)
    result = await db.execute(query)
    return result.scalars().all()


@router.post("/", response_model=GuardianWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_guardian(
    body: GuardianCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_guardians)),
):
    """Create a guardian (or staff/admin account) and link its children."""
    email = body.email.lower()
    await _ensure_email_free(db, email)

    if body.children_ids and body.role != GUARDIAN:
        raise InvalidInputError("Only guardians can be linked to students")

    guardian = User(
        name=body.name,
        email=email,
        phone=body.phone,
        photo=body.photo,
        role=body.role,
        password_hash=get_password_hash(body.password),
    )
    db.add(guardian)
    await db.flush()

    report = await sync_guardian_children(db, guardian, body.children_ids)
    await db.refresh(guardian)
    logger.info("Guardian %s created by %s", guardian.id, current_user.id)

    response = GuardianWriteResponse.model_validate(guardian)
    response.sync = SyncResult(**report.as_dict())
    return response


@router.get("/{guardian_id}", response_model=GuardianResponse)
async def get_guardian(
    guardian_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Get a guardian record. Guardians may only read their own."""
    if not can_read_guardian(current_user, guardian_id):
        raise ForbiddenError("Not authorized to access this guardian's information")
    return await _get_guardian(db, guardian_id)


@router.put("/{guardian_id}", response_model=GuardianWriteResponse)
async def update_guardian(
    guardian_id: uuid.UUID,
    body: GuardianUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Update a guardian record.

    ``role`` and ``children_ids`` are only honoured for admins and are
    silently ignored otherwise.
    """
    if not can_update_guardian(current_user, guardian_id):
        raise ForbiddenError("Not authorized to update this guardian's information")

    guardian = await _get_guardian(db, guardian_id)

    update_data = body.model_dump(exclude_unset=True)
    children_ids = update_data.pop("children_ids", None)
    if not can_change_guardian_links(current_user):
        update_data.pop("role", None)
        children_ids = None

    if "email" in update_data:
        update_data["email"] = update_data["email"].lower()
        await _ensure_email_free(db, update_data["email"], exclude_id=guardian.id)

    new_role = update_data.get("role") or guardian.role
    if new_role != GUARDIAN:
        if children_ids:
            raise InvalidInputError("Only guardians can be linked to students")
        if guardian.children_ids:
            children_ids = []

    for field, value in update_data.items():
        setattr(guardian, field, value)
    await db.flush()

    report = None
    if children_ids is not None:
        report = await sync_guardian_children(db, guardian, children_ids)

    await db.refresh(guardian)
    response = GuardianWriteResponse.model_validate(guardian)
    if report is not None:
        response.sync = SyncResult(**report.as_dict())
    return response


@router.delete("/{guardian_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_guardian(
    guardian_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_guardians)),
):
    """Delete a guardian after detaching it from every linked student."""
    guardian = await _get_guardian(db, guardian_id)
    if guardian.id == current_user.id:
        raise InvalidInputError("Admins cannot delete their own account")

    await detach_guardian(db, guardian)
    await db.execute(delete(PickupCode).where(PickupCode.guardian_id == guardian.id))
    await db.delete(guardian)
    await db.flush()
    logger.info("Guardian %s deleted by %s", guardian_id, current_user.id)
    return None
