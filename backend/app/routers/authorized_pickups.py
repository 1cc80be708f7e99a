"""Authorized pickups router.

Non-guardian people a student's guardians (or an admin) allow to collect
the student, and their short-lived pickup codes.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user
from app.core.errors import ForbiddenError, NotFoundError
from app.core.permissions import can_manage_authorized_pickups
from app.database import get_db
from app.models.pickup import AuthorizedPickup
from app.models.student import Student
from app.models.user import User
from app.schemas.pickup import IssuedCodeResponse
from app.schemas.student import AuthorizedPickupCreate, AuthorizedPickupResponse
from app.services.pickup_service import get_student_or_404, issue_authorized_pickup_code

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/students/{student_id}/authorized-pickups",
    tags=["Authorized pickups"],
)


async def _get_managed_student(
    db: AsyncSession, student_id: uuid.UUID, current_user: User
) -> Student:
    student = await get_student_or_404(db, student_id)
    if not can_manage_authorized_pickups(current_user, student):
        raise ForbiddenError("Not authorized to manage pickups for this student")
    return student


@router.get("/", response_model=list[AuthorizedPickupResponse])
async def list_authorized_pickups(
    student_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """List the student's authorized pickup people."""
    student = await _get_managed_student(db, student_id, current_user)
    return student.authorized_pickups


@router.post("/", response_model=AuthorizedPickupResponse, status_code=status.HTTP_201_CREATED)
async def add_authorized_pickup(
    student_id: uuid.UUID,
    body: AuthorizedPickupCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Allow a named person to pick up the student."""
    student = await _get_managed_student(db, student_id, current_user)

    entry = AuthorizedPickup(
        name=body.name,
        relationship_to_student=body.relationship,
        phone=body.phone,
    )
    student.authorized_pickups.append(entry)
    await db.flush()
    await db.refresh(entry)
    logger.info("Authorized pickup %s added to student %s", entry.id, student.id)
    return entry


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_authorized_pickup(
    student_id: uuid.UUID,
    entry_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Revoke a person's pickup permission along with any outstanding code."""
    student = await _get_managed_student(db, student_id, current_user)

    entry = next((e for e in student.authorized_pickups if e.id == entry_id), None)
    if entry is None:
        raise NotFoundError("Authorized pickup person not found")

    student.authorized_pickups.remove(entry)
    await db.flush()
    return None


@router.post(
    "/{entry_id}/pickup-code",
    response_model=IssuedCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_authorized_pickup_code(
    student_id: uuid.UUID,
    entry_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Issue a 1h single-use QR pickup code for an authorized person."""
    return await issue_authorized_pickup_code(db, student_id, entry_id, current_user)
