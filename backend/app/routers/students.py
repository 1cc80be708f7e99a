"""Students router.

Student directory CRUD plus guardian pickup-code issuance.
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.dependencies import get_current_user, require_permission
from app.core.errors import ConflictError, ForbiddenError
from app.core.permissions import can_manage_students, can_read_student
from app.database import get_db
from app.models.pickup import PickupCode
from app.models.student import Student
from app.models.user import User
from app.schemas.guardian import SyncResult
from app.schemas.pickup import IssuedCodeResponse
from app.schemas.student import (
    StudentCreate,
    StudentResponse,
    StudentUpdate,
    StudentWriteResponse,
)
from app.services.pickup_service import get_student_or_404, issue_guardian_code
from app.services.relationship_sync import detach_student, sync_student_guardians

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["Students"])


async def _ensure_number_free(
    db: AsyncSession, student_number: str, exclude_id: uuid.UUID | None = None
) -> None:
    query = select(Student.id).where(Student.student_number == student_number)
    if exclude_id is not None:
        query = query.where(Student.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise ConflictError(f"Student number {student_number!r} already exists")


@router.get("/", response_model=list[StudentResponse])
async def list_students(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_students)),
):
    """List all students. Requires admin role."""
    result = await db.execute(
        select(Student).order_by(Student.last_name, Student.first_name)
    )
    return result.scalars().all()


@router.post("/", response_model=StudentWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    body: StudentCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_students)),
):
    """Create a student and link the given guardians."""
    await _ensure_number_free(db, body.student_number)

    student = Student(
        student_number=body.student_number,
        first_name=body.first_name,
        last_name=body.last_name,
        grade=body.grade,
        date_of_birth=body.date_of_birth,
        photo=body.photo or settings.DEFAULT_PHOTO,
    )
    db.add(student)
    await db.flush()

    report = await sync_student_guardians(db, student, body.guardian_ids)
    await db.refresh(student)
    logger.info("Student %s created by %s", student.id, current_user.id)

    response = StudentWriteResponse.model_validate(student)
    response.sync = SyncResult(**report.as_dict())
    return response


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Get a student. Only linked guardians and admins may read it."""
    student = await get_student_or_404(db, student_id)
    if not can_read_student(current_user, student):
        raise ForbiddenError("Not authorized to access this student")
    return student


@router.put("/{student_id}", response_model=StudentWriteResponse)
async def update_student(
    student_id: uuid.UUID,
    body: StudentUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_students)),
):
    """Update a student. A supplied ``guardian_ids`` replaces the links."""
    student = await get_student_or_404(db, student_id)

    update_data = body.model_dump(exclude_unset=True)
    guardian_ids = update_data.pop("guardian_ids", None)

    if update_data.get("student_number"):
        await _ensure_number_free(db, update_data["student_number"], exclude_id=student.id)

    for field, value in update_data.items():
        if value is not None:
            setattr(student, field, value)
    await db.flush()

    report = None
    if guardian_ids is not None:
        report = await sync_student_guardians(db, student, guardian_ids)

    await db.refresh(student)
    response = StudentWriteResponse.model_validate(student)
    if report is not None:
        response.sync = SyncResult(**report.as_dict())
    return response


@router.delete("/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(
    student_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_manage_students)),
):
    """Delete a student with its codes and authorized pickups.

    Guardians are detached first so no guardian keeps a dangling id. Pickup
    logs are kept for the audit trail.
    """
    student = await get_student_or_404(db, student_id)

    await detach_student(db, student)
    await db.execute(delete(PickupCode).where(PickupCode.student_id == student.id))
    await db.delete(student)
    await db.flush()
    logger.info("Student %s deleted by %s", student_id, current_user.id)
    return None


@router.post(
    "/{student_id}/guardians/{guardian_id}/pickup-code",
    response_model=IssuedCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_guardian_pickup_code(
    student_id: uuid.UUID,
    guardian_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """Issue a 24h single-use QR pickup code for a guardian."""
    return await issue_guardian_code(db, student_id, guardian_id, current_user)
