"""Pickup Service.

Issuing, verifying and auditing single-use pickup codes.

A guardian code binds one student to one guardian and lives in
``pickup_codes`` until it is verified or expires. An authorized pickup
person holds at most one code on their ``authorized_pickups`` row. Expired
codes are never swept; they simply stop matching at verification time.

Verification consumes the code with a conditional delete/update whose
rowcount must be exactly one, and appends the ``PickupLog`` in the same
transaction, so of two concurrent scans of one code only one succeeds and
a replay always fails.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.config import settings
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvalidOrExpiredError,
    NotFoundError,
)
from app.core.permissions import (
    GUARDIAN,
    can_issue_pickup_code,
    can_manage_authorized_pickups,
    can_view_all_pickup_logs,
)
from app.models.pickup import AuthorizedPickup, PickupCode, PickupLog
from app.models.student import Student
from app.models.user import User
from app.schemas.pickup import (
    IssuedCodeResponse,
    PickupLogPerson,
    PickupLogResponse,
    PickupLogStudent,
    PickupPayload,
    PickupPersonSnapshot,
    PickupVerificationResponse,
    StudentSnapshot,
)
from app.services.qr_service import render_qr_data_url

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_code() -> str:
    """Generate a URL-safe random pickup token."""
    return secrets.token_urlsafe(settings.PICKUP_CODE_BYTES)


async def generate_pickup_code(db: AsyncSession, column=PickupCode.code) -> str:
    """Generate a code not yet stored in ``column``, retrying on collision."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = _generate_code()
        result = await db.execute(select(column).where(column == code))
        if result.first() is None:
            return code

    raise ConflictError("Failed to generate a unique pickup code")


def build_payload(
    student_id: uuid.UUID,
    code: str,
    issued_at: datetime,
    *,
    guardian_id: uuid.UUID | None = None,
    authorized_pickup_id: uuid.UUID | None = None,
) -> str:
    """Serialize the QR payload as compact JSON."""
    payload = PickupPayload(
        student_id=student_id,
        guardian_id=guardian_id,
        authorized_pickup_id=authorized_pickup_id,
        code=code,
        issued_at=issued_at,
    )
    return payload.model_dump_json(exclude_none=True)


def parse_payload(qr_data: str) -> PickupPayload:
    try:
        return PickupPayload.model_validate_json(qr_data)
    except ValidationError as exc:
        logger.info("Rejected malformed QR payload: %d errors", exc.error_count())
        raise InvalidInputError("Invalid QR code data") from exc


async def get_student_or_404(db: AsyncSession, student_id: uuid.UUID) -> Student:
    student = await db.get(Student, student_id)
    if student is None:
        raise NotFoundError(f"Student not found with id of {student_id}")
    return student


async def _get_guardian_or_404(db: AsyncSession, guardian_id: uuid.UUID) -> User:
    guardian = await db.get(User, guardian_id)
    if guardian is None or guardian.role != GUARDIAN:
        raise NotFoundError("Guardian not found")
    return guardian


# ---------------------------------------------------------------------------
# Issuing
# ---------------------------------------------------------------------------

async def issue_guardian_code(
    db: AsyncSession,
    student_id: uuid.UUID,
    guardian_id: uuid.UUID,
    requester: User,
) -> IssuedCodeResponse:
    """Issue a 24h pickup code binding ``student_id`` to ``guardian_id``.

    Raises:
        NotFoundError: unknown student or guardian.
        ForbiddenError: the requester may not issue for this pair.
        RenderError: the QR image could not be produced.
    """
    student = await get_student_or_404(db, student_id)

    if not can_issue_pickup_code(requester, student, guardian_id):
        raise ForbiddenError("Not authorized to generate a QR code for this student")

    await _get_guardian_or_404(db, guardian_id)

    issued_at = _now()
    expires_at = issued_at + timedelta(hours=settings.PICKUP_CODE_TTL_HOURS)
    code = await generate_pickup_code(db)
    payload = build_payload(student.id, code, issued_at, guardian_id=guardian_id)

    # Render before persisting so a failure leaves no orphan code behind
    qr_code = render_qr_data_url(payload)

    db.add(PickupCode(
        student_id=student.id,
        guardian_id=guardian_id,
        code=code,
        issued_at=issued_at,
        expires_at=expires_at,
    ))
    await db.flush()

    logger.info(
        "Pickup code issued: student=%s guardian=%s by=%s expires=%s",
        student.id, guardian_id, requester.id, expires_at.isoformat(),
    )
    return IssuedCodeResponse(
        code=code, expires_at=expires_at, payload=payload, qr_code=qr_code,
    )


async def issue_authorized_pickup_code(
    db: AsyncSession,
    student_id: uuid.UUID,
    entry_id: uuid.UUID,
    requester: User,
) -> IssuedCodeResponse:
    """Issue a 1h code for an authorized pickup person.

    Replaces any code previously issued for the same entry.
    """
    student = await get_student_or_404(db, student_id)

    if not can_manage_authorized_pickups(requester, student):
        raise ForbiddenError("Not authorized to manage pickups for this student")

    entry = next((e for e in student.authorized_pickups if e.id == entry_id), None)
    if entry is None:
        raise NotFoundError("Authorized pickup person not found")

    issued_at = _now()
    expires_at = issued_at + timedelta(
        minutes=settings.AUTHORIZED_PICKUP_CODE_TTL_MINUTES
    )
    code = await generate_pickup_code(db, AuthorizedPickup.code)
    payload = build_payload(
        student.id, code, issued_at, authorized_pickup_id=entry.id,
    )
    qr_code = render_qr_data_url(payload)

    entry.code = code
    entry.code_expires_at = expires_at
    await db.flush()

    logger.info(
        "Authorized pickup code issued: student=%s entry=%s by=%s",
        student.id, entry.id, requester.id,
    )
    return IssuedCodeResponse(
        code=code, expires_at=expires_at, payload=payload, qr_code=qr_code,
    )


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def _student_snapshot(student: Student) -> StudentSnapshot:
    return StudentSnapshot(
        id=student.id,
        name=student.full_name,
        grade=student.grade,
        photo=student.photo,
    )


async def _consume_guardian_code(
    db: AsyncSession, student: Student, payload: PickupPayload, now: datetime,
) -> User:
    guardian = await _get_guardian_or_404(db, payload.guardian_id)

    result = await db.execute(
        select(PickupCode).where(
            PickupCode.student_id == student.id,
            PickupCode.guardian_id == guardian.id,
            PickupCode.code == payload.code,
            PickupCode.expires_at > now,
        )
    )
    matches = result.scalars().all()
    if len(matches) != 1:
        logger.warning(
            "Pickup rejected: student=%s guardian=%s matches=%d",
            student.id, guardian.id, len(matches),
        )
        raise InvalidOrExpiredError()

    # Compare-and-remove: a concurrent verification deletes zero rows
    consumed = await db.execute(
        delete(PickupCode).where(PickupCode.id == matches[0].id)
    )
    if consumed.rowcount != 1:
        raise InvalidOrExpiredError()

    return guardian


async def _consume_authorized_code(
    db: AsyncSession, student: Student, payload: PickupPayload, now: datetime,
) -> AuthorizedPickup:
    entry = await db.get(AuthorizedPickup, payload.authorized_pickup_id)
    if entry is None or entry.student_id != student.id:
        raise NotFoundError("Authorized pickup person not found")

    consumed = await db.execute(
        update(AuthorizedPickup)
        .where(
            AuthorizedPickup.id == entry.id,
            AuthorizedPickup.code == payload.code,
            AuthorizedPickup.code_expires_at > now,
        )
        .values(code=None, code_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        logger.warning(
            "Pickup rejected: student=%s authorized_pickup=%s", student.id, entry.id,
        )
        raise InvalidOrExpiredError()

    await db.refresh(entry)
    return entry


async def verify_pickup(
    db: AsyncSession, qr_data: str, verifier: User,
) -> PickupVerificationResponse:
    """Validate a scanned QR payload, consume its code and log the pickup.

    Raises:
        InvalidInputError: the payload is not a valid pickup payload.
        NotFoundError: the student or pickup person does not exist.
        InvalidOrExpiredError: no single live code matches the payload.
    """
    payload = parse_payload(qr_data)
    student = await get_student_or_404(db, payload.student_id)
    now = _now()

    if payload.guardian_id is not None:
        guardian = await _consume_guardian_code(db, student, payload, now)
        log = PickupLog(
            student_id=student.id,
            student_name=student.full_name,
            guardian_id=guardian.id,
            verified_by=verifier.id,
            timestamp=now,
        )
        person = PickupPersonSnapshot(
            id=guardian.id, name=guardian.name, photo=guardian.photo,
        )
    else:
        entry = await _consume_authorized_code(db, student, payload, now)
        log = PickupLog(
            student_id=student.id,
            student_name=student.full_name,
            authorized_pickup_id=entry.id,
            pickup_person_name=entry.name,
            verified_by=verifier.id,
            timestamp=now,
        )
        person = PickupPersonSnapshot(
            id=entry.id, name=entry.name, relationship=entry.relationship_to_student,
        )

    db.add(log)
    await db.flush()

    logger.info(
        "Pickup verified: student=%s person=%s verifier=%s",
        student.id, person.id, verifier.id,
    )
    return PickupVerificationResponse(
        student=_student_snapshot(student),
        guardian=person,
        verified_by=verifier.name,
        timestamp=now,
    )


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

async def list_pickup_logs(db: AsyncSession, requester: User) -> list[PickupLogResponse]:
    """Return pickup logs visible to ``requester``, newest first.

    Guardians only see logs for their own children; staff and admins see all.
    """
    guardian_alias = aliased(User)
    verifier_alias = aliased(User)

    query = (
        select(PickupLog, guardian_alias, verifier_alias)
        .outerjoin(guardian_alias, guardian_alias.id == PickupLog.guardian_id)
        .outerjoin(verifier_alias, verifier_alias.id == PickupLog.verified_by)
    )

    if not can_view_all_pickup_logs(requester):
        if not requester.children_ids:
            return []
        query = query.where(PickupLog.student_id.in_(requester.children_ids))

    result = await db.execute(query.order_by(PickupLog.timestamp.desc()))

    logs = []
    for log, guardian, verifier in result.all():
        if guardian is not None:
            person = PickupLogPerson(id=guardian.id, name=guardian.name, email=guardian.email)
        else:
            person = PickupLogPerson(
                id=log.guardian_id or log.authorized_pickup_id,
                name=log.pickup_person_name or "Unknown",
            )
        logs.append(PickupLogResponse(
            id=log.id,
            student=PickupLogStudent(id=log.student_id, name=log.student_name),
            guardian=person,
            verified_by=verifier.name if verifier is not None else "System",
            timestamp=log.timestamp,
        ))
    return logs
