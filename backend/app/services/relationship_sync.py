"""Guardian <-> student link maintenance.

``User.children_ids`` and ``Student.guardian_ids`` are two independent id
sets that must mirror each other: a guardian lists a student exactly when
the student lists the guardian. Every change to either set goes through
this module.

An update first strips the owner's id from counterparts that leave the
set, then adds it to every counterpart in the new set (set union, so
re-linking is a no-op). Ids that do not resolve to a counterpart are
skipped and reported in ``SyncReport.unresolved`` instead of failing the
whole update; the owner keeps only the resolved ids. All writes share the
caller's session, so they commit or roll back with the request.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import GUARDIAN
from app.models.student import Student
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    linked: list[uuid.UUID] = field(default_factory=list)
    unlinked: list[uuid.UUID] = field(default_factory=list)
    unresolved: list[uuid.UUID] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def _counterparts_query(model, ids: set[uuid.UUID], *criteria):
    # Lock the rows and reload them so the id sets are read after the lock
    return (
        select(model)
        .where(model.id.in_(ids), *criteria)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def _load(db: AsyncSession, model, ids: set[uuid.UUID], *criteria) -> dict:
    if not ids:
        return {}
    result = await db.execute(_counterparts_query(model, ids, *criteria))
    return {obj.id: obj for obj in result.scalars().all()}


async def _sync(
    db: AsyncSession,
    owner,
    owner_attr: str,
    counterpart_model,
    counterpart_attr: str,
    new_ids: list[uuid.UUID],
    *criteria,
) -> SyncReport:
    report = SyncReport()
    wanted = list(dict.fromkeys(new_ids))
    current = list(getattr(owner, owner_attr))
    counterparts = await _load(
        db, counterpart_model, set(current) | set(wanted), *criteria
    )

    # 1. Detach from counterparts that leave the set
    for counterpart_id in current:
        if counterpart_id in wanted:
            continue
        counterpart = counterparts.get(counterpart_id)
        if counterpart is not None:
            refs = getattr(counterpart, counterpart_attr)
            setattr(counterpart, counterpart_attr, [r for r in refs if r != owner.id])
        report.unlinked.append(counterpart_id)

    # 2. Attach to every counterpart in the new set
    kept = []
    for counterpart_id in wanted:
        counterpart = counterparts.get(counterpart_id)
        if counterpart is None:
            report.unresolved.append(counterpart_id)
            continue
        refs = getattr(counterpart, counterpart_attr)
        if owner.id not in refs:
            setattr(counterpart, counterpart_attr, [*refs, owner.id])
        if counterpart_id not in current:
            report.linked.append(counterpart_id)
        kept.append(counterpart_id)

    setattr(owner, owner_attr, kept)
    await db.flush()

    if report.unresolved:
        logger.warning(
            "%s %s: skipped unknown %s ids %s",
            type(owner).__name__, owner.id, counterpart_model.__name__,
            [str(i) for i in report.unresolved],
        )
    logger.info(
        "%s %s links synced: +%d -%d",
        type(owner).__name__, owner.id, len(report.linked), len(report.unlinked),
    )
    return report


async def sync_student_guardians(
    db: AsyncSession, student: Student, guardian_ids: list[uuid.UUID]
) -> SyncReport:
    """Replace the student's guardian set and mirror it on the guardians.

    Only users with the guardian role can be linked.
    """
    return await _sync(
        db, student, "guardian_ids", User, "children_ids", guardian_ids,
        User.role == GUARDIAN,
    )


async def sync_guardian_children(
    db: AsyncSession, guardian: User, student_ids: list[uuid.UUID]
) -> SyncReport:
    """Replace the guardian's child set and mirror it on the students."""
    return await _sync(
        db, guardian, "children_ids", Student, "guardian_ids", student_ids,
    )


async def detach_student(db: AsyncSession, student: Student) -> SyncReport:
    """Remove the student from every linked guardian before deletion."""
    return await sync_student_guardians(db, student, [])


async def detach_guardian(db: AsyncSession, guardian: User) -> SyncReport:
    """Remove the guardian from every linked student before deletion."""
    return await sync_guardian_children(db, guardian, [])
