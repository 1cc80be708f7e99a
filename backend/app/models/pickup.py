import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class PickupCode(Base):
    """A single-use code letting one guardian pick up one student.

    Valid while the row exists and ``expires_at`` is in the future.
    Verification deletes the row.
    """

    __tablename__ = "pickup_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    guardian_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<PickupCode(id={self.id}, student_id={self.student_id})>"


class AuthorizedPickup(Base):
    """A named non-guardian allowed to collect a student.

    Holds at most one outstanding code; issuing a new one replaces it.
    """

    __tablename__ = "authorized_pickups"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    relationship_to_student: Mapped[str] = mapped_column(
        "relationship", String(50), nullable=False
    )
    phone: Mapped[str] = mapped_column(String(40), nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    code_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    student: Mapped["Student"] = relationship(  # noqa: F821
        back_populates="authorized_pickups"
    )

    def __repr__(self) -> str:
        return f"<AuthorizedPickup(id={self.id}, name={self.name!r})>"


class PickupLog(Base):
    """Append-only audit record of a verified pickup.

    Exactly one of ``guardian_id`` / ``authorized_pickup_id`` is set.
    No id is a foreign key and the student name is copied at verification
    time, so the trail outlives the student and person records.
    """

    __tablename__ = "pickup_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, index=True
    )
    student_name: Mapped[str] = mapped_column(String(201), nullable=False)
    guardian_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    authorized_pickup_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    pickup_person_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    verified_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<PickupLog(id={self.id}, student_id={self.student_id})>"
