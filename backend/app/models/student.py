import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.types import UUIDArray


class Student(Base):
    """A pupil who can be picked up.

    ``guardian_ids`` mirrors ``User.children_ids`` and is only written by
    ``app.services.relationship_sync``.
    """

    __tablename__ = "students"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    student_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade: Mapped[str] = mapped_column(String(20), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    guardian_ids: Mapped[list[uuid.UUID]] = mapped_column(
        UUIDArray, nullable=False, default=list
    )
    photo: Mapped[str] = mapped_column(Text, nullable=False, default="no-photo.jpg")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    authorized_pickups: Mapped[list["AuthorizedPickup"]] = relationship(  # noqa: F821
        back_populates="student",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AuthorizedPickup.created_at",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, number={self.student_number!r})>"
