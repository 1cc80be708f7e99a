import uuid
from datetime import date, datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.schemas.guardian import SyncResult


class AuthorizedPickupCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    relationship: str = Field(min_length=1, max_length=50)
    phone: str = Field(min_length=1, max_length=40)


class AuthorizedPickupResponse(BaseModel):
    id: uuid.UUID
    name: str
    relationship: str = Field(
        validation_alias=AliasChoices("relationship_to_student", "relationship")
    )
    phone: str
    code_expires_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class StudentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    student_number: str = Field(min_length=1, max_length=50)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    grade: str = Field(min_length=1, max_length=20)
    date_of_birth: date
    photo: str | None = None
    guardian_ids: list[uuid.UUID] = []


class StudentUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    student_number: str | None = Field(default=None, min_length=1, max_length=50)
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    grade: str | None = Field(default=None, min_length=1, max_length=20)
    date_of_birth: date | None = None
    photo: str | None = None
    is_active: bool | None = None
    guardian_ids: list[uuid.UUID] | None = None


class StudentResponse(BaseModel):
    id: uuid.UUID
    student_number: str
    first_name: str
    last_name: str
    grade: str
    date_of_birth: date
    photo: str
    is_active: bool
    guardian_ids: list[uuid.UUID] = []
    authorized_pickups: list[AuthorizedPickupResponse] = []
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class StudentWriteResponse(StudentResponse):
    sync: SyncResult | None = None
