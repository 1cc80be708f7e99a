import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["guardian", "staff", "admin"]


class SyncResult(BaseModel):
    """Outcome of a guardian/student link update."""

    linked: list[uuid.UUID] = []
    unlinked: list[uuid.UUID] = []
    unresolved: list[uuid.UUID] = []


class GuardianCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8)
    phone: str | None = None
    photo: str | None = None
    role: Role = "guardian"
    children_ids: list[uuid.UUID] = []


class GuardianUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    photo: str | None = None
    role: Role | None = None  # admin only
    children_ids: list[uuid.UUID] | None = None  # admin only


class GuardianResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    phone: str | None = None
    photo: str | None = None
    role: str
    children_ids: list[uuid.UUID] = []
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class GuardianWriteResponse(GuardianResponse):
    sync: SyncResult | None = None
