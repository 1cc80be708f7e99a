import uuid
from datetime import datetime

from pydantic import BaseModel, model_validator


class PickupPayload(BaseModel):
    """Content encoded in a pickup QR code.

    Carries either ``guardian_id`` (guardian code) or
    ``authorized_pickup_id`` (authorized pickup person code).
    """

    student_id: uuid.UUID
    guardian_id: uuid.UUID | None = None
    authorized_pickup_id: uuid.UUID | None = None
    code: str
    issued_at: datetime | None = None

    @model_validator(mode="after")
    def _exactly_one_holder(self) -> "PickupPayload":
        if (self.guardian_id is None) == (self.authorized_pickup_id is None):
            raise ValueError("exactly one of guardian_id or authorized_pickup_id is required")
        return self


class IssuedCodeResponse(BaseModel):
    code: str
    expires_at: datetime
    payload: str
    qr_code: str  # data:image/png;base64,...


class VerifyPickupRequest(BaseModel):
    qr_data: str


class StudentSnapshot(BaseModel):
    id: uuid.UUID
    name: str
    grade: str
    photo: str | None = None


class PickupPersonSnapshot(BaseModel):
    id: uuid.UUID
    name: str
    photo: str | None = None
    relationship: str | None = None


class PickupVerificationResponse(BaseModel):
    student: StudentSnapshot
    guardian: PickupPersonSnapshot
    verified_by: str
    timestamp: datetime


class PickupLogStudent(BaseModel):
    id: uuid.UUID
    name: str


class PickupLogPerson(BaseModel):
    id: uuid.UUID | None = None
    name: str
    email: str | None = None


class PickupLogResponse(BaseModel):
    id: uuid.UUID
    student: PickupLogStudent
    guardian: PickupLogPerson
    verified_by: str
    timestamp: datetime
