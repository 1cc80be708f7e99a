"""SQLAlchemy ORM models.

All models are imported here so that Alembic can discover them
via ``Base.metadata`` when generating migrations.
"""

from app.models.pickup import AuthorizedPickup, PickupCode, PickupLog  # noqa: F401
from app.models.student import Student  # noqa: F401
from app.models.user import RefreshToken, User  # noqa: F401

__all__ = [
    "AuthorizedPickup",
    "PickupCode",
    "PickupLog",
    "RefreshToken",
    "Student",
    "User",
]
