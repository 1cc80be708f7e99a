import uuid
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import decode_token
from app.database import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Extract and validate the JWT from the Authorization header.

    Returns the User ORM instance for the authenticated user.

    Raises:
        HTTPException 401: If the token is missing, invalid, or the user
            does not exist.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(token)
        user_id: str | None = payload.get("sub")
        token_type: str | None = payload.get("type")
        if user_id is None or token_type != "access":
            raise credentials_exception
        user_uuid = uuid.UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exception

    # Import here to avoid circular imports (models -> database -> dependencies)
    from app.models.user import User

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    return user


def require_permission(predicate: Callable[..., bool]):
    """Factory that returns a dependency allowing only users for whom
    ``predicate(user)`` holds.

    Usage::

        @router.post("/verify-pickup")
        async def verify_pickup(
            current_user=Depends(require_permission(can_verify_pickup)),
        ):
            ...
    """

    async def _check_permission(current_user=Depends(get_current_user)):
        if not predicate(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user.role}' is not authorized for this route",
            )
        return current_user

    return _check_permission
