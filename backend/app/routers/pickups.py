"""Pickup verification router.

Staff scan a QR code at the gate; every verified pickup lands in the
audit log.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user, require_permission
from app.core.permissions import can_verify_pickup
from app.core.rate_limit import limiter
from app.database import get_db
from app.models.user import User
from app.schemas.pickup import PickupLogResponse, PickupVerificationResponse, VerifyPickupRequest
from app.services.pickup_service import list_pickup_logs, verify_pickup

router = APIRouter(tags=["Pickups"])


@router.post("/verify-pickup", response_model=PickupVerificationResponse)
@limiter.limit("60/minute")
async def verify_pickup_endpoint(
    request: Request,
    body: VerifyPickupRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(require_permission(can_verify_pickup)),
):
    """Verify a scanned QR code and log the pickup. Requires staff or admin."""
    return await verify_pickup(db, body.qr_data, current_user)


@router.get("/logs", response_model=list[PickupLogResponse])
async def get_pickup_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: User = Depends(get_current_user),
):
    """List pickup logs, newest first.

    Guardians only see their own children's pickups.
    """
    return await list_pickup_logs(db, current_user)
