import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.admin_auth import AdminIdentity, require_admin
from app.domain.bookings import schemas as booking_schemas
from app.domain.bookings.ledger import SqlBookingLedger
from app.domain.errors import ResourceNotFound
from app.infra.db import get_db_session

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/v1/bookings/verify/{token}",
    response_model=booking_schemas.BookingVerificationResponse,
)
async def verify_booking(
    token: str,
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> booking_schemas.BookingVerificationResponse:
    booking = await SqlBookingLedger().find_by_verification_token(session, token)
    if booking is None:
        raise ResourceNotFound("No booking matches this verification token")
    logger.info(
        "booking_verified",
        extra={"extra": {"booking_id": booking.booking_id, "verified_by": identity.username}},
    )
    return booking_schemas.BookingVerificationResponse.model_validate(booking)
