import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class BookingVerificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    status: str
    venue_id: str | None = None
    coach_id: str | None = None
    sport: str
    booking_date: dt.date
    start_time: dt.time
    end_time: dt.time
    attendee_ref: str
    total_amount: Decimal
