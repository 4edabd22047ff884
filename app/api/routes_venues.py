from datetime import date, datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_availability_resolver, get_clock, get_resource_directory
from app.domain.bookings.availability import SlotAvailabilityResolver
from app.domain.checkout import schemas as checkout_schemas
from app.domain.resources.service import SqlResourceDirectory, ensure_coach_allowed
from app.infra.db import get_db_session
from app.settings import settings

router = APIRouter()


@router.get("/v1/venues/{venue_id}/slots", response_model=checkout_schemas.SlotsResponse)
async def list_venue_slots(
    venue_id: str,
    clock: Callable[[], datetime] = Depends(get_clock),
    target_date: date = Query(alias="date"),
    coach_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
    directory: SqlResourceDirectory = Depends(get_resource_directory),
    resolver: SlotAvailabilityResolver = Depends(get_availability_resolver),
) -> checkout_schemas.SlotsResponse:
    venue = await directory.get_venue(session, venue_id)
    coach = await directory.get_coach(session, coach_id) if coach_id else None
    ensure_coach_allowed(venue, coach)

    slots = await resolver.list_open_slots(
        session,
        venue_id=venue_id,
        coach_id=coach_id,
        target_date=target_date,
        day_start_hour=settings.slot_day_start_hour,
        day_end_hour=settings.slot_day_end_hour,
        coach=coach,
        now=clock(),
    )
    return checkout_schemas.SlotsResponse(
        venue_id=venue_id,
        coach_id=coach_id,
        date=target_date,
        slots=[
            checkout_schemas.SlotModel(start_time=slot.start_time, end_time=slot.end_time, available=slot.available)
            for slot in slots
        ],
    )
