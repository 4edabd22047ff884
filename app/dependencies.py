from datetime import datetime
from typing import Callable

from fastapi import Header, HTTPException, Request, status

from app.domain.bookings.availability import SlotAvailabilityResolver, utcnow
from app.domain.bookings.holds import ReservationHoldManager
from app.domain.checkout.gateway import resolve_gateway
from app.domain.checkout.service import CheckoutSessionOrchestrator
from app.domain.resources.service import SqlResourceDirectory
from app.infra.slot_locks import create_slot_locks
from app.settings import settings


def get_clock(request: Request) -> Callable[[], datetime]:
    return getattr(request.app.state, "clock", None) or utcnow


def get_hold_manager(request: Request) -> ReservationHoldManager:
    state = request.app.state
    locks = getattr(state, "slot_locks", None)
    if locks is None:
        locks = create_slot_locks(settings)
        state.slot_locks = locks
    return ReservationHoldManager(locks=locks, resolver=SlotAvailabilityResolver(), clock=get_clock(request))


def get_availability_resolver() -> SlotAvailabilityResolver:
    return SlotAvailabilityResolver()


def get_resource_directory() -> SqlResourceDirectory:
    return SqlResourceDirectory()


def get_checkout_orchestrator(request: Request) -> CheckoutSessionOrchestrator:
    return CheckoutSessionOrchestrator(
        gateway=resolve_gateway(request.app.state),
        holds=get_hold_manager(request),
        app_settings=settings,
        clock=get_clock(request),
    )


async def get_account_id(x_account_id: str | None = Header(default=None, alias="X-Account-Id")) -> str:
    account_id = (x_account_id or "").strip()
    if not account_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Account-Id header required")
    return account_id
