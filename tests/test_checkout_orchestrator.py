import asyncio
from datetime import time
from decimal import Decimal

import pytest
import sqlalchemy as sa
from sqlalchemy import select

from app.domain.bookings.db_models import Booking, ReservationHold
from app.domain.bookings.holds import ReservationHoldManager
from app.domain.bookings.request import BookingRequest
from app.domain.checkout import statuses
from app.domain.checkout.service import CheckoutSessionOrchestrator
from app.domain.errors import (
    CheckoutSessionNotFound,
    HoldExpired,
    InvalidTransition,
    PaymentGatewayUnavailable,
    PriceMismatch,
    SlotConflict,
)
from app.domain.resources.db_models import Venue
from app.infra.slot_locks import InMemorySlotLocks
from tests.conftest import BOOKING_DATE, FakeGateway, MutableClock


def _request(**overrides) -> BookingRequest:
    values = {
        "sport": "Cricket",
        "date": BOOKING_DATE,
        "start_time": time(9, 0),
        "end_time": time(11, 0),
        "account_id": "acct-1",
        "venue_id": "venue-1",
    }
    values.update(overrides)
    return BookingRequest(**values)


def _orchestrator(clock=None, gateway=None, locks=None) -> CheckoutSessionOrchestrator:
    clock = clock or MutableClock()
    holds = ReservationHoldManager(locks=locks or InMemorySlotLocks(), clock=clock)
    return CheckoutSessionOrchestrator(gateway=gateway or FakeGateway(), holds=holds, clock=clock)


async def _state(session_maker, orchestrator, session_id):
    async with session_maker() as session:
        return await orchestrator.get_status(session, session_id)


async def _bookings(session_maker):
    async with session_maker() as session:
        return (await session.execute(select(Booking))).scalars().all()


def test_happy_path_confirms_booking_and_releases_hold(async_session_maker):
    gateway = FakeGateway()
    orchestrator = _orchestrator(gateway=gateway)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            session_id = checkout.session_id
            awaiting = checkout.state
            await orchestrator.record_payment_outcome(session, session_id, "success", "pi_123")
        status = await _state(async_session_maker, orchestrator, session_id)
        bookings = await _bookings(async_session_maker)
        async with async_session_maker() as session:
            hold = await session.get(ReservationHold, checkout.hold_id)
        return session_id, awaiting, status, bookings, hold

    session_id, awaiting, status, bookings, hold = asyncio.run(_run())
    assert awaiting == statuses.AWAITING_PAYMENT
    assert status.state == statuses.CONFIRMED
    assert status.checkout_url is None
    assert status.price_breakdown.total == Decimal("2568")
    assert len(bookings) == 1
    assert status.booking_id == bookings[0].booking_id
    assert bookings[0].gateway_reference == "pi_123"
    assert bookings[0].attendee_ref == "account:acct-1"
    assert hold.released_at is not None
    assert gateway.calls[0]["amount_minor"] == 256800
    assert gateway.calls[0]["currency"] == "inr"
    assert gateway.calls[0]["metadata"]["venue_id"] == "venue-1"


def test_replayed_success_callback_creates_one_booking(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
        for _ in range(3):
            async with async_session_maker() as session:
                await orchestrator.record_payment_outcome(session, checkout.session_id, "success", "pi_1")
        return await _bookings(async_session_maker), await _state(async_session_maker, orchestrator, checkout.session_id)

    bookings, status = asyncio.run(_run())
    assert len(bookings) == 1
    assert status.state == statuses.CONFIRMED


def test_failure_callback_fails_session_and_frees_slot(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            await orchestrator.record_payment_outcome(session, checkout.session_id, "failure")
            # a late success for a failed session is logged but changes nothing
            await orchestrator.record_payment_outcome(session, checkout.session_id, "success", "pi_late")
            retry = await orchestrator.create(session, _request(account_id="acct-2"))
        status = await _state(async_session_maker, orchestrator, checkout.session_id)
        return status, retry.state, await _bookings(async_session_maker)

    status, retry_state, bookings = asyncio.run(_run())
    assert status.state == statuses.FAILED
    assert status.failure_reason == "payment_failed"
    assert retry_state == statuses.AWAITING_PAYMENT
    assert bookings == []


def test_late_callbacks_after_cancel_leave_session_cancelled(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            await orchestrator.cancel(session, checkout.session_id)
            await orchestrator.record_payment_outcome(session, checkout.session_id, "success", "pi_1")
            await orchestrator.record_payment_outcome(session, checkout.session_id, "failure")
        return await _state(async_session_maker, orchestrator, checkout.session_id), await _bookings(async_session_maker)

    status, bookings = asyncio.run(_run())
    assert status.state == statuses.CANCELLED
    assert bookings == []


def test_success_after_hold_lapse_expires_session(async_session_maker):
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
        clock.advance(minutes=11)
        async with async_session_maker() as session:
            result = await orchestrator.record_payment_outcome(session, checkout.session_id, "success", "pi_1")
            state, reason = result.state, result.failure_reason
        return state, reason, await _bookings(async_session_maker)

    state, reason, bookings = asyncio.run(_run())
    assert state == statuses.EXPIRED
    assert reason == "paid_after_hold_expiry"
    assert bookings == []


def test_status_read_applies_lazy_expiry(async_session_maker):
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
        clock.advance(minutes=10)
        expired = await _state(async_session_maker, orchestrator, checkout.session_id)
        async with async_session_maker() as session:
            with pytest.raises(InvalidTransition):
                await orchestrator.extend(session, checkout.session_id)
            with pytest.raises(InvalidTransition):
                await orchestrator.cancel(session, checkout.session_id)
        return expired

    expired = asyncio.run(_run())
    assert expired.state == statuses.EXPIRED
    assert expired.expires_at is None
    assert expired.failure_reason == "hold_expired"


def test_callback_before_payment_issue_fails_session(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.start(session, _request())
            await orchestrator.place_hold(session, checkout.session_id)
            with pytest.raises(InvalidTransition):
                await orchestrator.record_payment_outcome(session, checkout.session_id, "success", "pi_1")
        return await _state(async_session_maker, orchestrator, checkout.session_id)

    status = asyncio.run(_run())
    assert status.state == statuses.FAILED
    assert status.failure_reason == "callback_before_payment"


def test_venue_rate_change_while_held_fails_with_price_mismatch(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.start(session, _request())
            await orchestrator.place_hold(session, checkout.session_id)
        async with async_session_maker() as session:
            await session.execute(
                sa.update(Venue).where(Venue.venue_id == "venue-1").values(sport_pricing={"Cricket": 1500})
            )
            await session.commit()
        async with async_session_maker() as session:
            with pytest.raises(PriceMismatch):
                await orchestrator.issue_payment(session, checkout.session_id)
        status = await _state(async_session_maker, orchestrator, checkout.session_id)
        async with async_session_maker() as session:
            hold = await session.get(ReservationHold, checkout.hold_id)
        return status, hold

    status, hold = asyncio.run(_run())
    assert status.state == statuses.FAILED
    assert status.failure_reason == "price_mismatch"
    assert hold.released_at is not None


def test_client_expected_total_mismatch_is_rejected(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            with pytest.raises(PriceMismatch):
                await orchestrator.create(session, _request(expected_total=Decimal("2000")))
            matching = await orchestrator.create(
                session, _request(start_time=time(12, 0), end_time=time(14, 0), expected_total=Decimal("2568"))
            )
        return matching.state

    assert asyncio.run(_run()) == statuses.AWAITING_PAYMENT


def test_gateway_outage_keeps_hold_and_payment_can_be_retried(async_session_maker):
    gateway = FakeGateway(fail=True)
    orchestrator = _orchestrator(gateway=gateway)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            held_state = checkout.state
            gateway.fail = False
            retried = await orchestrator.issue_payment(session, checkout.session_id)
            again = await orchestrator.issue_payment(session, checkout.session_id)
        return held_state, retried.state, again.gateway_checkout_url

    held_state, retried_state, url = asyncio.run(_run())
    assert held_state == statuses.HELD
    assert retried_state == statuses.AWAITING_PAYMENT
    assert url.startswith("https://pay.test/")
    assert len(gateway.calls) == 2


def test_missing_gateway_raises_unavailable(async_session_maker):
    clock = MutableClock()
    orchestrator = CheckoutSessionOrchestrator(holds=ReservationHoldManager(clock=clock), clock=clock)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.start(session, _request())
            await orchestrator.place_hold(session, checkout.session_id)
            with pytest.raises(PaymentGatewayUnavailable):
                await orchestrator.issue_payment(session, checkout.session_id)
        return await _state(async_session_maker, orchestrator, checkout.session_id)

    assert asyncio.run(_run()).state == statuses.HELD


def test_zero_total_booking_confirms_without_gateway(async_session_maker):
    gateway = FakeGateway()
    orchestrator = _orchestrator(gateway=gateway)

    async def _run():
        async with async_session_maker() as session:
            await session.execute(
                sa.update(Venue).where(Venue.venue_id == "venue-1").values(sport_pricing={"Yoga": 0})
            )
            await session.commit()
            checkout = await orchestrator.create(session, _request(sport="Yoga"))
        return checkout.state, await _bookings(async_session_maker)

    state, bookings = asyncio.run(_run())
    assert state == statuses.CONFIRMED
    assert len(bookings) == 1
    assert gateway.calls == []


def test_cancel_is_idempotent_and_releases_the_slot(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            first = (await orchestrator.cancel(session, checkout.session_id)).state
            second = (await orchestrator.cancel(session, checkout.session_id)).state
            replacement = await orchestrator.create(session, _request(account_id="acct-2"))
        return first, second, replacement.state

    assert asyncio.run(_run()) == (statuses.CANCELLED, statuses.CANCELLED, statuses.AWAITING_PAYMENT)


def test_cancel_after_confirmation_is_rejected(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            await orchestrator.record_payment_outcome(session, checkout.session_id, "success", "pi_1")
            with pytest.raises(InvalidTransition):
                await orchestrator.cancel(session, checkout.session_id)

    asyncio.run(_run())


def test_extend_moves_expiry_forward(async_session_maker):
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            before = (await orchestrator.get_status(session, checkout.session_id)).expires_at
            clock.advance(minutes=8)
            extended = await orchestrator.extend(session, checkout.session_id)
            clock.advance(minutes=8)
            still_open = await orchestrator.get_status(session, checkout.session_id)
        return before, extended, still_open

    before, extended, still_open = asyncio.run(_run())
    assert extended.expires_at > before
    assert still_open.state == statuses.AWAITING_PAYMENT


def test_unknown_session_raises_not_found(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            with pytest.raises(CheckoutSessionNotFound):
                await orchestrator.get_status(session, "missing")

    asyncio.run(_run())


def test_unknown_outcome_is_rejected(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
            with pytest.raises(ValueError):
                await orchestrator.record_payment_outcome(session, checkout.session_id, "refunded")

    asyncio.run(_run())


def test_sweep_expires_lapsed_and_abandons_stale_collecting(async_session_maker):
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock)

    async def _run():
        async with async_session_maker() as session:
            lapsed = await orchestrator.create(session, _request())
        async with async_session_maker() as session:
            with pytest.raises(SlotConflict):
                await orchestrator.create(session, _request(account_id="acct-2"))
        clock.advance(minutes=11)
        async with async_session_maker() as session:
            fresh = await orchestrator.create(session, _request(start_time=time(15, 0), end_time=time(16, 0)))
            result = await orchestrator.sweep(session)
        return lapsed, fresh, result

    lapsed, fresh, result = asyncio.run(_run())
    assert result.expired == 1
    assert result.abandoned == 1
    assert fresh.state == statuses.AWAITING_PAYMENT


def test_concurrent_checkouts_for_same_slot_produce_one_hold(file_session_maker):
    locks = InMemorySlotLocks(wait_seconds=5)
    clock = MutableClock()
    gateway = FakeGateway()

    async def _attempt(account_id: str):
        orchestrator = _orchestrator(clock=clock, gateway=gateway, locks=locks)
        async with file_session_maker() as session:
            try:
                checkout = await orchestrator.create(
                    session, _request(account_id=account_id, coach_id="coach-1")
                )
                return checkout.state
            except SlotConflict:
                return "conflict"

    async def _run():
        outcomes = await asyncio.gather(_attempt("acct-a"), _attempt("acct-b"))
        async with file_session_maker() as session:
            holds = (await session.execute(select(ReservationHold))).scalars().all()
        return outcomes, holds

    outcomes, holds = asyncio.run(_run())
    assert sorted(outcomes) == sorted([statuses.AWAITING_PAYMENT, "conflict"])
    assert len(holds) == 1
    assert len(gateway.calls) == 1


def test_extend_detects_a_lapsed_hold(async_session_maker):
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock)

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.create(session, _request())
        clock.advance(minutes=12)
        async with async_session_maker() as session:
            with pytest.raises(HoldExpired):
                await orchestrator.extend(session, checkout.session_id)
        return await _state(async_session_maker, orchestrator, checkout.session_id)

    assert asyncio.run(_run()).state == statuses.EXPIRED


def test_concurrent_place_hold_on_one_session_keeps_a_single_hold(file_session_maker):
    locks = InMemorySlotLocks(wait_seconds=5)
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock, locks=locks)

    async def _place(session_id: str):
        async with file_session_maker() as session:
            try:
                return (await orchestrator.place_hold(session, session_id)).state
            except InvalidTransition:
                return "rejected"

    async def _run():
        async with file_session_maker() as session:
            checkout = await orchestrator.start(session, _request())
        outcomes = await asyncio.gather(_place(checkout.session_id), _place(checkout.session_id))
        async with file_session_maker() as session:
            holds = (
                await session.execute(
                    select(ReservationHold).where(ReservationHold.released_at.is_(None))
                )
            ).scalars().all()
        async with file_session_maker() as session:
            await orchestrator.cancel(session, checkout.session_id)
        async with file_session_maker() as session:
            other = await orchestrator.create(session, _request(account_id="acct-2"))
        return outcomes, holds, other

    outcomes, holds, other = asyncio.run(_run())
    assert statuses.HELD in outcomes
    assert set(outcomes) <= {statuses.HELD, "rejected"}
    assert len(holds) == 1
    assert other.state == statuses.AWAITING_PAYMENT


def test_place_hold_reuses_the_owner_hold(async_session_maker):
    orchestrator = _orchestrator()

    async def _run():
        async with async_session_maker() as session:
            checkout = await orchestrator.start(session, _request())
            request = _request()
            first = await orchestrator.holds.acquire(
                session,
                venue_id=request.venue_id,
                coach_id=None,
                target_date=request.date,
                interval=request.interval,
                request_id=checkout.session_id,
            )
            held = await orchestrator.place_hold(session, checkout.session_id)
            count = await session.scalar(sa.select(sa.func.count()).select_from(ReservationHold))
        return first, held, count

    first, held, count = asyncio.run(_run())
    assert held.hold_id == first
    assert held.state == statuses.HELD
    assert count == 1


async def _drive_to(orchestrator, clock, session, terminal_state):
    checkout = await orchestrator.create(session, _request())
    session_id = checkout.session_id
    if terminal_state == statuses.CONFIRMED:
        await orchestrator.record_payment_outcome(session, session_id, "success", "pi_1")
    elif terminal_state == statuses.FAILED:
        await orchestrator.record_payment_outcome(session, session_id, "failure")
    elif terminal_state == statuses.CANCELLED:
        await orchestrator.cancel(session, session_id)
    else:
        clock.advance(minutes=11)
        await orchestrator.expire_if_lapsed(session, session_id)
    return session_id


@pytest.mark.parametrize(
    "terminal_state",
    [statuses.CONFIRMED, statuses.EXPIRED, statuses.CANCELLED, statuses.FAILED],
)
@pytest.mark.parametrize("operation", ["place_hold", "issue_payment", "extend", "cancel"])
def test_terminal_sessions_never_leave_their_state(async_session_maker, terminal_state, operation):
    clock = MutableClock()
    orchestrator = _orchestrator(clock=clock)

    async def _run():
        async with async_session_maker() as session:
            session_id = await _drive_to(orchestrator, clock, session, terminal_state)
        async with async_session_maker() as session:
            call = getattr(orchestrator, operation)
            if operation == "cancel" and terminal_state == statuses.CANCELLED:
                await call(session, session_id)
            else:
                with pytest.raises((InvalidTransition, HoldExpired)):
                    await call(session, session_id)
        return await _state(async_session_maker, orchestrator, session_id)

    assert asyncio.run(_run()).state == terminal_state
