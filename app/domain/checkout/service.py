"""Checkout session state machine.

A checkout session walks ``COLLECTING -> HELD -> AWAITING_PAYMENT`` and ends
in exactly one of ``CONFIRMED``, ``EXPIRED``, ``CANCELLED`` or ``FAILED``.
Every per-session operation loads the row with ``with_for_update()`` so
concurrent callbacks and user actions on the same session are serialised by
the database; cross-session exclusion on slots is the hold manager's job.

Expiry is applied lazily whenever a session is loaded, so the periodic sweep
only tidies up and is never needed for correctness.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.bookings.availability import hold_is_active, normalize_datetime, utcnow
from app.domain.bookings.holds import (
    RELEASE_CONFIRMED,
    RELEASE_EXPIRED,
    RELEASE_EXPLICIT,
    ReservationHoldManager,
)
from app.domain.bookings.ledger import BookingLedger, SqlBookingLedger
from app.domain.bookings.request import BookingRequest
from app.domain.checkout import statuses
from app.domain.checkout.db_models import CheckoutSession
from app.domain.checkout.gateway import OUTCOME_FAILURE, OUTCOME_SUCCESS, OUTCOMES, PaymentGateway
from app.domain.errors import (
    CheckoutSessionNotFound,
    HoldExpired,
    InvalidTransition,
    PaymentGatewayUnavailable,
    PriceMismatch,
)
from app.domain.pricing.engine import PriceBreakdown, PricingConfig, PricingEngine
from app.domain.promos.service import load_promo_definition
from app.domain.resources.service import (
    CoachProfile,
    ResourceDirectory,
    SqlResourceDirectory,
    VenueProfile,
    ensure_coach_allowed,
)
from app.infra.metrics import metrics
from app.settings import settings

logger = logging.getLogger(__name__)

REASON_SLOT_LAPSED = "hold_expired"
REASON_PAID_AFTER_LAPSE = "paid_after_hold_expiry"
REASON_PRICE_MISMATCH = "price_mismatch"
REASON_PAYMENT_FAILED = "payment_failed"
REASON_CONTRACT_VIOLATION = "callback_before_payment"
REASON_ABANDONED = "abandoned"
REASON_USER_CANCELLED = "cancelled_by_user"


@dataclass(frozen=True)
class CheckoutStatus:
    session_id: str
    state: str
    price_breakdown: PriceBreakdown | None
    booking_id: str | None
    checkout_url: str | None
    expires_at: datetime | None
    failure_reason: str | None = None
    verification_token: str | None = None


@dataclass(frozen=True)
class SweepResult:
    expired: int = 0
    abandoned: int = 0
    holds_released: int = 0


class CheckoutSessionOrchestrator:
    def __init__(
        self,
        *,
        gateway: PaymentGateway | None = None,
        directory: ResourceDirectory | None = None,
        ledger: BookingLedger | None = None,
        holds: ReservationHoldManager | None = None,
        engine: PricingEngine | None = None,
        app_settings=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = app_settings or settings
        self.gateway = gateway
        self.directory = directory or SqlResourceDirectory()
        self.ledger = ledger or SqlBookingLedger()
        self.holds = holds or ReservationHoldManager(clock=clock)
        self.engine = engine or PricingEngine(PricingConfig.from_settings(self.settings))
        self.clock = clock

    @property
    def hold_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.hold_ttl_minutes)

    def _now(self) -> datetime:
        return normalize_datetime(self.clock())

    async def _lock_session(self, session: AsyncSession, session_id: str) -> CheckoutSession:
        stmt = (
            select(CheckoutSession)
            .where(CheckoutSession.session_id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        checkout = result.scalar_one_or_none()
        if checkout is None:
            raise CheckoutSessionNotFound(f"Checkout session {session_id} not found")
        return checkout

    def _transition(self, checkout: CheckoutSession, target: str, reason: str | None = None) -> None:
        previous = checkout.state
        statuses.assert_valid_transition(previous, target)
        checkout.state = target
        if reason:
            checkout.failure_reason = reason
        metrics.record_transition(target)
        logger.info(
            "checkout_session_transition",
            extra={
                "extra": {
                    "checkout_session_id": checkout.session_id,
                    "from": previous,
                    "to": target,
                    "reason": reason,
                }
            },
        )

    async def _resolve_resources(
        self, session: AsyncSession, request: BookingRequest
    ) -> tuple[VenueProfile | None, CoachProfile | None]:
        venue = await self.directory.get_venue(session, request.venue_id) if request.venue_id else None
        coach = await self.directory.get_coach(session, request.coach_id) if request.coach_id else None
        ensure_coach_allowed(venue, coach)
        return venue, coach

    async def _price(
        self,
        session: AsyncSession,
        request: BookingRequest,
        venue: VenueProfile | None,
        coach: CoachProfile | None,
    ) -> PriceBreakdown:
        promo = await load_promo_definition(session, request.promo_code)
        return self.engine.compute(
            request,
            venue.rates if venue else None,
            coach.rates if coach else None,
            promo,
            now=self._now(),
        )

    async def _expire_if_lapsed(self, session: AsyncSession, checkout: CheckoutSession) -> bool:
        if checkout.state not in statuses.HOLDING_STATES:
            return False
        hold = await self.holds.get(session, checkout.hold_id) if checkout.hold_id else None
        if hold is not None and hold_is_active(hold, self._now()):
            return False
        self._transition(checkout, statuses.EXPIRED, REASON_SLOT_LAPSED)
        await self.holds.release(session, checkout.hold_id, RELEASE_EXPIRED, commit=False)
        return True

    async def quote(self, session: AsyncSession, request: BookingRequest) -> PriceBreakdown:
        request.validate()
        venue, coach = await self._resolve_resources(session, request)
        return await self._price(session, request, venue, coach)

    async def start(self, session: AsyncSession, request: BookingRequest) -> CheckoutSession:
        request.validate()
        await self._resolve_resources(session, request)
        checkout = CheckoutSession(
            state=statuses.COLLECTING,
            booking_request=request.to_payload(),
            created_at=self._now(),
        )
        session.add(checkout)
        await session.commit()
        metrics.record_transition(statuses.COLLECTING)
        logger.info(
            "checkout_session_started",
            extra={
                "extra": {
                    "checkout_session_id": checkout.session_id,
                    "venue_id": request.venue_id,
                    "coach_id": request.coach_id,
                    "date": request.date.isoformat(),
                }
            },
        )
        return checkout

    async def place_hold(self, session: AsyncSession, session_id: str) -> CheckoutSession:
        checkout = await self._lock_session(session, session_id)
        statuses.assert_valid_transition(checkout.state, statuses.HELD)

        request = BookingRequest.from_payload(checkout.booking_request)
        venue, coach = await self._resolve_resources(session, request)
        breakdown = await self._price(session, request, venue, coach)

        # SlotConflict propagates and the session stays COLLECTING
        hold_id = await self.holds.acquire(
            session,
            venue_id=request.venue_id,
            coach_id=request.coach_id,
            target_date=request.date,
            interval=request.interval,
            request_id=checkout.session_id,
            ttl=self.hold_ttl,
            coach=coach,
        )

        # acquire commits, which ends the row lock taken above
        checkout = await self._lock_session(session, session_id)
        if checkout.state != statuses.COLLECTING:
            if checkout.hold_id != hold_id:
                await self.holds.release(session, hold_id, RELEASE_EXPLICIT, commit=False)
                await session.commit()
            raise InvalidTransition(f"Checkout session {session_id} moved to {checkout.state} while placing its hold")

        checkout.hold_id = hold_id
        checkout.price_breakdown = breakdown.to_payload()
        self._transition(checkout, statuses.HELD)
        await session.commit()
        return checkout

    async def issue_payment(self, session: AsyncSession, session_id: str) -> CheckoutSession:
        checkout = await self._lock_session(session, session_id)
        if await self._expire_if_lapsed(session, checkout):
            await session.commit()
            raise HoldExpired("The reservation hold has expired; start a new checkout")
        if checkout.state == statuses.AWAITING_PAYMENT:
            return checkout
        statuses.assert_valid_transition(checkout.state, statuses.AWAITING_PAYMENT)

        request = BookingRequest.from_payload(checkout.booking_request)
        venue, coach = await self._resolve_resources(session, request)
        live = await self._price(session, request, venue, coach)
        stored = PriceBreakdown.from_payload(checkout.price_breakdown)
        tolerance = Decimal(str(self.settings.price_tolerance))

        client_mismatch = request.expected_total is not None and abs(live.total - request.expected_total) > tolerance
        if not live.matches(stored, tolerance) or client_mismatch:
            logger.warning(
                "price_mismatch_detected",
                extra={
                    "extra": {
                        "checkout_session_id": checkout.session_id,
                        "held_total": str(stored.total),
                        "live_total": str(live.total),
                        "expected_total": str(request.expected_total) if request.expected_total is not None else None,
                    }
                },
            )
            self._transition(checkout, statuses.FAILED, REASON_PRICE_MISMATCH)
            await self.holds.release(session, checkout.hold_id, RELEASE_EXPLICIT, commit=False)
            await session.commit()
            raise PriceMismatch("The price changed since the slot was held; please review and book again")

        amount_minor = live.amount_minor_units()
        if amount_minor == 0:
            # fully discounted bookings have nothing to collect
            checkout.price_breakdown = live.to_payload()
            self._transition(checkout, statuses.AWAITING_PAYMENT)
            await self._confirm(session, checkout, request, live, gateway_reference=None)
            await session.commit()
            return checkout

        metadata = {
            key: value
            for key, value in {
                "attendee_ref": request.attendee_ref,
                "venue_id": request.venue_id,
                "coach_id": request.coach_id,
                "booking_date": request.date.isoformat(),
            }.items()
            if value
        }
        if self.gateway is None:
            raise PaymentGatewayUnavailable("No payment gateway configured")
        try:
            created = await self.gateway.create_checkout(
                session_id=checkout.session_id,
                amount_minor=amount_minor,
                currency=live.currency,
                split=live.split,
                metadata=metadata,
            )
        except PaymentGatewayUnavailable:
            logger.warning(
                "checkout_payment_issue_failed",
                extra={"extra": {"checkout_session_id": checkout.session_id, "state": checkout.state}},
            )
            raise

        checkout.gateway_checkout_url = created.url
        checkout.gateway_session_id = created.gateway_session_id
        checkout.price_breakdown = live.to_payload()
        self._transition(checkout, statuses.AWAITING_PAYMENT)
        await session.commit()
        return checkout

    async def create(self, session: AsyncSession, request: BookingRequest) -> CheckoutSession:
        checkout = await self.start(session, request)
        checkout = await self.place_hold(session, checkout.session_id)
        try:
            checkout = await self.issue_payment(session, checkout.session_id)
        except PaymentGatewayUnavailable:
            # the hold stays in place so the client can retry issuing the payment
            return await self._lock_session(session, checkout.session_id)
        return checkout

    async def _confirm(
        self,
        session: AsyncSession,
        checkout: CheckoutSession,
        request: BookingRequest,
        breakdown: PriceBreakdown,
        gateway_reference: str | None,
    ) -> None:
        booking = await self.ledger.record_confirmed_booking(
            session, checkout.session_id, request, breakdown, gateway_reference
        )
        checkout.booking_id = booking.booking_id
        checkout.gateway_reference = gateway_reference
        await self.holds.release(session, checkout.hold_id, RELEASE_CONFIRMED, commit=False)
        self._transition(checkout, statuses.CONFIRMED)
        logger.info(
            "checkout_session_confirmed",
            extra={
                "extra": {
                    "checkout_session_id": checkout.session_id,
                    "booking_id": booking.booking_id,
                    "total": str(breakdown.total),
                }
            },
        )

    async def record_payment_outcome(
        self,
        session: AsyncSession,
        session_id: str,
        outcome: str,
        gateway_reference: str | None = None,
    ) -> CheckoutSession:
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown payment outcome: {outcome}")
        checkout = await self._lock_session(session, session_id)
        state = checkout.state
        log_context = {
            "checkout_session_id": session_id,
            "state": state,
            "outcome": outcome,
            "gateway_reference": gateway_reference,
        }

        if state in statuses.TERMINAL_STATES:
            same_outcome = (state == statuses.CONFIRMED and outcome == OUTCOME_SUCCESS) or (
                state == statuses.FAILED and outcome == OUTCOME_FAILURE
            )
            if same_outcome:
                metrics.record_callback("duplicate")
                logger.info("payment_callback_duplicate", extra={"extra": log_context})
            elif outcome == OUTCOME_SUCCESS:
                # money was captured for a session that can no longer be fulfilled
                metrics.record_callback("ignored")
                logger.warning("payment_callback_needs_refund", extra={"extra": log_context})
            else:
                metrics.record_callback("ignored")
                logger.info("payment_callback_ignored", extra={"extra": log_context})
            return checkout

        if state != statuses.AWAITING_PAYMENT:
            metrics.record_callback("rejected")
            logger.error("payment_callback_contract_violation", extra={"extra": log_context})
            self._transition(checkout, statuses.FAILED, REASON_CONTRACT_VIOLATION)
            await self.holds.release(session, checkout.hold_id, RELEASE_EXPLICIT, commit=False)
            await session.commit()
            raise InvalidTransition(f"Payment outcome received for a session in state {state}")

        if outcome == OUTCOME_FAILURE:
            checkout.gateway_reference = gateway_reference
            self._transition(checkout, statuses.FAILED, REASON_PAYMENT_FAILED)
            await self.holds.release(session, checkout.hold_id, RELEASE_EXPLICIT, commit=False)
            await session.commit()
            metrics.record_callback("failure")
            return checkout

        hold = await self.holds.get(session, checkout.hold_id) if checkout.hold_id else None
        if hold is None or not hold_is_active(hold, self._now()):
            checkout.gateway_reference = gateway_reference
            self._transition(checkout, statuses.EXPIRED, REASON_PAID_AFTER_LAPSE)
            await self.holds.release(session, checkout.hold_id, RELEASE_EXPIRED, commit=False)
            await session.commit()
            metrics.record_callback("expired")
            logger.warning("payment_callback_needs_refund", extra={"extra": log_context})
            return checkout

        request = BookingRequest.from_payload(checkout.booking_request)
        breakdown = PriceBreakdown.from_payload(checkout.price_breakdown)
        await self._confirm(session, checkout, request, breakdown, gateway_reference)
        await session.commit()
        metrics.record_callback("success")
        return checkout

    async def expire_if_lapsed(self, session: AsyncSession, session_id: str) -> CheckoutSession:
        checkout = await self._lock_session(session, session_id)
        if await self._expire_if_lapsed(session, checkout):
            await session.commit()
        return checkout

    async def cancel(self, session: AsyncSession, session_id: str) -> CheckoutSession:
        checkout = await self._lock_session(session, session_id)
        if checkout.state == statuses.CANCELLED:
            return checkout
        statuses.assert_valid_transition(checkout.state, statuses.CANCELLED)
        await self.holds.release(session, checkout.hold_id, RELEASE_EXPLICIT, commit=False)
        self._transition(checkout, statuses.CANCELLED, REASON_USER_CANCELLED)
        await session.commit()
        return checkout

    async def extend(self, session: AsyncSession, session_id: str) -> CheckoutStatus:
        checkout = await self._lock_session(session, session_id)
        if await self._expire_if_lapsed(session, checkout):
            await session.commit()
            raise HoldExpired("The reservation hold has expired; start a new checkout")
        if checkout.state not in statuses.HOLDING_STATES:
            raise InvalidTransition(f"Cannot extend a checkout session in state {checkout.state}")
        await self.holds.extend(session, checkout.hold_id, self.hold_ttl)
        return await self._status_for(session, checkout)

    async def get_status(self, session: AsyncSession, session_id: str) -> CheckoutStatus:
        checkout = await self._lock_session(session, session_id)
        if await self._expire_if_lapsed(session, checkout):
            await session.commit()
        return await self._status_for(session, checkout)

    async def _status_for(self, session: AsyncSession, checkout: CheckoutSession) -> CheckoutStatus:
        expires_at = None
        if checkout.state in statuses.HOLDING_STATES and checkout.hold_id:
            hold = await self.holds.get(session, checkout.hold_id)
            expires_at = normalize_datetime(hold.expires_at) if hold is not None else None
        verification_token = None
        if checkout.state == statuses.CONFIRMED and checkout.booking_id:
            booking = await self.ledger.get_booking(session, checkout.booking_id)
            verification_token = booking.verification_token if booking is not None else None
        return CheckoutStatus(
            session_id=checkout.session_id,
            state=checkout.state,
            price_breakdown=(
                PriceBreakdown.from_payload(checkout.price_breakdown) if checkout.price_breakdown else None
            ),
            booking_id=checkout.booking_id,
            checkout_url=checkout.gateway_checkout_url if checkout.state == statuses.AWAITING_PAYMENT else None,
            expires_at=expires_at,
            failure_reason=checkout.failure_reason,
            verification_token=verification_token,
        )

    async def sweep(self, session: AsyncSession) -> SweepResult:
        now = self._now()
        expired = 0
        abandoned = 0

        stmt = select(CheckoutSession.session_id).where(
            CheckoutSession.state.in_(statuses.HOLDING_STATES | {statuses.COLLECTING})
        )
        session_ids = list((await session.execute(stmt)).scalars().all())
        for session_id in session_ids:
            checkout = await self._lock_session(session, session_id)
            if checkout.state == statuses.COLLECTING:
                if normalize_datetime(checkout.created_at) + self.hold_ttl <= now:
                    self._transition(checkout, statuses.CANCELLED, REASON_ABANDONED)
                    abandoned += 1
            elif await self._expire_if_lapsed(session, checkout):
                expired += 1
            await session.commit()

        holds_released = await self.holds.sweep_expired(session)
        if expired or abandoned or holds_released:
            logger.info(
                "checkout_sweep_completed",
                extra={"extra": {"expired": expired, "abandoned": abandoned, "holds_released": holds_released}},
            )
        return SweepResult(expired=expired, abandoned=abandoned, holds_released=holds_released)
