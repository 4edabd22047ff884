import logging
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.bookings.availability import (
    SlotAvailabilityResolver,
    hold_is_active,
    normalize_datetime,
    utcnow,
)
from app.domain.bookings.db_models import ReservationHold
from app.domain.bookings.ledger import COACH, VENUE
from app.domain.errors import HoldExpired, SlotConflict
from app.domain.pricing.duration import TimeInterval
from app.domain.resources.service import CoachProfile
from app.infra.metrics import metrics
from app.infra.slot_locks import InMemorySlotLocks, SlotLockProvider, slot_lock_key

logger = logging.getLogger(__name__)

DEFAULT_HOLD_TTL = timedelta(minutes=10)

RELEASE_EXPLICIT = "released"
RELEASE_CONFIRMED = "confirmed"
RELEASE_EXPIRED = "expired"


class ReservationHoldManager:
    """Short-lived exclusive holds on (resource, date, interval) slots.

    ``acquire`` runs the availability check and the insert under per
    resource-day slot locks and commits before the locks are dropped, so two
    racing callers for overlapping intervals can never both get a hold.
    An owner holds at most one active slot: a repeated ``acquire`` for the
    same ``request_id`` returns the hold it already has.
    """

    def __init__(
        self,
        locks: SlotLockProvider | None = None,
        resolver: SlotAvailabilityResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.locks = locks or InMemorySlotLocks()
        self.resolver = resolver or SlotAvailabilityResolver()
        self.clock = clock

    def _now(self) -> datetime:
        return normalize_datetime(self.clock())

    async def acquire(
        self,
        session: AsyncSession,
        *,
        venue_id: str | None,
        coach_id: str | None,
        target_date: date,
        interval: TimeInterval,
        request_id: str,
        ttl: timedelta = DEFAULT_HOLD_TTL,
        coach: CoachProfile | None = None,
    ) -> str:
        keys = []
        if venue_id:
            keys.append(slot_lock_key(VENUE, venue_id, target_date))
        if coach_id:
            keys.append(slot_lock_key(COACH, coach_id, target_date))

        try:
            async with self.locks.acquire(keys):
                now = self._now()
                existing = await self._active_for_owner(session, request_id, now)
                if existing is not None:
                    logger.info(
                        "hold_reused",
                        extra={"extra": {"hold_id": existing.hold_id, "request_id": request_id}},
                    )
                    return existing.hold_id
                result = await self.resolver.check(
                    session,
                    venue_id=venue_id,
                    coach_id=coach_id,
                    target_date=target_date,
                    interval=interval,
                    request_id=request_id,
                    coach=coach,
                    now=now,
                )
                if not result.available:
                    raise SlotConflict(result.reason)

                hold = ReservationHold(
                    venue_id=venue_id,
                    coach_id=coach_id,
                    hold_date=target_date,
                    start_time=interval.start,
                    end_time=interval.end,
                    owner_request_id=request_id,
                    created_at=now,
                    expires_at=now + ttl,
                )
                session.add(hold)
                await session.commit()
        except SlotConflict as exc:
            metrics.record_hold("conflict")
            logger.info(
                "slot_conflict",
                extra={
                    "extra": {
                        "request_id": request_id,
                        "venue_id": venue_id,
                        "coach_id": coach_id,
                        "date": target_date.isoformat(),
                        "interval": interval.label(),
                        "reason": exc.detail,
                    }
                },
            )
            raise

        metrics.record_hold("acquired")
        logger.info(
            "hold_acquired",
            extra={
                "extra": {
                    "hold_id": hold.hold_id,
                    "request_id": request_id,
                    "expires_at": hold.expires_at.isoformat(),
                }
            },
        )
        return hold.hold_id

    async def _active_for_owner(
        self, session: AsyncSession, request_id: str, now: datetime
    ) -> ReservationHold | None:
        stmt = select(ReservationHold).where(
            ReservationHold.owner_request_id == request_id,
            ReservationHold.released_at.is_(None),
        ).execution_options(populate_existing=True)
        for hold in (await session.execute(stmt)).scalars().all():
            if hold_is_active(hold, now):
                return hold
        return None

    async def get(self, session: AsyncSession, hold_id: str) -> ReservationHold | None:
        return await session.get(ReservationHold, hold_id)

    async def get_active(self, session: AsyncSession, hold_id: str | None) -> ReservationHold | None:
        if not hold_id:
            return None
        hold = await self.get(session, hold_id)
        if hold is None or not hold_is_active(hold, self._now()):
            return None
        return hold

    async def release(
        self,
        session: AsyncSession,
        hold_id: str | None,
        reason: str = RELEASE_EXPLICIT,
        commit: bool = True,
    ) -> bool:
        if not hold_id:
            return False
        hold = await self.get(session, hold_id)
        if hold is None or hold.released_at is not None:
            return False
        now = self._now()
        hold.released_at = now
        hold.release_reason = reason
        await session.flush()
        if commit:
            await session.commit()
        logger.info("hold_released", extra={"extra": {"hold_id": hold_id, "reason": hold.release_reason}})
        return True

    async def extend(
        self,
        session: AsyncSession,
        hold_id: str,
        ttl: timedelta = DEFAULT_HOLD_TTL,
    ) -> ReservationHold:
        hold = await self.get(session, hold_id)
        now = self._now()
        if hold is None or not hold_is_active(hold, now):
            raise HoldExpired(f"Hold {hold_id} is no longer active")
        hold.expires_at = now + ttl
        await session.commit()
        logger.info(
            "hold_extended",
            extra={"extra": {"hold_id": hold_id, "expires_at": hold.expires_at.isoformat()}},
        )
        return hold

    async def sweep_expired(self, session: AsyncSession) -> int:
        now = self._now()
        result = await session.execute(select(ReservationHold).where(ReservationHold.released_at.is_(None)))
        swept = 0
        for hold in result.scalars().all():
            if hold_is_active(hold, now):
                continue
            hold.released_at = now
            hold.release_reason = RELEASE_EXPIRED
            swept += 1
        if swept:
            await session.commit()
        return swept
