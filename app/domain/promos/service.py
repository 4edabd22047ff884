import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.promos import rules
from app.domain.promos.db_models import PromoCode
from app.domain.promos.schemas import PromoCodeCreateRequest

logger = logging.getLogger(__name__)


def to_definition(row: PromoCode) -> rules.PromoDefinition:
    tiers = tuple(
        rules.PromoTier(min_subtotal=Decimal(str(tier["min_subtotal"])), percent=Decimal(str(tier["percent"])))
        for tier in (row.tiers or [])
    )
    return rules.PromoDefinition(
        code=row.code,
        discount_type=row.discount_type,
        discount_value=Decimal(str(row.discount_value)),
        tiers=tiers,
        max_discount_amount=Decimal(str(row.max_discount_amount)) if row.max_discount_amount is not None else None,
        min_booking_amount=Decimal(str(row.min_booking_amount)) if row.min_booking_amount is not None else None,
        applicable_to=row.applicable_to,
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        is_active=row.is_active,
    )


async def get_promo_code(session: AsyncSession, code: str | None) -> PromoCode | None:
    normalized = rules.normalize_code(code)
    if not normalized:
        return None
    return await session.scalar(select(PromoCode).where(PromoCode.code == normalized).limit(1))


async def load_promo_definition(session: AsyncSession, code: str | None) -> rules.PromoDefinition | None:
    row = await get_promo_code(session, code)
    return to_definition(row) if row is not None else None


async def validate_promo_code(
    session: AsyncSession,
    code: str | None,
    subtotal: Decimal,
    *,
    has_venue: bool = True,
    has_coach: bool = False,
    now: datetime | None = None,
) -> rules.PromoEvaluation:
    definition = await load_promo_definition(session, code)
    return rules.PromoCodeValidator().evaluate(
        code,
        definition,
        subtotal,
        has_venue=has_venue,
        has_coach=has_coach,
        now=now,
    )


async def create_promo_code(
    session: AsyncSession, payload: PromoCodeCreateRequest, created_by: str | None = None
) -> PromoCode:
    if await get_promo_code(session, payload.code) is not None:
        raise ValueError(f"Promo code {payload.code} already exists")
    promo = PromoCode(
        code=payload.code,
        description=payload.description,
        discount_type=payload.discount_type,
        discount_value=payload.discount_value,
        tiers=[
            {"min_subtotal": str(tier.min_subtotal), "percent": str(tier.percent)} for tier in payload.tiers
        ],
        max_discount_amount=payload.max_discount_amount,
        min_booking_amount=payload.min_booking_amount,
        applicable_to=payload.applicable_to,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
        is_active=True,
        created_by=created_by,
    )
    session.add(promo)
    await session.commit()
    await session.refresh(promo)
    logger.info(
        "promo_code_created",
        extra={"extra": {"code": promo.code, "discount_type": promo.discount_type, "created_by": created_by}},
    )
    return promo


async def list_promo_codes(session: AsyncSession, include_inactive: bool = True) -> list[PromoCode]:
    stmt = select(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.code)
    if not include_inactive:
        stmt = stmt.where(PromoCode.is_active.is_(True))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def deactivate_promo_code(session: AsyncSession, code: str) -> PromoCode | None:
    promo = await get_promo_code(session, code)
    if promo is None:
        return None
    if promo.is_active:
        promo.is_active = False
        await session.commit()
        await session.refresh(promo)
        logger.info("promo_code_deactivated", extra={"extra": {"code": promo.code}})
    return promo
