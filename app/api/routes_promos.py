from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.admin_auth import AdminIdentity, require_admin
from app.domain.promos import schemas as promo_schemas
from app.domain.promos import service as promo_service
from app.infra.db import get_db_session

router = APIRouter()


@router.post("/v1/promos/validate", response_model=promo_schemas.PromoValidateResponse)
async def validate_promo(
    payload: promo_schemas.PromoValidateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> promo_schemas.PromoValidateResponse:
    evaluation = await promo_service.validate_promo_code(
        session,
        payload.code,
        payload.subtotal,
        has_venue=payload.has_venue,
        has_coach=payload.has_coach,
    )
    return promo_schemas.PromoValidateResponse(
        accepted=evaluation.accepted,
        discount_amount=evaluation.discount_amount,
        message=evaluation.message,
    )


@router.get("/v1/admin/promos", response_model=list[promo_schemas.PromoCodeResponse])
async def list_promos(
    include_inactive: bool = True,
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> list[promo_schemas.PromoCodeResponse]:
    del identity
    promos = await promo_service.list_promo_codes(session, include_inactive=include_inactive)
    return [promo_schemas.PromoCodeResponse.model_validate(promo) for promo in promos]


@router.post(
    "/v1/admin/promos",
    response_model=promo_schemas.PromoCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_promo(
    payload: promo_schemas.PromoCodeCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> promo_schemas.PromoCodeResponse:
    try:
        promo = await promo_service.create_promo_code(session, payload, created_by=identity.username)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return promo_schemas.PromoCodeResponse.model_validate(promo)


@router.post("/v1/admin/promos/{code}/deactivate", response_model=promo_schemas.PromoCodeResponse)
async def deactivate_promo(
    code: str,
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> promo_schemas.PromoCodeResponse:
    del identity
    promo = await promo_service.deactivate_promo_code(session, code)
    if promo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promo code not found")
    return promo_schemas.PromoCodeResponse.model_validate(promo)
