import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_account_id, get_checkout_orchestrator
from app.domain.checkout import schemas as checkout_schemas
from app.domain.checkout.service import CheckoutSessionOrchestrator, CheckoutStatus
from app.infra.db import get_db_session

router = APIRouter()
logger = logging.getLogger(__name__)


def _to_response(checkout_status: CheckoutStatus) -> checkout_schemas.CheckoutSessionResponse:
    return checkout_schemas.CheckoutSessionResponse(
        session_id=checkout_status.session_id,
        state=checkout_status.state,
        price_breakdown=checkout_schemas.PriceBreakdownModel.from_breakdown(checkout_status.price_breakdown),
        checkout_url=checkout_status.checkout_url,
        booking_id=checkout_status.booking_id,
        expires_at=checkout_status.expires_at,
        failure_reason=checkout_status.failure_reason,
        verification_token=checkout_status.verification_token,
    )


@router.post(
    "/v1/checkout/sessions",
    response_model=checkout_schemas.CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout_session(
    payload: checkout_schemas.CheckoutSessionCreateRequest,
    account_id: str = Depends(get_account_id),
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.CheckoutSessionResponse:
    request = payload.to_booking_request(account_id)
    checkout = await orchestrator.create(session, request)
    return _to_response(await orchestrator.get_status(session, checkout.session_id))


@router.get("/v1/checkout/sessions/{session_id}", response_model=checkout_schemas.CheckoutSessionResponse)
async def get_checkout_session(
    session_id: str,
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.CheckoutSessionResponse:
    return _to_response(await orchestrator.get_status(session, session_id))


@router.post(
    "/v1/checkout/sessions/{session_id}/payment",
    response_model=checkout_schemas.CheckoutSessionResponse,
)
async def issue_checkout_payment(
    session_id: str,
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.CheckoutSessionResponse:
    await orchestrator.issue_payment(session, session_id)
    return _to_response(await orchestrator.get_status(session, session_id))


@router.post(
    "/v1/checkout/sessions/{session_id}/extend",
    response_model=checkout_schemas.CheckoutSessionResponse,
)
async def extend_checkout_session(
    session_id: str,
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.CheckoutSessionResponse:
    return _to_response(await orchestrator.extend(session, session_id))


@router.post(
    "/v1/checkout/sessions/{session_id}/cancel",
    response_model=checkout_schemas.CheckoutSessionResponse,
)
async def cancel_checkout_session(
    session_id: str,
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.CheckoutSessionResponse:
    await orchestrator.cancel(session, session_id)
    return _to_response(await orchestrator.get_status(session, session_id))


@router.post("/v1/checkout/quote", response_model=checkout_schemas.PriceBreakdownModel)
async def quote_checkout(
    payload: checkout_schemas.CheckoutSessionCreateRequest,
    account_id: str = Depends(get_account_id),
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.PriceBreakdownModel:
    breakdown = await orchestrator.quote(session, payload.to_booking_request(account_id))
    return checkout_schemas.PriceBreakdownModel.from_breakdown(breakdown)
