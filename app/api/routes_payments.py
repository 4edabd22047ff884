from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_checkout_orchestrator
from app.domain.checkout import schemas as checkout_schemas
from app.domain.checkout.gateway import parse_stripe_outcome
from app.domain.checkout.service import CheckoutSessionOrchestrator
from app.domain.errors import CheckoutSessionNotFound, InvalidTransition
from app.infra import stripe_client as stripe_infra
from app.infra.db import get_db_session
from app.settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


def _safe_get(source: object, key: str, default: Any | None = None) -> Any:
    if isinstance(source, dict):
        return source.get(key, default)
    return getattr(source, key, default)


def _verify_gateway_token(token: str | None) -> None:
    secret = settings.payment_callback_secret
    if not secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment callback disabled")
    if not token or not secrets.compare_digest(token, secret):
        logger.warning("payment_callback_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid gateway token")


@router.post("/v1/payments/callback", response_model=checkout_schemas.PaymentCallbackResponse)
async def payment_callback(
    payload: checkout_schemas.PaymentCallbackRequest,
    x_gateway_token: str | None = Header(default=None, alias="X-Gateway-Token"),
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> checkout_schemas.PaymentCallbackResponse:
    _verify_gateway_token(x_gateway_token)
    checkout = await orchestrator.record_payment_outcome(
        session, payload.session_id, payload.outcome, payload.gateway_reference
    )
    return checkout_schemas.PaymentCallbackResponse(
        session_id=checkout.session_id,
        state=checkout.state,
        booking_id=checkout.booking_id,
    )


@router.post("/v1/payments/stripe/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
    orchestrator: CheckoutSessionOrchestrator = Depends(get_checkout_orchestrator),
) -> dict[str, bool]:
    payload = await http_request.body()
    sig_header = http_request.headers.get("Stripe-Signature")
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook disabled")

    stripe_client = stripe_infra.resolve_client(http_request.app.state)
    try:
        event = stripe_client.verify_webhook(payload=payload, signature=sig_header)
    except Exception as exc:  # noqa: BLE001
        logger.warning("stripe_webhook_invalid", extra={"extra": {"reason": type(exc).__name__}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe webhook") from exc

    outcome = parse_stripe_outcome(event)
    if outcome is None:
        logger.info(
            "stripe_webhook_ignored",
            extra={"extra": {"event_type": _safe_get(event, "type")}},
        )
        return {"received": True, "processed": False}

    try:
        await orchestrator.record_payment_outcome(
            session, outcome.session_id, outcome.outcome, outcome.gateway_reference
        )
    except (CheckoutSessionNotFound, InvalidTransition) as exc:
        # retrying will not change the answer, so acknowledge the delivery
        logger.warning(
            "stripe_webhook_rejected",
            extra={"extra": {"checkout_session_id": outcome.session_id, "reason": exc.detail}},
        )
        return {"received": True, "processed": False}
    return {"received": True, "processed": True}
