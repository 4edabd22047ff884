from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import anyio

from app.domain.errors import PaymentGatewayUnavailable
from app.domain.pricing.engine import PayeeSplit
from app.infra import stripe_client as stripe_infra
from app.settings import settings

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOMES = {OUTCOME_SUCCESS, OUTCOME_FAILURE}


@dataclass(frozen=True)
class GatewayCheckout:
    url: str
    gateway_session_id: str | None = None


@dataclass(frozen=True)
class PaymentOutcome:
    session_id: str
    outcome: str
    gateway_reference: str | None = None


class PaymentGateway(Protocol):
    async def create_checkout(
        self,
        *,
        session_id: str,
        amount_minor: int,
        currency: str,
        split: PayeeSplit | None,
        metadata: dict[str, str],
    ) -> GatewayCheckout: ...


def _safe_get(source: object, key: str, default: Any | None = None) -> Any:
    if isinstance(source, dict):
        return source.get(key, default)
    return getattr(source, key, default)


def _describe(metadata: dict[str, str]) -> str:
    parts = []
    if metadata.get("venue_id"):
        parts.append("Venue")
    if metadata.get("coach_id"):
        parts.append("coach" if parts else "Coach")
    label = " and ".join(parts) or "Booking"
    booking_date = metadata.get("booking_date")
    return f"{label} booking on {booking_date}" if booking_date else f"{label} booking"


class StripePaymentGateway:
    def __init__(self, client: stripe_infra.StripeClient, success_url: str, cancel_url: str) -> None:
        self.client = client
        self.success_url = success_url
        self.cancel_url = cancel_url

    async def create_checkout(
        self,
        *,
        session_id: str,
        amount_minor: int,
        currency: str,
        split: PayeeSplit | None,
        metadata: dict[str, str],
    ) -> GatewayCheckout:
        payload = {"checkout_session_id": session_id, **metadata}
        if split is not None:
            payload["venue_share"] = str(split.venue_share)
            payload["coach_share"] = str(split.coach_share)
        create = functools.partial(
            self.client.create_booking_checkout,
            checkout_session_id=session_id,
            amount_minor=amount_minor,
            currency=currency,
            success_url=self.success_url.replace("{SESSION_ID}", session_id),
            cancel_url=self.cancel_url.replace("{SESSION_ID}", session_id),
            description=_describe(metadata),
            metadata=payload,
            transfer_group=f"booking_{session_id}",
        )
        try:
            checkout = await anyio.to_thread.run_sync(create)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "stripe_checkout_creation_failed",
                extra={"extra": {"checkout_session_id": session_id, "reason": type(exc).__name__}},
            )
            raise PaymentGatewayUnavailable("Could not create a payment checkout; please retry") from exc

        url = _safe_get(checkout, "url")
        if not url:
            raise PaymentGatewayUnavailable("Payment gateway returned no checkout URL")
        return GatewayCheckout(url=url, gateway_session_id=_safe_get(checkout, "id"))


def parse_stripe_outcome(event: Any) -> PaymentOutcome | None:
    event_type = _safe_get(event, "type")
    data = _safe_get(event, "data", {}) or {}
    payload_object = _safe_get(data, "object", {}) or {}
    metadata = _safe_get(payload_object, "metadata", {}) or {}
    session_id = _safe_get(metadata, "checkout_session_id")
    if not session_id:
        return None

    if event_type == "checkout.session.completed":
        if _safe_get(payload_object, "payment_status") != "paid":
            return None
        reference = _safe_get(payload_object, "payment_intent") or _safe_get(payload_object, "id")
        return PaymentOutcome(session_id=str(session_id), outcome=OUTCOME_SUCCESS, gateway_reference=reference)
    if event_type in {"checkout.session.expired", "payment_intent.payment_failed"}:
        reference = _safe_get(payload_object, "id")
        return PaymentOutcome(session_id=str(session_id), outcome=OUTCOME_FAILURE, gateway_reference=reference)
    return None


def resolve_gateway(app_state: Any) -> PaymentGateway:
    gateway = getattr(app_state, "payment_gateway", None)
    if gateway is None:
        gateway = StripePaymentGateway(
            stripe_infra.resolve_client(app_state),
            success_url=settings.stripe_success_url,
            cancel_url=settings.stripe_cancel_url,
        )
        app_state.payment_gateway = gateway
    return gateway
