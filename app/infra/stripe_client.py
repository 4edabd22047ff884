from __future__ import annotations

from typing import Any

from app.settings import settings


class StripeClient:
    """Thin synchronous wrapper over the Stripe SDK used for booking payments.

    Calls block, so async callers run them in a worker thread.
    """

    def __init__(
        self,
        *,
        secret_key: str | None,
        webhook_secret: str | None,
        stripe_sdk: Any | None = None,
    ) -> None:
        if stripe_sdk is None:
            import stripe as stripe_sdk  # type: ignore

        self.stripe = stripe_sdk
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _authenticate(self) -> None:
        if not self.secret_key:
            raise ValueError("Stripe secret key not configured")
        self.stripe.api_key = self.secret_key

    def create_booking_checkout(
        self,
        *,
        checkout_session_id: str,
        amount_minor: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        description: str,
        metadata: dict[str, str],
        transfer_group: str | None = None,
    ) -> Any:
        if amount_minor <= 0:
            raise ValueError("Booking amount must be greater than zero")
        self._authenticate()

        intent_data: dict[str, Any] = {"metadata": metadata}
        if transfer_group:
            # venue and coach payouts are transferred later against this group
            intent_data["transfer_group"] = transfer_group
        return self.stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            client_reference_id=checkout_session_id,
            success_url=success_url,
            cancel_url=cancel_url,
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": description},
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            payment_intent_data=intent_data,
            idempotency_key=f"booking-checkout-{checkout_session_id}",
        )

    def verify_webhook(self, payload: bytes, signature: str | None) -> Any:
        if not self.webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        if not signature:
            raise ValueError("Missing Stripe signature header")
        return self.stripe.Webhook.construct_event(
            payload=payload, sig_header=signature, secret=self.webhook_secret
        )


def resolve_client(app_state: Any) -> StripeClient:
    client = getattr(app_state, "stripe_client", None)
    if client is None:
        client = StripeClient(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
        app_state.stripe_client = client
    return client
