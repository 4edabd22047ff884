PROBLEM_BASE = "https://example.com/problems"


class DomainError(Exception):
    """Base class for errors surfaced to API callers as problem details."""

    status_code = 400
    title = "Domain Error"
    type = f"{PROBLEM_BASE}/domain-error"

    def __init__(self, detail: str | None = None, errors: list[dict[str, str]] | None = None) -> None:
        self.detail = detail or self.title
        self.errors = errors or []
        super().__init__(self.detail)


class InvalidInterval(DomainError):
    status_code = 400
    title = "Invalid Interval"
    type = f"{PROBLEM_BASE}/invalid-interval"


class MissingBookingDetails(DomainError):
    status_code = 400
    title = "Missing Booking Details"
    type = f"{PROBLEM_BASE}/missing-booking-details"


class ResourceNotFound(DomainError):
    status_code = 404
    title = "Resource Not Found"
    type = f"{PROBLEM_BASE}/resource-not-found"


class CheckoutSessionNotFound(ResourceNotFound):
    title = "Checkout Session Not Found"


class BookingNotAllowed(DomainError):
    status_code = 422
    title = "Booking Not Allowed"
    type = f"{PROBLEM_BASE}/booking-not-allowed"


class SlotConflict(DomainError):
    status_code = 409
    title = "Slot Conflict"
    type = f"{PROBLEM_BASE}/slot-conflict"


class InvalidTransition(DomainError):
    status_code = 409
    title = "Invalid Transition"
    type = f"{PROBLEM_BASE}/invalid-transition"


class PriceMismatch(DomainError):
    status_code = 409
    title = "Price Mismatch"
    type = f"{PROBLEM_BASE}/price-mismatch"


class HoldExpired(DomainError):
    status_code = 410
    title = "Hold Expired"
    type = f"{PROBLEM_BASE}/hold-expired"


class PaymentGatewayUnavailable(DomainError):
    status_code = 503
    title = "Payment Gateway Unavailable"
    type = f"{PROBLEM_BASE}/payment-gateway-unavailable"
