from app.domain.errors import InvalidTransition

COLLECTING = "COLLECTING"
HELD = "HELD"
AWAITING_PAYMENT = "AWAITING_PAYMENT"
CONFIRMED = "CONFIRMED"
EXPIRED = "EXPIRED"
CANCELLED = "CANCELLED"
FAILED = "FAILED"

STATES = {COLLECTING, HELD, AWAITING_PAYMENT, CONFIRMED, EXPIRED, CANCELLED, FAILED}
TERMINAL_STATES = {CONFIRMED, EXPIRED, CANCELLED, FAILED}
HOLDING_STATES = {HELD, AWAITING_PAYMENT}

TRANSITIONS = {
    COLLECTING: {HELD, CANCELLED, FAILED},
    HELD: {AWAITING_PAYMENT, EXPIRED, CANCELLED, FAILED},
    AWAITING_PAYMENT: {CONFIRMED, FAILED, EXPIRED, CANCELLED},
    CONFIRMED: set(),
    EXPIRED: set(),
    CANCELLED: set(),
    FAILED: set(),
}


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def assert_valid_transition(current: str, target: str) -> None:
    allowed = TRANSITIONS.get(current, set())
    if not allowed:
        raise InvalidTransition(f"Checkout session is already in terminal state: {current}")
    if target not in allowed:
        raise InvalidTransition(f"Cannot transition checkout session from {current} to {target}")
