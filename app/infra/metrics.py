import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.checkout_transitions = None
            self.hold_acquisitions = None
            self.payment_callbacks = None
            self.http_5xx = None
            return

        self.checkout_transitions = Counter(
            "checkout_transitions_total",
            "Checkout session state transitions by target state.",
            ["state"],
            registry=self.registry,
        )
        self.hold_acquisitions = Counter(
            "hold_acquisitions_total",
            "Reservation hold acquisition attempts by result.",
            ["result"],
            registry=self.registry,
        )
        self.payment_callbacks = Counter(
            "payment_callbacks_total",
            "Inbound payment outcome callbacks by result.",
            ["result"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )

    def record_transition(self, state: str) -> None:
        if not self.enabled or self.checkout_transitions is None:
            return
        self.checkout_transitions.labels(state=state).inc()

    def record_hold(self, result: str) -> None:
        if not self.enabled or self.hold_acquisitions is None:
            return
        self.hold_acquisitions.labels(result=result).inc()

    def record_callback(self, result: str) -> None:
        if not self.enabled or self.payment_callbacks is None:
            return
        self.payment_callbacks.labels(result=result).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
