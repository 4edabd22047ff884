import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"(?<!\d)(?:\+?91[-.\s]?)?[6-9]\d{4}[-.\s]?\d{5}(?!\d)")
CARD_RE = re.compile(r"\b(?:\d[ -]?){13,19}\b")
STRIPE_SECRET_RE = re.compile(r"\b(?:sk|rk|whsec)_(?:live|test)?_?[A-Za-z0-9]{6,}\b")

PII_KEYS = {"phone", "email", "card_number", "upi_id"}
SECRET_KEYS = {"authorization", "gateway_token", "stripe_signature", "webhook_secret", "checkout_url"}
REQUEST_FIELDS = ("request_id", "method", "path", "status_code", "latency_ms")


def redact_pii(value: str) -> str:
    value = STRIPE_SECRET_RE.sub("[REDACTED_SECRET]", value)
    value = EMAIL_RE.sub("[REDACTED_EMAIL]", value)
    value = CARD_RE.sub("[REDACTED_CARD]", value)
    return PHONE_RE.sub("[REDACTED_PHONE]", value)


def _sanitize_value(value: Any, key: str | None = None) -> Any:
    if key:
        lowered = key.lower()
        if lowered in PII_KEYS or lowered in SECRET_KEYS:
            return "[REDACTED]"
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, dict):
        return {item_key: _sanitize_value(item_value, item_key) for item_key, item_value in value.items()}
    return value


class RedactingJsonFormatter(logging.Formatter):
    """One JSON object per line; structured fields come from ``extra={"extra": {...}}``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": redact_pii(str(record.getMessage())),
            "logger": record.name,
        }
        for field in REQUEST_FIELDS:
            if field in record.__dict__:
                payload[field] = record.__dict__[field]
        structured = getattr(record, "extra", None)
        if isinstance(structured, dict):
            payload.update(_sanitize_value(structured))
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
