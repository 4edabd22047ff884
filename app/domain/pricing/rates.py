import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping


def _as_rate(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    try:
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not rate.is_finite() or rate < 0:
        return None
    return rate


def resolve_rate(default_rate: Any, sport_pricing: Mapping[str, Any] | None, sport: str | None) -> Decimal:
    """Hourly rate for ``sport``: a valid override wins, otherwise the default."""
    if sport and sport_pricing:
        override = _as_rate(sport_pricing.get(sport))
        if override is not None:
            return override
    default = _as_rate(default_rate)
    if default is None:
        raise ValueError("Resource has no valid default hourly rate")
    return default


@dataclass(frozen=True)
class ResourceRates:
    resource_id: str
    hourly_rate: Decimal
    sport_pricing: Mapping[str, Any] = field(default_factory=dict)

    def rate_for(self, sport: str | None) -> Decimal:
        return resolve_rate(self.hourly_rate, self.sport_pricing, sport)
