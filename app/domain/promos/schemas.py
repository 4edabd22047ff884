from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.domain.promos import rules


class PromoTierModel(BaseModel):
    min_subtotal: Decimal = Field(ge=0)
    percent: Decimal = Field(gt=0, le=100)


class PromoCodeCreateRequest(BaseModel):
    code: str = Field(min_length=3, max_length=32)
    description: str = Field(default="", max_length=255)
    discount_type: str
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)
    tiers: list[PromoTierModel] = Field(default_factory=list)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    min_booking_amount: Decimal | None = Field(default=None, ge=0)
    applicable_to: str = rules.APPLIES_ALL
    valid_from: datetime | None = None
    valid_until: datetime | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        normalized = rules.normalize_code(value)
        if not normalized.isalnum():
            raise ValueError("Promo code must be alphanumeric")
        return normalized

    @field_validator("discount_type")
    @classmethod
    def validate_discount_type(cls, value: str) -> str:
        upper = value.strip().upper()
        if upper not in rules.DISCOUNT_TYPES:
            raise ValueError("Invalid discount type")
        return upper

    @field_validator("applicable_to")
    @classmethod
    def validate_applicable_to(cls, value: str) -> str:
        upper = value.strip().upper()
        if upper not in rules.APPLICABILITY:
            raise ValueError("Invalid applicability")
        return upper

    @model_validator(mode="after")
    def validate_rule(self) -> "PromoCodeCreateRequest":
        if self.discount_type == rules.PERCENTAGE and not (0 < self.discount_value <= 100):
            raise ValueError("Percentage discount must be between 0 and 100")
        if self.discount_type == rules.FIXED_AMOUNT and self.discount_value <= 0:
            raise ValueError("Fixed discount must be greater than zero")
        if self.discount_type == rules.TIERED and not self.tiers:
            raise ValueError("Tiered discount requires at least one tier")
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class PromoCodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    promo_id: str
    code: str
    description: str
    discount_type: str
    discount_value: Decimal
    tiers: list[PromoTierModel]
    max_discount_amount: Decimal | None = None
    min_booking_amount: Decimal | None = None
    applicable_to: str
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool
    created_by: str | None = None
    created_at: datetime


class PromoValidateRequest(BaseModel):
    code: str | None = None
    subtotal: Decimal = Field(ge=0)
    has_venue: bool = True
    has_coach: bool = False


class PromoValidateResponse(BaseModel):
    accepted: bool
    discount_amount: Decimal
    message: str
