from typing import Optional

from pydantic import BaseModel, Field, field_validator

CURRENCIES = ("USD", "EUR", "GBP", "INR", "CAD", "AUD")
PAYMENT_STATUSES = ("pending", "processing", "completed", "failed", "refunded", "cancelled")
PROVIDERS = ("stripe", "paypal")
REFUND_REASONS = (
    "requested_by_customer", "duplicate", "fraudulent",
    "course_not_as_described", "technical_issues", "other",
)


class PaymentCreate(BaseModel):
    courseId: str = Field(..., min_length=1)
    provider: str = "stripe"
    currency: str = "USD"
    couponCode: Optional[str] = Field(None, max_length=50)

    @field_validator("provider")
    @classmethod
    def check_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in PROVIDERS:
            raise ValueError(f"provider must be one of {', '.join(PROVIDERS)}")
        return v

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: str) -> str:
        v = v.upper()
        if v not in CURRENCIES:
            raise ValueError(f"currency must be one of {', '.join(CURRENCIES)}")
        return v


class PaymentConfirm(BaseModel):
    # PaymentIntent (stripe) u orden (paypal); por defecto el guardado al crear
    providerPaymentId: Optional[str] = None


class RefundIn(BaseModel):
    reason: str = "requested_by_customer"
    amount: Optional[float] = Field(None, gt=0)

    @field_validator("reason")
    @classmethod
    def check_reason(cls, v: str) -> str:
        if v not in REFUND_REASONS:
            raise ValueError(f"reason must be one of {', '.join(REFUND_REASONS)}")
        return v
