import re
from datetime import datetime

from pydantic import AliasChoices, Field, field_serializer, field_validator

from app.core.constants import SUPPORTED_CURRENCIES
from app.schemas.base import CamelModel


class PaymentLinkCreate(CamelModel):
    """Schema for creating a payment link. Amount is in minor units (cents)."""

    merchant_user_id: str = Field(
        validation_alias=AliasChoices("merchantUserId", "handyproUserId", "merchant_user_id")
    )
    amount: int
    currency: str | None = None
    description: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    due_date: datetime | None = None
    task_details: str | None = None
    payment_source: str | None = None

    @field_validator("amount")
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v

    @field_validator("currency")
    def validate_currency(cls, v):
        """Validate currency is a supported 3-letter code."""
        if v is None:
            return v
        v = v.upper()

        if not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter code")

        if v not in SUPPORTED_CURRENCIES:
            raise ValueError("Currency code not supported")

        return v


class PaymentLinkCreateResponse(CamelModel):
    id: str
    url: str
    status: str
    transaction_id: str


class PaymentLinkAction(CamelModel):
    """Body of cancel and expire requests."""

    user_id: str


class PaymentLinkDeactivationResponse(CamelModel):
    model_config = {"from_attributes": True}

    id: str
    active: bool
    transaction_id: str
    status: str
    url: str | None = None


class PaymentLinkStatusResponse(CamelModel):
    model_config = {"from_attributes": True}

    id: str
    status: str
    amount: float
    currency: str
    description: str
    stripe_payment_link_id: str | None = None
    stripe_payment_intent_id: str | None = None
    customer_name: str | None = None
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None

    @field_serializer("amount")
    def serialize_amount(self, amount: float) -> float:
        """Convert amount from minor units to major units."""
        return amount / 100.0
