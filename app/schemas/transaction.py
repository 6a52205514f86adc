from datetime import datetime

from pydantic import field_serializer

from app.schemas.base import CamelModel


class TransactionResponse(CamelModel):
    """Schema for transaction response."""

    model_config = {"from_attributes": True}

    id: str
    type: str
    amount: float  # Stored as minor units, returned as major units
    currency: str
    description: str
    merchant: str | None = None
    status: str
    date: datetime
    customer_name: str | None = None
    customer_email: str | None = None
    payment_method: str | None = None
    payment_method_type: str | None = None
    card_brand: str | None = None
    card_last4: str | None = None
    failure_reason: str | None = None
    notes: str | None = None
    stripe_payment_link_id: str | None = None
    stripe_payment_intent_id: str | None = None
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, amount: float) -> float:
        """Convert amount from cents (integer) to major units."""
        return amount / 100.0


class TransactionListResponse(CamelModel):
    """All transactions of one user, newest first."""

    transactions: list[TransactionResponse]
    total: int
