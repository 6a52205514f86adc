from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, Field, field_serializer

from app.schemas.base import CamelModel


class AccountLinkCreate(CamelModel):
    user_id: str
    account_id: str | None = Field(
        default=None, validation_alias=AliasChoices("accountId", "account_id")
    )
    refresh_url: str | None = Field(
        default=None, validation_alias=AliasChoices("refreshUrl", "refresh_url")
    )
    return_url: str | None = Field(
        default=None, validation_alias=AliasChoices("returnUrl", "return_url")
    )
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class AccountLinkResponse(CamelModel):
    account_id: str
    url: str
    link_type: str


class CompleteOnboardingRequest(CamelModel):
    user_id: str
    stripe_account_id: str


class AccountStatusResponse(CamelModel):
    id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    requirements: dict[str, Any] = {}
    onboarding_complete: bool


class OnboardingResponse(CamelModel):
    success: bool
    message: str
    user_id: str
    stripe_account_id: str
    account_status: AccountStatusResponse


class UserAccountResponse(CamelModel):
    model_config = {"from_attributes": True}

    user_id: str = Field(validation_alias=AliasChoices("id", "user_id", "userId"))
    stripe_account_id: str | None = None
    stripe_onboarding_completed: bool


class BalanceItem(CamelModel):
    amount: float  # Minor units in, major units out
    currency: str

    @field_serializer("amount")
    def serialize_amount(self, amount: float) -> float:
        return amount / 100.0


class BalanceResponse(CamelModel):
    user_id: str
    balances: list[BalanceItem]


class ProcessorPayout(CamelModel):
    id: str
    amount: float
    currency: str
    status: str
    payout_date: str
    processed_at: datetime | None = None
    bank_account: str
    description: str

    @classmethod
    def from_stripe(cls, payout: dict[str, Any]) -> "ProcessorPayout":
        created = datetime.fromtimestamp(payout["created"], tz=timezone.utc)
        arrival = payout.get("arrival_date")
        destination = payout.get("destination")
        return cls(
            id=payout["id"],
            amount=payout["amount"] / 100.0,
            currency=payout["currency"],
            status=payout["status"],
            payout_date=created.date().isoformat(),
            processed_at=datetime.fromtimestamp(arrival, tz=timezone.utc) if arrival else None,
            bank_account=f"****{str(destination)[-4:]}" if destination else "****0000",
            description=payout.get("description") or "Bank payout",
        )


class ProcessorPayoutList(CamelModel):
    payouts: list[ProcessorPayout]
