"""Stripe Connect gateway.

All calls to the Stripe SDK go through :class:`StripeGateway`. The
gateway is built from an explicit :class:`StripeConfig`; it never
touches ``stripe.api_key`` so several gateways (or a fake one in tests)
can coexist in one process.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlparse

import stripe
from pydantic import BaseModel, ConfigDict

from app.config import Settings
from app.core.constants import (
    FULL_PAYMENT_METHOD_TYPES,
    RESTRICTED_PAYMENT_METHOD_CURRENCIES,
    RESTRICTED_PAYMENT_METHOD_TYPES,
)
from app.core.exceptions import (
    AccountNotReadyError,
    InvalidRedirectUrlError,
    SignatureError,
    UpstreamError,
    ValidationError,
)
from app.core.logging import app_logger


class StripeConfig(BaseModel):
    """Everything the gateway needs to talk to Stripe."""

    model_config = ConfigDict(frozen=True)

    secret_key: str
    webhook_secret: str
    api_version: str | None = None
    account_country: str = "JM"
    default_account_currency: str = "JMD"
    application_fee_percent: float | None = 1.9
    default_refresh_url: str
    default_return_url: str
    webhook_tolerance_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeConfig":
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            api_version=settings.STRIPE_API_VERSION,
            account_country=settings.STRIPE_ACCOUNT_COUNTRY,
            default_account_currency=settings.STRIPE_DEFAULT_ACCOUNT_CURRENCY,
            application_fee_percent=settings.STRIPE_APPLICATION_FEE_PERCENT,
            default_refresh_url=settings.STRIPE_DEFAULT_REFRESH_URL,
            default_return_url=settings.STRIPE_DEFAULT_RETURN_URL,
            webhook_tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )


@dataclass(slots=True)
class AccountProfile:
    user_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "HandyPay Merchant"


@dataclass(slots=True)
class AccountStatus:
    id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    requirements: dict[str, Any] = field(default_factory=dict)

    @property
    def onboarding_complete(self) -> bool:
        # detailsSubmitted alone does not mean the merchant can be paid
        return self.charges_enabled

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "charges_enabled": self.charges_enabled,
            "payouts_enabled": self.payouts_enabled,
            "details_submitted": self.details_submitted,
            "requirements": self.requirements,
        }


@dataclass(slots=True)
class PaymentLinkRequest:
    destination_account_id: str
    amount: int  # Minor units
    currency: str
    description: str
    metadata: dict[str, str] = field(default_factory=dict)
    task_details: str | None = None
    merchant_name: str | None = None
    collect_customer: bool = False


@dataclass(slots=True)
class CreatedPaymentLink:
    id: str
    url: str
    active: bool


@dataclass(slots=True)
class PaymentMethodDetails:
    type: str | None = None
    card_brand: str | None = None
    card_last4: str | None = None
    failure_reason: str | None = None


@dataclass(slots=True)
class BalanceAmount:
    amount: int  # Minor units
    currency: str


class WebhookEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any]


class WebhookEvent(BaseModel):
    """Decoded Stripe event envelope."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int | None = None
    data: WebhookEventData

    @property
    def payload(self) -> dict[str, Any]:
        return self.data.object


def payment_method_types_for(currency: str) -> list[str]:
    if currency.upper() in RESTRICTED_PAYMENT_METHOD_CURRENCIES:
        return list(RESTRICTED_PAYMENT_METHOD_TYPES)
    return list(FULL_PAYMENT_METHOD_TYPES)


def is_valid_redirect_url(url: str | None) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme == "https" and bool(parsed.netloc)


def _to_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return {}


class StripeGateway:
    """Thin async adapter over the Stripe SDK."""

    def __init__(self, config: StripeConfig):
        self.config = config

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    async def create_connected_account(self, profile: AccountProfile) -> str:
        """Create a custom connected account. Callers own deduplication."""
        params: dict[str, Any] = {
            "type": "custom",
            "country": self.config.account_country,
            "business_type": "individual",
            "metadata": {"userId": profile.user_id},
            "capabilities": {"transfers": {"requested": True}},
            "tos_acceptance": {"service_agreement": "recipient"},
            "settings": {
                "payouts": {"schedule": {"interval": "weekly", "weekly_anchor": "tuesday"}}
            },
            "default_currency": self.config.default_account_currency,
        }
        if profile.email.strip():
            params["email"] = profile.email
            params["individual"] = {
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "email": profile.email,
            }
        else:
            app_logger.warning(
                f"Creating Stripe account for user {profile.user_id} without email"
            )

        account = await self._call("account create", stripe.Account.create, **params)
        app_logger.info(f"Created Stripe account {account.id} for user {profile.user_id}")
        return account.id

    async def create_or_update_connected_account(
        self, profile: AccountProfile, account_id: str | None = None
    ) -> str:
        if not account_id:
            return await self.create_connected_account(profile)

        params: dict[str, Any] = {
            "metadata": {"userId": profile.user_id},
            "business_profile": {"name": profile.display_name},
        }
        if profile.email.strip():
            params["email"] = profile.email
            params["business_profile"]["support_email"] = profile.email

        await self._call("account update", stripe.Account.modify, account_id, **params)
        return account_id

    async def create_onboarding_link(
        self,
        account_id: str,
        refresh_url: str | None,
        return_url: str | None,
        link_type: str = "account_onboarding",
    ) -> str:
        """Return a single-use hosted onboarding (or account update) URL.

        Redirect URLs that are not absolute https URLs are replaced by the
        configured defaults rather than failing the request.
        """
        valid_refresh_url = self._redirect_url(refresh_url, self.config.default_refresh_url)
        valid_return_url = self._redirect_url(return_url, self.config.default_return_url)

        link = await self._call(
            "account link create",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=valid_refresh_url,
            return_url=valid_return_url,
            type=link_type,
            collect="eventually_due",
        )
        return link.url

    async def get_account_status(self, account_id: str) -> AccountStatus:
        account = await self._call("account retrieve", stripe.Account.retrieve, account_id)
        return AccountStatus(
            id=account.id,
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            details_submitted=bool(getattr(account, "details_submitted", False)),
            requirements=_to_dict(getattr(account, "requirements", None)),
        )

    # ------------------------------------------------------------------
    # Payment links
    # ------------------------------------------------------------------

    async def create_payment_link(self, request: PaymentLinkRequest) -> CreatedPaymentLink:
        """Create a single-use destination-charge payment link.

        Raises:
            AccountNotReadyError: destination account has charges disabled
            UpstreamError: Stripe rejected the request
        """
        status = await self.get_account_status(request.destination_account_id)
        if not status.charges_enabled:
            raise AccountNotReadyError()

        currency = request.currency.lower()
        recipient = request.merchant_name or "the recipient"
        params: dict[str, Any] = {
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": request.description or "Payment",
                            "description": request.task_details or request.description or "Payment",
                        },
                        "unit_amount": request.amount,
                    },
                    "quantity": 1,
                }
            ],
            "payment_method_types": payment_method_types_for(currency),
            "after_completion": {
                "type": "hosted_confirmation",
                "hosted_confirmation": {"custom_message": "Thank you for your payment!"},
            },
            "customer_creation": "always" if request.collect_customer else "if_required",
            "metadata": request.metadata,
            "payment_intent_data": {"metadata": request.metadata},
            # Destination charge: funds route to the merchant automatically
            "transfer_data": {"destination": request.destination_account_id},
            "custom_text": {
                "submit": {
                    "message": (
                        f"Payment will be processed to {recipient}. "
                        "You'll receive a confirmation shortly."
                    )
                }
            },
            "restrictions": {"completed_sessions": {"limit": 1}},
        }
        if self.config.application_fee_percent:
            params["application_fee_percent"] = self.config.application_fee_percent

        link = await self._call("payment link create", stripe.PaymentLink.create, **params)
        return CreatedPaymentLink(id=link.id, url=link.url, active=bool(link.active))

    async def cancel_payment_link(self, payment_link_id: str) -> CreatedPaymentLink:
        """Deactivate a payment link. Stripe keeps its history."""
        link = await self._call(
            "payment link cancel", stripe.PaymentLink.modify, payment_link_id, active=False
        )
        return CreatedPaymentLink(id=link.id, url=link.url, active=bool(link.active))

    async def deactivate_payment_link(self, payment_link_id: str) -> CreatedPaymentLink:
        return await self.cancel_payment_link(payment_link_id)

    async def get_payment_method_details(self, payment_intent_id: str) -> PaymentMethodDetails:
        intent = await self._call(
            "payment intent retrieve",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
            expand=["payment_method"],
        )
        details = PaymentMethodDetails()

        method = getattr(intent, "payment_method", None)
        if method is not None and not isinstance(method, str):
            details.type = getattr(method, "type", None)
            card = getattr(method, "card", None)
            if details.type == "card" and card is not None:
                details.card_brand = getattr(card, "brand", None)
                details.card_last4 = getattr(card, "last4", None)

        last_error = getattr(intent, "last_payment_error", None)
        if last_error is not None:
            details.failure_reason = (
                getattr(last_error, "message", None)
                or getattr(last_error, "decline_code", None)
                or "Payment failed"
            )
        return details

    # ------------------------------------------------------------------
    # Balances and payouts
    # ------------------------------------------------------------------

    async def get_balance(self, account_id: str) -> list[BalanceAmount]:
        balance = await self._call(
            "balance retrieve", stripe.Balance.retrieve, stripe_account=account_id
        )
        return [
            BalanceAmount(amount=item.amount, currency=item.currency.upper())
            for item in getattr(balance, "available", None) or []
        ]

    async def list_payouts(self, account_id: str, limit: int = 20) -> list[dict[str, Any]]:
        payouts = await self._call(
            "payout list", stripe.Payout.list, limit=limit, stripe_account=account_id
        )
        return [
            {
                "id": payout.id,
                "amount": payout.amount,
                "currency": payout.currency.upper(),
                "status": payout.status,
                "created": payout.created,
                "arrival_date": getattr(payout, "arrival_date", None),
                "destination": getattr(payout, "destination", None),
                "description": getattr(payout, "description", None),
            }
            for payout in payouts.data
        ]

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_and_decode_webhook(
        self, raw_body: bytes, signature: str | None, secret: str | None = None
    ) -> WebhookEvent:
        """Verify the Stripe-Signature header, then decode the event.

        Raises:
            SignatureError: header missing or verification failed
            ValidationError: payload is not a Stripe event
        """
        if not signature:
            raise SignatureError("No signature")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                secret or self.config.webhook_secret,
                self.config.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            app_logger.warning(f"Webhook signature verification failed: {e}")
            raise SignatureError("Invalid webhook signature") from e

        try:
            return WebhookEvent.model_validate(json.loads(payload))
        except ValueError as e:
            raise ValidationError("Malformed webhook payload") from e

    # ------------------------------------------------------------------

    def _redirect_url(self, url: str | None, default: str) -> str:
        if is_valid_redirect_url(url):
            return url
        app_logger.warning(f"Invalid or missing redirect url {url!r}, using default")
        if not is_valid_redirect_url(default):
            raise InvalidRedirectUrlError(f"Invalid redirect URL: {url!r}")
        return default

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any) -> Any:
        params.setdefault("api_key", self.config.secret_key)
        if self.config.api_version:
            params.setdefault("stripe_version", self.config.api_version)

        try:
            # The SDK is synchronous; keep it off the event loop
            return await asyncio.to_thread(fn, *args, **params)
        except stripe.StripeError as e:
            app_logger.error(
                f"Stripe {operation} failed ({e.__class__.__name__}, code={e.code}): {e}"
            )
            message = e.user_message or f"Payment processor error during {operation}"
            raise UpstreamError(message) from e
