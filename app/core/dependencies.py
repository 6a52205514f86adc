from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app import database
from app.config import settings
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.database import get_db
from app.services.accounts import AccountService
from app.services.ledger import LedgerStore
from app.services.notifications import ExpoPushClient, NotificationEmitter
from app.services.payment_links import PaymentLinkManager
from app.services.payouts import PayoutScheduler
from app.services.stripe_gateway import StripeConfig, StripeGateway
from app.services.webhooks import WebhookDispatcher


async def get_current_user_id(request: Request) -> str:
    """
    Get the authenticated principal id from request state.

    UserInjectionMiddleware has already decoded the bearer token. The
    principal is trusted even when no local user row exists yet, since
    onboarding can start before the first sync.

    Raises:
        AuthenticationError: no valid bearer token on the request
    """
    principal_id = getattr(request.state, "principal_id", None)
    if not principal_id:
        raise AuthenticationError()
    return principal_id


def require_ownership(principal_id: str, user_id: str) -> None:
    if principal_id != user_id:
        raise ForbiddenError()


@lru_cache
def get_gateway() -> StripeGateway:
    return StripeGateway(StripeConfig.from_settings(settings))


@lru_cache
def get_notification_emitter() -> NotificationEmitter:
    return NotificationEmitter(ExpoPushClient(), database.AsyncSessionLocal)


def get_ledger(db: AsyncSession = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def get_payment_link_manager(
    ledger: LedgerStore = Depends(get_ledger),
    gateway: StripeGateway = Depends(get_gateway),
) -> PaymentLinkManager:
    return PaymentLinkManager(ledger, gateway)


def get_webhook_dispatcher(
    ledger: LedgerStore = Depends(get_ledger),
    gateway: StripeGateway = Depends(get_gateway),
    notifier: NotificationEmitter = Depends(get_notification_emitter),
) -> WebhookDispatcher:
    return WebhookDispatcher(ledger, gateway, notifier)


def get_account_service(
    ledger: LedgerStore = Depends(get_ledger),
    gateway: StripeGateway = Depends(get_gateway),
) -> AccountService:
    return AccountService(ledger, gateway)


def get_payout_scheduler(
    ledger: LedgerStore = Depends(get_ledger),
    notifier: NotificationEmitter = Depends(get_notification_emitter),
) -> PayoutScheduler:
    return PayoutScheduler(ledger, notifier)
