"""Connected-account onboarding and merchant user records."""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.core.exceptions import (
    ForbiddenError,
    LedgerError,
    NoProcessorAccountError,
    NotFoundError,
    ValidationError,
)
from app.core.logging import app_logger
from app.models import BannedAccount, User
from app.models.transaction import utcnow
from app.services.ledger import LedgerStore
from app.services.stripe_gateway import (
    AccountProfile,
    AccountStatus,
    BalanceAmount,
    StripeGateway,
)


@dataclass(slots=True)
class AccountLinkRequest:
    user_id: str
    refresh_url: str | None = None
    return_url: str | None = None
    account_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


@dataclass(slots=True)
class AccountLinkResult:
    account_id: str
    url: str
    link_type: str


@dataclass(slots=True)
class OnboardingResult:
    user_id: str
    account_id: str
    completed: bool
    status: AccountStatus


@dataclass(slots=True)
class UserProfile:
    id: str
    auth_provider: str
    member_since: datetime
    email: str | None = None
    full_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    apple_user_id: str | None = None
    google_user_id: str | None = None
    stripe_account_id: str | None = None
    stripe_onboarding_completed: bool = False


@dataclass(slots=True)
class SyncResult:
    user_id: str
    created: bool
    existing_account: bool = False


class AccountService:
    def __init__(self, ledger: LedgerStore, gateway: StripeGateway):
        self.ledger = ledger
        self.gateway = gateway

    async def create_account_link(self, request: AccountLinkRequest) -> AccountLinkResult:
        """
        Create (or reuse) the merchant's connected account and return a hosted link.

        The account is created before its id is saved locally. If the save
        fails the account is orphaned on the processor side and only logged;
        the caller still gets the link and the account id.
        """
        if not request.user_id:
            raise ValidationError("Missing required fields: userId")

        user = await self.ledger.get_user(request.user_id)
        if user is not None and user.is_banned:
            raise ForbiddenError("Account is banned")

        account_id = request.account_id or (user.stripe_account_id if user else None)
        profile = AccountProfile(
            user_id=request.user_id,
            first_name=request.first_name or (user.first_name if user else "") or "",
            last_name=request.last_name or (user.last_name if user else "") or "",
            email=request.email or (user.email if user else "") or "",
        )
        account_id = await self.gateway.create_or_update_connected_account(profile, account_id)
        await self._save_account_id(user, request, account_id)

        status = await self.gateway.get_account_status(account_id)
        link_type = (
            "account_update"
            if status.details_submitted and status.charges_enabled
            else "account_onboarding"
        )
        url = await self.gateway.create_onboarding_link(
            account_id, request.refresh_url, request.return_url, link_type=link_type
        )
        app_logger.info(f"Created {link_type} link for account {account_id} (user {request.user_id})")
        return AccountLinkResult(account_id=account_id, url=url, link_type=link_type)

    async def complete_onboarding(self, user_id: str, account_id: str) -> OnboardingResult:
        """Mark onboarding complete, but only once the account can take charges."""
        if not user_id or not account_id:
            raise ValidationError("Missing required fields: userId, stripeAccountId")

        status = await self.gateway.get_account_status(account_id)
        if not status.onboarding_complete:
            app_logger.info(f"Onboarding not complete for account {account_id}, charges not enabled")
            return OnboardingResult(user_id, account_id, completed=False, status=status)

        if await self.ledger.get_user(user_id) is None:
            raise NotFoundError("User not found")

        await self.ledger.update_user(
            user_id, stripe_account_id=account_id, stripe_onboarding_completed=True
        )
        app_logger.info(f"Onboarding completed for user {user_id} (account {account_id})")
        return OnboardingResult(user_id, account_id, completed=True, status=status)

    async def get_account_status(self, account_id: str) -> AccountStatus:
        return await self.gateway.get_account_status(account_id)

    async def get_user_account(self, user_id: str) -> User:
        user = await self.ledger.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def get_balance(self, user_id: str) -> list[BalanceAmount]:
        account_id = await self._require_account(user_id)
        return await self.gateway.get_balance(account_id)

    async def list_payouts(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        account_id = await self._require_account(user_id)
        return await self.gateway.list_payouts(account_id, limit=limit)

    async def sync_user(self, profile: UserProfile) -> SyncResult:
        """
        Create or update the local record for a user who just signed in.

        A provider id already owned by another user wins: the caller is told
        to use that account instead. Processor fields are never cleared by
        a sync.
        """
        if not profile.id or not profile.auth_provider or not profile.member_since:
            raise ValidationError("Missing required fields: id, authProvider, memberSince")

        if profile.email and await self.ledger.get_active_ban_for_email(profile.email):
            app_logger.warning(f"Refused sync for banned email (user {profile.id})")
            raise ForbiddenError("This account has been banned")

        owner = await self.ledger.get_user_by_provider(
            apple_user_id=profile.apple_user_id, google_user_id=profile.google_user_id
        )
        if owner is not None and owner.id != profile.id:
            app_logger.info(f"Provider id already linked to user {owner.id}, not {profile.id}")
            return SyncResult(user_id=owner.id, created=False, existing_account=True)

        existing = await self.ledger.get_user(profile.id)
        if existing is None:
            await self.ledger.add_user(
                User(
                    id=profile.id,
                    email=profile.email,
                    full_name=profile.full_name,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    auth_provider=profile.auth_provider,
                    apple_user_id=profile.apple_user_id,
                    google_user_id=profile.google_user_id,
                    stripe_account_id=profile.stripe_account_id,
                    stripe_onboarding_completed=profile.stripe_onboarding_completed,
                    member_since=profile.member_since,
                )
            )
            app_logger.info(f"Created user {profile.id} ({profile.auth_provider})")
            return SyncResult(user_id=profile.id, created=True)

        values: dict[str, Any] = {
            "email": profile.email,
            "full_name": profile.full_name,
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "auth_provider": profile.auth_provider,
            "stripe_account_id": profile.stripe_account_id or existing.stripe_account_id,
            "stripe_onboarding_completed": (
                profile.stripe_onboarding_completed or existing.stripe_onboarding_completed
            ),
        }
        if profile.apple_user_id:
            values["apple_user_id"] = profile.apple_user_id
        if profile.google_user_id:
            values["google_user_id"] = profile.google_user_id

        await self.ledger.update_user(profile.id, **values)
        app_logger.info(f"Updated user {profile.id} ({profile.auth_provider})")
        return SyncResult(user_id=profile.id, created=False)

    async def delete_user(self, user_id: str, ban_reason: str | None = None) -> None:
        """
        Erase a user with their transactions, payouts and push tokens.

        With a ban reason, a persistent ban record keyed by email and
        processor account is written first so it survives the erasure.
        """
        user = await self.ledger.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if ban_reason:
            await self.ledger.add_ban(
                BannedAccount(
                    id=f"ban_{uuid.uuid4().hex}",
                    user_id=None,
                    stripe_account_id=user.stripe_account_id,
                    email=user.email,
                    ban_reason=ban_reason,
                    ban_type="persistent",
                    is_active=True,
                    banned_at=utcnow(),
                )
            )
            app_logger.info(f"Recorded persistent ban for user {user_id}: {ban_reason}")

        await self.ledger.delete_user_cascade(user_id)
        app_logger.info(f"Deleted user {user_id} and all related data")

    async def _require_account(self, user_id: str) -> str:
        user = await self.ledger.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not user.stripe_account_id:
            raise NoProcessorAccountError()
        return user.stripe_account_id

    async def _save_account_id(
        self, user: User | None, request: AccountLinkRequest, account_id: str
    ) -> None:
        try:
            if user is None:
                first = request.first_name or ""
                last = request.last_name or ""
                await self.ledger.add_user(
                    User(
                        id=request.user_id,
                        email=request.email or None,
                        first_name=request.first_name or None,
                        last_name=request.last_name or None,
                        full_name=f"{first} {last}".strip() or None,
                        # Replaced on the user's first sync
                        auth_provider="unknown",
                        stripe_account_id=account_id,
                        stripe_onboarding_completed=False,
                    )
                )
            elif user.stripe_account_id != account_id:
                await self.ledger.update_user(request.user_id, stripe_account_id=account_id)
        except LedgerError as e:
            app_logger.error(
                f"Stripe account {account_id} not saved for user {request.user_id}: "
                f"{e.__cause__ or e}"
            )
