"""Automatic payout scheduling."""
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from app.config import settings
from app.core.exceptions import LedgerError
from app.core.logging import app_logger
from app.models import Payout, PayoutRule
from app.models.payout import DEFAULT_RULE_ID
from app.models.transaction import utcnow
from app.services.ledger import LedgerStore
from app.services.notifications import NotificationEmitter

CENTS = Decimal("0.01")


@dataclass(slots=True)
class GeneratedPayout:
    payout_id: str
    user_id: str
    amount: Decimal  # Major units
    currency: str
    status: str


class PayoutScheduler:
    def __init__(
        self,
        ledger: LedgerStore,
        notifier: NotificationEmitter | None = None,
        currency: str = settings.STRIPE_DEFAULT_ACCOUNT_CURRENCY,
    ):
        self.ledger = ledger
        self.notifier = notifier
        self.currency = currency

    async def init_rules(self) -> PayoutRule:
        """Insert the default payout rule unless it already exists."""
        rule = await self.ledger.get_payout_rule(DEFAULT_RULE_ID)
        if rule is not None:
            return rule

        rule = await self.ledger.add_payout_rule(
            PayoutRule(
                id=DEFAULT_RULE_ID,
                rule_name="Standard Payout Rule",
                first_transaction_delay_days=7,
                subsequent_delay_days_min=2,
                subsequent_delay_days_max=5,
                minimum_payout_amount=Decimal("0.00"),
                is_active=True,
            )
        )
        app_logger.info("Default payout rule initialized")
        return rule

    async def generate_automatic(
        self, now: datetime | None = None, rng: random.Random | None = None
    ) -> list[GeneratedPayout]:
        """
        Pay out every user whose available balance is due.

        Available balance is completed incoming transactions minus completed
        payouts. Each payout is recorded pending and then marked completed;
        if the second write fails the pending row stays behind and is logged.
        """
        now = now or utcnow()
        rng = rng or random.Random()

        rule = await self.ledger.get_active_payout_rule()
        if rule is None:
            app_logger.warning("No active payout rule, skipping automatic payouts")
            return []

        minimum = Decimal(str(rule.minimum_payout_amount or 0))
        incoming = await self.ledger.completed_incoming_totals()
        paid_out = await self.ledger.completed_payout_totals()

        results = []
        for user_id, total_minor in incoming.items():
            available = (Decimal(total_minor) / 100 - paid_out.get(user_id, Decimal("0"))).quantize(CENTS)
            if available <= 0 or available < minimum:
                continue
            if not await self._is_due(user_id, rule, now, rng):
                continue

            user = await self.ledger.get_user(user_id)
            if user is None or not user.stripe_account_id:
                app_logger.warning(f"No Stripe account found for user {user_id}, payout skipped")
                continue

            results.append(await self._create_payout(user_id, available, now))

        app_logger.info(f"Processed {len(results)} automatic payouts")
        return results

    async def _is_due(
        self, user_id: str, rule: PayoutRule, now: datetime, rng: random.Random
    ) -> bool:
        last_payout = await self.ledger.latest_payout_date(user_id)
        if last_payout is None:
            first_transaction = await self.ledger.earliest_transaction_date(user_id)
            if first_transaction is None:
                return False
            return _days_between(first_transaction, now) >= rule.first_transaction_delay_days

        delay = rng.randint(rule.subsequent_delay_days_min, rule.subsequent_delay_days_max)
        return _days_between(last_payout, now) >= delay

    async def _create_payout(self, user_id: str, amount: Decimal, now: datetime) -> GeneratedPayout:
        stamp = int(now.timestamp() * 1000)
        payout_id = f"payout_{stamp}_{user_id}"

        await self.ledger.add_payout(
            Payout(
                id=payout_id,
                user_id=user_id,
                amount=amount,
                currency=self.currency,
                status="pending",
                payout_date=now,
                # TODO: read the destination from the connected account's external accounts
                bank_account="****8689",
                description=f"Automatic payout - {now.date().isoformat()}",
            )
        )

        try:
            # Transfer is mocked: mark it completed straight away
            await self.ledger.update_payout(
                payout_id,
                status="completed",
                processed_at=utcnow(),
                stripe_payout_id=f"stripe_payout_{stamp}",
            )
        except LedgerError as e:
            app_logger.error(f"Payout {payout_id} left pending for user {user_id}: {e.__cause__ or e}")
            return GeneratedPayout(payout_id, user_id, amount, self.currency, "pending")

        app_logger.info(f"Automatic payout {payout_id}: {amount} {self.currency} for user {user_id}")
        if self.notifier is not None:
            self.notifier.notify_payout_processed(user_id, int(amount * 100), self.currency)
        return GeneratedPayout(payout_id, user_id, amount, self.currency, "completed")


def _days_between(start: datetime, end: datetime) -> int:
    # SQLite hands back naive datetimes
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return (end - start).days
