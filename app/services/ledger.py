"""Ledger store: every read and write the services make against the database.

Each mutating call is a single statement followed by a commit; nothing
here opens a transaction that spans several calls.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.constants import INCOMING_TRANSACTION_TYPES
from app.core.exceptions import LedgerError
from app.models import (
    BannedAccount,
    Payout,
    PayoutRule,
    PushToken,
    Transaction,
    TransactionStatus,
    User,
)
from app.models.transaction import utcnow


class LedgerStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ----------------------------------------------------------- users

    async def get_user(self, user_id: str) -> User | None:
        return await self._scalar(select(User).where(User.id == user_id))

    async def get_user_by_stripe_account(self, account_id: str) -> User | None:
        return await self._scalar(select(User).where(User.stripe_account_id == account_id))

    async def get_user_by_provider(
        self, apple_user_id: str | None = None, google_user_id: str | None = None
    ) -> User | None:
        if apple_user_id:
            return await self._scalar(select(User).where(User.apple_user_id == apple_user_id))
        if google_user_id:
            return await self._scalar(select(User).where(User.google_user_id == google_user_id))
        return None

    async def add_user(self, user: User) -> User:
        self.session.add(user)
        await self._commit()
        return user

    async def update_user(self, user_id: str, **values: Any) -> int:
        values.setdefault("updated_at", utcnow())
        return await self._write(update(User).where(User.id == user_id).values(**values))

    async def delete_user_cascade(self, user_id: str) -> None:
        """Remove the user and everything that references it, then commit once."""
        try:
            await self.session.execute(delete(Transaction).where(Transaction.user_id == user_id))
            await self.session.execute(delete(Payout).where(Payout.user_id == user_id))
            await self.session.execute(delete(PushToken).where(PushToken.user_id == user_id))
            await self.session.execute(
                update(BannedAccount).where(BannedAccount.user_id == user_id).values(user_id=None)
            )
            await self.session.execute(delete(User).where(User.id == user_id))
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise LedgerError(f"Failed to delete user {user_id}") from e
        await self._commit()

    async def add_ban(self, ban: BannedAccount) -> BannedAccount:
        self.session.add(ban)
        await self._commit()
        return ban

    async def get_active_ban_for_email(self, email: str) -> BannedAccount | None:
        return await self._scalar(
            select(BannedAccount)
            .where(func.lower(BannedAccount.email) == email.lower(), BannedAccount.is_active.is_(True))
            .limit(1)
        )

    # ---------------------------------------------------- transactions

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        return await self._scalar(select(Transaction).where(Transaction.id == transaction_id))

    async def find_by_payment_link_id(self, payment_link_id: str) -> Transaction | None:
        return await self._scalar(
            select(Transaction).where(Transaction.stripe_payment_link_id == payment_link_id)
        )

    async def find_by_payment_intent_id(self, payment_intent_id: str) -> Transaction | None:
        return await self._scalar(
            select(Transaction).where(Transaction.stripe_payment_intent_id == payment_intent_id)
        )

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        await self._commit()
        return transaction

    async def update_transaction(self, transaction_id: str, **values: Any) -> int:
        return await self._update_transactions(Transaction.id == transaction_id, values)

    async def update_by_payment_link_id(self, payment_link_id: str, **values: Any) -> int:
        return await self._update_transactions(
            Transaction.stripe_payment_link_id == payment_link_id, values
        )

    async def update_by_payment_intent_id(self, payment_intent_id: str, **values: Any) -> int:
        return await self._update_transactions(
            Transaction.stripe_payment_intent_id == payment_intent_id, values
        )

    async def list_transactions(self, user_id: str) -> Sequence[Transaction]:
        return await self._scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
        )

    async def earliest_transaction_date(self, user_id: str) -> datetime | None:
        return await self._scalar(
            select(func.min(Transaction.date)).where(Transaction.user_id == user_id)
        )

    async def completed_incoming_totals(self) -> dict[str, int]:
        """Completed incoming amounts per user, in minor units."""
        rows = await self._rows(
            select(Transaction.user_id, func.sum(Transaction.amount))
            .where(
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.type.in_(INCOMING_TRANSACTION_TYPES),
            )
            .group_by(Transaction.user_id)
        )
        return {user_id: int(total or 0) for user_id, total in rows}

    # ----------------------------------------------------- push tokens

    async def list_active_push_tokens(self, user_id: str) -> list[str]:
        tokens = await self._scalars(
            select(PushToken.token).where(
                PushToken.user_id == user_id, PushToken.is_active.is_(True)
            )
        )
        return list(tokens)

    async def touch_push_tokens(self, user_id: str) -> int:
        now = utcnow()
        return await self._write(
            update(PushToken)
            .where(PushToken.user_id == user_id, PushToken.is_active.is_(True))
            .values(last_used=now, updated_at=now)
        )

    # --------------------------------------------------------- payouts

    async def get_payout_rule(self, rule_id: str) -> PayoutRule | None:
        return await self._scalar(select(PayoutRule).where(PayoutRule.id == rule_id))

    async def get_active_payout_rule(self) -> PayoutRule | None:
        return await self._scalar(
            select(PayoutRule).where(PayoutRule.is_active.is_(True)).limit(1)
        )

    async def add_payout_rule(self, rule: PayoutRule) -> PayoutRule:
        self.session.add(rule)
        await self._commit()
        return rule

    async def completed_payout_totals(self) -> dict[str, Decimal]:
        """Completed payout amounts per user, in major units."""
        rows = await self._rows(
            select(Payout.user_id, func.sum(Payout.amount))
            .where(Payout.status == "completed")
            .group_by(Payout.user_id)
        )
        return {user_id: Decimal(str(total or 0)) for user_id, total in rows}

    async def latest_payout_date(self, user_id: str) -> datetime | None:
        return await self._scalar(
            select(func.max(Payout.payout_date)).where(Payout.user_id == user_id)
        )

    async def add_payout(self, payout: Payout) -> Payout:
        self.session.add(payout)
        await self._commit()
        return payout

    async def update_payout(self, payout_id: str, **values: Any) -> int:
        values.setdefault("updated_at", utcnow())
        return await self._write(update(Payout).where(Payout.id == payout_id).values(**values))

    # --------------------------------------------------------- helpers

    async def _update_transactions(self, condition, values: dict[str, Any]) -> int:
        values.setdefault("updated_at", utcnow())
        return await self._write(update(Transaction).where(condition).values(**values))

    async def _write(self, statement) -> int:
        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise LedgerError("Database write failed") from e
        await self._commit()
        return result.rowcount

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise LedgerError("Database write failed") from e

    async def _scalar(self, statement):
        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as e:
            raise LedgerError("Database query failed") from e
        return result.scalar_one_or_none()

    async def _scalars(self, statement):
        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as e:
            raise LedgerError("Database query failed") from e
        return result.scalars().all()

    async def _rows(self, statement):
        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as e:
            raise LedgerError("Database query failed") from e
        return result.all()
