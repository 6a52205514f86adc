"""Push notifications through the Expo push service."""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.logging import app_logger
from app.services.ledger import LedgerStore


def format_amount(amount_minor: int, currency: str) -> str:
    """Render minor units the way the mobile app shows them ($25.00, JMD 5,000.00)."""
    major = amount_minor / 100
    if currency.upper() == "JMD":
        return f"JMD {major:,.2f}"
    return f"${major:,.2f}"


class ExpoPushClient:
    """Client for the Expo push API."""

    def __init__(
        self,
        url: str = settings.EXPO_PUSH_URL,
        timeout_seconds: int = settings.EXPO_PUSH_TIMEOUT_SECONDS,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> Tuple[list[dict[str, Any]] | None, str | None]:
        """
        Send one message to every token.

        Args:
            tokens: Expo push tokens (ExponentPushToken[...])
            title: Notification title
            body: Notification body
            data: Extra payload delivered to the app

        Returns:
            Tuple of (tickets, error_message)
            - On success: (tickets, None)
            - On failure: (None, error_message)
        """
        message = {
            "to": tokens,
            "title": title,
            "body": body,
            "data": data or {},
            "sound": "default",
            "priority": "default",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.url,
                    json=message,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException:
            return None, "Push request timed out"
        except httpx.HTTPStatusError as e:
            return None, f"Expo API error: {e.response.status_code} {e.response.text}"
        except httpx.RequestError as e:
            return None, f"Failed to connect to Expo push service: {str(e)}"
        except ValueError as e:
            return None, f"Failed to parse Expo push response: {str(e)}"

        tickets = payload.get("data") if isinstance(payload, dict) else None
        if isinstance(tickets, dict):
            tickets = [tickets]
        return tickets or [], None


@dataclass(slots=True)
class NotificationFailure:
    user_id: str
    title: str
    error: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationEmitter:
    """
    Fire-and-forget push delivery.

    Every notification runs as its own asyncio task with its own database
    session, so it outlives the request that triggered it and can never
    fail that request. Failures land in ``failures`` and the app log.
    """

    def __init__(
        self,
        push_client: ExpoPushClient,
        session_factory: async_sessionmaker[AsyncSession],
        max_failures: int = 100,
    ):
        self.push_client = push_client
        self.session_factory = session_factory
        self.failures: deque[NotificationFailure] = deque(maxlen=max_failures)
        self._tasks: set[asyncio.Task] = set()

    def emit(
        self, user_id: str, title: str, body: str, data: dict[str, Any] | None = None
    ) -> asyncio.Task:
        task = asyncio.create_task(self._deliver(user_id, title, body, data or {}))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding delivery."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def notify_payment_received(
        self,
        user_id: str,
        amount: int,
        currency: str,
        sender_name: str | None = None,
        merchant_name: str | None = None,
        transaction_id: str | None = None,
    ) -> asyncio.Task:
        formatted = format_amount(amount, currency)
        # Paying yourself should not read "from <your own name>"
        show_sender = bool(sender_name) and (
            not merchant_name or sender_name.lower() != merchant_name.lower()
        )
        body = (
            f"You received {formatted} from {sender_name}"
            if show_sender
            else f"You received {formatted}"
        )
        return self.emit(
            user_id,
            "Payment Received",
            body,
            {
                "type": "payment_received",
                "amount": amount,
                "currency": currency,
                "senderName": sender_name,
                "transactionId": transaction_id,
                "timestamp": _timestamp(),
            },
        )

    def notify_transaction_failed(
        self,
        user_id: str,
        reason: str | None = None,
        transaction_id: str | None = None,
    ) -> asyncio.Task:
        reason = reason or "Transaction failed"
        return self.emit(
            user_id,
            "Transaction Failed",
            reason,
            {
                "type": "transaction_failed",
                "reason": reason,
                "transactionId": transaction_id,
                "timestamp": _timestamp(),
            },
        )

    def notify_welcome(self, user_id: str, user_name: str | None = None) -> asyncio.Task:
        body = (
            f"Hi {user_name}! You're all set up and ready to start accepting payments."
            if user_name
            else "You're all set up and ready to start accepting payments!"
        )
        return self.emit(
            user_id,
            "Welcome to HandyPay",
            body,
            {"type": "welcome", "timestamp": _timestamp()},
        )

    def notify_payout_processed(self, user_id: str, amount: int, currency: str) -> asyncio.Task:
        formatted = format_amount(amount, currency)
        return self.emit(
            user_id,
            "Payout Processed",
            f"Your payout of {formatted} has been processed and sent to your bank account.",
            {
                "type": "payout_processed",
                "amount": amount,
                "currency": currency,
                "timestamp": _timestamp(),
            },
        )

    async def _deliver(
        self, user_id: str, title: str, body: str, data: dict[str, Any]
    ) -> None:
        try:
            async with self.session_factory() as session:
                ledger = LedgerStore(session)
                tokens = await ledger.list_active_push_tokens(user_id)
                if not tokens:
                    app_logger.info(f"No active push tokens for user {user_id}, skipping '{title}'")
                    return

                _, error = await self.push_client.send(tokens, title, body, data)
                if error:
                    self._record_failure(user_id, title, error)
                    return

                await ledger.touch_push_tokens(user_id)
                app_logger.info(f"Sent '{title}' to {len(tokens)} device(s) for user {user_id}")
        except Exception as e:
            self._record_failure(user_id, title, str(e))

    def _record_failure(self, user_id: str, title: str, error: str) -> None:
        self.failures.append(NotificationFailure(user_id=user_id, title=title, error=error))
        app_logger.warning(f"Push notification '{title}' for user {user_id} failed: {error}")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
