"""Apply verified Stripe events to the ledger."""
import json
from typing import Any, Awaitable, Callable

from app.core.constants import (
    PAYMENT_INTENT_TRANSACTION_PREFIX,
    PAYMENT_TYPE_DESTINATION_CHARGES,
)
from app.core.exceptions import UpstreamError, ValidationError
from app.core.logging import app_logger
from app.models import Transaction, TransactionStatus, User
from app.models.transaction import utcnow
from app.services.ledger import LedgerStore
from app.services.notifications import NotificationEmitter
from app.services.stripe_gateway import PaymentMethodDetails, StripeGateway, WebhookEvent


class WebhookDispatcher:
    """
    Route each event type to its ledger mutation.

    Writes are plain ``UPDATE ... WHERE <correlation id> = ?`` statements
    with no status guard, so redelivery converges on the same row state
    and a late failure event can overwrite a completion. Ledger errors
    propagate so Stripe retries the delivery; notification and
    enrichment failures never do.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        gateway: StripeGateway,
        notifier: NotificationEmitter,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.notifier = notifier
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "payment_intent.succeeded": self.handle_payment_intent_succeeded,
            "payment_intent.payment_failed": self.handle_payment_intent_failed,
            "checkout.session.completed": self.handle_checkout_session_completed,
            "invoice.payment_succeeded": self.handle_invoice_payment_succeeded,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
            "account.updated": self.handle_account_updated,
        }

    async def dispatch(self, event: WebhookEvent) -> bool:
        """Apply one event. Returns False for event types nobody handles."""
        handler = self._handlers.get(event.type)
        if handler is None:
            app_logger.info(
                f"Unhandled webhook event {event.type} ({event.id}, "
                f"object={event.payload.get('object')})"
            )
            return False

        if not isinstance(event.payload.get("id"), str):
            app_logger.warning(f"Webhook {event.type} ({event.id}) carries an object without an id")
            raise ValidationError("Malformed webhook payload")

        app_logger.info(f"Webhook received: {event.type} ({event.id})")
        await handler(event.payload)
        return True

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    async def handle_payment_intent_succeeded(self, intent: dict[str, Any]) -> None:
        intent_id = intent["id"]
        details = await self._payment_method_details(intent_id)

        transaction = await self.ledger.find_by_payment_intent_id(intent_id)
        if transaction is not None:
            values: dict[str, Any] = {
                "status": TransactionStatus.COMPLETED.value,
                **_method_columns(details),
            }
            already_completed = transaction.status == TransactionStatus.COMPLETED.value
            if not already_completed:
                values["completed_at"] = utcnow()
            notification = await self._received_notification(transaction, already_completed)

            await self.ledger.update_by_payment_intent_id(intent_id, **values)
            app_logger.info(f"Transaction {transaction.id} completed by payment intent {intent_id}")
            self._send(notification)
            return

        metadata = intent.get("metadata") or {}
        if metadata.get("paymentType") == PAYMENT_TYPE_DESTINATION_CHARGES:
            # Link checkouts are recorded by checkout.session.completed
            app_logger.info(
                f"Payment intent {intent_id} belongs to a payment link, "
                "waiting for checkout completion"
            )
            return

        user_id = metadata.get("handyproUserId")
        merchant = await self.ledger.get_user(user_id) if user_id else None
        if merchant is None:
            app_logger.warning(
                f"Payment intent {intent_id} succeeded with no known merchant "
                f"(handyproUserId={user_id!r}), not recorded"
            )
            return

        transaction = Transaction(
            id=f"{PAYMENT_INTENT_TRANSACTION_PREFIX}{intent_id}",
            user_id=merchant.id,
            type="received",
            amount=int(intent.get("amount") or 0),
            currency=(intent.get("currency") or "usd").upper(),
            description=intent.get("description") or "Payment received",
            status=TransactionStatus.COMPLETED.value,
            date=utcnow(),
            completed_at=utcnow(),
            stripe_payment_intent_id=intent_id,
            customer_name=metadata.get("customerName"),
            customer_email=metadata.get("customerEmail"),
            payment_method="card",
            metadata_json=json.dumps(metadata),
            **_method_columns(details),
        )
        notification = self._payment_received(transaction, merchant, transaction.customer_name)
        await self.ledger.insert_transaction(transaction)
        app_logger.info(f"Recorded payment intent {intent_id} as transaction {transaction.id}")
        self._send(notification)

    async def handle_payment_intent_failed(self, intent: dict[str, Any]) -> None:
        intent_id = intent["id"]
        details = await self._payment_method_details(intent_id)
        reason = details.failure_reason or _last_error_message(intent) or "Payment failed"

        transaction = await self.ledger.find_by_payment_intent_id(intent_id)
        if transaction is None:
            app_logger.info(f"No transaction for failed payment intent {intent_id}")
            return

        already_failed = transaction.status == TransactionStatus.FAILED.value
        await self.ledger.update_by_payment_intent_id(
            intent_id,
            status=TransactionStatus.FAILED.value,
            failed_at=utcnow(),
            failure_reason=reason,
            notes=f"Payment failed: {reason}",
            **_method_columns(details),
        )
        app_logger.info(f"Transaction {transaction.id} failed: {reason}")
        if not already_failed:
            self.notifier.notify_transaction_failed(transaction.user_id, reason, transaction.id)

    # ------------------------------------------------------------------
    # Payment links (checkout sessions and invoices)
    # ------------------------------------------------------------------

    async def handle_checkout_session_completed(self, session: dict[str, Any]) -> None:
        payment_link_id = session.get("payment_link")
        if not payment_link_id or session.get("payment_status") != "paid":
            app_logger.info(
                f"Checkout session {session.get('id')} ignored "
                f"(payment_status={session.get('payment_status')}, payment_link={payment_link_id})"
            )
            return

        transaction = await self._transaction_for_link(payment_link_id)
        if transaction is None:
            return

        metadata = _metadata(transaction)
        if metadata.get("paymentType") == PAYMENT_TYPE_DESTINATION_CHARGES:
            notes = (
                "Payment completed via destination charges - funds automatically "
                f"transferred to {metadata.get('connectedAccountId')}"
            )
        else:
            notes = f"Payment completed via checkout session {session.get('id')}"

        values: dict[str, Any] = {
            "status": TransactionStatus.COMPLETED.value,
            "stripe_checkout_session_id": session.get("id"),
            "notes": notes,
        }
        if session.get("payment_intent"):
            values["stripe_payment_intent_id"] = session["payment_intent"]
        customer = session.get("customer_details") or {}
        if customer.get("name") and not transaction.customer_name:
            values["customer_name"] = customer["name"]
        if customer.get("email") and not transaction.customer_email:
            values["customer_email"] = customer["email"]

        already_completed = transaction.status == TransactionStatus.COMPLETED.value
        if not already_completed:
            values["completed_at"] = utcnow()
        notification = await self._received_notification(
            transaction, already_completed, sender_name=values.get("customer_name")
        )

        await self.ledger.update_by_payment_link_id(payment_link_id, **values)
        app_logger.info(f"Payment link transaction {transaction.id} completed by checkout {session.get('id')}")
        self._send(notification)

    async def handle_invoice_payment_succeeded(self, invoice: dict[str, Any]) -> None:
        payment_link_id = invoice.get("payment_link")
        if not payment_link_id:
            app_logger.info(f"Invoice {invoice.get('id')} has no payment link, ignored")
            return

        transaction = await self._transaction_for_link(payment_link_id)
        if transaction is None:
            return

        intent_id = invoice.get("payment_intent")
        details = await self._payment_method_details(intent_id) if intent_id else PaymentMethodDetails()

        metadata = _metadata(transaction)
        if metadata.get("paymentType") == PAYMENT_TYPE_DESTINATION_CHARGES:
            notes = (
                "Payment completed via destination charges invoice - funds automatically "
                f"transferred to {metadata.get('connectedAccountId')}"
            )
        else:
            notes = f"Payment completed via invoice {invoice.get('id')}"

        values: dict[str, Any] = {
            "status": TransactionStatus.COMPLETED.value,
            "stripe_invoice_id": invoice.get("id"),
            "notes": notes,
            **_method_columns(details),
        }
        if intent_id:
            values["stripe_payment_intent_id"] = intent_id

        already_completed = transaction.status == TransactionStatus.COMPLETED.value
        if not already_completed:
            values["completed_at"] = utcnow()
        notification = await self._received_notification(transaction, already_completed)

        await self.ledger.update_by_payment_link_id(payment_link_id, **values)
        app_logger.info(f"Payment link transaction {transaction.id} completed by invoice {invoice.get('id')}")
        self._send(notification)

    async def handle_invoice_payment_failed(self, invoice: dict[str, Any]) -> None:
        payment_link_id = invoice.get("payment_link")
        if not payment_link_id:
            app_logger.info(f"Invoice {invoice.get('id')} has no payment link, ignored")
            return

        transaction = await self._transaction_for_link(payment_link_id)
        if transaction is None:
            return

        intent_id = invoice.get("payment_intent")
        details = await self._payment_method_details(intent_id) if intent_id else PaymentMethodDetails()
        reason = details.failure_reason or "Payment failed"
        attempt = invoice.get("attempt_count") or 1

        already_failed = transaction.status == TransactionStatus.FAILED.value
        await self.ledger.update_by_payment_link_id(
            payment_link_id,
            status=TransactionStatus.FAILED.value,
            failed_at=utcnow(),
            stripe_invoice_id=invoice.get("id"),
            failure_reason=reason,
            notes=f"Payment failed via invoice {invoice.get('id')} (attempt {attempt})",
            **_method_columns(details),
        )
        app_logger.info(f"Payment link transaction {transaction.id} failed (attempt {attempt}): {reason}")
        if not already_failed:
            self.notifier.notify_transaction_failed(transaction.user_id, reason, transaction.id)

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    async def handle_account_updated(self, account: dict[str, Any]) -> None:
        account_id = account["id"]
        user = await self.ledger.get_user_by_stripe_account(account_id)
        if user is None:
            app_logger.info(f"No user found for Stripe account {account_id}")
            return

        if not account.get("charges_enabled"):
            app_logger.info(
                f"Stripe account {account_id} updated, charges not enabled yet "
                f"(details_submitted={account.get('details_submitted')})"
            )
            return

        if user.stripe_onboarding_completed:
            return

        await self.ledger.update_user(user.id, stripe_onboarding_completed=True)
        app_logger.info(f"Onboarding completed for user {user.id} (account {account_id})")
        self.notifier.notify_welcome(user.id, user.full_name or user.first_name)

    # ------------------------------------------------------------------

    async def _transaction_for_link(self, payment_link_id: str) -> Transaction | None:
        transaction = await self.ledger.find_by_payment_link_id(payment_link_id)
        if transaction is None:
            app_logger.warning(f"No transaction found for payment link {payment_link_id}")
        return transaction

    async def _payment_method_details(self, payment_intent_id: str) -> PaymentMethodDetails:
        try:
            return await self.gateway.get_payment_method_details(payment_intent_id)
        except UpstreamError as e:
            app_logger.warning(
                f"Could not retrieve payment method details for {payment_intent_id}: {e.message}"
            )
            return PaymentMethodDetails()

    async def _received_notification(
        self,
        transaction: Transaction,
        already_completed: bool,
        sender_name: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Prepare the payment-received push ahead of the status write.

        The merchant lookup happens here so a failed read aborts the
        delivery before anything commits and Stripe's retry still notifies.
        A redelivery of an already completed payment gets no push.
        """
        if already_completed:
            return None
        merchant = await self.ledger.get_user(transaction.user_id)
        return self._payment_received(
            transaction, merchant, sender_name or transaction.customer_name
        )

    @staticmethod
    def _payment_received(
        transaction: Transaction, merchant: User | None, sender_name: str | None
    ) -> dict[str, Any]:
        return {
            "user_id": transaction.user_id,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "sender_name": sender_name,
            "merchant_name": merchant.display_name if merchant else None,
            "transaction_id": transaction.id,
        }

    def _send(self, notification: dict[str, Any] | None) -> None:
        if notification is not None:
            self.notifier.notify_payment_received(**notification)


def _method_columns(details: PaymentMethodDetails) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    if details.type:
        columns["payment_method_type"] = details.type
    if details.card_brand:
        columns["card_brand"] = details.card_brand
    if details.card_last4:
        columns["card_last4"] = details.card_last4
    return columns


def _metadata(transaction: Transaction) -> dict[str, Any]:
    if not transaction.metadata_json:
        return {}
    try:
        return json.loads(transaction.metadata_json)
    except ValueError:
        return {}


def _last_error_message(intent: dict[str, Any]) -> str | None:
    error = intent.get("last_payment_error") or {}
    return error.get("message") or error.get("decline_code")
