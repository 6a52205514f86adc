"""Payment-link lifecycle: create, cancel, expire and look up link-backed transactions."""
import json
from dataclasses import dataclass
from datetime import datetime

from app.core.constants import (
    DEFAULT_CURRENCY,
    DEFAULT_PAYMENT_SOURCE,
    PAYMENT_LINK_TRANSACTION_PREFIX,
    PAYMENT_TYPE_DESTINATION_CHARGES,
    QR_PAYMENT_SOURCE,
    SUPPORTED_CURRENCIES,
)
from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    LedgerError,
    NoProcessorAccountError,
    NotFoundError,
    ValidationError,
)
from app.core.logging import app_logger
from app.models import Transaction, TransactionStatus
from app.models.transaction import utcnow
from app.services.ledger import LedgerStore
from app.services.stripe_gateway import PaymentLinkRequest, StripeGateway


@dataclass(slots=True)
class NewPaymentLink:
    merchant_user_id: str
    amount: int  # Minor units
    currency: str | None = None
    description: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    due_date: datetime | None = None
    task_details: str | None = None
    payment_source: str | None = None


@dataclass(slots=True)
class PaymentLinkResult:
    id: str
    url: str
    status: str
    transaction_id: str


@dataclass(slots=True)
class PaymentLinkDeactivation:
    id: str
    active: bool
    transaction_id: str
    status: str
    url: str | None = None


def transaction_id_for_link(payment_link_id: str) -> str:
    if payment_link_id.startswith(PAYMENT_LINK_TRANSACTION_PREFIX):
        return payment_link_id
    return f"{PAYMENT_LINK_TRANSACTION_PREFIX}{payment_link_id}"


class PaymentLinkManager:
    def __init__(self, ledger: LedgerStore, gateway: StripeGateway):
        self.ledger = ledger
        self.gateway = gateway

    async def create(self, request: NewPaymentLink, principal_id: str | None = None) -> PaymentLinkResult:
        """
        Create a single-use payment link and record it as a pending transaction.

        The processor link is created first. If recording it fails the link
        is left orphaned on the processor side and the error is only logged.

        Raises:
            ValidationError: missing merchant, non-positive amount, unsupported currency
            ForbiddenError: caller is not the merchant, or the merchant is banned
            NoProcessorAccountError: merchant has no connected account
            AccountNotReadyError: connected account cannot take charges yet
            UpstreamError: processor rejected the link
        """
        if not request.merchant_user_id:
            raise ValidationError("Missing required fields: merchantUserId, amount")
        if request.amount is None or request.amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if principal_id is not None and principal_id != request.merchant_user_id:
            raise ForbiddenError()

        currency = (request.currency or DEFAULT_CURRENCY).upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValidationError(f"Currency not supported: {currency}")

        merchant = await self.ledger.get_user(request.merchant_user_id)
        if merchant is not None and merchant.is_banned:
            raise ForbiddenError("Account is banned")
        if merchant is None or not merchant.stripe_account_id:
            raise NoProcessorAccountError()

        payment_source = request.payment_source or DEFAULT_PAYMENT_SOURCE
        metadata = {
            "handyproUserId": request.merchant_user_id,
            "customerName": request.customer_name,
            "customerEmail": request.customer_email,
            "taskDetails": request.task_details,
            "dueDate": request.due_date.isoformat() if request.due_date else None,
            "originalAmount": str(request.amount),
            "originalCurrency": currency,
            "paymentType": PAYMENT_TYPE_DESTINATION_CHARGES,
            "connectedAccountId": merchant.stripe_account_id,
            "paymentSource": payment_source,
        }
        # Stripe metadata values must be strings
        metadata = {key: value for key, value in metadata.items() if value is not None}

        link = await self.gateway.create_payment_link(
            PaymentLinkRequest(
                destination_account_id=merchant.stripe_account_id,
                amount=request.amount,
                currency=currency,
                description=request.description or "Payment Link",
                metadata=metadata,
                task_details=request.task_details,
                merchant_name=merchant.display_name or None,
                collect_customer=bool(request.customer_email),
            )
        )

        transaction_id = transaction_id_for_link(link.id)
        transaction = Transaction(
            id=transaction_id,
            user_id=request.merchant_user_id,
            type="payment_link",
            amount=request.amount,
            currency=currency,
            description=request.description or "Payment Link",
            merchant=merchant.display_name or None,
            status=TransactionStatus.PENDING.value,
            date=utcnow(),
            stripe_payment_link_id=link.id,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            payment_method="qr_code" if payment_source == QR_PAYMENT_SOURCE else "payment_link",
            metadata_json=json.dumps(metadata),
            expires_at=request.due_date,
        )
        try:
            await self.ledger.insert_transaction(transaction)
        except LedgerError as e:
            app_logger.error(
                f"Orphaned payment link {link.id} for user {request.merchant_user_id}: "
                f"failed to record transaction {transaction_id}: {e.__cause__ or e}"
            )
        else:
            app_logger.info(
                f"Created payment link {link.id} ({request.amount} {currency}) "
                f"for user {request.merchant_user_id}"
            )

        return PaymentLinkResult(
            id=link.id,
            url=link.url,
            status="open" if link.active else "inactive",
            transaction_id=transaction_id,
        )

    async def cancel(self, identifier: str, user_id: str) -> PaymentLinkDeactivation:
        """
        Cancel a pending payment request on behalf of its owner.

        Raises:
            NotFoundError: no transaction matches the identifier
            ForbiddenError: the transaction belongs to someone else
            InvalidStateError: the transaction is no longer pending
        """
        transaction = await self._owned_transaction(identifier, user_id)
        if TransactionStatus(transaction.status).is_terminal:
            raise InvalidStateError(transaction.status)

        if not transaction.stripe_payment_link_id:
            await self.ledger.update_transaction(
                transaction.id,
                status=TransactionStatus.CANCELLED.value,
                notes="Transaction cancelled by user",
            )
            app_logger.info(f"Cancelled transaction {transaction.id} for user {user_id}")
            return PaymentLinkDeactivation(
                id=transaction.id,
                active=False,
                transaction_id=transaction.id,
                status=TransactionStatus.CANCELLED.value,
            )

        # The processor is the source of truth; cancel there first
        link = await self.gateway.cancel_payment_link(transaction.stripe_payment_link_id)
        await self._record_deactivation(
            transaction, user_id, notes="Payment link cancelled by user"
        )
        app_logger.info(f"Cancelled payment link {link.id} for user {user_id}")
        return PaymentLinkDeactivation(
            id=link.id,
            active=link.active,
            transaction_id=transaction.id,
            status=TransactionStatus.CANCELLED.value,
            url=link.url,
        )

    async def expire(self, identifier: str, user_id: str) -> PaymentLinkDeactivation:
        """
        Deactivate a payment link on the processor regardless of its local state.

        A still-pending transaction is marked cancelled and gets its expiry
        stamped; terminal transactions keep their status.

        Raises:
            InvalidStateError: the transaction has no payment link attached
        """
        transaction = await self._owned_transaction(identifier, user_id)
        if not transaction.stripe_payment_link_id:
            raise InvalidStateError(
                transaction.status, message="Transaction has no payment link to expire"
            )

        link = await self.gateway.deactivate_payment_link(transaction.stripe_payment_link_id)

        status = transaction.status
        if status == TransactionStatus.PENDING.value:
            await self._record_deactivation(
                transaction, user_id, notes="Payment link expired", expires_at=utcnow()
            )
            status = TransactionStatus.CANCELLED.value
        app_logger.info(f"Expired payment link {link.id} for user {user_id}")
        return PaymentLinkDeactivation(
            id=link.id,
            active=link.active,
            transaction_id=transaction.id,
            status=status,
            url=link.url,
        )

    async def get_status(self, identifier: str, user_id: str) -> Transaction:
        return await self._owned_transaction(identifier, user_id)

    async def resolve(self, identifier: str) -> Transaction | None:
        """
        Find the transaction behind a payment-link identifier.

        Clients send either the local id (``plink_<link id>``) or the bare
        processor link id, and older rows were keyed differently, so try in
        order: exact id, processor link id, link id with the prefix stripped.
        """
        transaction = await self.ledger.get_transaction(identifier)
        if transaction is not None:
            return transaction

        transaction = await self.ledger.find_by_payment_link_id(identifier)
        if transaction is not None:
            return transaction

        if identifier.startswith(PAYMENT_LINK_TRANSACTION_PREFIX):
            return await self.ledger.find_by_payment_link_id(
                identifier.removeprefix(PAYMENT_LINK_TRANSACTION_PREFIX)
            )
        return None

    async def _owned_transaction(self, identifier: str, user_id: str) -> Transaction:
        if not identifier or not user_id:
            raise ValidationError("Missing required fields: paymentLinkId, userId")

        transaction = await self.resolve(identifier)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        if transaction.user_id != user_id:
            raise ForbiddenError()
        return transaction

    async def _record_deactivation(self, transaction: Transaction, user_id: str, **values) -> None:
        try:
            await self.ledger.update_transaction(
                transaction.id, status=TransactionStatus.CANCELLED.value, **values
            )
        except LedgerError as e:
            # The link is already inactive on the processor side
            app_logger.error(
                f"Payment link {transaction.stripe_payment_link_id} deactivated for user "
                f"{user_id} but transaction {transaction.id} was not updated: {e.__cause__ or e}"
            )
