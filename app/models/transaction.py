import enum
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String, nullable=False)  # 'payment_link' | 'received' | ...
    amount = Column(BigInteger, nullable=False)  # Stored as minor units (cents)
    currency = Column(String(3), nullable=False, default="USD")
    description = Column(Text, nullable=False)
    merchant = Column(Text)

    status = Column(String, nullable=False, default=TransactionStatus.PENDING.value)
    date = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Processor correlation ids
    stripe_payment_intent_id = Column(String, unique=True, index=True)
    stripe_invoice_id = Column(String)
    stripe_payment_link_id = Column(String, unique=True, index=True)
    stripe_checkout_session_id = Column(String)

    customer_name = Column(Text)
    customer_email = Column(Text)
    customer_phone = Column(Text)

    payment_method = Column(String)  # 'payment_link' | 'qr_code' | 'card'
    payment_method_type = Column(String)
    card_brand = Column(String)
    card_last4 = Column(String(4))
    failure_reason = Column(Text)

    metadata_json = Column("metadata", Text)  # JSON string
    notes = Column(Text)

    expires_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="transactions")
