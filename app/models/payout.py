from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from app.database import Base
from app.models.transaction import utcnow

DEFAULT_RULE_ID = "default_rule"


class PayoutRule(Base):
    __tablename__ = "payout_rules"

    id = Column(String, primary_key=True)
    rule_name = Column(Text, nullable=False)
    first_transaction_delay_days = Column(Integer, nullable=False)
    subsequent_delay_days_min = Column(Integer, nullable=False)
    subsequent_delay_days_max = Column(Integer, nullable=False)
    minimum_payout_amount = Column(Numeric(12, 2), nullable=False)  # Major units
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Major units
    currency = Column(String(3), nullable=False, default="JMD")
    status = Column(String, nullable=False, default="pending")  # 'pending' | 'completed'
    payout_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True))
    stripe_payout_id = Column(String)
    bank_account = Column(String)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
