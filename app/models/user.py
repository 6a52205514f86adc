from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.transaction import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, index=True)
    full_name = Column(Text)
    first_name = Column(Text)
    last_name = Column(Text)

    auth_provider = Column(String, nullable=False)
    # A user may be linked to both providers at once
    apple_user_id = Column(String, unique=True)
    google_user_id = Column(String, unique=True)

    stripe_account_id = Column(String, unique=True, index=True)
    stripe_onboarding_completed = Column(Boolean, nullable=False, default=False)

    is_banned = Column(Boolean, nullable=False, default=False)
    ban_reason = Column(Text)
    banned_at = Column(DateTime(timezone=True))

    member_since = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    transactions = relationship("Transaction", back_populates="user")

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class BannedAccount(Base):
    """Ban record that can outlive the user row it was created for."""

    __tablename__ = "banned_accounts"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    stripe_account_id = Column(String, index=True)
    email = Column(String, index=True)
    ban_reason = Column(Text, nullable=False)
    ban_type = Column(String, nullable=False)  # 'manual' | 'fraud' | 'abuse' | 'persistent'
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    banned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    unbanned_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
