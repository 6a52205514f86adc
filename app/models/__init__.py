from app.database import Base

# Import all models here so Base.metadata knows about them
from app.models.user import BannedAccount, User
from app.models.transaction import Transaction, TransactionStatus
from app.models.payout import Payout, PayoutRule
from app.models.push_token import PushToken

__all__ = [
    "Base",
    "BannedAccount",
    "Payout",
    "PayoutRule",
    "PushToken",
    "Transaction",
    "TransactionStatus",
    "User",
]
