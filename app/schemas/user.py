from datetime import datetime

from app.schemas.base import CamelModel


class UserSync(CamelModel):
    """Profile pushed by the app right after the OAuth sign-in."""

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


class UserSyncResponse(CamelModel):
    success: bool = True
    message: str
    user_id: str
    existing_account: bool = False


class MessageResponse(CamelModel):
    success: bool = True
    message: str
