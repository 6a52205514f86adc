from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_account_service, get_current_user_id, require_ownership
from app.schemas.user import MessageResponse, UserSync, UserSyncResponse
from app.services.accounts import AccountService, UserProfile

router = APIRouter()


@router.post("/sync", response_model=UserSyncResponse)
async def sync_user(
    body: UserSync,
    service: AccountService = Depends(get_account_service),
):
    """
    Sync a user right after OAuth sign-in.

    No bearer token is required: the app calls this before it holds a
    session. If the Apple or Google id already belongs to another user,
    that user's id is returned with ``existingAccount: true``.
    """
    result = await service.sync_user(
        UserProfile(
            id=body.id,
            auth_provider=body.auth_provider,
            member_since=body.member_since,
            email=body.email,
            full_name=body.full_name,
            first_name=body.first_name,
            last_name=body.last_name,
            apple_user_id=body.apple_user_id,
            google_user_id=body.google_user_id,
            stripe_account_id=body.stripe_account_id,
            stripe_onboarding_completed=body.stripe_onboarding_completed,
        )
    )
    if result.existing_account:
        message = "Provider linked to existing account"
    else:
        message = f"User {'created' if result.created else 'updated'} successfully"
    return UserSyncResponse(
        message=message, user_id=result.user_id, existing_account=result.existing_account
    )


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    ban_reason: str | None = Query(None, alias="banReason"),
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    """Delete the caller's account and all related data, optionally leaving a ban record."""
    require_ownership(principal_id, user_id)
    await service.delete_user(user_id, ban_reason=ban_reason)
    return MessageResponse(message=f"User {user_id} and all related data deleted successfully")
