from fastapi import APIRouter, Depends

from app.core.dependencies import get_account_service, get_current_user_id, require_ownership
from app.schemas.stripe import (
    AccountLinkCreate,
    AccountLinkResponse,
    AccountStatusResponse,
    BalanceItem,
    BalanceResponse,
    CompleteOnboardingRequest,
    OnboardingResponse,
    ProcessorPayout,
    ProcessorPayoutList,
    UserAccountResponse,
)
from app.services.accounts import AccountLinkRequest, AccountService
from app.services.stripe_gateway import AccountStatus

router = APIRouter()


def _status_response(status: AccountStatus) -> AccountStatusResponse:
    return AccountStatusResponse(
        id=status.id,
        charges_enabled=status.charges_enabled,
        payouts_enabled=status.payouts_enabled,
        details_submitted=status.details_submitted,
        requirements=status.requirements,
        onboarding_complete=status.onboarding_complete,
    )


@router.post("/account-links", response_model=AccountLinkResponse)
async def create_account_link(
    body: AccountLinkCreate,
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    """
    Create the caller's connected account if needed and return a hosted link.

    Returns an onboarding link, or an account update link once the account
    is fully onboarded. Invalid redirect URLs fall back to the defaults.
    """
    require_ownership(principal_id, body.user_id)
    result = await service.create_account_link(
        AccountLinkRequest(
            user_id=body.user_id,
            refresh_url=body.refresh_url,
            return_url=body.return_url,
            account_id=body.account_id,
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
        )
    )
    return AccountLinkResponse(account_id=result.account_id, url=result.url, link_type=result.link_type)


@router.post("/complete-onboarding", response_model=OnboardingResponse)
async def complete_onboarding(
    body: CompleteOnboardingRequest,
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    require_ownership(principal_id, body.user_id)
    result = await service.complete_onboarding(body.user_id, body.stripe_account_id)
    message = (
        "Onboarding completed successfully"
        if result.completed
        else "Onboarding not yet complete. Please complete all required information in Stripe."
    )
    return OnboardingResponse(
        success=result.completed,
        message=message,
        user_id=result.user_id,
        stripe_account_id=result.account_id,
        account_status=_status_response(result.status),
    )


@router.get("/account-status/{account_id}", response_model=AccountStatusResponse)
async def get_account_status(
    account_id: str,
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    return _status_response(await service.get_account_status(account_id))


@router.get("/user-account/{user_id}", response_model=UserAccountResponse)
async def get_user_account(
    user_id: str,
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    require_ownership(principal_id, user_id)
    user = await service.get_user_account(user_id)
    return UserAccountResponse.model_validate(user)


@router.get("/balance/{user_id}", response_model=BalanceResponse)
async def get_balance(
    user_id: str,
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    """Available connected-account balance per currency, in major units."""
    require_ownership(principal_id, user_id)
    balances = await service.get_balance(user_id)
    return BalanceResponse(
        user_id=user_id,
        balances=[BalanceItem(amount=b.amount, currency=b.currency) for b in balances],
    )


@router.get("/payouts/{user_id}", response_model=ProcessorPayoutList)
async def list_payouts(
    user_id: str,
    principal_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    """The 20 most recent bank payouts of the user's connected account."""
    require_ownership(principal_id, user_id)
    payouts = await service.list_payouts(user_id)
    return ProcessorPayoutList(payouts=[ProcessorPayout.from_stripe(p) for p in payouts])
