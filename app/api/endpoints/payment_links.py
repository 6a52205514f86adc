from fastapi import APIRouter, Depends, status

from app.core.dependencies import (
    get_current_user_id,
    get_payment_link_manager,
    require_ownership,
)
from app.schemas.payment_link import (
    PaymentLinkAction,
    PaymentLinkCreate,
    PaymentLinkCreateResponse,
    PaymentLinkDeactivationResponse,
    PaymentLinkStatusResponse,
)
from app.services.payment_links import NewPaymentLink, PaymentLinkManager

router = APIRouter()


@router.post(
    "", response_model=PaymentLinkCreateResponse, status_code=status.HTTP_201_CREATED
)
async def create_payment_link(
    body: PaymentLinkCreate,
    principal_id: str = Depends(get_current_user_id),
    manager: PaymentLinkManager = Depends(get_payment_link_manager),
):
    """
    Create a single-use payment link for the authenticated merchant.

    - **merchantUserId**: must be the caller
    - **amount**: minor units (2500 = 25.00)
    - **currency**: USD (default) or JMD; JMD links accept cards only
    """
    result = await manager.create(
        NewPaymentLink(
            merchant_user_id=body.merchant_user_id,
            amount=body.amount,
            currency=body.currency,
            description=body.description,
            customer_name=body.customer_name,
            customer_email=body.customer_email,
            due_date=body.due_date,
            task_details=body.task_details,
            payment_source=body.payment_source,
        ),
        principal_id=principal_id,
    )
    return PaymentLinkCreateResponse(
        id=result.id,
        url=result.url,
        status=result.status,
        transaction_id=result.transaction_id,
    )


@router.get("/{payment_link_id}", response_model=PaymentLinkStatusResponse)
async def get_payment_link_status(
    payment_link_id: str,
    principal_id: str = Depends(get_current_user_id),
    manager: PaymentLinkManager = Depends(get_payment_link_manager),
):
    """Local status of a payment link. Accepts either the link id or the transaction id."""
    transaction = await manager.get_status(payment_link_id, principal_id)
    return PaymentLinkStatusResponse.model_validate(transaction)


@router.post("/{payment_link_id}/cancel", response_model=PaymentLinkDeactivationResponse)
async def cancel_payment_link(
    payment_link_id: str,
    body: PaymentLinkAction,
    principal_id: str = Depends(get_current_user_id),
    manager: PaymentLinkManager = Depends(get_payment_link_manager),
):
    require_ownership(principal_id, body.user_id)
    result = await manager.cancel(payment_link_id, body.user_id)
    return PaymentLinkDeactivationResponse.model_validate(result)


@router.post("/{payment_link_id}/expire", response_model=PaymentLinkDeactivationResponse)
async def expire_payment_link(
    payment_link_id: str,
    body: PaymentLinkAction,
    principal_id: str = Depends(get_current_user_id),
    manager: PaymentLinkManager = Depends(get_payment_link_manager),
):
    require_ownership(principal_id, body.user_id)
    result = await manager.expire(payment_link_id, body.user_id)
    return PaymentLinkDeactivationResponse.model_validate(result)
