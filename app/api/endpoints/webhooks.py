from fastapi import APIRouter, Depends, Request

from app.core.dependencies import get_webhook_dispatcher
from app.services.webhooks import WebhookDispatcher

router = APIRouter()


@router.post("/payments")
async def receive_payment_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    """
    Stripe webhook endpoint.

    The signature is checked against the raw body before anything is
    applied. A bad signature or payload answers 400 and leaves the ledger
    untouched; a ledger failure answers 500 so Stripe redelivers.
    """
    raw_body = await request.body()
    signature = request.headers.get("stripe-signature") or request.headers.get("signature")

    event = dispatcher.gateway.verify_and_decode_webhook(raw_body, signature)
    await dispatcher.dispatch(event)

    return {"received": True}
