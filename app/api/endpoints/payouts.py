from fastapi import APIRouter, Depends

from app.core.dependencies import get_payout_scheduler
from app.schemas.payout import GenerateAutomaticResponse, GeneratedPayoutResponse
from app.schemas.user import MessageResponse
from app.services.payouts import PayoutScheduler

router = APIRouter()


@router.post("/rules/init", response_model=MessageResponse)
async def init_payout_rules(scheduler: PayoutScheduler = Depends(get_payout_scheduler)):
    await scheduler.init_rules()
    return MessageResponse(message="Payout rules initialized")


@router.post("/generate-automatic", response_model=GenerateAutomaticResponse)
async def generate_automatic_payouts(
    scheduler: PayoutScheduler = Depends(get_payout_scheduler),
):
    """Run the automatic payout job. Called by the scheduler (cron)."""
    results = await scheduler.generate_automatic()
    return GenerateAutomaticResponse(
        message=f"Processed {len(results)} automatic payouts",
        payouts_generated=len(results),
        results=[GeneratedPayoutResponse.model_validate(r) for r in results],
    )
