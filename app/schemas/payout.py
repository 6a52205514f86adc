from app.schemas.base import CamelModel


class GeneratedPayoutResponse(CamelModel):
    model_config = {"from_attributes": True}

    payout_id: str
    user_id: str
    amount: float  # Major units
    currency: str
    status: str


class GenerateAutomaticResponse(CamelModel):
    success: bool = True
    message: str
    payouts_generated: int
    results: list[GeneratedPayoutResponse]
