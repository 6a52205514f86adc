from fastapi import APIRouter, Depends

from app.core.dependencies import get_current_user_id, get_ledger, require_ownership
from app.schemas.transaction import TransactionListResponse, TransactionResponse
from app.services.ledger import LedgerStore

router = APIRouter()


@router.get("/{user_id}", response_model=TransactionListResponse)
async def list_transactions(
    user_id: str,
    principal_id: str = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger),
):
    """
    List all transactions of a user, newest first.

    Callers can only list their own transactions. Amounts are returned
    in major units (stored 2500 is returned as 25.0).
    """
    require_ownership(principal_id, user_id)

    transactions = await ledger.list_transactions(user_id)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=len(transactions),
    )
