from __future__ import annotations

from fastapi import APIRouter, Depends

from adforge.deps import get_ledger
from adforge.schemas.credits import CreditStatusResponse
from adforge.security import require_internal_api_token
from adforge.services.credits import CreditLedger

router = APIRouter(prefix="/credits", tags=["credits"], dependencies=[Depends(require_internal_api_token)])


@router.get("/{user_id}", response_model=CreditStatusResponse)
async def credit_status(user_id: str, ledger: CreditLedger = Depends(get_ledger)) -> CreditStatusResponse:
    current = await ledger.status(user_id)
    return CreditStatusResponse(
        userId=user_id,
        used=current.used,
        limit=current.limit,
        remaining=current.remaining,
        reserved=current.reserved,
    )
