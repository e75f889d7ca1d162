from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from bonusmart.deps import get_current_user, get_store, read_json
from bonusmart.models.ledger import UserRecord
from bonusmart.services import balance as balance_service
from bonusmart.storage.base import LedgerStore

router = APIRouter()


class WithdrawRequest(BaseModel):
    order: str
    # bounded so the amount stays exact once quantized to hundredths
    sum: float = Field(allow_inf_nan=False, lt=1e15)


@router.get("/balance")
async def get_balance(
    user: UserRecord = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    """Current points and total withdrawn."""
    balance = await balance_service.get_balance(store, user.login)
    return ORJSONResponse({"current": float(balance.current), "withdrawn": float(balance.withdrawn)})


@router.post("/balance/withdraw")
async def withdraw(
    request: Request,
    user: UserRecord = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    """Spend points against an order number."""
    body = await read_json(request, WithdrawRequest)
    await balance_service.withdraw(store, user.login, body.order, body.sum)
    return ORJSONResponse({"order": body.order, "sum": body.sum})


@router.get("/balance/withdraw")
async def list_withdrawals(
    user: UserRecord = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    """Withdrawals of the current user, newest first."""
    withdrawals = await balance_service.list_withdrawals(store, user.login)
    if not withdrawals:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return ORJSONResponse([
        {"order": w.order, "sum": float(w.sum), "processed_at": w.processed_at.isoformat()}
        for w in withdrawals
    ])
