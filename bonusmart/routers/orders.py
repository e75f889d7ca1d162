from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import ORJSONResponse, PlainTextResponse

from bonusmart.deps import get_current_user, get_store, get_worker, require_content_type
from bonusmart.models.ledger import UserRecord
from bonusmart.services import orders as orders_service
from bonusmart.storage.base import LedgerStore
from bonusmart.worker.accrual import AccrualWorker

router = APIRouter()


@router.post("/orders")
async def upload_order(
    request: Request,
    user: UserRecord = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
    worker: AccrualWorker = Depends(get_worker),
):
    """Upload an order number (text/plain body) for accrual."""
    require_content_type(request, "text/plain")
    number = (await request.body()).decode("utf-8", errors="replace").strip()
    created = await orders_service.submit_order(store, worker, user.login, number)
    if not created:
        return PlainTextResponse("Order already uploaded", status_code=status.HTTP_200_OK)
    return PlainTextResponse("Order accepted", status_code=status.HTTP_202_ACCEPTED)


@router.get("/orders")
async def list_orders(
    user: UserRecord = Depends(get_current_user),
    store: LedgerStore = Depends(get_store),
):
    """Orders of the current user, newest first."""
    orders = await orders_service.list_orders(store, user.login)
    if not orders:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return ORJSONResponse([orders_service.order_to_json(o) for o in orders])
