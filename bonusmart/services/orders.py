"""Order submission and listing."""

from typing import Any

from bonusmart.core.exceptions import ConflictError, UnprocessableError
from bonusmart.core.logging import get_logger
from bonusmart.core.luhn import is_valid_order_number
from bonusmart.models.ledger import OrderRecord, OrderStatus
from bonusmart.storage.base import LedgerStore
from bonusmart.storage.errors import OrderOwnedByOtherUser, OrderOwnedBySameUser
from bonusmart.worker.accrual import AccrualWorker

log = get_logger(__name__)


async def submit_order(store: LedgerStore, worker: AccrualWorker, login: str, number: str) -> bool:
    """Store a new order and queue it for accrual.

    Returns True for a new order, False when the user already uploaded it.
    """
    if not is_valid_order_number(number):
        log.info("order_number_invalid", login=login)
        raise UnprocessableError("Incorrect order format")
    try:
        await store.create_order(number, login)
    except OrderOwnedBySameUser:
        log.info("order_already_uploaded", number=number, login=login)
        return False
    except OrderOwnedByOtherUser as e:
        log.info("order_owned_by_other_user", number=number, login=login)
        raise ConflictError("Order already created by another user") from e
    worker.submit(number, login)
    return True


async def list_orders(store: LedgerStore, login: str) -> list[OrderRecord]:
    return await store.get_orders(login)


def order_to_json(order: OrderRecord) -> dict[str, Any]:
    out: dict[str, Any] = {
        "number": order.number,
        "status": order.status.value,
    }
    if order.status == OrderStatus.PROCESSED:
        out["accrual"] = float(order.accrual)
    out["uploaded_at"] = order.uploaded_at.isoformat()
    return out
