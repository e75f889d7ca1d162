import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from bonusmart.core.logging import get_logger
from bonusmart.core.luhn import is_valid_order_number
from bonusmart.models.ledger import ZERO, Balance, OrderRecord, OrderStatus, UserRecord, WithdrawalRecord, to_amount
from bonusmart.storage.base import LedgerStore
from bonusmart.storage.errors import (
    InsufficientBalance,
    InvalidStatusTransition,
    OrderNotFound,
    OrderOwnedByOtherUser,
    OrderOwnedBySameUser,
    UserConflict,
    UserNotFound,
    WithdrawOrderInvalid,
)

log = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryLedgerStore(LedgerStore):
    """In-process store; a single lock serializes every mutation."""

    def __init__(self) -> None:
        self._users: dict[str, UserRecord] = {}
        self._orders: dict[str, OrderRecord] = {}
        self._lock = asyncio.Lock()

    async def create_user(self, login: str, password_hash: str, salt: str) -> UserRecord:
        async with self._lock:
            if login in self._users:
                raise UserConflict(login)
            user = UserRecord(login=login, password_hash=password_hash, salt=salt)
            self._users[login] = user
            log.info("user_created", login=login)
            return user.model_copy()

    async def get_user(self, login: str) -> UserRecord:
        user = self._users.get(login)
        if user is None:
            raise UserNotFound(login)
        return user.model_copy()

    async def create_order(self, number: str, owner: str) -> OrderRecord:
        async with self._lock:
            if owner not in self._users:
                raise UserNotFound(owner)
            existing = self._orders.get(number)
            if existing is not None:
                if existing.owner == owner:
                    raise OrderOwnedBySameUser(number, owner)
                raise OrderOwnedByOtherUser(number, existing.owner)
            order = OrderRecord(number=number, owner=owner, uploaded_at=_now())
            self._orders[number] = order
            log.info("order_created", number=number, owner=owner)
            return order.model_copy()

    async def get_orders(self, owner: str) -> list[OrderRecord]:
        orders = [o.model_copy() for o in reversed(self._orders.values()) if o.owner == owner]
        return sorted(orders, key=lambda o: o.uploaded_at, reverse=True)

    async def mark_processing(self, number: str) -> bool:
        async with self._lock:
            order = self._orders.get(number)
            if order is None:
                raise OrderNotFound(number)
            if order.status != OrderStatus.NEW:
                return False
            order.status = OrderStatus.PROCESSING
            return True

    async def update_order(self, number: str, status: OrderStatus, accrual: Decimal | float) -> OrderRecord:
        accrual = to_amount(accrual)
        async with self._lock:
            order = self._orders.get(number)
            if order is None:
                raise OrderNotFound(number)
            if order.status.is_terminal:
                raise InvalidStatusTransition(number, order.status.value, status.value)
            order.status = status
            order.accrual = accrual
            order.credited = accrual <= 0
            order.processed_at = _now()
            log.info("order_updated", number=number, status=status.value, accrual=str(accrual))
            return order.model_copy()

    async def get_balance(self, owner: str) -> Balance:
        user = self._users.get(owner)
        if user is None:
            raise UserNotFound(owner)
        return Balance(current=user.balance, withdrawn=user.withdrawn)

    def _apply(self, owner: str, delta: Decimal) -> Balance:
        user = self._users.get(owner)
        if user is None:
            raise UserNotFound(owner)
        if user.balance + delta < 0:
            raise InsufficientBalance(owner, -delta)
        user.balance += delta
        if delta < 0:
            user.withdrawn -= delta
        return Balance(current=user.balance, withdrawn=user.withdrawn)

    async def apply_accrual(self, owner: str, delta: Decimal | float) -> Balance:
        delta = to_amount(delta)
        async with self._lock:
            balance = self._apply(owner, delta)
        log.info("balance_updated", login=owner, delta=str(delta), current=str(balance.current))
        return balance

    async def credit_order(self, number: str) -> Balance | None:
        async with self._lock:
            order = self._orders.get(number)
            if order is None:
                raise OrderNotFound(number)
            if not order.awaiting_credit:
                return None
            balance = self._apply(order.owner, order.accrual)
            order.credited = True
        log.info("order_credited", number=number, login=order.owner, accrual=str(order.accrual))
        return balance

    async def apply_withdrawal(self, owner: str, number: str, amount: Decimal | float) -> Balance:
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError("withdrawal amount must be positive")
        if not is_valid_order_number(number):
            raise WithdrawOrderInvalid(number)
        async with self._lock:
            order = self._orders.get(number)
            if order is not None and order.owner != owner:
                raise WithdrawOrderInvalid(number, "order belongs to another user")
            balance = self._apply(owner, -amount)
            now = _now()
            if order is None:
                self._orders[number] = OrderRecord(
                    number=number,
                    owner=owner,
                    status=OrderStatus.PROCESSED,
                    withdrawn=amount,
                    credited=True,
                    uploaded_at=now,
                    processed_at=now,
                )
            else:
                order.withdrawn += amount
                order.processed_at = now
        log.info("withdrawal_applied", login=owner, number=number, amount=str(amount))
        return balance

    async def get_withdrawals(self, owner: str) -> list[WithdrawalRecord]:
        items = [
            WithdrawalRecord(order=o.number, sum=o.withdrawn, processed_at=o.processed_at)
            for o in reversed(self._orders.values())
            if o.owner == owner and o.withdrawn > ZERO
        ]
        return sorted(items, key=lambda w: w.processed_at, reverse=True)

    async def list_pending_orders(self, uploaded_before: datetime | None = None) -> list[OrderRecord]:
        return [
            o.model_copy()
            for o in self._orders.values()
            if (not o.status.is_terminal or o.awaiting_credit)
            and (uploaded_before is None or o.uploaded_at <= uploaded_before)
        ]
