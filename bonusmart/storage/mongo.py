"""MongoDB ledger store on beanie/motor.

Amounts are stored as integer hundredths. Balance checks are compare-and-swap
updates: the ``balance_cents >= -delta`` filter and the ``$inc`` run as one
``findAndModify``, so concurrent credits and debits for the same user
serialize on the user document.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from beanie import UpdateResponse
from beanie.operators import And, In, Inc, Or, Set
from pymongo.errors import DuplicateKeyError, PyMongoError

from bonusmart.core.logging import get_logger
from bonusmart.core.luhn import is_valid_order_number
from bonusmart.db.init import init_db
from bonusmart.models.ledger import (
    Balance,
    OrderRecord,
    OrderStatus,
    UserRecord,
    WithdrawalRecord,
    from_cents,
    to_amount,
    to_cents,
)
from bonusmart.models.order import Order
from bonusmart.models.user import User
from bonusmart.storage.base import LedgerStore
from bonusmart.storage.errors import (
    InsufficientBalance,
    InvalidStatusTransition,
    OrderNotFound,
    OrderOwnedByOtherUser,
    OrderOwnedBySameUser,
    StoreError,
    StoreUnavailable,
    UserConflict,
    UserNotFound,
    WithdrawOrderInvalid,
)

log = get_logger(__name__)

PENDING_STATUSES = [OrderStatus.NEW.value, OrderStatus.PROCESSING.value]
TERMINAL_STATUSES = [OrderStatus.PROCESSED.value, OrderStatus.INVALID.value]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _balance(user: User) -> Balance:
    return Balance(current=from_cents(user.balance_cents), withdrawn=from_cents(user.withdrawn_cents))


@contextmanager
def _driver_errors(op: str):
    try:
        yield
    except StoreError:
        raise
    except PyMongoError as e:
        log.error("store_error", op=op, error=str(e))
        raise StoreUnavailable(f"{op}: {e}") from e


class MongoLedgerStore(LedgerStore):
    def __init__(self, uri: str, db_name: str) -> None:
        self.uri = uri
        self.db_name = db_name
        self._client = None

    async def open(self) -> None:
        log.info("store_connecting", backend="mongodb")
        with _driver_errors("open"):
            self._client = await init_db(self.uri, self.db_name)
        log.info("store_connected", backend="mongodb")

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            log.info("store_closed", backend="mongodb")

    async def create_user(self, login: str, password_hash: str, salt: str) -> UserRecord:
        user = User(login=login, password_hash=password_hash, salt=salt)
        with _driver_errors("create_user"):
            try:
                await user.insert()
            except DuplicateKeyError as e:
                raise UserConflict(login) from e
        log.info("user_created", login=login)
        return user.to_record()

    async def _find_user(self, login: str) -> User:
        with _driver_errors("get_user"):
            user = await User.find_one(User.login == login)
        if user is None:
            raise UserNotFound(login)
        return user

    async def get_user(self, login: str) -> UserRecord:
        return (await self._find_user(login)).to_record()

    async def create_order(self, number: str, owner: str) -> OrderRecord:
        await self._find_user(owner)
        order = Order(number=number, owner=owner)
        with _driver_errors("create_order"):
            try:
                await order.insert()
            except DuplicateKeyError as e:
                existing = await Order.find_one(Order.number == number)
                if existing is None:
                    # the conflicting row vanished; report as a driver failure
                    raise StoreUnavailable(f"create_order: {e}") from e
                if existing.owner == owner:
                    raise OrderOwnedBySameUser(number, owner) from e
                raise OrderOwnedByOtherUser(number, existing.owner) from e
        log.info("order_created", number=number, owner=owner)
        return order.to_record()

    async def get_orders(self, owner: str) -> list[OrderRecord]:
        with _driver_errors("get_orders"):
            orders = await Order.find(Order.owner == owner).sort(-Order.uploaded_at).to_list()
        return [o.to_record() for o in orders]

    async def mark_processing(self, number: str) -> bool:
        with _driver_errors("mark_processing"):
            updated = await Order.find_one(
                Order.number == number,
                Order.status == OrderStatus.NEW.value,
            ).update(
                Set({Order.status: OrderStatus.PROCESSING.value}),
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if updated is not None:
                return True
            if await Order.find_one(Order.number == number) is None:
                raise OrderNotFound(number)
        return False

    async def update_order(self, number: str, status: OrderStatus, accrual: Decimal | float) -> OrderRecord:
        cents = to_cents(accrual)
        with _driver_errors("update_order"):
            updated = await Order.find_one(
                Order.number == number,
                In(Order.status, PENDING_STATUSES),
            ).update(
                Set({
                    Order.status: status.value,
                    Order.accrual_cents: cents,
                    Order.credited: cents <= 0,
                    Order.processed_at: _now(),
                }),
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if updated is None:
                current = await Order.find_one(Order.number == number)
                if current is None:
                    raise OrderNotFound(number)
                raise InvalidStatusTransition(number, OrderStatus(current.status).value, status.value)
        log.info("order_updated", number=number, status=status.value, accrual_cents=cents)
        return updated.to_record()

    async def get_balance(self, owner: str) -> Balance:
        return _balance(await self._find_user(owner))

    async def _inc_balance(self, owner: str, cents: int) -> Balance:
        inc = {User.balance_cents: cents}
        if cents < 0:
            inc[User.withdrawn_cents] = -cents
        with _driver_errors("apply_accrual"):
            updated = await User.find_one(
                User.login == owner,
                User.balance_cents >= -cents,
            ).update(Inc(inc), response_type=UpdateResponse.NEW_DOCUMENT)
        if updated is None:
            # zero rows matched: either no such user or the balance check failed
            await self._find_user(owner)
            raise InsufficientBalance(owner, from_cents(-cents))
        log.info("balance_updated", login=owner, delta_cents=cents, current_cents=updated.balance_cents)
        return _balance(updated)

    async def apply_accrual(self, owner: str, delta: Decimal | float) -> Balance:
        return await self._inc_balance(owner, to_cents(delta))

    async def credit_order(self, number: str) -> Balance | None:
        with _driver_errors("credit_order"):
            claimed = await Order.find_one(
                Order.number == number,
                In(Order.status, TERMINAL_STATUSES),
                Order.credited == False,  # noqa: E712
            ).update(
                Set({Order.credited: True}),
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if claimed is None:
                if await Order.find_one(Order.number == number) is None:
                    raise OrderNotFound(number)
                return None
        try:
            balance = await self._inc_balance(claimed.owner, claimed.accrual_cents)
        except StoreError:
            # hand the claim back so the next re-poll retries the credit
            try:
                await Order.find_one(Order.number == number).update(Set({Order.credited: False}))
            except PyMongoError as e:
                log.error(
                    "order_credit_release_failed",
                    number=number,
                    login=claimed.owner,
                    accrual_cents=claimed.accrual_cents,
                    error=str(e),
                )
            raise
        log.info("order_credited", number=number, login=claimed.owner, accrual_cents=claimed.accrual_cents)
        return balance

    async def _refund(self, owner: str, cents: int) -> None:
        await User.find_one(User.login == owner).update(
            Inc({User.balance_cents: cents, User.withdrawn_cents: -cents})
        )

    async def apply_withdrawal(self, owner: str, number: str, amount: Decimal | float) -> Balance:
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError("withdrawal amount must be positive")
        if not is_valid_order_number(number):
            raise WithdrawOrderInvalid(number)
        cents = to_cents(amount)
        with _driver_errors("apply_withdrawal"):
            existing = await Order.find_one(Order.number == number)
        if existing is not None and existing.owner != owner:
            raise WithdrawOrderInvalid(number, "order belongs to another user")

        balance = await self._inc_balance(owner, -cents)

        now = _now()
        try:
            await Order.find_one(Order.number == number, Order.owner == owner).upsert(
                Inc({Order.withdrawn_cents: cents}),
                Set({Order.processed_at: now}),
                on_insert=Order(
                    number=number,
                    owner=owner,
                    status=OrderStatus.PROCESSED,
                    withdrawn_cents=cents,
                    credited=True,
                    uploaded_at=now,
                    processed_at=now,
                ),
            )
        except PyMongoError as e:
            # the debit is already committed; put it back before reporting
            try:
                await self._refund(owner, cents)
            except PyMongoError as refund_error:
                log.error(
                    "withdrawal_refund_failed",
                    login=owner,
                    number=number,
                    amount_cents=cents,
                    error=str(refund_error),
                    cause=str(e),
                )
                raise StoreUnavailable(f"apply_withdrawal: refund failed: {refund_error}") from e
            log.warning("withdrawal_rolled_back", login=owner, number=number, amount_cents=cents, error=str(e))
            if isinstance(e, DuplicateKeyError):
                raise WithdrawOrderInvalid(number, "order belongs to another user") from e
            raise StoreUnavailable(f"apply_withdrawal: {e}") from e
        log.info("withdrawal_applied", login=owner, number=number, amount_cents=cents)
        return balance

    async def get_withdrawals(self, owner: str) -> list[WithdrawalRecord]:
        with _driver_errors("get_withdrawals"):
            orders = await Order.find(
                Order.owner == owner,
                Order.withdrawn_cents > 0,
            ).sort(-Order.processed_at).to_list()
        return [
            WithdrawalRecord(order=o.number, sum=from_cents(o.withdrawn_cents), processed_at=o.processed_at)
            for o in orders
        ]

    async def list_pending_orders(self, uploaded_before: datetime | None = None) -> list[OrderRecord]:
        query = [
            Or(
                In(Order.status, PENDING_STATUSES),
                And(In(Order.status, TERMINAL_STATUSES), Order.credited == False),  # noqa: E712
            )
        ]
        if uploaded_before is not None:
            query.append(Order.uploaded_at <= uploaded_before)
        with _driver_errors("list_pending_orders"):
            orders = await Order.find(*query).to_list()
        return [o.to_record() for o in orders]
