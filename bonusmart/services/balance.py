"""Balance queries and withdrawals."""

from decimal import Decimal

from bonusmart.core.exceptions import BadRequestError, PaymentRequiredError, UnprocessableError
from bonusmart.core.logging import get_logger
from bonusmart.core.luhn import is_valid_order_number
from bonusmart.models.ledger import Balance, WithdrawalRecord, to_amount
from bonusmart.storage.base import LedgerStore
from bonusmart.storage.errors import InsufficientBalance, WithdrawOrderInvalid

log = get_logger(__name__)


async def get_balance(store: LedgerStore, login: str) -> Balance:
    return await store.get_balance(login)


async def withdraw(store: LedgerStore, login: str, number: str, amount: Decimal | float) -> Balance:
    """Debit amount (rounded to hundredths) against order number; all or nothing."""
    amount = to_amount(amount)
    if amount <= 0:
        raise BadRequestError("Withdrawal sum must be positive")
    if not is_valid_order_number(number):
        raise UnprocessableError("Invalid order number")
    try:
        balance = await store.apply_withdrawal(login, number, amount)
    except InsufficientBalance as e:
        log.info("withdrawal_rejected", login=login, number=number, amount=str(amount))
        raise PaymentRequiredError() from e
    except WithdrawOrderInvalid as e:
        log.info("withdrawal_order_invalid", login=login, number=number, reason=e.reason)
        raise UnprocessableError("Invalid order number") from e
    return balance


async def list_withdrawals(store: LedgerStore, login: str) -> list[WithdrawalRecord]:
    return await store.get_withdrawals(login)
