"""Backend-neutral records returned by the ledger store.

Point amounts are ``Decimal`` values quantized to hundredths, so repeated
credits and debits never drift the way binary floats do.
"""

from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum

from pydantic import BaseModel

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Decimal | float | int | str) -> Decimal:
    """Quantize a point amount to hundredths."""
    if isinstance(value, float):
        # shortest repr, so 0.1 becomes Decimal("0.1") and not its binary expansion
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)


def to_cents(value: Decimal | float | int | str) -> int:
    return int(to_amount(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


class OrderStatus(str, Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    INVALID = "INVALID"
    PROCESSED = "PROCESSED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.INVALID, OrderStatus.PROCESSED)


class UserRecord(BaseModel):
    login: str
    password_hash: str
    salt: str
    balance: Decimal = ZERO
    withdrawn: Decimal = ZERO


class OrderRecord(BaseModel):
    number: str
    owner: str
    status: OrderStatus = OrderStatus.NEW
    accrual: Decimal = ZERO
    withdrawn: Decimal = ZERO
    # accrual already added to the owner's balance (or nothing to add)
    credited: bool = False
    uploaded_at: datetime
    processed_at: datetime | None = None

    @property
    def awaiting_credit(self) -> bool:
        return self.status.is_terminal and not self.credited


class WithdrawalRecord(BaseModel):
    order: str
    sum: Decimal
    processed_at: datetime


class Balance(BaseModel):
    current: Decimal = ZERO
    withdrawn: Decimal = ZERO
