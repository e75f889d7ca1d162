from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from bonusmart.core.config import Settings, get_settings
from bonusmart.models.ledger import Balance, OrderRecord, OrderStatus, UserRecord, WithdrawalRecord

MEMORY_SCHEME = "memory://"


class LedgerStore(ABC):
    """Durable users, orders and balances.

    Amounts are ``Decimal`` hundredths; plain numbers are quantized on the way
    in. Balance mutations are atomic per user: after every committed call
    ``balance + sum(withdrawn) == sum(accrual of credited PROCESSED orders)``
    and ``balance >= 0`` hold. A finalized order whose credit has not landed
    yet stays in ``list_pending_orders`` until ``credit_order`` succeeds.
    """

    async def open(self) -> None:
        """Connect and prepare collections."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def create_user(self, login: str, password_hash: str, salt: str) -> UserRecord:
        """Raise UserConflict if the login is taken."""
        ...

    @abstractmethod
    async def get_user(self, login: str) -> UserRecord:
        """Raise UserNotFound."""
        ...

    @abstractmethod
    async def create_order(self, number: str, owner: str) -> OrderRecord:
        """Insert a NEW order; raise OrderOwnedBySameUser / OrderOwnedByOtherUser on duplicates."""
        ...

    @abstractmethod
    async def get_orders(self, owner: str) -> list[OrderRecord]:
        """Orders of owner, newest upload first."""
        ...

    @abstractmethod
    async def mark_processing(self, number: str) -> bool:
        """Move a NEW order to PROCESSING. Return False when it was not NEW."""
        ...

    @abstractmethod
    async def update_order(self, number: str, status: OrderStatus, accrual: Decimal | float) -> OrderRecord:
        """Finalize a NEW/PROCESSING order: set status, accrual and processed_at.

        The order is left uncredited when accrual is positive.

        Raise OrderNotFound, or InvalidStatusTransition when the order is already terminal.
        """
        ...

    @abstractmethod
    async def get_balance(self, owner: str) -> Balance:
        ...

    @abstractmethod
    async def apply_accrual(self, owner: str, delta: Decimal | float) -> Balance:
        """Atomically add delta to the balance.

        Raise InsufficientBalance if the balance would go negative. A negative
        delta is also added (as an absolute value) to the withdrawn total.
        """
        ...

    @abstractmethod
    async def apply_withdrawal(self, owner: str, number: str, amount: Decimal | float) -> Balance:
        """Debit amount and record it on the order, all or nothing.

        An unknown order number is created as PROCESSED with zero accrual.
        Raise WithdrawOrderInvalid for non-Luhn numbers or numbers owned by
        another user, InsufficientBalance when the balance is too low.
        """
        ...

    @abstractmethod
    async def get_withdrawals(self, owner: str) -> list[WithdrawalRecord]:
        """Withdrawals of owner, newest first."""
        ...

    @abstractmethod
    async def credit_order(self, number: str) -> Balance | None:
        """Add a finalized order's accrual to its owner's balance exactly once.

        Return the new balance, or None when the order is not finalized or was
        already credited. Raise OrderNotFound.
        """
        ...

    @abstractmethod
    async def list_pending_orders(self, uploaded_before: datetime | None = None) -> list[OrderRecord]:
        """Orders still in NEW or PROCESSING, plus finalized orders not yet credited.

        ``uploaded_before`` skips orders uploaded after the cutoff.
        """
        ...


def get_store(settings: Settings | None = None) -> LedgerStore:
    settings = settings or get_settings()
    if settings.database_uri.startswith(MEMORY_SCHEME):
        from bonusmart.storage.memory import MemoryLedgerStore
        return MemoryLedgerStore()
    from bonusmart.storage.mongo import MongoLedgerStore
    return MongoLedgerStore(settings.database_uri, settings.mongodb_db_name)
