from bonusmart.models.ledger import Balance, OrderRecord, OrderStatus, UserRecord, WithdrawalRecord
from bonusmart.models.order import Order
from bonusmart.models.user import User

__all__ = [
    "Balance",
    "Order",
    "OrderRecord",
    "OrderStatus",
    "User",
    "UserRecord",
    "WithdrawalRecord",
]
