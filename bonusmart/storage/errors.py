"""Errors raised by ledger stores. Driver exceptions never escape a store."""


class StoreError(Exception):
    """Base class for ledger store failures."""


class UserConflict(StoreError):
    def __init__(self, login: str):
        self.login = login
        super().__init__(f"user {login!r} already exists")


class UserNotFound(StoreError):
    def __init__(self, login: str):
        self.login = login
        super().__init__(f"user {login!r} not found")


class OrderNotFound(StoreError):
    def __init__(self, number: str):
        self.number = number
        super().__init__(f"order {number!r} not found")


class OrderConflict(StoreError):
    """The global unique constraint on the order number was violated."""

    def __init__(self, number: str, owner: str):
        self.number = number
        self.owner = owner
        super().__init__(f"order {number!r} already uploaded by {owner!r}")


class OrderOwnedBySameUser(OrderConflict):
    pass


class OrderOwnedByOtherUser(OrderConflict):
    pass


class InvalidStatusTransition(StoreError):
    def __init__(self, number: str, current: str, target: str):
        self.number = number
        self.current = current
        self.target = target
        super().__init__(f"order {number!r}: cannot move from {current} to {target}")


class InsufficientBalance(StoreError):
    def __init__(self, login: str, requested: float):
        self.login = login
        self.requested = requested
        super().__init__(f"balance of {login!r} is too low for {requested}")


class WithdrawOrderInvalid(StoreError):
    def __init__(self, number: str, reason: str = "invalid order number"):
        self.number = number
        self.reason = reason
        super().__init__(f"order {number!r}: {reason}")


class StoreUnavailable(StoreError):
    """Wraps a driver or connection failure."""
