from datetime import datetime, timezone

import pymongo
from beanie import Document, Indexed
from pydantic import Field

from bonusmart.models.ledger import OrderRecord, OrderStatus, from_cents


class Order(Document):
    number: Indexed(str, unique=True)
    owner: str  # User.login
    status: OrderStatus = OrderStatus.NEW
    accrual_cents: int = 0
    withdrawn_cents: int = 0
    credited: bool = False
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: datetime | None = None

    class Settings:
        name = "orders"
        indexes = [
            [("owner", pymongo.ASCENDING), ("uploaded_at", pymongo.DESCENDING)],
            [("owner", pymongo.ASCENDING), ("processed_at", pymongo.DESCENDING)],
            [("status", pymongo.ASCENDING), ("credited", pymongo.ASCENDING)],
        ]

    def to_record(self) -> OrderRecord:
        return OrderRecord(
            number=self.number,
            owner=self.owner,
            status=self.status,
            accrual=from_cents(self.accrual_cents),
            withdrawn=from_cents(self.withdrawn_cents),
            credited=self.credited,
            uploaded_at=self.uploaded_at,
            processed_at=self.processed_at,
        )
