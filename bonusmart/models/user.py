from datetime import datetime, timezone

from beanie import Document, Indexed
from pydantic import Field

from bonusmart.models.ledger import UserRecord, from_cents


class User(Document):
    login: Indexed(str, unique=True)
    password_hash: str
    salt: str
    # integer hundredths, never negative (enforced by conditional $inc)
    balance_cents: int = 0
    withdrawn_cents: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "users"

    def to_record(self) -> UserRecord:
        return UserRecord(
            login=self.login,
            password_hash=self.password_hash,
            salt=self.salt,
            balance=from_cents(self.balance_cents),
            withdrawn=from_cents(self.withdrawn_cents),
        )
