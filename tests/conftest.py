import os
import uuid
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process store for tests
os.environ.setdefault("DATABASE_URI", "memory://")
os.environ.setdefault("ACCRUAL_RESUME_ON_STARTUP", "false")


class AccrualStub:
    """Scripted accrual calculator. Each order number replays its list of
    responses in order and then keeps returning the last one."""

    base_url = "http://accrual.test"

    def __init__(self) -> None:
        self.scripts: dict[str, list[httpx.Response | Exception]] = {}
        self.default_accrual = 500.0
        self.calls: list[str] = []

    def script(self, number: str, *responses: httpx.Response | Exception) -> None:
        self.scripts[number] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        number = request.url.path.rsplit("/", 1)[-1]
        self.calls.append(number)
        script = self.scripts.get(number)
        if not script:
            return self.processed(number, self.default_accrual)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, retry_after_default: float = 1.0):
        from bonusmart.services.accrual import AccrualClient
        return AccrualClient(
            self.base_url,
            timeout=1.0,
            retry_after_default=retry_after_default,
            transport=self.transport(),
        )

    @staticmethod
    def processed(number: str, accrual: float) -> httpx.Response:
        return httpx.Response(200, json={"order": number, "status": "PROCESSED", "accrual": accrual})

    @staticmethod
    def upstream(number: str, status: str, accrual: float | None = None) -> httpx.Response:
        body = {"order": number, "status": status}
        if accrual is not None:
            body["accrual"] = accrual
        return httpx.Response(200, json=body)

    @staticmethod
    def rate_limited(seconds: str | None = "2") -> httpx.Response:
        headers = {"Retry-After": seconds} if seconds is not None else {}
        return httpx.Response(429, headers=headers, text="No more than N requests per minute allowed")


@pytest.fixture
def accrual_stub() -> AccrualStub:
    return AccrualStub()


@pytest.fixture
def settings():
    from bonusmart.core.config import Settings
    return Settings(
        DATABASE_URI="memory://",
        ACCRUAL_SYSTEM_ADDRESS=AccrualStub.base_url,
        ACCRUAL_POLL_INTERVAL=0.01,
        ACCRUAL_WORKERS=4,
        ACCRUAL_RESUME_ON_STARTUP=False,
        BCRYPT_ROUNDS=4,
    )


@pytest.fixture
def memory_store():
    from bonusmart.storage.memory import MemoryLedgerStore
    return MemoryLedgerStore()


@pytest.fixture
def accrual_client(accrual_stub, settings):
    return accrual_stub.client(retry_after_default=settings.accrual_poll_interval)


@pytest_asyncio.fixture
async def app(settings, memory_store, accrual_client):
    from bonusmart.main import create_app
    application = create_app(settings, store=memory_store, accrual_client=accrual_client)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture(params=["memory", "mongo"])
async def store(request):
    """Every ledger store backend; MongoDB runs only when TEST_MONGODB_URI is set."""
    if request.param == "memory":
        from bonusmart.storage.memory import MemoryLedgerStore
        yield MemoryLedgerStore()
        return

    uri = os.environ.get("TEST_MONGODB_URI")
    if not uri:
        pytest.skip("TEST_MONGODB_URI not set")
    from bonusmart.storage.mongo import MongoLedgerStore
    db_name = f"bonusmart_test_{uuid.uuid4().hex[:8]}"
    mongo = MongoLedgerStore(uri, db_name)
    await mongo.open()
    try:
        yield mongo
    finally:
        client = mongo._client
        await client.drop_database(client.get_default_database(db_name).name)
        await mongo.close()
