import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from bonusmart.models.order import Order
from bonusmart.models.user import User

DOCUMENT_MODELS = [
    User,
    Order,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(uri: str, db_name: str) -> AsyncIOMotorClient:
    """Connect, register document models and build their indexes.

    The database named in the URI path wins over ``db_name``.
    """
    kwargs = {"tz_aware": True}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(uri, **kwargs)
    database = client.get_default_database(db_name)
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
