"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from bonusmart.core.config import Settings, get_settings
from bonusmart.core.logging import configure_logging, get_logger
from bonusmart.services.accrual import AccrualClient
from bonusmart.storage.base import get_store
from bonusmart.worker.accrual import AccrualWorker

log = get_logger(__name__)


async def repoll_pending_orders(ctx: dict[str, Any]) -> int:
    """Cron: queue orders left in NEW/PROCESSING, e.g. after an API restart.

    Orders younger than ``accrual_resume_grace`` are skipped; the API process
    that accepted them is still polling.
    """
    settings: Settings = ctx.get("settings") or get_settings()
    worker: AccrualWorker = ctx["accrual_worker"]
    queued = await worker.resume_pending(older_than=settings.accrual_resume_grace)
    log.info("job_done", job="repoll_pending_orders", queued=queued)
    return queued


async def startup(ctx: dict[str, Any]) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug, level=settings.log_level_name)
    store = get_store(settings)
    await store.open()
    client = AccrualClient(
        settings.accrual_system_address,
        timeout=settings.accrual_request_timeout,
        retry_after_default=settings.accrual_poll_interval,
    )
    worker = AccrualWorker(
        store,
        client,
        poll_interval=settings.accrual_poll_interval,
        concurrency=settings.accrual_workers,
    )
    worker.start()
    ctx["settings"] = settings
    ctx["store"] = store
    ctx["accrual_client"] = client
    ctx["accrual_worker"] = worker


async def shutdown(ctx: dict[str, Any]) -> None:
    if "accrual_worker" in ctx:
        await ctx["accrual_worker"].stop()
    if "accrual_client" in ctx:
        await ctx["accrual_client"].aclose()
    if "store" in ctx:
        await ctx["store"].close()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
