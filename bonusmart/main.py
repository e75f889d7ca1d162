import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

from bonusmart.core.config import Settings, get_settings
from bonusmart.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    store_exception_handler,
    validation_exception_handler,
)
from bonusmart.core.logging import bind_request_id, configure_logging, get_logger
from bonusmart.core.middleware import GzipRequestMiddleware
from bonusmart.routers import auth, balance, orders
from bonusmart.services.accrual import AccrualClient
from bonusmart.storage.base import LedgerStore, get_store
from bonusmart.storage.errors import StoreError
from bonusmart.worker.accrual import AccrualWorker

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")

    store: LedgerStore = app.state.store
    await store.open()
    log.info("startup", msg="store ready")

    worker = AccrualWorker(
        store,
        app.state.accrual_client,
        poll_interval=settings.accrual_poll_interval,
        concurrency=settings.accrual_workers,
    )
    app.state.worker = worker
    worker.start()
    if settings.accrual_resume_on_startup:
        await worker.resume_pending()

    try:
        yield
    finally:
        await worker.stop()
        await app.state.accrual_client.aclose()
        await store.close()
        log.info("shutdown", msg="stopped")


def create_app(
    settings: Settings | None = None,
    store: LedgerStore | None = None,
    accrual_client: AccrualClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="bonusmart",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.store = store or get_store(settings)
    app.state.accrual_client = accrual_client or AccrualClient(
        settings.accrual_system_address,
        timeout=settings.accrual_request_timeout,
        retry_after_default=settings.accrual_poll_interval,
    )

    app.add_middleware(GzipRequestMiddleware, max_size=settings.max_request_body)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def request_id_middleware(request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_id(request_id)
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        log.info(
            "request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(StoreError, store_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Routers
    app.include_router(auth.router, prefix="/api/user", tags=["auth"])
    app.include_router(orders.router, prefix="/api/user", tags=["orders"])
    app.include_router(balance.router, prefix="/api/user", tags=["balance"])

    return app


def build_app() -> FastAPI:
    """uvicorn factory: ``uvicorn bonusmart.main:build_app --factory``."""
    settings = get_settings()
    configure_logging(debug=settings.debug, level=settings.log_level_name)
    return create_app(settings)
