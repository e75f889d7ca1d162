"""Shared FastAPI dependencies."""

from typing import TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from bonusmart.core.config import Settings
from bonusmart.core.exceptions import BadRequestError
from bonusmart.models.ledger import UserRecord
from bonusmart.services import users as user_service
from bonusmart.services.users import SESSION_COOKIE, USERNAME_COOKIE
from bonusmart.storage.base import LedgerStore
from bonusmart.worker.accrual import AccrualWorker

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> LedgerStore:
    return request.app.state.store


def get_worker(request: Request) -> AccrualWorker:
    return request.app.state.worker


def client_ip(request: Request) -> str:
    """Peer address the session cookie is bound to (host only)."""
    settings = get_app_settings(request)
    if settings.trust_forwarded_for:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


async def get_current_user(request: Request) -> UserRecord:
    """Dependency: verify the username/user_id cookie pair and return the user."""
    return await user_service.authenticate(
        get_store(request),
        request.cookies.get(USERNAME_COOKIE),
        request.cookies.get(SESSION_COOKIE),
        client_ip(request),
    )


def require_content_type(request: Request, expected: str) -> None:
    content_type = request.headers.get("content-type", "")
    if expected not in content_type.lower():
        raise BadRequestError(f"Content-Type must be {expected}")


async def read_json(request: Request, model: type[ModelT]) -> ModelT:
    require_content_type(request, "application/json")
    body = await request.body()
    try:
        return model.model_validate_json(body)
    except ValidationError as e:
        raise BadRequestError("Incorrect request format", details={"errors": e.errors(include_url=False, include_input=False)}) from e
