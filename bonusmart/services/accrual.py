"""Client for the external accrual calculator: GET {base}/api/orders/{number}."""

from dataclasses import dataclass
from typing import Union

import httpx
from pydantic import BaseModel, Field, ValidationError

from bonusmart.core.logging import get_logger

log = get_logger(__name__)

UPSTREAM_STATUSES = ("REGISTERED", "PROCESSING", "INVALID", "PROCESSED")


class AccrualResponse(BaseModel):
    order: str
    status: str
    accrual: float | None = Field(default=None, allow_inf_nan=False)


@dataclass(frozen=True)
class AccrualResult:
    status: str  # REGISTERED | PROCESSING | INVALID | PROCESSED
    accrual: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in ("INVALID", "PROCESSED")


@dataclass(frozen=True)
class RateLimited:
    delay: float  # seconds, from Retry-After


@dataclass(frozen=True)
class Transient:
    reason: str


QueryResult = Union[AccrualResult, RateLimited, Transient]


def parse_retry_after(value: str | None, default: float) -> float:
    """Retry-After as integer seconds; anything unusable falls back to default."""
    if value is None:
        return default
    try:
        seconds = int(value.strip())
    except ValueError:
        return default
    return float(seconds) if seconds >= 0 else default


class AccrualClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        retry_after_default: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retry_after_default = retry_after_default
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def query(self, number: str) -> QueryResult:
        try:
            response = await self._client.get(f"/api/orders/{number}")
        except httpx.HTTPError as e:
            log.warning("accrual_request_failed", number=number, error=str(e))
            return Transient(f"request failed: {e}")

        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            delay = parse_retry_after(response.headers.get("Retry-After"), self.retry_after_default)
            log.info("accrual_rate_limited", number=number, retry_after=delay)
            return RateLimited(delay)
        if response.status_code != httpx.codes.OK:
            log.debug("accrual_unexpected_status", number=number, status_code=response.status_code)
            return Transient(f"status {response.status_code}")

        try:
            body = AccrualResponse.model_validate_json(response.content)
        except ValidationError as e:
            log.warning("accrual_bad_payload", number=number, error=str(e))
            return Transient("malformed payload")
        if body.status not in UPSTREAM_STATUSES:
            log.warning("accrual_unknown_status", number=number, status=body.status)
            return Transient(f"unknown status {body.status}")
        log.debug("accrual_status", number=number, status=body.status, accrual=body.accrual)
        return AccrualResult(status=body.status, accrual=body.accrual or 0.0)
