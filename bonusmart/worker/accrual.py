"""Per-order accrual polling.

Each submitted order is driven to a terminal status by polling the accrual
calculator, then finalized in the store and credited to its owner:

    NEW -> PROCESSING -> PROCESSED   (accrual credited)
                      -> INVALID     (accrual 0)

Finalizing and crediting are separate store calls. An order whose credit
failed stays uncredited and is credited by the next ``resume_pending``.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from bonusmart.core.logging import get_logger
from bonusmart.models.ledger import OrderStatus, to_amount
from bonusmart.services.accrual import AccrualClient, AccrualResult, RateLimited, Transient
from bonusmart.storage.base import LedgerStore
from bonusmart.storage.errors import InvalidStatusTransition, StoreError

log = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class AccrualWorker:
    """Bounded pool of consumers over a job queue keyed by order number."""

    def __init__(
        self,
        store: LedgerStore,
        client: AccrualClient,
        poll_interval: float = 1.0,
        concurrency: int = 16,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.poll_interval = poll_interval
        self.concurrency = concurrency
        self._sleep = sleep
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()
        self._active: set[str] = set()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._consume(), name=f"accrual-worker-{i}")
            for i in range(self.concurrency)
        ]
        log.info("accrual_worker_started", concurrency=self.concurrency)

    async def stop(self) -> None:
        """Cancel consumers without draining; unfinished orders stay NEW/PROCESSING."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("accrual_worker_stopped", abandoned=len(self._active))

    def submit(self, number: str, owner: str) -> bool:
        """Queue an order. Returns False if it is already queued or being polled."""
        if number in self._active:
            return False
        self._active.add(number)
        self._queue.put_nowait((number, owner))
        log.debug("accrual_job_queued", number=number, owner=owner)
        return True

    async def join(self) -> None:
        """Wait until every queued order has been processed."""
        await self._queue.join()

    async def resume_pending(self, older_than: float | None = None) -> int:
        """Queue NEW/PROCESSING orders and credit finalized ones whose credit never landed.

        ``older_than`` (seconds) skips recently uploaded orders, which another
        process may still be polling. Returns how many orders were queued or credited.
        """
        cutoff = None
        if older_than is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than)
        orders = await self.store.list_pending_orders(uploaded_before=cutoff)
        queued = credited = 0
        for order in orders:
            if order.awaiting_credit:
                credited += await self._recover_credit(order.number)
            elif self.submit(order.number, order.owner):
                queued += 1
        log.info("accrual_resume_pending", found=len(orders), queued=queued, credited=credited)
        return queued + credited

    async def _recover_credit(self, number: str) -> bool:
        try:
            balance = await self.store.credit_order(number)
        except StoreError as e:
            log.error("accrual_credit_retry_failed", number=number, error=str(e))
            return False
        return balance is not None

    async def _consume(self) -> None:
        while True:
            number, owner = await self._queue.get()
            try:
                await self.process(number, owner)
            except asyncio.CancelledError:
                raise
            except StoreError as e:
                log.error("accrual_job_store_error", number=number, owner=owner, error=str(e))
            except Exception:
                log.exception("accrual_job_failed", number=number, owner=owner)
            finally:
                self._active.discard(number)
                self._queue.task_done()

    async def poll(self, number: str) -> AccrualResult:
        """Query until the calculator reports a terminal status."""
        marked = False
        while True:
            result = await self.client.query(number)
            if isinstance(result, RateLimited):
                await self._sleep(result.delay)
                continue
            if isinstance(result, Transient):
                await self._sleep(self.poll_interval)
                continue
            if result.is_terminal:
                return result
            if result.status == OrderStatus.PROCESSING.value and not marked:
                marked = True
                await self.store.mark_processing(number)
            await self._sleep(self.poll_interval)

    async def process(self, number: str, owner: str) -> OrderStatus | None:
        """Drive one order to its terminal status and credit the owner.

        Returns the final status, or None when another job finalized it first.
        """
        log.info("accrual_job_started", number=number, owner=owner)
        result = await self.poll(number)
        status = OrderStatus(result.status)
        value = to_amount(0 if status == OrderStatus.INVALID else max(result.accrual, 0.0))
        try:
            await self.store.update_order(number, status, value)
        except InvalidStatusTransition as e:
            # finalized earlier; its credit may still be outstanding
            if await self.store.credit_order(number) is None:
                log.warning("accrual_already_finalized", number=number, current=e.current)
                return None
            log.info("accrual_credit_recovered", number=number, owner=owner)
            return OrderStatus(e.current)
        await self.store.credit_order(number)
        log.info("accrual_job_done", number=number, owner=owner, status=status.value, accrual=str(value))
        return status
