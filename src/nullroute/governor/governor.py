"""Request Governor - paces outbound calls to the exchange API.

The exchange API enforces a request ceiling (30 req/s). Every call goes
through one governor, which holds pending work in a priority-ordered
waiting line and releases it to the exchange client one call at a time, no
faster than the configured target rate.

Status checks (priority 10) jump ahead of fee estimates (5), which jump
ahead of transaction creation (1). Within a tier, submission order is kept.

The dispatch task is started by the first submission and exits when the
line is empty. Only that task touches the line and the pacing clock, so no
lock is needed even with many concurrent submitters.
"""

import asyncio
import logging
from typing import Any, Optional

from nullroute.exchange.base import (
    Amount,
    ExchangeProvider,
    FeeEstimate,
    StatusRecord,
    TransferOutcome,
)
from nullroute.governor.requests import (
    CreateTransactionRequest,
    ExchangeRequest,
    FeeEstimateRequest,
    StatusRequest,
    WorkItem,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_SECOND = 25.0


class RequestGovernor:
    """Serializes and paces calls to an exchange client.

    Example:
        governor = RequestGovernor(create_exchange_client())
        status = await governor.enqueue_get_status("a1b2c3")
    """

    def __init__(
        self,
        client: ExchangeProvider,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
    ):
        """Initialize the governor.

        Args:
            client: Exchange client that performs the calls
            requests_per_second: Target dispatch rate, kept below the
                exchange's enforced ceiling
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

        self.client = client
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second

        self._queue: list[WorkItem] = []
        self._processing = False
        self._last_dispatch: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    async def submit(self, request: ExchangeRequest, priority: Optional[int] = None) -> Any:
        """Queue a request and wait for its result.

        Args:
            request: The call to make
            priority: Override the request kind's default tier

        Returns:
            Whatever the exchange client returned

        Raises:
            Whatever the exchange client raised for this request
        """
        loop = asyncio.get_running_loop()
        item = WorkItem(
            request=request,
            priority=request.priority if priority is None else priority,
            future=loop.create_future(),
        )
        self._insert(item)
        logger.debug(
            f"Queued {item.id} (priority {item.priority}, queue length {len(self._queue)})"
        )
        self._ensure_dispatching()
        return await item.future

    def _insert(self, item: WorkItem) -> None:
        """Insert before the first item with strictly lower priority."""
        for index, queued in enumerate(self._queue):
            if queued.priority < item.priority:
                self._queue.insert(index, item)
                return
        self._queue.append(item)

    def _ensure_dispatching(self) -> None:
        if self._processing:
            return
        self._processing = True
        self._task = asyncio.get_running_loop().create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        try:
            while self._queue:
                item = self._queue.pop(0)
                await self._wait_for_slot()
                self._last_dispatch = asyncio.get_running_loop().time()
                await self._dispatch(item)
        finally:
            self._processing = False

    async def _wait_for_slot(self) -> None:
        """Sleep until min_interval has passed since the previous dispatch."""
        if self._last_dispatch is None:
            return
        elapsed = asyncio.get_running_loop().time() - self._last_dispatch
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)

    async def _dispatch(self, item: WorkItem) -> None:
        """Run one item and route its result or failure to its future only."""
        try:
            result = await item.request.dispatch(self.client)
        except Exception as e:
            logger.warning(f"{item.id} failed: {type(e).__name__}: {e}")
            self._resolve(item, error=e)
        else:
            self._resolve(item, result=result)

    @staticmethod
    def _resolve(item: WorkItem, result: Any = None, error: Optional[BaseException] = None) -> None:
        if item.future.done():
            # Submitter stopped waiting; the call was still made
            logger.debug(f"{item.id} finished after its caller went away")
            return
        if error is not None:
            item.future.set_exception(error)
        else:
            item.future.set_result(result)

    async def enqueue_create_transaction(self, request: CreateTransactionRequest) -> TransferOutcome:
        """Queue exchange creation (normal priority)."""
        return await self.submit(request)

    async def enqueue_get_status(self, external_ref: str) -> StatusRecord:
        """Queue a status check (high priority)."""
        return await self.submit(StatusRequest(external_ref=external_ref))

    async def enqueue_estimate_fees(
        self,
        from_currency: str,
        to_currency: str,
        amount: Amount,
    ) -> FeeEstimate:
        """Queue a fee estimate (medium priority)."""
        request = FeeEstimateRequest(
            from_amount=amount, from_currency=from_currency, to_currency=to_currency
        )
        return await self.submit(request)

    def get_queue_status(self) -> dict:
        """Queue status for monitoring."""
        return {
            "queue_length": len(self._queue),
            "processing": self._processing,
        }
