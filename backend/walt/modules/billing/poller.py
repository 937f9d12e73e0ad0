"""Post-checkout order status polling.

After the payer is sent to checkout, the order is polled at a fixed interval
for a bounded number of attempts in case the webhook never arrives. Each
order gets one supervised asyncio task; polling stops as soon as the order
is terminal (by poll or by a webhook landing in between). An exhausted poll
leaves the order PENDING for the scheduled reconciliation to pick up.
"""

import asyncio
import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from walt.core.config import settings
from walt.core.logging import log_info, log_warning
from walt.core.metrics import ACTIVE_PAYMENT_POLLERS, PAYMENT_POLL_ATTEMPTS_TOTAL
from walt.modules.billing.models import OrderStatus
from walt.modules.billing.orders import OrderNotFoundError, PaymentOrderManager
from walt.modules.billing.schemas import PollResult
from walt.modules.payment_gateway.interface import (
    PaymentGatewayInterface,
    PaymentProviderError,
)

logger = logging.getLogger(__name__)


class OrderStatusPoller:
    """Runs and supervises one polling task per order."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGatewayInterface,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else settings.PAYMENT_POLL_INTERVAL_SECONDS
        )
        self.max_attempts = max_attempts or settings.PAYMENT_POLL_MAX_ATTEMPTS
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}

    def start(self, order_id: uuid.UUID) -> asyncio.Task:
        """Start polling an order, or return the task already polling it."""
        task = self._tasks.get(order_id)
        if task is not None and not task.done():
            return task

        task = asyncio.create_task(self._poll(order_id), name=f"poll-order-{order_id}")
        self._tasks[order_id] = task
        ACTIVE_PAYMENT_POLLERS.inc()
        task.add_done_callback(lambda t, oid=order_id: self._forget(oid, t))
        return task

    def _forget(self, order_id: uuid.UUID, task: asyncio.Task) -> None:
        ACTIVE_PAYMENT_POLLERS.dec()
        if self._tasks.get(order_id) is task:
            del self._tasks[order_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Polling task for order {order_id} crashed",
                exc_info=task.exception(),
            )

    def is_polling(self, order_id: uuid.UUID) -> bool:
        task = self._tasks.get(order_id)
        return task is not None and not task.done()

    async def wait(self, order_id: uuid.UUID) -> Optional[PollResult]:
        task = self._tasks.get(order_id)
        if task is None:
            return None
        return await task

    def cancel(self, order_id: uuid.UUID) -> bool:
        task = self._tasks.get(order_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every polling task and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll(self, order_id: uuid.UUID) -> PollResult:
        attempts = 0
        while attempts < self.max_attempts:
            await asyncio.sleep(self.interval_seconds)
            attempts += 1
            PAYMENT_POLL_ATTEMPTS_TOTAL.inc()

            async with self.session_factory() as session:
                manager = PaymentOrderManager(session, self.gateway)
                try:
                    order = await manager.refresh_order(order_id, source="poll")
                except OrderNotFoundError:
                    log_warning(logger, f"Stopped polling unknown order {order_id}")
                    return PollResult(
                        order_id=order_id,
                        status=OrderStatus.PENDING,
                        attempts=attempts,
                        exhausted=False,
                    )
                except PaymentProviderError as e:
                    log_warning(
                        logger,
                        f"Poll {attempts}/{self.max_attempts} for order {order_id} failed: {e}",
                        order_id=str(order_id),
                    )
                    continue

                if order.is_terminal:
                    return PollResult(
                        order_id=order_id,
                        status=OrderStatus(order.status),
                        attempts=attempts,
                    )

        log_info(
            logger,
            f"Stopped polling order {order_id} after {attempts} attempts; still pending",
            order_id=str(order_id),
        )
        return PollResult(
            order_id=order_id,
            status=OrderStatus.PENDING,
            attempts=attempts,
            exhausted=True,
        )
