"""Tests for post-checkout order polling.

**Feature: walt-billing, Property 7: Bounded Order Polling**
"""

import asyncio
import uuid
from datetime import date

import pytest

from walt.modules.billing.models import OrderStatus
from walt.modules.billing.orders import PaymentOrderManager
from walt.modules.billing.poller import OrderStatusPoller
from walt.modules.billing.repository import OrderRepository

GIB = 1024 ** 3


@pytest.fixture
async def pending_order(session, gateway, calculator, locks, make_account, add_object):
    account = await make_account()
    await add_object(account, 6 * GIB)
    manager = PaymentOrderManager(session, gateway, calculator=calculator, locks=locks)
    return await manager.ensure_order(account, today=date(2026, 3, 15))


class TestOrderStatusPoller:
    """Tests for the supervised polling task.

    **Feature: walt-billing, Property 7: Bounded Order Polling**
    """

    @pytest.mark.asyncio
    async def test_stops_when_order_is_paid(self, session, session_maker, gateway, pending_order) -> None:
        gateway.statuses[pending_order.provider_order_id] = OrderStatus.PAID
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=0, max_attempts=5)

        poller.start(pending_order.id)
        result = await poller.wait(pending_order.id)

        assert result.status == OrderStatus.PAID
        assert result.attempts == 1
        assert not result.exhausted
        assert not poller.is_polling(pending_order.id)

        stored = await OrderRepository(session).get_by_id(pending_order.id)
        await session.refresh(stored)
        assert stored.status == OrderStatus.PAID.value
        assert stored.status_source == "poll"

    @pytest.mark.asyncio
    async def test_exhaustion_leaves_order_pending(
        self, session, session_maker, gateway, pending_order
    ) -> None:
        """**Feature: walt-billing, Property 7: Bounded Order Polling**

        A poll that never sees a terminal status SHALL stop after the attempt
        limit and leave the order PENDING.
        """
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=0, max_attempts=3)

        poller.start(pending_order.id)
        result = await poller.wait(pending_order.id)

        assert result.exhausted
        assert result.attempts == 3
        assert result.status == OrderStatus.PENDING
        assert len(gateway.fetch_calls) == 3

        await session.refresh(pending_order)
        assert pending_order.status == OrderStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_provider_errors_use_up_attempts(self, session_maker, gateway, pending_order) -> None:
        gateway.fail_fetch = True
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=0, max_attempts=2)

        poller.start(pending_order.id)
        result = await poller.wait(pending_order.id)

        assert result.exhausted
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_webhook_settled_order_stops_polling(
        self, session, session_maker, gateway, pending_order
    ) -> None:
        manager = PaymentOrderManager(session, gateway)
        await manager.apply_status(pending_order, OrderStatus.FAILED, source="webhook")
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=0, max_attempts=10)

        poller.start(pending_order.id)
        result = await poller.wait(pending_order.id)

        assert result.status == OrderStatus.FAILED
        assert result.attempts == 1
        assert gateway.fetch_calls == []

    @pytest.mark.asyncio
    async def test_unknown_order_stops_immediately(self, session_maker, gateway) -> None:
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=0, max_attempts=10)
        order_id = uuid.uuid4()

        poller.start(order_id)
        result = await poller.wait(order_id)

        assert result.attempts == 1
        assert not result.exhausted
        assert result.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_start_is_deduplicated_per_order(self, session_maker, gateway, pending_order) -> None:
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=10, max_attempts=3)

        first = poller.start(pending_order.id)
        second = poller.start(pending_order.id)

        assert first is second
        assert poller.is_polling(pending_order.id)
        await poller.shutdown()
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_cancel_stops_task(self, session_maker, gateway, pending_order) -> None:
        poller = OrderStatusPoller(session_maker, gateway, interval_seconds=10, max_attempts=3)

        task = poller.start(pending_order.id)
        assert poller.cancel(pending_order.id)
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not poller.is_polling(pending_order.id)
        assert not poller.cancel(pending_order.id)
        assert await poller.wait(pending_order.id) is None
