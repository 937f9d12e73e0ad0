"""Tests for scheduled billing tasks."""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from walt.modules.billing.models import Order, OrderStatus
from walt.modules.billing.tasks import (
    charge_due_accounts,
    reconcile_pending_orders,
    run_billing_tasks,
)

GIB = 1024 ** 3
BILLING_DAY = date(2026, 3, 15)


async def orders_for(session, account) -> list[Order]:
    result = await session.execute(select(Order).where(Order.account_id == account.id))
    return list(result.scalars().all())


class TestChargeDueAccounts:
    """Tests for the daily billing run."""

    @pytest.mark.asyncio
    async def test_orders_opened_only_for_due_accounts_that_owe(
        self, session, gateway, make_account, add_object
    ) -> None:
        owing = await make_account()
        free = await make_account()
        not_due = await make_account(created_at=datetime(2026, 1, 20, tzinfo=timezone.utc))
        await add_object(owing, 6 * GIB)
        await add_object(free, 1 * GIB)
        await add_object(not_due, 6 * GIB)

        summary = await charge_due_accounts(session, gateway, today=BILLING_DAY)

        assert summary == {"accounts_due": 2, "orders_ensured": 1, "failures": 0}
        assert len(await orders_for(session, owing)) == 1
        assert await orders_for(session, free) == []
        assert await orders_for(session, not_due) == []

    @pytest.mark.asyncio
    async def test_run_is_idempotent(self, session, gateway, make_account, add_object) -> None:
        account = await make_account()
        await add_object(account, 6 * GIB)

        await charge_due_accounts(session, gateway, today=BILLING_DAY)
        await charge_due_accounts(session, gateway, today=BILLING_DAY)

        assert len(await orders_for(session, account)) == 1
        assert len(gateway.created) == 1

    @pytest.mark.asyncio
    async def test_clamped_billing_day_is_due(self, session, gateway, make_account, add_object) -> None:
        account = await make_account(created_at=datetime(2026, 1, 31, tzinfo=timezone.utc))
        await add_object(account, 6 * GIB)

        summary = await charge_due_accounts(session, gateway, today=date(2026, 2, 28))

        assert summary["orders_ensured"] == 1
        order = (await orders_for(session, account))[0]
        assert order.billing_period_start == date(2026, 2, 28)
        assert order.billing_period_end == date(2026, 3, 31)

    @pytest.mark.asyncio
    async def test_provider_failure_does_not_stop_run(
        self, session, gateway, make_account, add_object
    ) -> None:
        first = await make_account()
        second = await make_account()
        await add_object(first, 6 * GIB)
        await add_object(second, 7 * GIB)
        gateway.fail_create = True

        summary = await charge_due_accounts(session, gateway, today=BILLING_DAY)

        assert summary == {"accounts_due": 2, "orders_ensured": 0, "failures": 2}
        assert await orders_for(session, first) == []


class TestReconcilePendingOrders:
    """Tests for late reconciliation of pending orders."""

    @pytest.mark.asyncio
    async def test_settles_orders_paid_after_polling(
        self, session, gateway, make_account, add_object
    ) -> None:
        account = await make_account()
        await add_object(account, 6 * GIB)
        await charge_due_accounts(session, gateway, today=BILLING_DAY)
        order = (await orders_for(session, account))[0]
        gateway.statuses[order.provider_order_id] = OrderStatus.PAID

        summary = await reconcile_pending_orders(session, gateway, older_than=timedelta(0))
        await session.refresh(order)

        assert summary == {"orders_checked": 1, "orders_settled": 1, "errors": 0}
        assert order.status == OrderStatus.PAID.value
        assert order.status_source == "reconcile"

    @pytest.mark.asyncio
    async def test_recent_orders_are_left_to_the_poller(
        self, session, gateway, make_account, add_object
    ) -> None:
        account = await make_account()
        await add_object(account, 6 * GIB)
        await charge_due_accounts(session, gateway, today=BILLING_DAY)

        summary = await reconcile_pending_orders(session, gateway, older_than=timedelta(hours=1))

        assert summary["orders_checked"] == 0
        assert gateway.fetch_calls == []

    @pytest.mark.asyncio
    async def test_provider_errors_are_counted(self, session, gateway, make_account, add_object) -> None:
        account = await make_account()
        await add_object(account, 6 * GIB)
        await charge_due_accounts(session, gateway, today=BILLING_DAY)
        gateway.fail_fetch = True

        summary = await reconcile_pending_orders(session, gateway, older_than=timedelta(0))

        assert summary == {"orders_checked": 1, "orders_settled": 0, "errors": 1}

    @pytest.mark.asyncio
    async def test_run_billing_tasks_summary(self, session, gateway, make_account, add_object) -> None:
        account = await make_account()
        await add_object(account, 6 * GIB)

        summary = await run_billing_tasks(session, gateway, today=BILLING_DAY)

        assert summary["accounts_due"] == 1
        assert summary["orders_ensured"] == 1
        assert "orders_checked" in summary
        assert "run_at" in summary
