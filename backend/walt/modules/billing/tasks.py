"""Billing background tasks.

Scheduled tasks that open orders on billing days and reconcile orders whose
post-checkout polling ran out before the payment settled.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.celery_app import celery_app
from walt.core.database import async_session_maker, engine
from walt.core.logging import correlation_scope, log_error
from walt.modules.account.repository import AccountRepository
from walt.modules.billing.cycle import CycleScheduler
from walt.modules.billing.orders import PaymentOrderManager, utc_today
from walt.modules.billing.repository import OrderRepository
from walt.modules.payment_gateway.interface import (
    PaymentGatewayInterface,
    PaymentProviderError,
)
from walt.modules.payment_gateway.service import PaymentGatewayFactory

logger = logging.getLogger(__name__)

ACCOUNT_BATCH_SIZE = 500


async def charge_due_accounts(
    session: AsyncSession,
    gateway: PaymentGatewayInterface,
    today: Optional[date] = None,
) -> dict:
    """Ensure an order exists for every account whose billing day is today.

    Should be run daily via scheduler. A provider failure for one account is
    logged and does not stop the run.

    Args:
        session: Database session
        gateway: Payment gateway
        today: Billing date (defaults to UTC today)

    Returns:
        Counts of accounts checked, orders ensured and failures
    """
    today = today or utc_today()
    accounts = AccountRepository(session)
    manager = PaymentOrderManager(session, gateway)

    checked = 0
    ensured = 0
    failed = 0
    offset = 0

    while True:
        batch = await accounts.list_accounts(offset=offset, limit=ACCOUNT_BATCH_SIZE)
        if not batch:
            break
        offset += len(batch)

        for account in batch:
            if not CycleScheduler.for_created_at(account.created_at).is_billing_day(today):
                continue
            checked += 1
            try:
                order = await manager.ensure_order(account, today=today)
            except PaymentProviderError as e:
                failed += 1
                log_error(
                    logger,
                    f"Could not open order for account {account.id}",
                    exception=e,
                    account_id=str(account.id),
                )
                continue
            if order is not None:
                ensured += 1

    logger.info(
        f"Billing run for {today.isoformat()}: {checked} due, {ensured} orders, {failed} failures"
    )
    return {"accounts_due": checked, "orders_ensured": ensured, "failures": failed}


async def reconcile_pending_orders(
    session: AsyncSession,
    gateway: PaymentGatewayInterface,
    older_than: timedelta = timedelta(minutes=10),
    limit: int = 100,
) -> dict:
    """Refresh PENDING orders older than `older_than` from the provider.

    Returns:
        Counts of orders checked, settled and still failing to refresh
    """
    cutoff = datetime.now(timezone.utc) - older_than
    pending = await OrderRepository(session).list_pending(created_before=cutoff, limit=limit)
    manager = PaymentOrderManager(session, gateway)

    settled = 0
    errors = 0
    for order in pending:
        try:
            await manager.refresh_order(order, source="reconcile")
        except PaymentProviderError as e:
            errors += 1
            logger.warning(f"Reconcile of order {order.provider_order_id} failed: {e}")
            continue
        if order.is_terminal:
            settled += 1

    return {"orders_checked": len(pending), "orders_settled": settled, "errors": errors}


async def run_billing_tasks(
    session: AsyncSession,
    gateway: PaymentGatewayInterface,
    today: Optional[date] = None,
) -> dict:
    """Run all billing background tasks.

    Args:
        session: Database session
        gateway: Payment gateway

    Returns:
        Summary of task results
    """
    charged = await charge_due_accounts(session, gateway, today=today)
    reconciled = await reconcile_pending_orders(session, gateway)
    return {
        **charged,
        **reconciled,
        "run_at": datetime.now(timezone.utc).isoformat(),
    }


async def _with_gateway(task) -> dict:
    gateway = PaymentGatewayFactory.create()
    try:
        async with async_session_maker() as session:
            return await task(session, gateway)
    finally:
        await gateway.aclose()
        # Pooled connections belong to this event loop
        await engine.dispose()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    name="billing.charge_due_accounts",
)
def charge_due_accounts_task(self):
    """Open orders for accounts whose billing day is today."""
    with correlation_scope(f"billing-run-{self.request.id}"):
        return asyncio.run(_with_gateway(charge_due_accounts))


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="billing.reconcile_pending_orders",
)
def reconcile_pending_orders_task(self):
    """Settle orders whose payment finished after polling gave up."""
    with correlation_scope(f"reconcile-{self.request.id}"):
        return asyncio.run(_with_gateway(reconcile_pending_orders))
