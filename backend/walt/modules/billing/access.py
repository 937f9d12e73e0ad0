"""Access gate: blocks accounts with an unpaid charge for the current period."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.metrics import ACCESS_DECISIONS_TOTAL
from walt.modules.account.models import Account
from walt.modules.billing.calculator import BillingCalculator, round2
from walt.modules.billing.cycle import CycleScheduler
from walt.modules.billing.models import OrderStatus
from walt.modules.billing.orders import utc_today
from walt.modules.billing.repository import OrderRepository
from walt.modules.billing.schemas import (
    BILLING_LIMIT_EXCEEDED,
    AccessDecision,
    BillingPeriodView,
)
from walt.modules.storage.metering import UsageMeter

logger = logging.getLogger(__name__)


class AccessGate:
    """Read-only access check. Never creates orders or subscriptions."""

    def __init__(self, session: AsyncSession, calculator: Optional[BillingCalculator] = None):
        self.session = session
        self.calculator = calculator or BillingCalculator()
        self.meter = UsageMeter(session)
        self.orders = OrderRepository(session)

    async def check_access(self, account: Account, today: Optional[date] = None) -> AccessDecision:
        """Decide whether the account may keep using the service.

        Nothing owed means allowed. When a charge is due, access requires a
        PAID order for the current billing period.
        """
        today = today or utc_today()
        pinned = await self.meter.pinned_bytes(account.id)
        breakdown = self.calculator.breakdown(pinned)
        currency = breakdown.currency

        if breakdown.charge_amount <= 0:
            ACCESS_DECISIONS_TOTAL.labels(allowed="true").inc()
            return AccessDecision(allowed=True, currency=currency)

        period = CycleScheduler.for_created_at(account.created_at).billing_period(today)
        period_view = BillingPeriodView(start=period.start, end=period.end)
        order = await self.orders.get_active_for_period(account.id, period.start)
        order_status = OrderStatus(order.status) if order else None

        if order_status is OrderStatus.PAID:
            ACCESS_DECISIONS_TOTAL.labels(allowed="true").inc()
            return AccessDecision(
                allowed=True,
                charge_amount=breakdown.charge_amount,
                currency=currency,
                monthly_cost_usd=round2(breakdown.monthly_cost_usd),
                current_period=period_view,
                order_status=order_status,
            )

        ACCESS_DECISIONS_TOTAL.labels(allowed="false").inc()
        reason = (
            f"Storage above the free tier: {breakdown.charge_amount:.2f} {currency} "
            f"outstanding for {period.start.isoformat()} to {period.end.isoformat()}"
        )
        logger.debug(f"Access blocked for account {account.id}: {reason}")
        return AccessDecision(
            allowed=False,
            reason=reason,
            code=BILLING_LIMIT_EXCEEDED,
            charge_amount=breakdown.charge_amount,
            currency=currency,
            monthly_cost_usd=round2(breakdown.monthly_cost_usd),
            current_period=period_view,
            order_status=order_status,
        )
