"""Billing service: the account's current billing position."""

from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from walt.modules.account.models import Account
from walt.modules.billing.calculator import BillingCalculator, round2
from walt.modules.billing.cycle import CycleScheduler
from walt.modules.billing.orders import utc_today
from walt.modules.billing.repository import OrderRepository, SubscriptionRepository
from walt.modules.billing.schemas import BillingPeriodView, BillingStatus, OrderView
from walt.modules.storage.metering import UsageMeter


class BillingService:
    """Computes billing status for an account."""

    def __init__(self, session: AsyncSession, calculator: Optional[BillingCalculator] = None):
        self.session = session
        self.calculator = calculator or BillingCalculator()
        self.meter = UsageMeter(session)
        self.orders = OrderRepository(session)
        self.subscriptions = SubscriptionRepository(session)

    async def get_status(self, account: Account, today: Optional[date] = None) -> BillingStatus:
        """Get pinned usage, cost, charge and cycle dates for an account.

        The subscription is created here the first time a positive charge is
        computed.

        Args:
            account: Account to report on
            today: Reference date (defaults to UTC today)

        Returns:
            BillingStatus
        """
        today = today or utc_today()
        pinned = await self.meter.pinned_bytes(account.id)
        breakdown = self.calculator.breakdown(pinned)
        scheduler = CycleScheduler.for_created_at(account.created_at)
        period = scheduler.billing_period(today)
        next_billing = scheduler.next_billing_date(today)

        subscription = await self.subscriptions.get_by_account(account.id)
        created = False
        if subscription is None and breakdown.charge_amount > 0:
            subscription, created = await self.subscriptions.get_or_create(
                account.id,
                billing_day=scheduler.day,
                next_billing_at=next_billing,
            )
            await self.session.commit()

        latest = await self.orders.get_latest_for_period(account.id, period.start)

        return BillingStatus(
            account_id=account.id,
            pinned_bytes=pinned,
            pinned_gb=round(breakdown.pinned_gb, 4),
            monthly_cost_usd=round2(breakdown.monthly_cost_usd),
            exceeds_free_tier=breakdown.exceeds_free_tier,
            charge_amount=breakdown.charge_amount,
            currency=breakdown.currency,
            free_tier_gb=self.calculator.config.free_tier_gb,
            free_tier_limit_usd=self.calculator.free_tier_limit_usd(),
            billing_day=scheduler.day,
            next_billing_date=next_billing,
            current_period=BillingPeriodView(start=period.start, end=period.end),
            subscription_created=created,
            last_billed_at=subscription.last_billed_at if subscription else None,
            latest_order=OrderView.model_validate(latest) if latest else None,
        )
