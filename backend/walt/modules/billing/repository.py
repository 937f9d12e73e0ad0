"""Repositories for subscriptions and payment orders.

Order status changes are compare-and-set updates guarded on
`status = 'PENDING'`: whichever of webhook, poll or reconcile lands first
wins, and every later attempt matches no row. Updates skip session
synchronization so the rowcount is exact; reads use populate_existing so a
long-lived session never acts on a stale status.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.database import utcnow
from walt.modules.billing.models import Order, OrderStatus, Subscription


class SubscriptionRepository:
    """Repository for subscription operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_account(self, account_id: uuid.UUID) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(Subscription.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        account_id: uuid.UUID,
        billing_day: int,
        next_billing_at: Optional[date] = None,
    ) -> tuple[Subscription, bool]:
        """Get the account's subscription, creating it if missing.

        Returns:
            Tuple of (subscription, created)
        """
        subscription = await self.get_by_account(account_id)
        if subscription:
            return subscription, False

        subscription = Subscription(
            account_id=account_id,
            billing_day=billing_day,
            next_billing_at=next_billing_at,
            is_active=True,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(subscription)
                await self.session.flush()
        except IntegrityError:
            existing = await self.get_by_account(account_id)
            if existing is None:
                raise
            return existing, False
        return subscription, True

    async def mark_billed(
        self,
        account_id: uuid.UUID,
        billed_on: date,
        next_billing_at: date,
    ) -> bool:
        result = await self.session.execute(
            update(Subscription)
            .where(Subscription.account_id == account_id)
            .values(
                last_billed_at=billed_on,
                next_billing_at=next_billing_at,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class OrderRepository:
    """Repository for payment order operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        account_id: uuid.UUID,
        amount: float,
        currency: str,
        provider_order_id: str,
        billing_period_start: date,
        billing_period_end: date,
        payment_session_id: Optional[str] = None,
        payment_link: Optional[str] = None,
        provider_response: Optional[dict] = None,
        pinned_bytes: int = 0,
        monthly_cost_usd: float = 0.0,
    ) -> Order:
        order = Order(
            account_id=account_id,
            amount=amount,
            currency=currency,
            status=OrderStatus.PENDING.value,
            provider_order_id=provider_order_id,
            payment_session_id=payment_session_id,
            payment_link=payment_link,
            provider_response=provider_response,
            billing_period_start=billing_period_start,
            billing_period_end=billing_period_end,
            pinned_bytes=pinned_bytes,
            monthly_cost_usd=monthly_cost_usd,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_order_id(self, provider_order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.provider_order_id == provider_order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_account(self, account_id: uuid.UUID, reference: str) -> Optional[Order]:
        """Find an account's order by internal id or provider order id."""
        conditions = [Order.provider_order_id == reference]
        try:
            conditions.append(Order.id == uuid.UUID(reference))
        except ValueError:
            pass
        result = await self.session.execute(
            select(Order).where(and_(Order.account_id == account_id, or_(*conditions)))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_active_for_period(
        self,
        account_id: uuid.UUID,
        period_start: date,
    ) -> Optional[Order]:
        """The PENDING or PAID order for a period, preferring PAID."""
        result = await self.session.execute(
            select(Order)
            .where(
                and_(
                    Order.account_id == account_id,
                    Order.billing_period_start == period_start,
                    Order.status.in_([OrderStatus.PENDING.value, OrderStatus.PAID.value]),
                )
            )
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        orders = list(result.scalars().all())
        for order in orders:
            if order.status == OrderStatus.PAID.value:
                return order
        return orders[0] if orders else None

    async def get_latest_for_period(
        self,
        account_id: uuid.UUID,
        period_start: date,
    ) -> Optional[Order]:
        result = await self.session.execute(
            select(Order)
            .where(
                and_(
                    Order.account_id == account_id,
                    Order.billing_period_start == period_start,
                )
            )
            .order_by(Order.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_account(self, account_id: uuid.UUID, limit: int = 50) -> list[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.account_id == account_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_pending(
        self,
        created_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Order]:
        query = select(Order).where(Order.status == OrderStatus.PENDING.value)
        if created_before is not None:
            query = query.where(Order.created_at < created_before)
        result = await self.session.execute(
            query.order_by(Order.created_at).limit(limit).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def transition(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        source: str,
        provider_response: Optional[dict] = None,
    ) -> bool:
        """Move a PENDING order to a terminal status.

        Returns:
            True if this call performed the transition; False if the order was
            already terminal (or does not exist)
        """
        if new_status is OrderStatus.PENDING:
            raise ValueError("Orders can only transition out of PENDING")

        values = {
            "status": new_status.value,
            "status_source": source,
            "completed_at": utcnow(),
            "updated_at": utcnow(),
        }
        if provider_response is not None:
            values["provider_response"] = provider_response

        result = await self.session.execute(
            update(Order)
            .where(
                and_(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING.value,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
