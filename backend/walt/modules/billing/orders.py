"""Payment order lifecycle.

Drives an order from creation with the provider, through checkout, to a
terminal status confirmed by webhook or by polling. Creation is idempotent
per account and billing period; status changes are compare-and-set so the
webhook and the poller can race freely.
"""

import logging
import secrets
import time
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.config import settings
from walt.core.locks import KeyedLock, account_locks
from walt.core.logging import log_error, log_info, log_warning
from walt.core.metrics import (
    ORDER_TRANSITIONS_TOTAL,
    ORDERS_CREATED_TOTAL,
    WEBHOOK_REJECTIONS_TOTAL,
)
from walt.modules.account.models import Account
from walt.modules.billing.calculator import BillingCalculator, ChargeBreakdown
from walt.modules.billing.cycle import BillingPeriod, CycleScheduler
from walt.modules.billing.models import Order, OrderStatus
from walt.modules.billing.repository import OrderRepository, SubscriptionRepository
from walt.modules.billing.schemas import WebhookAck
from walt.modules.payment_gateway.interface import (
    CreateOrderDTO,
    CustomerDetails,
    PaymentGatewayInterface,
    PaymentProviderError,
    WebhookVerificationFailed,
)
from walt.modules.storage.metering import UsageMeter

logger = logging.getLogger(__name__)


class OrderNotFoundError(Exception):
    """Raised when an order lookup matches nothing."""


def generate_order_id() -> str:
    """Provider order id: `order_<epoch ms>_<random>`."""
    return f"order_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class PaymentOrderManager:
    """Creates and reconciles payment orders for one session.

    The gateway is injected and owned by the caller.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGatewayInterface,
        calculator: Optional[BillingCalculator] = None,
        locks: Optional[KeyedLock] = None,
        frontend_url: Optional[str] = None,
        backend_url: Optional[str] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.calculator = calculator or BillingCalculator()
        self.locks = locks or account_locks
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        self.backend_url = (backend_url or settings.BACKEND_URL).rstrip("/")
        self.orders = OrderRepository(session)
        self.subscriptions = SubscriptionRepository(session)
        self.meter = UsageMeter(session)

    # ==================== Creation ====================

    async def ensure_order(
        self,
        account: Account,
        today: Optional[date] = None,
    ) -> Optional[Order]:
        """Return the order for the current period, creating it if needed.

        Returns nothing when the current charge is zero. Otherwise ensures the
        subscription exists and returns the period's PENDING or PAID order,
        creating a new one with the provider only when neither exists.

        Args:
            account: Account to bill
            today: Date used for the billing period (defaults to UTC today)

        Returns:
            The period's Order, or None when nothing is owed

        Raises:
            PaymentProviderError: If the provider rejects order creation
        """
        today = today or utc_today()

        async with self.locks.hold(("order", account.id)):
            pinned = await self.meter.pinned_bytes(account.id)
            breakdown = self.calculator.breakdown(pinned)
            if breakdown.charge_amount <= 0:
                return None

            scheduler = CycleScheduler.for_created_at(account.created_at)
            await self.subscriptions.get_or_create(
                account.id,
                billing_day=scheduler.day,
                next_billing_at=scheduler.next_billing_date(today),
            )
            await self.session.commit()
            period = scheduler.billing_period(today)

            existing = await self.orders.get_active_for_period(account.id, period.start)
            if existing:
                return existing
            # No read snapshot may stay open across the provider call
            await self.session.commit()

            return await self.create_order(account, breakdown, period)

    async def create_order(
        self,
        account: Account,
        breakdown: ChargeBreakdown,
        period: BillingPeriod,
    ) -> Order:
        """Create an order with the provider, then persist it as PENDING.

        Nothing is persisted when the provider call fails.

        Raises:
            PaymentProviderError: If the provider rejects order creation
            ValueError: If the charge is not positive
        """
        if breakdown.charge_amount <= 0:
            raise ValueError("Orders require a positive charge amount")

        request = CreateOrderDTO(
            order_id=generate_order_id(),
            amount=breakdown.charge_amount,
            currency=breakdown.currency,
            customer=CustomerDetails(
                customer_id=str(account.id),
                customer_email=account.email,
                customer_name=account.display_name,
            ),
            return_url=f"{self.frontend_url}/payment/callback?order_id={{order_id}}",
            notify_url=f"{self.backend_url}/api/payment/webhook",
            note=f"Storage charge {period.start.isoformat()} to {period.end.isoformat()}",
        )

        try:
            provider_order = await self.gateway.create_order(request)
        except PaymentProviderError as e:
            log_error(
                logger,
                f"Order creation failed for account {account.id}",
                exception=e,
                account_id=str(account.id),
                amount=breakdown.charge_amount,
            )
            raise

        try:
            async with self.session.begin_nested():
                order = await self.orders.create(
                    account_id=account.id,
                    amount=breakdown.charge_amount,
                    currency=breakdown.currency,
                    provider_order_id=provider_order.provider_order_id,
                    payment_session_id=provider_order.payment_session_id,
                    payment_link=provider_order.payment_link,
                    provider_response=provider_order.gateway_response,
                    billing_period_start=period.start,
                    billing_period_end=period.end,
                    pinned_bytes=breakdown.pinned_bytes,
                    monthly_cost_usd=breakdown.monthly_cost_usd,
                )
        except IntegrityError:
            # Another process created the period's pending order first
            existing = await self.orders.get_active_for_period(account.id, period.start)
            if existing is None:
                raise
            log_warning(
                logger,
                f"Discarding provider order {provider_order.provider_order_id}, "
                f"period already has order {existing.provider_order_id}",
                account_id=str(account.id),
            )
            await self.session.commit()
            return existing

        await self.session.commit()
        ORDERS_CREATED_TOTAL.labels(currency=breakdown.currency).inc()
        log_info(
            logger,
            f"Created order {order.provider_order_id} for account {account.id}: "
            f"{order.amount:.2f} {order.currency}",
            account_id=str(account.id),
            order_id=str(order.id),
            period_start=period.start.isoformat(),
        )
        return order

    # ==================== Reconciliation ====================

    async def handle_webhook(
        self,
        raw_body: bytes,
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> WebhookAck:
        """Verify and apply a provider webhook.

        Every delivery gets the same acknowledgement; the reason a delivery
        was dropped is only logged.
        """
        try:
            self.gateway.verify_webhook_signature(raw_body, signature, timestamp)
            event = self.gateway.parse_webhook(raw_body)
        except WebhookVerificationFailed as e:
            WEBHOOK_REJECTIONS_TOTAL.labels(reason=e.reason).inc()
            log_warning(logger, f"Dropped webhook: {e.reason}", reason=e.reason)
            return WebhookAck()

        if not event.provider_order_id:
            WEBHOOK_REJECTIONS_TOTAL.labels(reason="missing_order_id").inc()
            log_warning(logger, f"Dropped webhook {event.event_type}: no order id")
            return WebhookAck()

        order = await self.orders.get_by_provider_order_id(event.provider_order_id)
        if order is None:
            WEBHOOK_REJECTIONS_TOTAL.labels(reason="unknown_order").inc()
            log_warning(
                logger,
                f"Dropped webhook for unknown order {event.provider_order_id}",
            )
            return WebhookAck()

        if event.status is None:
            log_info(
                logger,
                f"Webhook {event.event_type} for {order.provider_order_id} "
                f"does not change the order (payment status {event.payment_status})",
            )
            return WebhookAck()

        if event.amount is not None and round(event.amount, 2) != round(order.amount, 2):
            # The signed status still applies; the amount is flagged for review
            log_warning(
                logger,
                f"Webhook amount {event.amount:.2f} for {order.provider_order_id} "
                f"differs from order amount {order.amount:.2f}",
                order_id=str(order.id),
                webhook_amount=event.amount,
                order_amount=order.amount,
            )

        await self.apply_status(order, event.status, source="webhook", provider_response=event.payload)
        return WebhookAck()

    async def refresh_order(
        self,
        order_ref: Union[Order, uuid.UUID],
        source: str = "poll",
    ) -> Order:
        """Fetch the provider status once and apply it.

        Raises:
            OrderNotFoundError: If the order does not exist
            PaymentProviderError: If the provider cannot be reached
        """
        order = order_ref if isinstance(order_ref, Order) else await self.orders.get_by_id(order_ref)
        if order is None:
            raise OrderNotFoundError(f"Order {order_ref} not found")
        if order.is_terminal:
            return order

        provider_status = await self.gateway.fetch_order(order.provider_order_id)
        await self.apply_status(
            order,
            provider_status.status,
            source=source,
            provider_response=provider_status.gateway_response,
        )
        return order

    async def apply_status(
        self,
        order: Order,
        status: OrderStatus,
        source: str,
        provider_response: Optional[dict] = None,
    ) -> bool:
        """Move a PENDING order to `status`.

        Only the call that wins the transition updates the subscription.

        Returns:
            True if this call changed the order
        """
        if status is OrderStatus.PENDING:
            return False

        won = await self.orders.transition(order.id, status, source, provider_response)
        if won and status is OrderStatus.PAID:
            await self.subscriptions.mark_billed(
                order.account_id,
                billed_on=utc_today(),
                next_billing_at=order.billing_period_end,
            )
        await self.session.commit()
        # Pick up the stored status whether or not this call won
        await self.session.refresh(order)

        if won:
            ORDER_TRANSITIONS_TOTAL.labels(status=status.value, source=source).inc()
            log_info(
                logger,
                f"Order {order.provider_order_id} is now {status.value} (via {source})",
                order_id=str(order.id),
                account_id=str(order.account_id),
                status=status.value,
                source=source,
            )
        return won

    # ==================== Lookup ====================

    async def get_order_for_account(
        self,
        account_id: uuid.UUID,
        reference: str,
        refresh: bool = True,
    ) -> Order:
        """Find an account's order by internal id or provider order id.

        A PENDING order is refreshed from the provider first; if the provider
        is unreachable the stored state is returned.

        Raises:
            OrderNotFoundError: If the account has no such order
        """
        order = await self.orders.get_for_account(account_id, reference)
        if order is None:
            raise OrderNotFoundError(f"Order {reference} not found")

        if refresh and not order.is_terminal:
            try:
                await self.refresh_order(order, source="lookup")
            except PaymentProviderError as e:
                log_warning(
                    logger,
                    f"Could not refresh order {order.provider_order_id}: {e}",
                    order_id=str(order.id),
                )
        return order
