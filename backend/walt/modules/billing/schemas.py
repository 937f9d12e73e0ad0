"""Pydantic schemas for billing results."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from walt.modules.billing.models import OrderStatus


BILLING_LIMIT_EXCEEDED = "BILLING_LIMIT_EXCEEDED"


class BillingPeriodView(BaseModel):
    """Half-open billing period."""
    start: date
    end: date


class OrderView(BaseModel):
    """Payment order as exposed to the account owner."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_order_id: str
    amount: float
    currency: str
    status: OrderStatus
    payment_session_id: Optional[str] = None
    payment_link: Optional[str] = None
    billing_period_start: date
    billing_period_end: date
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BillingStatus(BaseModel):
    """Current billing position of an account."""
    account_id: uuid.UUID
    pinned_bytes: int
    pinned_gb: float
    monthly_cost_usd: float = Field(..., description="Rounded to 2 decimals")
    exceeds_free_tier: bool
    charge_amount: float
    currency: str
    free_tier_gb: float
    free_tier_limit_usd: float
    billing_day: int
    next_billing_date: date
    current_period: BillingPeriodView
    subscription_created: bool = False
    last_billed_at: Optional[date] = None
    latest_order: Optional[OrderView] = None


class AccessDecision(BaseModel):
    """Whether the account may keep using the service."""
    allowed: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    charge_amount: float = 0.0
    currency: str = "INR"
    monthly_cost_usd: float = 0.0
    current_period: Optional[BillingPeriodView] = None
    order_status: Optional[OrderStatus] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned for every webhook delivery.

    Identical whether the delivery was applied, ignored or rejected.
    """
    received: bool = True


class PollResult(BaseModel):
    """Outcome of polling one order after checkout."""
    order_id: uuid.UUID
    status: OrderStatus
    attempts: int
    exhausted: bool = False
