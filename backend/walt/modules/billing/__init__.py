"""Billing module.

Storage cost calculation, billing cycles, payment orders and the access gate.
Order management, polling and tasks are imported from their own modules.
"""

from walt.modules.billing.calculator import (
    BillingCalculator,
    BillingConfig,
    ChargeBreakdown,
    ConfigurationInvalid,
)
from walt.modules.billing.cycle import BillingPeriod, CycleScheduler
from walt.modules.billing.models import Order, OrderStatus, Subscription

__all__ = [
    "BillingCalculator",
    "BillingConfig",
    "BillingPeriod",
    "ChargeBreakdown",
    "ConfigurationInvalid",
    "CycleScheduler",
    "Order",
    "OrderStatus",
    "Subscription",
]
