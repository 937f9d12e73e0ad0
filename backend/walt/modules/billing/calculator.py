"""Billing calculator.

Turns pinned bytes into a monthly USD cost and a chargeable amount in the
billing currency. All functions are pure; configuration is passed in through
`BillingConfig`.
"""

import logging
import math
import warnings
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from walt.core.config import (
    DEFAULT_BILLING_CYCLE_DAYS,
    DEFAULT_COST_PER_GB_USD,
    DEFAULT_FREE_TIER_GB,
    DEFAULT_MIN_CHARGE_INR,
    DEFAULT_USD_TO_INR_RATE,
    Settings,
    settings,
)

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3


class ConfigurationInvalid(Warning):
    """A billing configuration value was unusable and its default was used."""


def _positive_or_default(name: str, value, default) -> tuple[float, bool]:
    """Return (value, True) if it is a finite number above zero, else (default, False)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isfinite(number) and number > 0:
        if not isinstance(default, int):
            return number, True
        if int(number) >= 1:
            return int(number), True

    message = (
        f"{name}={value!r} is not a positive finite number, using default {default}"
    )
    logger.warning(f"{ConfigurationInvalid.__name__}: {message}")
    warnings.warn(message, ConfigurationInvalid, stacklevel=4)
    return default, False


@dataclass(frozen=True)
class BillingConfig:
    """Billing parameters.

    Invalid values (non-finite, zero or negative) are replaced with defaults
    at construction time, so a bad environment never fails a request.
    """
    free_tier_gb: float = DEFAULT_FREE_TIER_GB
    cost_per_gb_usd: float = DEFAULT_COST_PER_GB_USD
    usd_to_inr_rate: float = DEFAULT_USD_TO_INR_RATE
    min_charge: float = DEFAULT_MIN_CHARGE_INR
    billing_cycle_days: int = DEFAULT_BILLING_CYCLE_DAYS
    currency: str = "INR"
    invalid_fields: tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        defaults = {
            "free_tier_gb": DEFAULT_FREE_TIER_GB,
            "cost_per_gb_usd": DEFAULT_COST_PER_GB_USD,
            "usd_to_inr_rate": DEFAULT_USD_TO_INR_RATE,
            "min_charge": DEFAULT_MIN_CHARGE_INR,
            "billing_cycle_days": DEFAULT_BILLING_CYCLE_DAYS,
        }
        invalid = []
        for name, default in defaults.items():
            value = getattr(self, name)
            sanitized, valid = _positive_or_default(name, value, default)
            if not valid:
                invalid.append(name)
            object.__setattr__(self, name, sanitized)
        object.__setattr__(self, "invalid_fields", tuple(invalid))

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "BillingConfig":
        source = source or settings
        return cls(
            free_tier_gb=source.FREE_TIER_GB,
            cost_per_gb_usd=source.COST_PER_GB_USD,
            usd_to_inr_rate=source.USD_TO_INR_RATE,
            min_charge=source.MIN_CHARGE_INR,
            billing_cycle_days=source.BILLING_CYCLE_DAYS,
            currency=source.BILLING_CURRENCY,
        )


def round2(value: float) -> float:
    """Round to 2 decimal places, halves away from zero."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def bytes_to_gb(num_bytes: int) -> float:
    """Convert bytes to binary gigabytes (2^30 bytes)."""
    return num_bytes / BYTES_PER_GB


def exceeds_free_tier(pinned_bytes: int, free_tier_gb: float) -> bool:
    """True when pinned storage is strictly above the free tier."""
    return bytes_to_gb(pinned_bytes) > free_tier_gb


def monthly_cost(pinned_bytes: int, free_tier_gb: float, cost_per_gb: float) -> float:
    """Monthly USD cost of the pinned storage above the free tier.

    Args:
        pinned_bytes: Pinned, non-deleted bytes
        free_tier_gb: Free allowance in GB
        cost_per_gb: USD per GB per month

    Returns:
        Unrounded USD cost, never negative
    """
    overage_gb = max(0.0, bytes_to_gb(pinned_bytes) - free_tier_gb)
    return overage_gb * cost_per_gb


def charge_amount(monthly_cost_usd: float, fx_rate: float, min_charge: float) -> float:
    """Amount to charge in the billing currency.

    Zero cost charges nothing. Any positive cost is converted, rounded to two
    decimals and raised to at least `min_charge`.
    """
    if monthly_cost_usd <= 0:
        return 0.0
    return max(round2(monthly_cost_usd * fx_rate), min_charge)


def estimated_cost(
    pinned_bytes: int,
    duration_days: float,
    config: Optional[BillingConfig] = None,
) -> float:
    """Monthly cost prorated over `duration_days`, in USD (2 decimals)."""
    config = config or BillingConfig.from_settings()
    monthly = monthly_cost(pinned_bytes, config.free_tier_gb, config.cost_per_gb_usd)
    return round2(monthly * (duration_days / config.billing_cycle_days))


def free_tier_limit_usd(config: Optional[BillingConfig] = None) -> float:
    """USD value of the free allowance, for display."""
    config = config or BillingConfig.from_settings()
    return round2(config.free_tier_gb * config.cost_per_gb_usd)


@dataclass
class ChargeBreakdown:
    """Full cost computation for one amount of pinned storage."""
    pinned_bytes: int
    pinned_gb: float
    exceeds_free_tier: bool
    monthly_cost_usd: float
    charge_amount: float
    currency: str


class BillingCalculator:
    """Applies one `BillingConfig` to pinned byte counts."""

    def __init__(self, config: Optional[BillingConfig] = None):
        self.config = config or BillingConfig.from_settings()

    def monthly_cost(self, pinned_bytes: int) -> float:
        return monthly_cost(
            pinned_bytes, self.config.free_tier_gb, self.config.cost_per_gb_usd
        )

    def exceeds_free_tier(self, pinned_bytes: int) -> bool:
        return exceeds_free_tier(pinned_bytes, self.config.free_tier_gb)

    def charge_amount(self, pinned_bytes: int) -> float:
        return charge_amount(
            self.monthly_cost(pinned_bytes),
            self.config.usd_to_inr_rate,
            self.config.min_charge,
        )

    def estimated_cost(self, pinned_bytes: int, duration_days: float) -> float:
        return estimated_cost(pinned_bytes, duration_days, self.config)

    def free_tier_limit_usd(self) -> float:
        return free_tier_limit_usd(self.config)

    def breakdown(self, pinned_bytes: int) -> ChargeBreakdown:
        cost = self.monthly_cost(pinned_bytes)
        return ChargeBreakdown(
            pinned_bytes=pinned_bytes,
            pinned_gb=bytes_to_gb(pinned_bytes),
            exceeds_free_tier=self.exceeds_free_tier(pinned_bytes),
            monthly_cost_usd=cost,
            charge_amount=charge_amount(
                cost, self.config.usd_to_inr_rate, self.config.min_charge
            ),
            currency=self.config.currency,
        )
