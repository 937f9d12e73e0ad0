"""Usage metering for stored and pinned bytes.

Two numbers are kept apart:

- the quota counter (`Account.storage_used_bytes`) is a cached total of all
  non-deleted uploads, mutated on upload and delete, and gates admission;
- the pinned aggregate is computed live from stored objects and is the only
  input to billing.

The storage warning thresholds mirror the progressive 50/75/90% warnings used
for other metered resources.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from walt.modules.account.models import Account
from walt.modules.storage.repository import StoredObjectRepository


WARNING_THRESHOLDS = [50, 75, 90]

_BYTE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


@dataclass
class StorageUsage:
    """Point-in-time storage usage of one account."""
    account_id: uuid.UUID
    used_bytes: int  # quota counter
    limit_bytes: int
    stored_bytes: int  # live aggregate of non-deleted objects
    pinned_bytes: int  # live aggregate of pinned, non-deleted objects
    percent_used: float
    warning_threshold_reached: Optional[int]

    @property
    def remaining_bytes(self) -> int:
        return max(0, self.limit_bytes - self.used_bytes)

    @property
    def counter_drift(self) -> int:
        """Difference between the cached counter and the live aggregate."""
        return self.used_bytes - self.stored_bytes


class UsageMeter:
    """Reads usage aggregates. Has no side effects."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.objects = StoredObjectRepository(session)

    async def pinned_bytes(self, account_id: uuid.UUID) -> int:
        """Sum of sizes of the account's pinned, non-deleted objects."""
        return await self.objects.sum_pinned_bytes(account_id)

    async def stored_bytes(self, account_id: uuid.UUID) -> int:
        """Sum of sizes of the account's non-deleted objects."""
        return await self.objects.sum_stored_bytes(account_id)

    async def usage_snapshot(self, account: Account) -> StorageUsage:
        """Build a usage snapshot for an account.

        Args:
            account: Account whose counter and limit are reported as loaded

        Returns:
            StorageUsage with counter, limit and both live aggregates
        """
        stored = await self.stored_bytes(account.id)
        pinned = await self.pinned_bytes(account.id)
        percent = calculate_usage_percent(
            account.storage_used_bytes, account.storage_limit_bytes
        )
        return StorageUsage(
            account_id=account.id,
            used_bytes=account.storage_used_bytes,
            limit_bytes=account.storage_limit_bytes,
            stored_bytes=stored,
            pinned_bytes=pinned,
            percent_used=percent,
            warning_threshold_reached=get_warning_threshold(percent),
        )


def calculate_usage_percent(used: float, limit: float) -> float:
    """Calculate usage as percentage of limit.

    Args:
        used: Amount used
        limit: Limit value

    Returns:
        Usage percentage (100.0 when the limit is zero or negative)
    """
    if limit <= 0:
        return 100.0
    return (used / limit) * 100


def get_warning_threshold(usage_percent: float) -> Optional[int]:
    """Get the highest warning threshold reached (50, 75, 90) or None."""
    if usage_percent >= 90:
        return 90
    elif usage_percent >= 75:
        return 75
    elif usage_percent >= 50:
        return 50
    return None


def should_send_warning(
    usage_percent: float,
    warnings_sent: set[int],
) -> Optional[int]:
    """Determine which warning, if any, should be sent next.

    Args:
        usage_percent: Current usage percentage
        warnings_sent: Thresholds already warned about

    Returns:
        The highest unsent threshold that has been reached, or None
    """
    for threshold in sorted(WARNING_THRESHOLDS, reverse=True):
        if usage_percent >= threshold and threshold not in warnings_sent:
            return threshold
    return None


def format_bytes(num_bytes: float) -> str:
    if abs(num_bytes) < 1024:
        return f"{int(num_bytes)} B"
    value = float(num_bytes)
    for unit in _BYTE_UNITS[1:]:
        value /= 1024
        if abs(value) < 1024 or unit == _BYTE_UNITS[-1]:
            break
    return f"{value:.2f} {unit}"


def format_storage_for_display(used_bytes: int, limit_bytes: int) -> str:
    """Format storage usage for display, e.g. "1.50 GB/10.00 GB (15.0%)"."""
    percent = calculate_usage_percent(used_bytes, limit_bytes)
    return f"Storage: {format_bytes(used_bytes)}/{format_bytes(limit_bytes)} ({percent:.1f}%)"
