"""Quota gate for uploads.

Admission is a reservation: the incoming bytes are added to the account's
counter by one conditional UPDATE that only matches while
`used + incoming <= limit`. The UPDATE is the source of truth across
processes; the per-account lock keeps tasks in this process from queueing on
the database write lock.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.locks import KeyedLock, account_locks
from walt.core.logging import log_info
from walt.core.metrics import UPLOAD_ADMISSIONS_TOTAL, UPLOAD_BYTES_TOTAL
from walt.modules.account.repository import AccountRepository

logger = logging.getLogger(__name__)


class AccountNotFoundError(Exception):
    """Raised when a quota operation names an unknown account."""

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


@dataclass
class QuotaExceeded:
    """Structured rejection: the upload would exceed the storage limit."""
    used: int
    limit: int
    requested: int

    @property
    def message(self) -> str:
        return (
            f"Storage limit exceeded: {self.used} of {self.limit} bytes used, "
            f"{self.requested} requested"
        )


@dataclass
class Admission:
    """Outcome of an admission check."""
    account_id: uuid.UUID
    requested: int
    allowed: bool
    used: int
    limit: int
    rejection: Optional[QuotaExceeded] = None


class QuotaGate:
    """Admits or rejects uploads against the account's hard limit."""

    def __init__(self, session: AsyncSession, locks: Optional[KeyedLock] = None):
        self.session = session
        self.locks = locks or account_locks
        self.accounts = AccountRepository(session)

    async def admit(self, account_id: uuid.UUID, incoming_bytes: int) -> Admission:
        """Reserve `incoming_bytes` for an upload if it fits under the limit.

        An upload that lands exactly on the limit is admitted. The reservation
        is committed before returning; if the upload later fails, give the
        bytes back with `release()`.

        Args:
            account_id: Account receiving the upload
            incoming_bytes: Logical payload size of the upload

        Returns:
            Admission; when rejected, `rejection` carries used/limit/requested

        Raises:
            ValueError: If incoming_bytes is negative
            AccountNotFoundError: If the account does not exist
        """
        if incoming_bytes < 0:
            raise ValueError("incoming_bytes must be non-negative")

        async with self.locks.hold(account_id):
            reserved = await self.accounts.try_reserve(account_id, incoming_bytes)
            await self.session.commit()
            usage = await self.accounts.get_usage(account_id)

        if usage is None:
            raise AccountNotFoundError(account_id)
        used, limit = usage

        if reserved:
            UPLOAD_ADMISSIONS_TOTAL.labels(decision="allowed").inc()
            UPLOAD_BYTES_TOTAL.inc(incoming_bytes)
            return Admission(
                account_id=account_id,
                requested=incoming_bytes,
                allowed=True,
                used=used,
                limit=limit,
            )

        UPLOAD_ADMISSIONS_TOTAL.labels(decision="rejected").inc()
        rejection = QuotaExceeded(used=used, limit=limit, requested=incoming_bytes)
        log_info(
            logger,
            f"Upload rejected for account {account_id}: {rejection.message}",
            account_id=str(account_id),
            used=used,
            limit=limit,
            requested=incoming_bytes,
        )
        return Admission(
            account_id=account_id,
            requested=incoming_bytes,
            allowed=False,
            used=used,
            limit=limit,
            rejection=rejection,
        )

    async def record_usage_delta(self, account_id: uuid.UUID, delta: int) -> None:
        """Adjust the counter unconditionally, flooring at zero, and commit."""
        async with self.locks.hold(account_id):
            found = await self.accounts.apply_usage_delta(account_id, delta)
            await self.session.commit()
        if not found:
            raise AccountNotFoundError(account_id)

    async def release(self, admission: Admission) -> None:
        """Return the bytes reserved by an admission whose upload failed."""
        if admission.allowed and admission.requested:
            await self.record_usage_delta(admission.account_id, -admission.requested)
