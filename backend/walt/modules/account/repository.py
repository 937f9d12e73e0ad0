"""Repository for account data access.

Quota counter changes go through single conditional UPDATE statements so that
concurrent uploads for one account can never push the counter past its limit.
"""

import uuid
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from walt.modules.account.models import Account


class AccountRepository:
    """Repository for account operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, account_id: uuid.UUID) -> Optional[Account]:
        result = await self.session.execute(
            select(Account).where(Account.id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_by_subject(self, subject_id: str) -> Optional[Account]:
        result = await self.session.execute(
            select(Account).where(Account.subject_id == subject_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        subject_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> tuple[Account, bool]:
        """Get the account for a subject, creating it on first sight.

        Two first requests for the same subject may race; the loser hits the
        unique constraint and re-reads the winner's row.

        Returns:
            Tuple of (account, created)
        """
        account = await self.get_by_subject(subject_id)
        if account:
            return account, False

        account = Account(
            subject_id=subject_id,
            email=email,
            display_name=display_name,
            storage_used_bytes=0,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(account)
                await self.session.flush()
        except IntegrityError:
            existing = await self.get_by_subject(subject_id)
            if existing is None:
                raise
            return existing, False
        return account, True

    async def try_reserve(self, account_id: uuid.UUID, size: int) -> bool:
        """Atomically add `size` bytes to the counter if it stays within the limit.

        Returns:
            True if the bytes were reserved
        """
        result = await self.session.execute(
            update(Account)
            .where(
                Account.id == account_id,
                Account.storage_used_bytes + size <= Account.storage_limit_bytes,
            )
            .values(storage_used_bytes=Account.storage_used_bytes + size)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def apply_usage_delta(self, account_id: uuid.UUID, delta: int) -> bool:
        """Unconditionally adjust the counter, flooring it at zero.

        Returns:
            True if the account exists
        """
        new_value = Account.storage_used_bytes + delta
        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(storage_used_bytes=case((new_value < 0, 0), else_=new_value))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_usage(self, account_id: uuid.UUID) -> Optional[tuple[int, int]]:
        """Read (used, limit) straight from the table, bypassing loaded objects."""
        result = await self.session.execute(
            select(Account.storage_used_bytes, Account.storage_limit_bytes)
            .where(Account.id == account_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return row.storage_used_bytes, row.storage_limit_bytes

    async def set_storage_limit(self, account_id: uuid.UUID, limit_bytes: int) -> bool:
        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(storage_limit_bytes=limit_bytes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def refresh(self, account: Account) -> Account:
        await self.session.refresh(account)
        return account

    async def list_accounts(self, offset: int = 0, limit: int = 500) -> list[Account]:
        result = await self.session.execute(
            select(Account).order_by(Account.created_at, Account.id).offset(offset).limit(limit)
        )
        return list(result.scalars().all())
