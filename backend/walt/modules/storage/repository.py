"""Repository for stored object data access.

Bulk updates run without session synchronization so their rowcount is
exact; reads use populate_existing so loaded objects follow the table.
"""

import uuid
from typing import Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.database import utcnow
from walt.modules.storage.models import PinStatus, StoredObject


class StoredObjectRepository:
    """Repository for stored object operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        account_id: uuid.UUID,
        cid: str,
        filename: str,
        size: int,
        mime_type: Optional[str] = None,
        pinned: bool = False,
    ) -> StoredObject:
        stored = StoredObject(
            account_id=account_id,
            cid=cid,
            filename=filename,
            mime_type=mime_type,
            size=size,
            is_pinned=pinned,
            pin_status=PinStatus.PINNED.value if pinned else PinStatus.UNPINNED.value,
            is_deleted=False,
        )
        self.session.add(stored)
        await self.session.flush()
        return stored

    async def get_for_account(
        self,
        account_id: uuid.UUID,
        object_id: uuid.UUID,
        include_deleted: bool = False,
    ) -> Optional[StoredObject]:
        query = select(StoredObject).where(
            and_(
                StoredObject.id == object_id,
                StoredObject.account_id == account_id,
            )
        )
        if not include_deleted:
            query = query.where(StoredObject.is_deleted == False)  # noqa: E712
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_for_account(
        self,
        account_id: uuid.UUID,
        include_deleted: bool = False,
    ) -> list[StoredObject]:
        query = select(StoredObject).where(StoredObject.account_id == account_id)
        if not include_deleted:
            query = query.where(StoredObject.is_deleted == False)  # noqa: E712
        result = await self.session.execute(
            query.order_by(StoredObject.created_at.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_live_by_cid(
        self,
        account_id: uuid.UUID,
        cid: str,
    ) -> list[StoredObject]:
        """Non-deleted objects of one account sharing a CID."""
        result = await self.session.execute(
            select(StoredObject).where(
                and_(
                    StoredObject.account_id == account_id,
                    StoredObject.cid == cid,
                    StoredObject.is_deleted == False,  # noqa: E712
                )
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count_pinned_references(self, cid: str) -> int:
        """Count non-deleted pinned rows for a CID across all accounts."""
        result = await self.session.execute(
            select(func.count(StoredObject.id)).where(
                and_(
                    StoredObject.cid == cid,
                    StoredObject.is_pinned == True,  # noqa: E712
                    StoredObject.is_deleted == False,  # noqa: E712
                )
            )
        )
        return int(result.scalar_one())

    async def sum_pinned_bytes(self, account_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(StoredObject.size), 0)).where(
                and_(
                    StoredObject.account_id == account_id,
                    StoredObject.is_pinned == True,  # noqa: E712
                    StoredObject.is_deleted == False,  # noqa: E712
                )
            )
        )
        return int(result.scalar_one())

    async def sum_stored_bytes(self, account_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(StoredObject.size), 0)).where(
                and_(
                    StoredObject.account_id == account_id,
                    StoredObject.is_deleted == False,  # noqa: E712
                )
            )
        )
        return int(result.scalar_one())

    async def set_pinned(
        self,
        account_id: uuid.UUID,
        cid: str,
        pinned: bool,
    ) -> int:
        """Set the pin flag on every live object of an account with this CID.

        Returns:
            Number of rows changed
        """
        result = await self.session.execute(
            update(StoredObject)
            .where(
                and_(
                    StoredObject.account_id == account_id,
                    StoredObject.cid == cid,
                    StoredObject.is_deleted == False,  # noqa: E712
                    StoredObject.is_pinned == (not pinned),
                )
            )
            .values(
                is_pinned=pinned,
                pin_status=PinStatus.PINNED.value if pinned else PinStatus.UNPINNED.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def soft_delete(self, stored: StoredObject) -> StoredObject:
        stored.is_deleted = True
        stored.deleted_at = utcnow()
        await self.session.flush()
        return stored
