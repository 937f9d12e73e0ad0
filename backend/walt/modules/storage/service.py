"""File storage service.

Upload, read, delete, pin and unpin for one account. Uploads go through the
quota gate first; pinning on the node is reference counted across every
non-deleted pinned row that shares a CID, so one account unpinning or
deleting never unpins content another record still relies on.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from walt.core.locks import KeyedLock, account_locks
from walt.core.logging import log_error, log_info
from walt.core.storage import BlobStore, BlobStoreError
from walt.modules.account.models import Account
from walt.modules.account.repository import AccountRepository
from walt.modules.storage.models import StoredObject
from walt.modules.storage.quota import QuotaExceeded, QuotaGate
from walt.modules.storage.repository import StoredObjectRepository

logger = logging.getLogger(__name__)


class StoredObjectNotFoundError(Exception):
    """Raised when an object or CID is not among the account's live objects."""


@dataclass
class UploadResult:
    """Outcome of an upload: the stored object or the quota rejection."""
    stored: Optional[StoredObject] = None
    rejection: Optional[QuotaExceeded] = None

    @property
    def accepted(self) -> bool:
        return self.stored is not None


class FileStorageService:
    """Storage operations for one session.

    The blob store is injected and owned by the caller.
    """

    def __init__(
        self,
        session: AsyncSession,
        blob_store: BlobStore,
        locks: Optional[KeyedLock] = None,
    ):
        self.session = session
        self.blob_store = blob_store
        self.objects = StoredObjectRepository(session)
        self.accounts = AccountRepository(session)
        self.quota = QuotaGate(session, locks=locks)
        # Serializes node pin/unpin decisions per CID
        self._cid_locks = account_locks if locks is None else locks

    async def upload(
        self,
        account: Account,
        data: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        pin: bool = True,
    ) -> UploadResult:
        """Admit, store and record an upload.

        Any failure after admission releases the reservation; a blob already
        added is unpinned again unless another record references it.

        Args:
            account: Uploading account
            data: File content
            filename: Original filename
            mime_type: Optional MIME type
            pin: Pin the content on the node

        Returns:
            UploadResult with the stored object, or the rejection when the
            upload would exceed the account's limit

        Raises:
            BlobStoreError: If the node fails
        """
        account_id = account.id
        size = len(data)
        admission = await self.quota.admit(account_id, size)
        if not admission.allowed:
            return UploadResult(rejection=admission.rejection)

        try:
            added = await self.blob_store.add(data, pin=pin, filename=filename)
        except Exception as e:
            log_error(
                logger,
                f"Blob store add failed for account {account_id}, releasing {size} bytes",
                exception=e,
                account_id=str(account_id),
            )
            await self.quota.release(admission)
            raise

        try:
            stored = await self.objects.create(
                account_id=account_id,
                cid=added.cid,
                filename=filename,
                mime_type=mime_type,
                size=size,
                pinned=pin,
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            log_error(
                logger,
                f"Recording {added.cid} failed for account {account_id}, releasing {size} bytes",
                exception=e,
                account_id=str(account_id),
                cid=added.cid,
            )
            await self.quota.release(admission)
            if pin:
                await self._discard_pin(added.cid)
            raise

        log_info(
            logger,
            f"Stored {size} bytes as {added.cid} for account {account_id}",
            account_id=str(account_id),
            cid=added.cid,
            size=size,
            pinned=pin,
        )
        return UploadResult(stored=stored)

    async def read(self, account: Account, object_id: uuid.UUID) -> AsyncIterator[bytes]:
        """Stream the content of one of the account's objects."""
        stored = await self.objects.get_for_account(account.id, object_id)
        if stored is None:
            raise StoredObjectNotFoundError(f"Object {object_id} not found")
        return self.blob_store.cat(stored.cid)

    async def list_objects(self, account: Account) -> list[StoredObject]:
        return await self.objects.list_for_account(account.id)

    async def delete(self, account: Account, object_id: uuid.UUID) -> StoredObject:
        """Soft delete an object and give its bytes back to the quota.

        The CID is unpinned on the node when no other live pinned record
        references it.
        """
        stored = await self.objects.get_for_account(account.id, object_id)
        if stored is None:
            raise StoredObjectNotFoundError(f"Object {object_id} not found")

        async with self._cid_locks.hold(("cid", stored.cid)):
            was_pinned = stored.is_pinned
            await self.objects.soft_delete(stored)
            await self.accounts.apply_usage_delta(account.id, -stored.size)
            if was_pinned:
                await self._unpin_if_unreferenced(stored.cid)
            await self.session.commit()

        log_info(
            logger,
            f"Deleted object {stored.id} ({stored.size} bytes) for account {account.id}",
            account_id=str(account.id),
            cid=stored.cid,
        )
        return stored

    async def pin(self, account: Account, cid: str) -> int:
        """Pin the account's live objects with this CID.

        The node is asked to pin only when no pinned reference exists yet.

        Returns:
            Number of the account's records that changed to pinned
        """
        async with self._cid_locks.hold(("cid", cid)):
            objects = await self.objects.list_live_by_cid(account.id, cid)
            if not objects:
                raise StoredObjectNotFoundError(f"CID {cid} not found")

            if await self.objects.count_pinned_references(cid) == 0:
                await self.blob_store.pin(cid)
            changed = await self.objects.set_pinned(account.id, cid, True)
            await self.session.commit()

        log_info(logger, f"Pinned {cid} for account {account.id}", cid=cid)
        return changed

    async def unpin(self, account: Account, cid: str) -> int:
        """Unpin the account's live objects with this CID.

        The node is asked to unpin only when the last pinned reference goes.

        Returns:
            Number of the account's records that changed to unpinned
        """
        async with self._cid_locks.hold(("cid", cid)):
            objects = await self.objects.list_live_by_cid(account.id, cid)
            if not objects:
                raise StoredObjectNotFoundError(f"CID {cid} not found")

            changed = await self.objects.set_pinned(account.id, cid, False)
            if changed:
                await self._unpin_if_unreferenced(cid)
            await self.session.commit()

        log_info(logger, f"Unpinned {cid} for account {account.id}", cid=cid)
        return changed

    async def _unpin_if_unreferenced(self, cid: str) -> None:
        if await self.objects.count_pinned_references(cid) > 0:
            return
        try:
            await self.blob_store.unpin(cid)
        except BlobStoreError:
            await self.session.rollback()
            raise

    async def _discard_pin(self, cid: str) -> None:
        """Unpin a blob whose record was never written."""
        async with self._cid_locks.hold(("cid", cid)):
            if await self.objects.count_pinned_references(cid) > 0:
                return
            try:
                await self.blob_store.unpin(cid)
            except BlobStoreError as e:
                log_error(
                    logger,
                    f"Could not unpin orphaned {cid}",
                    exception=e,
                    cid=cid,
                )
