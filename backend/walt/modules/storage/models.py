"""Stored object model.

One row per upload. The same CID may appear in many rows (re-uploads, other
accounts); pinning on the node is reference counted across those rows.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from walt.core.database import Base, utcnow


class PinStatus(str, Enum):
    """Pin state of a stored object."""
    UNPINNED = "unpinned"
    PINNED = "pinned"


class StoredObject(Base):
    """A file uploaded by an account.

    `size` is the logical payload size in bytes; both quota and billing count
    this number.
    """

    __tablename__ = "stored_objects"
    __table_args__ = (
        Index("ix_stored_objects_account_live", "account_id", "is_deleted", "is_pinned"),
        Index("ix_stored_objects_cid_live", "cid", "is_deleted", "is_pinned"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    cid: Mapped[str] = mapped_column(String(128), nullable=False)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pin_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PinStatus.UNPINNED.value
    )

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    def mark_pinned(self) -> None:
        self.is_pinned = True
        self.pin_status = PinStatus.PINNED.value

    def mark_unpinned(self) -> None:
        self.is_pinned = False
        self.pin_status = PinStatus.UNPINNED.value

    def __repr__(self) -> str:
        return f"<StoredObject(id={self.id}, cid={self.cid}, size={self.size})>"
