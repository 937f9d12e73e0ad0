"""Account model.

An account is created on the first authenticated request for an identity
provider subject and is never hard-deleted by this backend.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from walt.core.config import settings
from walt.core.database import Base, utcnow


class Account(Base):
    """Storage account owned by one identity provider subject."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("storage_used_bytes >= 0", name="ck_accounts_used_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # Identity provider subject (immutable)
    subject_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True, index=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Quota counter, mutated on upload admission and delete
    storage_used_bytes: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    storage_limit_bytes: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=lambda: settings.DEFAULT_STORAGE_LIMIT_BYTES
    )

    # created_at fixes the billing day for the lifetime of the account
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def storage_remaining_bytes(self) -> int:
        return max(0, self.storage_limit_bytes - self.storage_used_bytes)

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, subject_id={self.subject_id})>"
