"""Billing models for subscriptions and payment orders.

A subscription holds an account's fixed billing day and its next/last billing
dates. An order is one payment request for one billing period.
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from walt.core.database import Base, utcnow


class OrderStatus(str, Enum):
    """Payment order status values.

    PENDING is the only non-terminal state.
    """
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


TERMINAL_ORDER_STATUSES = frozenset(
    s.value for s in OrderStatus if s is not OrderStatus.PENDING
)


class Subscription(Base):
    """Billing subscription, created lazily on the first positive charge."""

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )

    # Day of month (1-31) taken from the account's creation date
    billing_day: Mapped[int] = mapped_column(Integer, nullable=False)

    next_billing_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_billed_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, account={self.account_id}, day={self.billing_day})>"


class Order(Base):
    """Payment order for one billing period.

    At most one PENDING order may exist per account and period start; the
    partial unique index enforces this across processes.
    """

    __tablename__ = "orders"
    __table_args__ = (
        Index(
            "uq_orders_pending_per_period",
            "account_id",
            "billing_period_start",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index("ix_orders_account_period", "account_id", "billing_period_start"),
        Index("ix_orders_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value
    )

    # Provider checkout
    provider_order_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True, index=True
    )
    payment_session_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    payment_link: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    provider_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Period actually charged
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Usage snapshot at order time
    pinned_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    monthly_cost_usd: Mapped[float] = mapped_column(
        Numeric(12, 4, asdecimal=False), nullable=False, default=0
    )

    status_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, provider_order_id={self.provider_order_id}, status={self.status})>"
