"""Shared fixtures: a throwaway SQLite database, fake IPFS node and fake
Cashfree gateway.
"""

import asyncio
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Optional

import pytest

from walt.core.database import create_engine, create_session_maker, init_models
from walt.core.locks import KeyedLock
from walt.core.storage import AddedBlob, BlobStore, BlobStoreError
from walt.modules.account.models import Account
from walt.modules.billing.calculator import BillingCalculator, BillingConfig
from walt.modules.billing.models import OrderStatus
from walt.modules.payment_gateway.gateways.cashfree import CashfreeGateway
from walt.modules.payment_gateway.interface import (
    CreateOrderDTO,
    GatewayCredentials,
    PaymentProviderError,
    ProviderOrder,
    ProviderOrderStatus,
)
from walt.modules.storage.repository import StoredObjectRepository

GIB = 1024 ** 3


class FakeBlobStore(BlobStore):
    """In-memory IPFS node recording pin and unpin calls."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.pinned: set[str] = set()
        self.pin_calls: list[str] = []
        self.unpin_calls: list[str] = []
        self.fail_add = False
        self.fail_unpin = False

    async def add(self, data: bytes, pin: bool = True, filename: str = "blob") -> AddedBlob:
        if self.fail_add:
            raise BlobStoreError("add", "node unavailable")
        cid = "bafk" + hashlib.sha256(data).hexdigest()[:32]
        self.blobs[cid] = data
        if pin:
            self.pinned.add(cid)
        return AddedBlob(cid=cid, size=len(data))

    async def cat(self, cid: str):
        if cid not in self.blobs:
            raise BlobStoreError("cat", "not found", cid)
        data = self.blobs[cid]
        for start in range(0, len(data), 4):
            yield data[start:start + 4]

    async def pin(self, cid: str) -> None:
        self.pin_calls.append(cid)
        self.pinned.add(cid)

    async def unpin(self, cid: str) -> None:
        if self.fail_unpin:
            raise BlobStoreError("unpin", "node unavailable", cid)
        self.unpin_calls.append(cid)
        self.pinned.discard(cid)


class FakeCashfreeGateway(CashfreeGateway):
    """Cashfree gateway with the HTTP calls replaced by in-memory state.

    Webhook signing, verification and parsing are the real implementation.
    """

    def __init__(self, secret: str = "test-secret", create_delay: float = 0.0):
        super().__init__(
            credentials=GatewayCredentials(
                client_id="test-client",
                client_secret=secret,
                sandbox=True,
            ),
            webhook_tolerance_seconds=600,
        )
        self.created: list[CreateOrderDTO] = []
        self.statuses: dict[str, OrderStatus] = {}
        self.fetch_calls: list[str] = []
        self.create_delay = create_delay
        self.fail_create = False
        self.fail_fetch = False

    async def create_order(self, data: CreateOrderDTO) -> ProviderOrder:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create:
            raise PaymentProviderError("Cashfree create_order failed: 503", status_code=503)
        self.created.append(data)
        self.statuses[data.order_id] = OrderStatus.PENDING
        return ProviderOrder(
            provider_order_id=data.order_id,
            payment_session_id=f"session_{data.order_id}",
            payment_link=f"https://payments.example/{data.order_id}",
            gateway_response={"order_id": data.order_id, "order_status": "ACTIVE"},
        )

    async def fetch_order(self, provider_order_id: str) -> ProviderOrderStatus:
        self.fetch_calls.append(provider_order_id)
        if self.fail_fetch:
            raise PaymentProviderError("Cashfree fetch_order failed: timeout")
        status = self.statuses.get(provider_order_id, OrderStatus.PENDING)
        raw = {
            OrderStatus.PENDING: "ACTIVE",
            OrderStatus.PAID: "PAID",
            OrderStatus.EXPIRED: "EXPIRED",
            OrderStatus.FAILED: "TERMINATED",
        }[status]
        return ProviderOrderStatus(
            provider_order_id=provider_order_id,
            status=status,
            raw_status=raw,
            gateway_response={"order_id": provider_order_id, "order_status": raw},
        )


@pytest.fixture
async def engine(tmp_path):
    db_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'walt-test.db'}")
    await init_models(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as db_session:
        yield db_session


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def calculator() -> BillingCalculator:
    return BillingCalculator(BillingConfig())


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
async def gateway():
    fake = FakeCashfreeGateway()
    yield fake
    await fake.aclose()


@pytest.fixture
def make_account(session):
    """Factory creating a committed account."""

    async def _make(
        limit_bytes: int = 10 * GIB,
        used_bytes: int = 0,
        created_at: Optional[datetime] = None,
        subject_id: Optional[str] = None,
    ) -> Account:
        account = Account(
            subject_id=subject_id or f"user-{uuid.uuid4().hex[:12]}",
            email="owner@example.com",
            display_name="Owner",
            storage_used_bytes=used_bytes,
            storage_limit_bytes=limit_bytes,
            created_at=created_at or datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc),
        )
        session.add(account)
        await session.commit()
        return account

    return _make


@pytest.fixture
def add_object(session):
    """Factory recording a stored object directly, bypassing the quota gate."""

    async def _add(
        account: Account,
        size: int,
        pinned: bool = True,
        cid: Optional[str] = None,
    ):
        stored = await StoredObjectRepository(session).create(
            account_id=account.id,
            cid=cid or f"bafk{uuid.uuid4().hex}",
            filename="data.bin",
            size=size,
            pinned=pinned,
        )
        await session.commit()
        return stored

    return _add
