"""Content-addressed blob storage.

The blob store is an external collaborator: an IPFS node reached over the
Kubo HTTP RPC API. Callers depend on the `BlobStore` interface so tests and
alternative nodes can be swapped in.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Optional

import httpx

from walt.core.config import settings
from walt.core.metrics import BLOB_STORE_ERRORS_TOTAL

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    """Raised when the blob store rejects or fails an operation."""

    def __init__(self, operation: str, message: str, cid: Optional[str] = None):
        self.operation = operation
        self.cid = cid
        super().__init__(f"{operation} failed: {message}")


@dataclass
class AddedBlob:
    """Result of adding content to the blob store."""
    cid: str
    size: int  # logical payload bytes, not the DAG size reported by the node


@dataclass
class BlobStoreConfig:
    """Blob store connection configuration."""
    api_url: str = "http://127.0.0.1:5001"
    timeout_seconds: float = 60.0
    chunk_size: int = 64 * 1024

    @classmethod
    def from_settings(cls) -> "BlobStoreConfig":
        return cls(
            api_url=settings.IPFS_API_URL,
            timeout_seconds=settings.IPFS_TIMEOUT_SECONDS,
        )


class BlobStore(ABC):
    """Abstract base class for content-addressed blob stores."""

    @abstractmethod
    async def add(self, data: bytes, pin: bool = True, filename: str = "blob") -> AddedBlob:
        """Store content and return its CID."""
        pass

    @abstractmethod
    def cat(self, cid: str) -> AsyncIterator[bytes]:
        """Stream the content addressed by a CID."""
        pass

    @abstractmethod
    async def pin(self, cid: str) -> None:
        """Pin a CID on the node."""
        pass

    @abstractmethod
    async def unpin(self, cid: str) -> None:
        """Unpin a CID. Unpinning content that is not pinned succeeds."""
        pass

    async def aclose(self) -> None:
        """Release any held connections."""


class IPFSBlobStore(BlobStore):
    """Blob store backed by a Kubo node's HTTP RPC API.

    The HTTP client is created once and reused; call `aclose()` on shutdown.
    An externally owned client may be injected instead (it is then not closed
    here).
    """

    NOT_PINNED_MARKER = "not pinned"

    def __init__(
        self,
        config: Optional[BlobStoreConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or BlobStoreConfig.from_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.api_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )

    async def _rpc(self, operation: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.post(f"/api/v0/{path}", **kwargs)
        except httpx.HTTPError as e:
            BLOB_STORE_ERRORS_TOTAL.labels(operation=operation).inc()
            raise BlobStoreError(operation, str(e)) from e
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("Message", response.text)
        except ValueError:
            return response.text

    async def add(self, data: bytes, pin: bool = True, filename: str = "blob") -> AddedBlob:
        """Add content to the node.

        Args:
            data: Payload bytes
            pin: Pin the content on the node
            filename: Name passed to the node in the multipart upload

        Returns:
            AddedBlob with the CID and payload size
        """
        response = await self._rpc(
            "add",
            "add",
            params={"pin": "true" if pin else "false", "cid-version": "1"},
            files={"file": (filename, data, "application/octet-stream")},
        )
        if response.status_code != 200:
            BLOB_STORE_ERRORS_TOTAL.labels(operation="add").inc()
            raise BlobStoreError("add", self._error_message(response))

        # The node answers with one JSON object per added entry; the last one
        # is the root.
        lines = [line for line in response.text.splitlines() if line.strip()]
        if not lines:
            raise BlobStoreError("add", "empty response from node")
        try:
            root = json.loads(lines[-1])
            cid = root.get("Hash")
        except (ValueError, AttributeError) as e:
            BLOB_STORE_ERRORS_TOTAL.labels(operation="add").inc()
            raise BlobStoreError("add", f"unreadable response from node: {lines[-1][:200]!r}") from e
        if not cid:
            raise BlobStoreError("add", f"no CID in response: {root}")

        logger.debug(f"Added {len(data)} bytes as {cid} (pin={pin})")
        return AddedBlob(cid=cid, size=len(data))

    async def cat(self, cid: str) -> AsyncIterator[bytes]:
        try:
            async with self._client.stream(
                "POST", "/api/v0/cat", params={"arg": cid}
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    BLOB_STORE_ERRORS_TOTAL.labels(operation="cat").inc()
                    raise BlobStoreError("cat", self._error_message(response), cid)
                async for chunk in response.aiter_bytes(self.config.chunk_size):
                    yield chunk
        except httpx.HTTPError as e:
            BLOB_STORE_ERRORS_TOTAL.labels(operation="cat").inc()
            raise BlobStoreError("cat", str(e), cid) from e

    async def pin(self, cid: str) -> None:
        response = await self._rpc("pin", "pin/add", params={"arg": cid})
        if response.status_code != 200:
            BLOB_STORE_ERRORS_TOTAL.labels(operation="pin").inc()
            raise BlobStoreError("pin", self._error_message(response), cid)

    async def unpin(self, cid: str) -> None:
        response = await self._rpc("unpin", "pin/rm", params={"arg": cid})
        if response.status_code == 200:
            return
        message = self._error_message(response)
        if self.NOT_PINNED_MARKER in message.lower():
            logger.info(f"{cid} was already unpinned on the node")
            return
        BLOB_STORE_ERRORS_TOTAL.labels(operation="unpin").inc()
        raise BlobStoreError("unpin", message, cid)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
