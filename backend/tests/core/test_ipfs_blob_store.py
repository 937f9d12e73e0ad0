"""Tests for the Kubo HTTP RPC blob store client."""

import json

import httpx
import pytest

from walt.core.storage import BlobStoreConfig, BlobStoreError, IPFSBlobStore

CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def make_store(handler) -> tuple[IPFSBlobStore, httpx.AsyncClient]:
    client = httpx.AsyncClient(
        base_url="http://ipfs.test:5001",
        transport=httpx.MockTransport(handler),
    )
    return IPFSBlobStore(config=BlobStoreConfig(api_url="http://ipfs.test:5001", chunk_size=4), client=client), client


class TestAdd:
    """Tests for adding content."""

    @pytest.mark.asyncio
    async def test_add_returns_root_cid(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            lines = [
                {"Name": "inner", "Hash": "bafkinner", "Size": "12"},
                {"Name": "notes.txt", "Hash": CID, "Size": "23"},
            ]
            return httpx.Response(200, text="\n".join(json.dumps(line) for line in lines) + "\n")

        store, client = make_store(handler)
        added = await store.add(b"hello world!", pin=False, filename="notes.txt")
        await client.aclose()

        request = seen["request"]
        assert request.url.path == "/api/v0/add"
        assert request.url.params["pin"] == "false"
        assert request.url.params["cid-version"] == "1"
        assert b"hello world!" in request.content
        assert added.cid == CID
        assert added.size == 12

    @pytest.mark.asyncio
    async def test_node_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"Message": "repo full", "Code": 0})

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError, match="repo full"):
            await store.add(b"data")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="")

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError):
            await store.add(b"data")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy error</html>")

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError, match="unreadable response") as exc_info:
            await store.add(b"data")
        await client.aclose()

        assert exc_info.value.operation == "add"

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError) as exc_info:
            await store.add(b"data")
        await client.aclose()

        assert exc_info.value.operation == "add"


class TestPinning:
    """Tests for pin and unpin."""

    @pytest.mark.asyncio
    async def test_pin(self) -> None:
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append((request.url.path, request.url.params["arg"]))
            return httpx.Response(200, json={"Pins": [CID]})

        store, client = make_store(handler)
        await store.pin(CID)
        await store.unpin(CID)
        await client.aclose()

        assert paths == [("/api/v0/pin/add", CID), ("/api/v0/pin/rm", CID)]

    @pytest.mark.asyncio
    async def test_unpin_of_unpinned_content_succeeds(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"Message": "not pinned or pinned indirectly", "Code": 0})

        store, client = make_store(handler)
        await store.unpin(CID)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unpin_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"Message": "context deadline exceeded", "Code": 0})

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError) as exc_info:
            await store.unpin(CID)
        await client.aclose()

        assert exc_info.value.cid == CID

    @pytest.mark.asyncio
    async def test_pin_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError, match="boom"):
            await store.pin(CID)
        await client.aclose()


class TestCat:
    """Tests for streaming content back."""

    @pytest.mark.asyncio
    async def test_cat_streams_chunks(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["arg"] == CID
            return httpx.Response(200, content=b"0123456789")

        store, client = make_store(handler)
        chunks = [chunk async for chunk in store.cat(CID)]
        await client.aclose()

        assert b"".join(chunks) == b"0123456789"
        assert all(len(chunk) <= 4 for chunk in chunks)

    @pytest.mark.asyncio
    async def test_cat_missing_content(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"Message": "block was not found locally"})

        store, client = make_store(handler)
        with pytest.raises(BlobStoreError, match="not found"):
            async for _ in store.cat(CID):
                pass
        await client.aclose()
