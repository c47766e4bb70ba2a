"""Tests for the remote document stores."""

from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from lector.errors import RemoteError, TransientNetworkError
from lector.sync.remote import (
    HttpRemoteStore,
    MemoryRemoteStore,
    RemoteDocument,
    collection_of,
    decode_value,
    encode_value,
)


def test_collection_of():
    assert collection_of("books/b1") == "books"
    assert collection_of("books/b1/chunks/chunk_0") == "books/b1/chunks"


class TestMemoryRemoteStore:
    @pytest.mark.asyncio
    async def test_put_get_delete(self):
        store = MemoryRemoteStore()
        await store.put("books/b1", {"title": "T"})
        assert await store.get("books/b1") == {"title": "T"}
        await store.delete("books/b1")
        assert await store.get("books/b1") is None

    @pytest.mark.asyncio
    async def test_merge_keeps_other_fields(self):
        store = MemoryRemoteStore()
        await store.put("progress/b1", {"lastLocation": "a", "title": "T"})
        await store.put("progress/b1", {"lastLocation": "b"}, merge=True)
        assert await store.get("progress/b1") == {"lastLocation": "b", "title": "T"}

    @pytest.mark.asyncio
    async def test_overwrite_without_merge(self):
        store = MemoryRemoteStore()
        await store.put("progress/b1", {"lastLocation": "a", "title": "T"})
        await store.put("progress/b1", {"lastLocation": "b"})
        assert await store.get("progress/b1") == {"lastLocation": "b"}

    @pytest.mark.asyncio
    async def test_query_only_direct_children_ordered(self):
        store = MemoryRemoteStore()
        await store.put("books/b1/chunks/chunk_1", {"index": 1})
        await store.put("books/b1/chunks/chunk_0", {"index": 0})
        await store.put("books/b1", {"title": "T"})
        docs = await store.query("books/b1/chunks", order_by="index")
        assert [d.id for d in docs] == ["chunk_0", "chunk_1"]
        assert [d.id for d in await store.query("books")] == ["b1"]

    @pytest.mark.asyncio
    async def test_offline_raises_transient(self):
        store = MemoryRemoteStore()
        store.set_offline(True)
        with pytest.raises(TransientNetworkError):
            await store.get("books/b1")

    @pytest.mark.asyncio
    async def test_subscription_delivers_in_order(self):
        store = MemoryRemoteStore()
        seen: list[list[str]] = []

        async def on_snapshot(docs: list[RemoteDocument]) -> None:
            seen.append([d.id for d in docs])

        sub = store.subscribe("books", on_snapshot)
        await store.put("books/a", {"title": "A"})
        await store.put("books/b", {"title": "B"})
        await store.put("books/a/chunks/chunk_0", {"index": 0})
        await asyncio.sleep(0.01)

        assert seen == [[], ["a"], ["a", "b"]]
        sub.close()
        await store.put("books/c", {"title": "C"})
        await asyncio.sleep(0.01)
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_reconnect_delivers_snapshot(self):
        store = MemoryRemoteStore()
        await store.put("books/a", {"title": "A"})
        store.set_offline(True)
        seen: list[int] = []

        async def on_snapshot(docs: list[RemoteDocument]) -> None:
            seen.append(len(docs))

        sub = store.subscribe("books", on_snapshot)
        await asyncio.sleep(0.01)
        assert seen == []

        store.set_offline(False)
        await asyncio.sleep(0.01)
        assert seen == [1]
        sub.close()


class TestValueEncoding:
    def test_bytes_wrapped(self):
        encoded = encode_value({"index": 0, "data": b"\x00\x01"})
        assert encoded == {"index": 0, "data": {"bytesValue": "AAE="}}
        assert decode_value(encoded) == {"index": 0, "data": b"\x00\x01"}

    def test_plain_strings_untouched(self):
        assert decode_value({"data": "AAE="}) == {"data": "AAE="}


def _store(handler) -> HttpRemoteStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRemoteStore("https://docs.example.com/v1", client=client)


class TestHttpRemoteStore:
    @pytest.mark.asyncio
    async def test_put_with_merge(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        store = _store(handler)
        await store.put("progress/b1", {"lastLocation": "x"}, merge=True)
        await store.close()

        req = requests[0]
        assert req.method == "PUT"
        assert req.url.path == "/v1/documents/progress/b1"
        assert req.url.params["merge"] == "true"
        assert json.loads(req.content) == {"lastLocation": "x"}

    @pytest.mark.asyncio
    async def test_put_encodes_bytes(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        store = _store(handler)
        await store.put("books/b1/chunks/chunk_0", {"index": 0, "data": b"hi"})
        assert bodies[0]["data"] == {"bytesValue": base64.b64encode(b"hi").decode()}

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        store = _store(lambda request: httpx.Response(404))
        assert await store.get("books/nope") is None

    @pytest.mark.asyncio
    async def test_get_decodes_fields(self):
        store = _store(
            lambda request: httpx.Response(
                200, json={"fields": {"data": {"bytesValue": "AAE="}, "index": 0}}
            )
        )
        assert await store.get("books/b1/chunks/chunk_0") == {
            "data": b"\x00\x01",
            "index": 0,
        }

    @pytest.mark.asyncio
    async def test_query(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["orderBy"] == "index"
            return httpx.Response(
                200,
                json={
                    "documents": [
                        {"id": "chunk_1", "fields": {"index": 1}},
                        {"id": "chunk_0", "fields": {"index": 0}},
                    ]
                },
            )

        docs = await _store(handler).query("books/b1/chunks", order_by="index")
        assert [d.id for d in docs] == ["chunk_0", "chunk_1"]

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientNetworkError):
            await _store(handler).get("books/b1")

    @pytest.mark.asyncio
    async def test_server_error_is_remote_error(self):
        store = _store(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(RemoteError) as exc_info:
            await store.put("books/b1", {"title": "T"})
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_subscription_polls_until_change(self):
        payloads = [
            {"documents": [{"id": "a", "fields": {"title": "A"}}]},
            {"documents": [{"id": "a", "fields": {"title": "A"}}]},
            {"documents": [{"id": "a", "fields": {"title": "A2"}}]},
        ]
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            body = payloads[min(calls["n"], len(payloads) - 1)]
            calls["n"] += 1
            return httpx.Response(200, json=body)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        store = HttpRemoteStore("https://docs.example.com/v1", poll_interval=0.01, client=client)
        seen: list[str] = []

        async def on_snapshot(docs: list[RemoteDocument]) -> None:
            seen.append(docs[0].fields["title"])

        sub = store.subscribe("books", on_snapshot)
        await asyncio.sleep(0.1)
        sub.close()
        await store.close()
        assert seen == ["A", "A2"]
