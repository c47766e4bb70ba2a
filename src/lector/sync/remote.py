"""Document-store transport used for library metadata, progress and chunks.

Paths are ``/``-joined: ``books/{id}``, ``books/{id}/chunks/chunk_{i}``,
``progress/{id}``. A collection is the parent path of its documents.
"""

from __future__ import annotations

import asyncio
import base64
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from lector.errors import RemoteError, TransientNetworkError

log = logging.getLogger(__name__)

SnapshotCallback = Callable[[list["RemoteDocument"]], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


@dataclass
class RemoteDocument:
    id: str
    fields: dict[str, Any]


def collection_of(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def doc_id_of(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def _sort_documents(
    docs: list[RemoteDocument], order_by: Optional[str]
) -> list[RemoteDocument]:
    if not order_by:
        return sorted(docs, key=lambda d: d.id)
    # Documents missing the field sort after those that have it.
    return sorted(
        docs,
        key=lambda d: (d.fields.get(order_by) is None, d.fields.get(order_by) or 0, d.id),
    )


class Subscription:
    """Handle for a live collection listener."""

    def __init__(self, on_close: Callable[[], None]) -> None:
        self._on_close = on_close
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._on_close()


class RemoteStore(ABC):
    """Abstract document store: put/get/delete, ordered query, subscribe."""

    @abstractmethod
    async def put(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        """Write a document. With ``merge`` only the given fields change."""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict[str, Any]]:
        """Return a document's fields, or None when it does not exist."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def query(
        self, collection: str, order_by: Optional[str] = None
    ) -> list[RemoteDocument]:
        """Return every document directly inside ``collection``."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Deliver full collection snapshots, in order, until closed."""

    async def close(self) -> None:
        return None


# ── In-memory store ────────────────────────────────────────


class _Listener:
    def __init__(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        self.collection = collection
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.queue: asyncio.Queue[list[RemoteDocument]] = asyncio.Queue()
        self.task: Optional[asyncio.Task[None]] = None

    async def run(self) -> None:
        while True:
            snapshot = await self.queue.get()
            try:
                await self.on_snapshot(snapshot)
            except Exception as e:
                log.error("Snapshot listener for %s failed: %s", self.collection, e)
                if self.on_error:
                    await self.on_error(e)


class MemoryRemoteStore(RemoteStore):
    """Process-local document store.

    Listeners receive the current snapshot on subscribe and a fresh one after
    every change to their collection, in write order. Setting ``offline``
    makes every call raise TransientNetworkError until it is cleared.
    """

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._listeners: list[_Listener] = []
        self._offline = False

    @property
    def offline(self) -> bool:
        return self._offline

    def set_offline(self, offline: bool) -> None:
        was_offline = self._offline
        self._offline = offline
        if was_offline and not offline:
            for listener in self._listeners:
                self._enqueue(listener)

    def _check_online(self) -> None:
        if self._offline:
            raise TransientNetworkError("Remote store unreachable")

    def _snapshot(self, collection: str) -> list[RemoteDocument]:
        return [
            RemoteDocument(doc_id_of(path), copy.deepcopy(fields))
            for path, fields in self._docs.items()
            if collection_of(path) == collection
        ]

    def _enqueue(self, listener: _Listener) -> None:
        listener.queue.put_nowait(_sort_documents(self._snapshot(listener.collection), None))

    def _notify(self, path: str) -> None:
        collection = collection_of(path)
        for listener in self._listeners:
            if listener.collection == collection:
                self._enqueue(listener)

    async def put(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        self._check_online()
        if merge and path in self._docs:
            self._docs[path].update(copy.deepcopy(fields))
        else:
            self._docs[path] = copy.deepcopy(fields)
        self._notify(path)

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        self._check_online()
        fields = self._docs.get(path)
        return copy.deepcopy(fields) if fields is not None else None

    async def delete(self, path: str) -> None:
        self._check_online()
        if self._docs.pop(path, None) is not None:
            self._notify(path)

    async def query(
        self, collection: str, order_by: Optional[str] = None
    ) -> list[RemoteDocument]:
        self._check_online()
        return _sort_documents(self._snapshot(collection), order_by)

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        listener = _Listener(collection, on_snapshot, on_error)
        listener.task = asyncio.get_running_loop().create_task(listener.run())
        self._listeners.append(listener)
        if not self._offline:
            self._enqueue(listener)

        def _close() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if listener.task:
                listener.task.cancel()

        return Subscription(_close)

    async def close(self) -> None:
        for listener in list(self._listeners):
            if listener.task:
                listener.task.cancel()
        self._listeners.clear()


# ── HTTP document API ──────────────────────────────────────


def encode_value(value: Any) -> Any:
    """Make a field JSON-safe; binary becomes ``{"bytesValue": <base64>}``."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"bytesValue": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {"bytesValue"}:
            return base64.b64decode(value["bytesValue"])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class HttpRemoteStore(RemoteStore):
    """JSON document API client.

    ``PUT /documents/{path}[?merge=true]``, ``GET /documents/{path}``,
    ``DELETE /documents/{path}`` and ``GET /documents/{collection}?orderBy=f``
    returning ``{"documents": [{"id": ..., "fields": {...}}]}``. Live
    subscriptions poll the collection and fire when its contents change.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        poll_interval: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._poll_interval = poll_interval
        self._client = client
        self._polls: list[asyncio.Task[None]] = []

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers: dict[str, str] = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(timeout=60.0, headers=headers)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self._base_url}/documents/{path.strip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        allow_missing: bool = False,
    ) -> Optional[httpx.Response]:
        url = self._url(path)
        try:
            resp = await self._get_client().request(method, url, params=params, json=json)
            if allow_missing and resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            log.error(
                "Remote store error: %s %s -> %s %s",
                method,
                url,
                e.response.status_code,
                e.response.text[:200],
            )
            raise RemoteError(
                f"{method} {path} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            log.warning("Remote store unreachable: %s %s -> %s", method, url, type(e).__name__)
            raise TransientNetworkError(f"{type(e).__name__} ({url})") from e

    async def put(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        params = {"merge": "true"} if merge else None
        await self._request("PUT", path, params=params, json=encode_value(fields))

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        resp = await self._request("GET", path, allow_missing=True)
        if resp is None:
            return None
        return decode_value(resp.json().get("fields", {}))

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path, allow_missing=True)

    async def query(
        self, collection: str, order_by: Optional[str] = None
    ) -> list[RemoteDocument]:
        params = {"orderBy": order_by} if order_by else None
        resp = await self._request("GET", collection, params=params, allow_missing=True)
        if resp is None:
            return []
        try:
            docs = [
                RemoteDocument(str(d["id"]), decode_value(d.get("fields", {})))
                for d in resp.json().get("documents", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(f"Unexpected query response for {collection}: {e}") from e
        return _sort_documents(docs, order_by)

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        task = asyncio.get_running_loop().create_task(
            self._poll(collection, on_snapshot, on_error)
        )
        self._polls.append(task)

        def _close() -> None:
            task.cancel()
            if task in self._polls:
                self._polls.remove(task)

        return Subscription(_close)

    async def _poll(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        last: Optional[list[RemoteDocument]] = None
        while True:
            try:
                docs = await self.query(collection)
                if docs != last:
                    last = docs
                    await on_snapshot(docs)
            except (TransientNetworkError, RemoteError) as e:
                last = None
                if on_error:
                    await on_error(e)
            await asyncio.sleep(self._poll_interval)

    async def close(self) -> None:
        for task in self._polls:
            task.cancel()
        self._polls.clear()
        if self._client:
            await self._client.aclose()
            self._client = None
