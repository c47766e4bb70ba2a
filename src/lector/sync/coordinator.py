"""Library view: remote metadata merged with local download and reading state.

The coordinator publishes a local-only view as soon as it starts, then keeps
a live subscription on the remote ``books`` collection. Every snapshot is
merged from scratch against the current local store contents, so merges are
idempotent and local mutations racing with the subscription settle on the
next snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

from lector.errors import (
    DownloadError,
    LocalStoreError,
    RemoteError,
    TransientNetworkError,
)
from lector.library.database import Database
from lector.library.epub_meta import read_epub_info
from lector.library.fallback import ReadingStateStore
from lector.library.models import (
    BookMetadata,
    DisplayEntry,
    LocalBook,
    ReadingState,
    new_id,
    now_ms,
)

from .blobs import BOOKS_COLLECTION, RemoteBlobStore, book_path
from .remote import RemoteDocument, RemoteStore, Subscription
from .tracker import ReadingStateTracker

log = logging.getLogger(__name__)

SYNC_TIMEOUT = 5.0

Listener = Callable[[list[DisplayEntry]], None]


def _sort_key(entry: DisplayEntry) -> tuple[bool, int, int]:
    order = entry.metadata.order
    return (order is None, order if order is not None else 0, -entry.metadata.created_at)


def sort_entries(entries: Iterable[DisplayEntry]) -> list[DisplayEntry]:
    """Order ascending, unordered last, ties newest first."""
    return sorted(entries, key=_sort_key)


def merge_library(
    remote: Iterable[BookMetadata],
    local_books: Iterable[LocalBook],
    reading_states: Iterable[ReadingState],
) -> list[DisplayEntry]:
    # Duplicate ids collapse to the last one seen.
    records = {meta.id: meta for meta in remote}
    local = {book.id: book for book in local_books}
    states = {state.book_id: state for state in reading_states}

    entries = []
    for book_id, meta in records.items():
        stored = local.get(book_id)
        state = states.get(book_id)
        entries.append(
            DisplayEntry(
                metadata=meta,
                is_downloaded=stored is not None,
                is_finished=state.is_finished if state else False,
                progress=state.progress if state else 0.0,
                data=stored.data if stored else None,
            )
        )
    return sort_entries(entries)


def move_entry(
    entries: Sequence[DisplayEntry], book_id: str, new_index: int
) -> list[DisplayEntry]:
    items = list(entries)
    old_index = next((i for i, e in enumerate(items) if e.id == book_id), None)
    if old_index is None:
        return items
    new_index = max(0, min(new_index, len(items) - 1))
    items.insert(new_index, items.pop(old_index))
    return items


@dataclass
class DeleteResult:
    book_id: str
    local_removed: bool = False
    remote_removed: bool = False
    chunks_removed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class UploadResult:
    metadata: BookMetadata
    chunks: int = 0
    error: Optional[str] = None

    @property
    def uploaded(self) -> bool:
        return self.error is None


class LibrarySyncCoordinator:
    def __init__(
        self,
        db: Database,
        states: ReadingStateStore,
        tracker: ReadingStateTracker,
        remote: Optional[RemoteStore] = None,
        blobs: Optional[RemoteBlobStore] = None,
        sync_timeout: float = SYNC_TIMEOUT,
    ) -> None:
        self._db = db
        self._states = states
        self._tracker = tracker
        self._remote = remote
        self._blobs = blobs
        if remote is not None and blobs is None:
            self._blobs = RemoteBlobStore(remote)
        self._sync_timeout = sync_timeout

        self._entries: list[DisplayEntry] = []
        self._listeners: list[Listener] = []
        self._subscription: Optional[Subscription] = None
        self._timeout: Optional[asyncio.TimerHandle] = None

        self.loading = True
        self.syncing = False
        self.online = remote is not None
        self.error: Optional[str] = None

    # ── Observers ──────────────────────────────────────────

    @property
    def entries(self) -> list[DisplayEntry]:
        return list(self._entries)

    def get(self, book_id: str) -> Optional[DisplayEntry]:
        return next((e for e in self._entries if e.id == book_id), None)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, entries: Optional[list[DisplayEntry]] = None) -> None:
        if entries is not None:
            self._entries = entries
        snapshot = list(self._entries)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.error("Library listener failed: %s", e)

    def search(self, term: str) -> list[DisplayEntry]:
        needle = term.lower()
        return [
            e
            for e in self._entries
            if needle in e.metadata.title.lower() or needle in e.metadata.author.lower()
        ]

    # ── Lifecycle ──────────────────────────────────────────

    def _local_books(self) -> list[LocalBook]:
        try:
            return self._db.list_books()
        except LocalStoreError as e:
            log.error("Error loading local books: %s", e)
            return []

    async def start(self) -> None:
        local = self._local_books()
        if local:
            log.info("Loaded %d local books immediately", len(local))
            self.loading = False
            self._publish(
                merge_library([b.metadata for b in local], local, self._states.load_all())
            )

        if self._remote is None:
            self.loading = False
            self._publish()
            return

        loop = asyncio.get_running_loop()
        self._timeout = loop.call_later(self._sync_timeout, self._on_sync_timeout)
        self.syncing = True
        log.info("Subscribing to remote %s collection", BOOKS_COLLECTION)
        self._subscription = self._remote.subscribe(
            BOOKS_COLLECTION, self._on_snapshot, self._on_remote_error
        )

    def _on_sync_timeout(self) -> None:
        self._timeout = None
        if self.loading:
            log.info("Remote sync timeout, showing what we have")
            self.loading = False
            self._publish()

    def _clear_timeout(self) -> None:
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None

    async def stop(self) -> None:
        self._clear_timeout()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.syncing = False

    # ── Subscription ───────────────────────────────────────

    async def _on_snapshot(self, docs: list[RemoteDocument]) -> None:
        self._clear_timeout()
        try:
            remote = [BookMetadata.from_remote(d.id, d.fields) for d in docs]
            merged = merge_library(remote, self._local_books(), self._states.load_all())
            log.info("Remote sync: %d books, merged %d", len(docs), len(merged))
            self.online = True
            self.error = None
            self._entries = merged
        except Exception as e:
            log.error("Error processing remote snapshot: %s", e)
            self.error = str(e)
        finally:
            self.loading = False
            self.syncing = False
        self._publish()

    async def _on_remote_error(self, exc: Exception) -> None:
        log.error("Remote sync error: %s", exc)
        self._clear_timeout()
        self.error = str(exc)
        if isinstance(exc, TransientNetworkError):
            self.online = False
        self.loading = False
        self.syncing = False
        self._publish()

    # ── Mutations ──────────────────────────────────────────

    async def reorder(self, new_sequence: Sequence[DisplayEntry]) -> list[str]:
        """Give every entry ``order = position``. Returns ids whose remote update failed."""
        reordered = [entry.with_order(i) for i, entry in enumerate(new_sequence)]
        self._publish(reordered)

        for entry in reordered:
            if entry.is_downloaded:
                try:
                    self._db.set_book_order(entry.id, entry.metadata.order)
                except LocalStoreError as e:
                    log.warning("Could not store order of %s locally: %s", entry.id, e)

        if self._remote is None:
            return []
        results = await asyncio.gather(
            *(
                self._remote.put(
                    book_path(entry.id), {"order": entry.metadata.order}, merge=True
                )
                for entry in reordered
            ),
            return_exceptions=True,
        )
        failed = []
        for entry, result in zip(reordered, results):
            if isinstance(result, Exception):
                log.error("Order sync error for %s: %s", entry.id, result)
                failed.append(entry.id)
        return failed

    async def move(self, book_id: str, new_index: int) -> list[str]:
        return await self.reorder(move_entry(self._entries, book_id, new_index))

    async def delete(self, book_id: str) -> DeleteResult:
        """Remove local blob, remote metadata, then remote chunks. No rollback."""
        result = DeleteResult(book_id)
        try:
            self._db.delete_book(book_id)
            result.local_removed = True
        except LocalStoreError as e:
            result.errors.append(f"local: {e}")

        if self._blobs is not None:
            try:
                await self._blobs.delete(book_id)
                result.remote_removed = True
                result.chunks_removed = await self._blobs.delete_chunks(book_id)
            except (TransientNetworkError, RemoteError) as e:
                result.errors.append(f"remote: {e}")

        if result.errors:
            log.error("Partial delete of %s: %s", book_id, "; ".join(result.errors))

        if result.remote_removed or self._remote is None:
            self._publish([e for e in self._entries if e.id != book_id])
        elif result.local_removed:
            self._publish(
                [
                    replace(e, is_downloaded=False, data=None) if e.id == book_id else e
                    for e in self._entries
                ]
            )
        return result

    async def upload(
        self,
        source: Union[Path, bytes],
        file_name: str = "",
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> UploadResult:
        """Import an EPUB: save it locally, then push metadata and chunks."""
        if isinstance(source, Path):
            data = source.read_bytes()
            info = read_epub_info(source)
        else:
            data = bytes(source)
            info = read_epub_info(data, fallback_title=Path(file_name).stem if file_name else "")

        metadata = BookMetadata(
            id=new_id(),
            title=info.title,
            author=info.author,
            cover_url=info.cover_url,
            created_at=now_ms(),
            order=len(self._entries),
        )
        self._db.put_book(LocalBook(metadata=metadata, data=data))
        log.info("Book saved locally: %s", metadata.title)
        self._publish(
            sort_entries(
                [
                    *self._entries,
                    DisplayEntry(metadata=metadata, is_downloaded=True, data=data),
                ]
            )
        )

        result = UploadResult(metadata)
        if self._remote is None or self._blobs is None:
            return result
        try:
            await self._remote.put(book_path(metadata.id), metadata.to_remote())
            result.chunks = await self._blobs.upload(metadata.id, data, on_progress)
        except (TransientNetworkError, RemoteError) as e:
            log.error("Upload error for %s: %s", metadata.title, e)
            result.error = str(e)
        return result

    async def download(self, book_id: str) -> DisplayEntry:
        entry = self.get(book_id)
        if entry is None:
            raise DownloadError(f"Unknown book {book_id}")
        if self._blobs is None:
            raise DownloadError("No remote store configured")

        log.info("Starting download for %s (%s)", book_id, entry.metadata.title)
        data = await self._blobs.download(book_id)
        self._db.put_book(LocalBook(metadata=entry.metadata, data=data))

        updated = replace(entry, is_downloaded=True, data=data)
        self._publish([updated if e.id == book_id else e for e in self._entries])
        return updated

    def toggle_finished(self, book_id: str) -> Optional[DisplayEntry]:
        entry = self.get(book_id)
        currently = entry.is_finished if entry else False
        state = self._tracker.toggle_finished(book_id, currently)
        if entry is None or state is None:
            return None

        updated = replace(entry, is_finished=state.is_finished, progress=state.progress)
        self._publish([updated if e.id == book_id else e for e in self._entries])
        return updated
