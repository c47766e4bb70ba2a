"""Reading position tracking: local write per change, debounced remote flush."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Protocol

from lector.errors import RemoteError, TransientNetworkError
from lector.library.fallback import ReadingStateStore, StateSource
from lector.library.models import BookMetadata, ReadingState, now_ms

from .remote import RemoteStore
from .scheduler import DebounceScheduler

log = logging.getLogger(__name__)

PROGRESS_COLLECTION = "progress"
FLUSH_DELAY = 3.0
# Un-finishing never leaves the bar looking complete.
UNFINISHED_PROGRESS_CAP = 0.95


def progress_path(book_id: str) -> str:
    return f"{PROGRESS_COLLECTION}/{book_id}"


class Rendition(Protocol):
    """Handle to the external renderer showing a book."""

    async def display(self, target: str) -> None: ...

    def cfi_from_percentage(self, fraction: float) -> Optional[str]: ...


class ReadingStateTracker:
    def __init__(
        self,
        store: ReadingStateStore,
        remote: Optional[RemoteStore] = None,
        flush_delay: float = FLUSH_DELAY,
    ) -> None:
        self._store = store
        self._remote = remote
        self._scheduler: DebounceScheduler[tuple[BookMetadata, str]] = DebounceScheduler(
            flush_delay
        )
        self._last_location: dict[str, str] = {}
        self._renditions: dict[str, Rendition] = {}

    @property
    def scheduler(self) -> DebounceScheduler[tuple[BookMetadata, str]]:
        return self._scheduler

    def state(self, book_id: str) -> Optional[ReadingState]:
        return self._store.get(book_id)

    def _recorded_location(self, book_id: str) -> Optional[str]:
        if book_id not in self._last_location:
            state = self._store.get(book_id)
            if state is not None:
                self._last_location[book_id] = state.last_location
        return self._last_location.get(book_id)

    # ── Opening a book ─────────────────────────────────────

    async def open_book(
        self, book: BookMetadata, rendition: Optional[Rendition] = None
    ) -> Optional[str]:
        """Return where to start reading: local state first, then remote."""
        if rendition is not None:
            self._renditions[book.id] = rendition

        result = self._store.load(book.id)
        initial: Optional[str] = None
        if result.state is not None and result.state.last_location:
            initial = result.state.last_location
            log.info("Local position for %s (%s): %s", book.title, result.source.value, initial)
        elif self._remote is not None:
            try:
                doc = await self._remote.get(progress_path(book.id))
            except (TransientNetworkError, RemoteError) as e:
                log.warning("Could not fetch remote position for %s: %s", book.id, e)
                doc = None
            if doc and doc.get("lastLocation"):
                initial = doc["lastLocation"]
                log.info("Remote position for %s: %s", book.title, initial)

        if initial is not None:
            self._last_location[book.id] = initial
        return initial

    def close_book(self, book_id: str) -> None:
        self._renditions.pop(book_id, None)

    async def jump_to(self, book_id: str, cfi: str) -> bool:
        rendition = self._renditions.get(book_id)
        if rendition is None:
            return False
        await rendition.display(cfi)
        return True

    async def display_fraction(self, book_id: str, fraction: float) -> bool:
        rendition = self._renditions.get(book_id)
        if rendition is None:
            return False
        cfi = rendition.cfi_from_percentage(min(max(fraction, 0.0), 1.0))
        if not cfi:
            return False
        await rendition.display(cfi)
        return True

    # ── Position updates ───────────────────────────────────

    def position_changed(
        self,
        book: BookMetadata,
        cfi: str,
        progress: Optional[float] = None,
        total_pages: Optional[int] = None,
    ) -> bool:
        """Record a new position. Returns False when it repeats the last one."""
        if self._recorded_location(book.id) == cfi:
            return False
        self._last_location[book.id] = cfi

        previous = self._store.get(book.id)
        if previous is None:
            previous = ReadingState(book_id=book.id)
        state = replace(
            previous,
            last_location=cfi,
            progress=previous.progress if progress is None else progress,
            last_read=now_ms(),
            total_pages=previous.total_pages if total_pages is None else total_pages,
        )
        source = self._store.save(state)
        if source is not StateSource.PRIMARY:
            log.warning("Reading state for %s kept in %s only", book.id, source.value)

        if self._remote is not None:
            self._scheduler.schedule(book.id, (book, cfi), self._flush)
        return True

    async def _flush(self, pending: tuple[BookMetadata, str]) -> None:
        book, cfi = pending
        if self._remote is None:
            return
        log.info("Saving position of %s to remote: %s", book.id, cfi)
        try:
            await self._remote.put(
                progress_path(book.id),
                {
                    "lastLocation": cfi,
                    "title": book.title,
                    "author": book.author,
                    "updatedAt": now_ms(),
                },
                merge=True,
            )
        except (TransientNetworkError, RemoteError) as e:
            # The next position change re-arms the timer with the latest value.
            log.error("Failed to save position of %s to remote: %s", book.id, e)

    # ── Finished flag ──────────────────────────────────────

    def mark_finished(self, book_id: str) -> ReadingState:
        existing = self._store.get(book_id)
        if existing is not None:
            state = replace(existing, is_finished=True, progress=1.0)
        else:
            state = ReadingState(book_id=book_id, progress=1.0, is_finished=True)
        self._store.save(state)
        return state

    def unmark_finished(self, book_id: str) -> Optional[ReadingState]:
        existing = self._store.get(book_id)
        if existing is None:
            return None
        state = replace(
            existing,
            is_finished=False,
            progress=min(existing.progress, UNFINISHED_PROGRESS_CAP),
        )
        self._store.save(state)
        return state

    def toggle_finished(self, book_id: str, currently_finished: bool) -> Optional[ReadingState]:
        if currently_finished:
            return self.unmark_finished(book_id)
        return self.mark_finished(book_id)

    # ── Shutdown ───────────────────────────────────────────

    async def flush_all(self) -> None:
        await self._scheduler.flush_all()

    async def close(self) -> None:
        await self.flush_all()
        self._renditions.clear()
