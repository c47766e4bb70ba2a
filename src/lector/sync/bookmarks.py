from __future__ import annotations

import logging
from typing import Iterable, Optional

from lector.errors import LocalStoreError, RemoteError, TransientNetworkError
from lector.library.database import Database
from lector.library.models import Bookmark, new_id

from .remote import RemoteStore

log = logging.getLogger(__name__)

BOOKMARKS_COLLECTION = "bookmarks"


def merge_bookmarks(*sources: Iterable[Bookmark]) -> list[Bookmark]:
    """Concatenate sources and keep one bookmark per id.

    The last occurrence of an id wins; the result keeps first-seen order.
    """
    merged: dict[str, Bookmark] = {}
    for source in sources:
        for bm in source:
            merged[bm.id] = bm
    return list(merged.values())


class BookmarkManager:
    def __init__(self, db: Database, remote: Optional[RemoteStore] = None) -> None:
        self._db = db
        self._remote = remote

    def list_bookmarks(self, book_id: str) -> list[Bookmark]:
        return self._db.list_bookmarks(book_id)

    async def add(
        self,
        book_id: str,
        cfi: str,
        label: str = "",
        page: Optional[int] = None,
        progress: Optional[float] = None,
    ) -> Bookmark:
        bm = Bookmark(
            id=new_id(),
            book_id=book_id,
            cfi=cfi,
            label=label,
            page=page,
            progress=progress,
        )
        self._db.put_bookmark(bm)
        await self.push(bm)
        return bm

    async def remove(self, bookmark_id: str) -> None:
        self._db.delete_bookmark(bookmark_id)
        if self._remote is None:
            return
        try:
            await self._remote.delete(f"{BOOKMARKS_COLLECTION}/{bookmark_id}")
        except (TransientNetworkError, RemoteError) as e:
            log.warning("Could not delete bookmark %s remotely: %s", bookmark_id, e)

    async def push(self, bm: Bookmark) -> bool:
        if self._remote is None:
            return False
        try:
            await self._remote.put(f"{BOOKMARKS_COLLECTION}/{bm.id}", bm.to_remote())
        except (TransientNetworkError, RemoteError) as e:
            log.warning("Could not save bookmark %s remotely: %s", bm.id, e)
            return False
        return True

    async def pull(self, book_id: str) -> list[Bookmark]:
        if self._remote is None:
            return []
        docs = await self._remote.query(BOOKMARKS_COLLECTION, order_by="createdAt")
        return [
            Bookmark.from_remote(doc.id, doc.fields)
            for doc in docs
            if doc.fields.get("bookId") == book_id
        ]

    async def sync(
        self, book_id: str, remote: Optional[list[Bookmark]] = None
    ) -> list[Bookmark]:
        """Merge local and remote bookmarks of a book and store the union locally."""
        if remote is None:
            try:
                remote = await self.pull(book_id)
            except (TransientNetworkError, RemoteError) as e:
                log.warning("Bookmark sync for %s skipped: %s", book_id, e)
                remote = []

        merged = merge_bookmarks(self.list_bookmarks(book_id), remote)
        for bm in merged:
            try:
                self._db.put_bookmark(bm)
            except LocalStoreError as e:
                log.error("Could not store bookmark %s: %s", bm.id, e)
        return merged
