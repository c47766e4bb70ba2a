"""Tests for bookmark storage and sync."""

from __future__ import annotations

import pytest

from lector.library.database import Database
from lector.library.models import Bookmark
from lector.sync.bookmarks import BookmarkManager, merge_bookmarks

from conftest import RecordingRemote


def _bm(bm_id: str, label: str = "", book_id: str = "b1", created_at: int = 0) -> Bookmark:
    return Bookmark(id=bm_id, book_id=book_id, cfi=f"cfi-{bm_id}", label=label, created_at=created_at)


class TestMergeBookmarks:
    def test_dedupes_by_id_last_seen_wins(self):
        merged = merge_bookmarks([_bm("a", "local"), _bm("b")], [_bm("a", "remote"), _bm("c")])
        assert [b.id for b in merged] == ["a", "b", "c"]
        assert merged[0].label == "remote"

    def test_empty(self):
        assert merge_bookmarks([], []) == []


class TestBookmarkManager:
    @pytest.mark.asyncio
    async def test_add_stores_locally_and_remotely(self, db: Database, remote: RecordingRemote):
        manager = BookmarkManager(db, remote)
        bm = await manager.add("b1", "epubcfi(/6/2)", label="Chapter 1", page=3)

        assert db.get_bookmark(bm.id) is not None
        doc = await remote.get(f"bookmarks/{bm.id}")
        assert doc["bookId"] == "b1"
        assert doc["label"] == "Chapter 1"

    @pytest.mark.asyncio
    async def test_add_offline_keeps_local(self, db: Database, remote: RecordingRemote):
        remote.set_offline(True)
        manager = BookmarkManager(db, remote)
        bm = await manager.add("b1", "cfi")
        assert [b.id for b in manager.list_bookmarks("b1")] == [bm.id]

    @pytest.mark.asyncio
    async def test_remove(self, db: Database, remote: RecordingRemote):
        manager = BookmarkManager(db, remote)
        bm = await manager.add("b1", "cfi")
        await manager.remove(bm.id)
        assert manager.list_bookmarks("b1") == []
        assert await remote.get(f"bookmarks/{bm.id}") is None

    @pytest.mark.asyncio
    async def test_sync_pulls_and_merges(self, db: Database, remote: RecordingRemote):
        db.put_bookmark(_bm("local", created_at=1))
        await remote.put("bookmarks/remote", _bm("remote", created_at=2).to_remote())
        await remote.put(
            "bookmarks/other", _bm("other", book_id="b2", created_at=3).to_remote()
        )

        merged = await BookmarkManager(db, remote).sync("b1")
        assert [b.id for b in merged] == ["local", "remote"]
        assert [b.id for b in db.list_bookmarks("b1")] == ["local", "remote"]

    @pytest.mark.asyncio
    async def test_sync_with_given_remote_list(self, db: Database):
        db.put_bookmark(_bm("x", "old"))
        merged = await BookmarkManager(db).sync("b1", [_bm("x", "new")])
        assert len(merged) == 1
        assert db.get_bookmark("x").label == "new"

    @pytest.mark.asyncio
    async def test_sync_offline_returns_local(self, db: Database, remote: RecordingRemote):
        db.put_bookmark(_bm("a"))
        remote.set_offline(True)
        merged = await BookmarkManager(db, remote).sync("b1")
        assert [b.id for b in merged] == ["a"]
