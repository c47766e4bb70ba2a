"""SQLite store for downloaded books, reading state, and bookmarks."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from lector.errors import LocalStoreError

from .models import BookMetadata, Bookmark, LocalBook, ReadingState

log = logging.getLogger(__name__)

# Bumping this drops every namespace and recreates it empty. Old rows are
# not migrated.
SCHEMA_VERSION = 2

_TABLES = ("books", "reading_state", "bookmarks")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    author TEXT DEFAULT 'Unknown',
    cover_url TEXT,
    created_at INTEGER NOT NULL,
    sort_order INTEGER,
    data BLOB NOT NULL
);

CREATE TABLE IF NOT EXISTS reading_state (
    book_id TEXT PRIMARY KEY,
    last_location TEXT DEFAULT '',
    progress REAL DEFAULT 0.0,
    last_read INTEGER NOT NULL,
    is_finished INTEGER DEFAULT 0,
    total_pages INTEGER,
    time_spent INTEGER
);

CREATE INDEX IF NOT EXISTS idx_reading_state_last_read
    ON reading_state (last_read);

CREATE TABLE IF NOT EXISTS bookmarks (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL,
    cfi TEXT NOT NULL,
    label TEXT DEFAULT '',
    created_at INTEGER NOT NULL,
    page INTEGER,
    progress REAL
);

CREATE INDEX IF NOT EXISTS idx_bookmarks_book_id ON bookmarks (book_id);
"""


class Database:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        try:
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Cannot open local store {db_path}: {e}") from e

    @property
    def path(self) -> Path:
        return self._db_path

    def _init_schema(self) -> None:
        (version,) = self._conn.execute("PRAGMA user_version").fetchone()
        if version != SCHEMA_VERSION:
            if version:
                log.info(
                    "Local store schema %s -> %s, recreating namespaces",
                    version,
                    SCHEMA_VERSION,
                )
            for table in _TABLES:
                self._conn.execute(f"DROP TABLE IF EXISTS {table}")
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as e:
            log.error("Local store error: %s", e)
            raise LocalStoreError(str(e)) from e

    def close(self) -> None:
        self._conn.close()

    # ── Books ──────────────────────────────────────────────

    def put_book(self, book: LocalBook) -> None:
        meta = book.metadata
        with self._transaction() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO books
                   (id, title, author, cover_url, created_at, sort_order, data)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    meta.id,
                    meta.title,
                    meta.author,
                    meta.cover_url,
                    meta.created_at,
                    meta.order,
                    sqlite3.Binary(book.data),
                ),
            )

    def get_book(self, book_id: str) -> Optional[LocalBook]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM books WHERE id = ?", (book_id,)
            ).fetchone()
        return self._row_to_book(row) if row else None

    def list_books(self) -> list[LocalBook]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM books").fetchall()
        return [self._row_to_book(r) for r in rows]

    def set_book_order(self, book_id: str, order: Optional[int]) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE books SET sort_order = ? WHERE id = ?", (order, book_id)
            )

    def delete_book(self, book_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> LocalBook:
        return LocalBook(
            metadata=BookMetadata(
                id=row["id"],
                title=row["title"],
                author=row["author"],
                cover_url=row["cover_url"],
                created_at=row["created_at"],
                order=row["sort_order"],
            ),
            data=bytes(row["data"]),
        )

    # ── Reading State ──────────────────────────────────────

    def put_reading_state(self, state: ReadingState) -> None:
        with self._transaction() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO reading_state
                   (book_id, last_location, progress, last_read, is_finished,
                    total_pages, time_spent)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    state.book_id,
                    state.last_location,
                    state.progress,
                    state.last_read,
                    int(state.is_finished),
                    state.total_pages,
                    state.time_spent,
                ),
            )

    def get_reading_state(self, book_id: str) -> Optional[ReadingState]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reading_state WHERE book_id = ?", (book_id,)
            ).fetchone()
        return self._row_to_state(row) if row else None

    def list_reading_states(self) -> list[ReadingState]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM reading_state").fetchall()
        return [self._row_to_state(r) for r in rows]

    def recent_reading_states(self, limit: int = 10) -> list[ReadingState]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM reading_state ORDER BY last_read DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_state(r) for r in rows]

    @staticmethod
    def _row_to_state(row: sqlite3.Row) -> ReadingState:
        return ReadingState(
            book_id=row["book_id"],
            last_location=row["last_location"],
            progress=row["progress"],
            last_read=row["last_read"],
            is_finished=bool(row["is_finished"]),
            total_pages=row["total_pages"],
            time_spent=row["time_spent"],
        )

    # ── Bookmarks ──────────────────────────────────────────

    def put_bookmark(self, bm: Bookmark) -> None:
        with self._transaction() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO bookmarks
                   (id, book_id, cfi, label, created_at, page, progress)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    bm.id,
                    bm.book_id,
                    bm.cfi,
                    bm.label,
                    bm.created_at,
                    bm.page,
                    bm.progress,
                ),
            )

    def get_bookmark(self, bookmark_id: str) -> Optional[Bookmark]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM bookmarks WHERE id = ?", (bookmark_id,)
            ).fetchone()
        return self._row_to_bookmark(row) if row else None

    def list_bookmarks(self, book_id: Optional[str] = None) -> list[Bookmark]:
        with self._transaction() as conn:
            if book_id is None:
                rows = conn.execute(
                    "SELECT * FROM bookmarks ORDER BY created_at"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM bookmarks WHERE book_id = ? ORDER BY created_at",
                    (book_id,),
                ).fetchall()
        return [self._row_to_bookmark(r) for r in rows]

    def delete_bookmark(self, bookmark_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM bookmarks WHERE id = ?", (bookmark_id,))

    @staticmethod
    def _row_to_bookmark(row: sqlite3.Row) -> Bookmark:
        return Bookmark(
            id=row["id"],
            book_id=row["book_id"],
            cfi=row["cfi"],
            label=row["label"],
            created_at=row["created_at"],
            page=row["page"],
            progress=row["progress"],
        )


_database: Optional[Database] = None


def get_database(db_path: Optional[Path] = None) -> Database:
    """Return the process-wide store, opening it on first use."""
    global _database
    if _database is None:
        if db_path is None:
            raise LocalStoreError("Local store path not configured")
        _database = Database(db_path)
    return _database


def reset_database() -> None:
    global _database
    if _database is not None:
        _database.close()
        _database = None
