"""Shared fixtures for tests."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from lector.config import AppConfig
from lector.library.database import Database
from lector.library.fallback import FallbackCache, ReadingStateStore
from lector.sync.remote import MemoryRemoteStore


class RecordingRemote(MemoryRemoteStore):
    """Memory store that remembers every write it accepted."""

    def __init__(self) -> None:
        super().__init__()
        self.puts: list[tuple[str, dict[str, Any], bool]] = []

    async def put(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        await super().put(path, fields, merge=merge)
        self.puts.append((path, fields, merge))

    def puts_to(self, path: str) -> list[dict[str, Any]]:
        return [fields for p, fields, _ in self.puts if p == path]


@pytest.fixture(autouse=True)
def clean_env():
    def _clear() -> None:
        for key in list(os.environ):
            if key.startswith("LECTOR_"):
                del os.environ[key]

    _clear()
    yield
    _clear()


@pytest.fixture
def db(tmp_path: Path) -> Database:
    db_path = tmp_path / "test.db"
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def states(db: Database, tmp_path: Path) -> ReadingStateStore:
    return ReadingStateStore(db, FallbackCache(tmp_path / "fallback"))


@pytest.fixture
def remote() -> RecordingRemote:
    return RecordingRemote()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        data_dir=tmp_path / "data",
        config_dir=tmp_path / "config",
    )


def make_epub(path: Path, title: str = "Test Book", author: str = "Test Author",
              cover: bytes | None = None) -> Path:
    from ebooklib import epub

    book = epub.EpubBook()
    book.set_identifier("test123")
    book.set_title(title)
    book.set_language("en")
    book.add_author(author)
    if cover is not None:
        book.set_cover("cover.jpg", cover)

    c1 = epub.EpubHtml(title="Chapter 1", file_name="ch1.xhtml", lang="en")
    c1.content = "<html><body><h1>Chapter 1</h1><p>First paragraph.</p></body></html>"
    book.add_item(c1)

    book.toc = [epub.Link("ch1.xhtml", "Chapter 1", "ch1")]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ["nav", c1]

    epub.write_epub(str(path), book)
    return path


@pytest.fixture
def epub_file(tmp_path: Path) -> Path:
    return make_epub(tmp_path / "book.epub", cover=b"\xff\xd8\xff\xe0fake-jpeg")
