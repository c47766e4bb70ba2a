"""Data models for the synced book library."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class BookMetadata:
    id: str
    title: str
    author: str = "Unknown"
    cover_url: Optional[str] = None  # data: URL or external link
    created_at: int = field(default_factory=now_ms)  # epoch ms
    order: Optional[int] = None

    def to_remote(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "coverUrl": self.cover_url,
            "createdAt": self.created_at,
            "order": self.order,
        }

    @classmethod
    def from_remote(cls, doc_id: str, fields: dict[str, Any]) -> BookMetadata:
        order = fields.get("order")
        return cls(
            id=fields.get("id") or doc_id,
            title=fields.get("title") or "",
            author=fields.get("author") or "Unknown",
            cover_url=fields.get("coverUrl"),
            created_at=int(fields.get("createdAt") or 0),
            order=int(order) if order is not None else None,
        )


@dataclass
class LocalBook:
    """A downloaded book: metadata plus the full binary payload."""

    metadata: BookMetadata
    data: bytes = b""

    @property
    def id(self) -> str:
        return self.metadata.id


@dataclass
class Chunk:
    parent_id: str
    index: int  # 0-based, contiguous per parent
    data: bytes

    @property
    def doc_id(self) -> str:
        return f"chunk_{self.index}"


@dataclass
class ReadingState:
    book_id: str
    last_location: str = ""  # opaque position token from the renderer
    progress: float = 0.0  # 0.0 - 1.0
    last_read: int = field(default_factory=now_ms)
    is_finished: bool = False
    total_pages: Optional[int] = None
    time_spent: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "bookId": self.book_id,
            "lastLocation": self.last_location,
            "progress": self.progress,
            "lastRead": self.last_read,
            "isFinished": self.is_finished,
            "totalPages": self.total_pages,
            "timeSpent": self.time_spent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadingState:
        return cls(
            book_id=data["bookId"],
            last_location=data.get("lastLocation") or "",
            progress=float(data.get("progress") or 0.0),
            last_read=int(data.get("lastRead") or 0),
            is_finished=bool(data.get("isFinished", False)),
            total_pages=data.get("totalPages"),
            time_spent=data.get("timeSpent"),
        )


@dataclass
class Bookmark:
    id: str
    book_id: str
    cfi: str
    label: str = ""
    created_at: int = field(default_factory=now_ms)
    page: Optional[int] = None
    progress: Optional[float] = None

    def to_remote(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "cfi": self.cfi,
            "label": self.label,
            "createdAt": self.created_at,
            "page": self.page,
            "progress": self.progress,
        }

    @classmethod
    def from_remote(cls, doc_id: str, fields: dict[str, Any]) -> Bookmark:
        return cls(
            id=fields.get("id") or doc_id,
            book_id=fields["bookId"],
            cfi=fields.get("cfi") or "",
            label=fields.get("label") or "",
            created_at=int(fields.get("createdAt") or 0),
            page=fields.get("page"),
            progress=fields.get("progress"),
        )


@dataclass
class DisplayEntry:
    """Remote metadata merged with local download/finished state. Never stored."""

    metadata: BookMetadata
    is_downloaded: bool = False
    is_finished: bool = False
    progress: float = 0.0
    data: Optional[bytes] = None

    @property
    def id(self) -> str:
        return self.metadata.id

    def with_order(self, order: int) -> DisplayEntry:
        return replace(self, metadata=replace(self.metadata, order=order))
