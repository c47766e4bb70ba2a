"""EPUB metadata extraction using ebooklib."""

from __future__ import annotations

import base64
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import ebooklib
from ebooklib import epub

log = logging.getLogger(__name__)

# Covers travel inline in the metadata document, which has a size ceiling.
MAX_COVER_BYTES = 256 * 1024

UNKNOWN_AUTHOR = "Unknown"


@dataclass
class EpubInfo:
    title: str
    author: str
    cover_url: Optional[str] = None


def read_epub_info(source: Union[Path, bytes], fallback_title: str = "") -> EpubInfo:
    """Read title, author and an inline cover from an EPUB file or payload."""
    if isinstance(source, (bytes, bytearray)):
        with tempfile.NamedTemporaryFile(suffix=".epub") as tmp:
            tmp.write(source)
            tmp.flush()
            return _read(Path(tmp.name), fallback_title)
    return _read(source, fallback_title or source.stem)


def _read(path: Path, fallback_title: str) -> EpubInfo:
    try:
        book = epub.read_epub(str(path), options={"ignore_ncx": True})
    except Exception as e:
        raise ValueError(f"Not a readable EPUB: {e}") from e

    title = _get_meta(book, "title") or fallback_title or "Untitled"
    author = _get_meta(book, "creator") or UNKNOWN_AUTHOR
    return EpubInfo(title=title, author=author, cover_url=_cover_data_url(book))


def _get_meta(book: epub.EpubBook, field: str) -> str:
    values = book.get_metadata("DC", field)
    if values:
        val = values[0]
        if isinstance(val, tuple):
            return str(val[0]).strip() if val[0] else ""
        return str(val).strip()
    return ""


def _find_cover(book: epub.EpubBook) -> Optional[epub.EpubItem]:
    for item in book.get_items_of_type(ebooklib.ITEM_COVER):
        return item

    for _, attrs in book.get_metadata("OPF", "cover"):
        cover_id = (attrs or {}).get("content")
        if cover_id:
            item = book.get_item_with_id(cover_id)
            if item is not None:
                return item

    for item in book.get_items_of_type(ebooklib.ITEM_IMAGE):
        if "cover" in item.get_name().lower():
            return item
    return None


def _cover_data_url(book: epub.EpubBook) -> Optional[str]:
    item = _find_cover(book)
    if item is None:
        return None
    content = item.get_content()
    if not content or len(content) > MAX_COVER_BYTES:
        log.info("Skipping cover of %d bytes", len(content or b""))
        return None
    media_type = item.media_type or "image/jpeg"
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{media_type};base64,{encoded}"
