from __future__ import annotations

import logging
from typing import Callable, Optional

from lector.errors import DownloadError, ReconstructionError, RemoteError, TransientNetworkError
from lector.library.models import Chunk

from .chunks import DEFAULT_CHUNK_SIZE, decode_payload, join, split
from .remote import RemoteStore

log = logging.getLogger(__name__)

BOOKS_COLLECTION = "books"


def book_path(book_id: str) -> str:
    return f"{BOOKS_COLLECTION}/{book_id}"


def chunks_collection(book_id: str) -> str:
    return f"{BOOKS_COLLECTION}/{book_id}/chunks"


class RemoteBlobStore:
    """Moves a book's binary content to and from the remote store in chunks."""

    def __init__(self, remote: RemoteStore, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._remote = remote
        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def upload(
        self,
        book_id: str,
        data: bytes,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """Write every chunk, one at a time. Returns the number of chunks."""
        chunks = split(data, self._chunk_size, parent_id=book_id)
        total = len(chunks)
        collection = chunks_collection(book_id)
        for chunk in chunks:
            await self._remote.put(
                f"{collection}/{chunk.doc_id}",
                {"index": chunk.index, "data": chunk.data},
            )
            log.info("Uploaded chunk %d/%d of %s", chunk.index + 1, total, book_id)
            if on_progress:
                on_progress(chunk.index + 1, total)
        return total

    async def download(self, book_id: str) -> bytes:
        try:
            docs = await self._remote.query(chunks_collection(book_id), order_by="index")
        except (TransientNetworkError, RemoteError) as e:
            raise DownloadError(f"Could not fetch chunks of {book_id}: {e}") from e

        try:
            chunks = [
                Chunk(
                    parent_id=book_id,
                    index=int(doc.fields["index"]),
                    data=decode_payload(doc.fields.get("data")),
                )
                for doc in docs
            ]
            data = join(chunks)
        except (KeyError, TypeError, ValueError, ReconstructionError) as e:
            log.error("Cannot rebuild %s from %d chunks: %s", book_id, len(docs), e)
            raise DownloadError(f"Book {book_id} is incomplete remotely: {e}") from e

        log.info("Downloaded %s: %d chunks, %d bytes", book_id, len(chunks), len(data))
        return data

    async def delete(self, book_id: str) -> None:
        """Remove the metadata record only. Chunks go via delete_chunks."""
        await self._remote.delete(book_path(book_id))

    async def delete_chunks(self, book_id: str) -> int:
        collection = chunks_collection(book_id)
        docs = await self._remote.query(collection)
        for doc in docs:
            await self._remote.delete(f"{collection}/{doc.id}")
        return len(docs)
