"""Split book payloads into bounded remote documents and put them back together."""

from __future__ import annotations

import base64
import binascii
import math
from typing import Any, Iterable

from lector.errors import ReconstructionError
from lector.library.models import Chunk

# Stays well under the per-document ceiling of hosted document stores.
DEFAULT_CHUNK_SIZE = 512 * 1024


def chunk_count(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Number of chunks for ``size`` bytes. An empty payload still takes one."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return max(1, math.ceil(size / chunk_size))


def split(
    data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE, parent_id: str = ""
) -> list[Chunk]:
    total = chunk_count(len(data), chunk_size)
    view = memoryview(data)
    return [
        Chunk(
            parent_id=parent_id,
            index=i,
            data=bytes(view[i * chunk_size : (i + 1) * chunk_size]),
        )
        for i in range(total)
    ]


def join(chunks: Iterable[Chunk], expect_data: bool = True) -> bytes:
    """Concatenate chunks by index.

    Raises ReconstructionError unless the indices are exactly ``0..n-1``.
    An empty sequence is only accepted when ``expect_data`` is false.
    """
    ordered = sorted(chunks, key=lambda c: c.index)
    if not ordered:
        if expect_data:
            raise ReconstructionError("No chunks to reconstruct from")
        return b""

    for expected, chunk in enumerate(ordered):
        if chunk.index != expected:
            if chunk.index < expected:
                raise ReconstructionError(f"Duplicate chunk index {chunk.index}")
            raise ReconstructionError(
                f"Missing chunk {expected} of {ordered[-1].index + 1}"
            )
    return b"".join(c.data for c in ordered)


def decode_payload(value: Any) -> bytes:
    """Accept a chunk payload as raw bytes or as legacy base64 text."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ReconstructionError(f"Undecodable chunk payload: {e}") from e
    raise ReconstructionError(f"Unsupported chunk payload type: {type(value).__name__}")
