"""Tests for the chunk codec."""

from __future__ import annotations

import base64
import os

import pytest

from lector.errors import ReconstructionError
from lector.library.models import Chunk
from lector.sync.chunks import (
    DEFAULT_CHUNK_SIZE,
    chunk_count,
    decode_payload,
    join,
    split,
)


class TestSplit:
    def test_exact_multiple(self):
        chunks = split(b"abcdef", 2)
        assert [c.data for c in chunks] == [b"ab", b"cd", b"ef"]
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_short_final_chunk(self):
        chunks = split(b"abcde", 2)
        assert [len(c.data) for c in chunks] == [2, 2, 1]

    def test_parent_id_tagged(self):
        assert all(c.parent_id == "b1" for c in split(b"xyz", 1, parent_id="b1"))

    def test_empty_input_is_one_empty_chunk(self):
        assert split(b"", 4, parent_id="e") == [Chunk("e", 0, b"")]
        assert chunk_count(0, 4) == 1

    def test_non_positive_size_rejected(self):
        with pytest.raises(ValueError):
            split(b"abc", 0)
        with pytest.raises(ValueError):
            chunk_count(10, -1)

    def test_deterministic(self):
        data = os.urandom(1000)
        assert split(data, 64) == split(data, 64)

    def test_default_size(self):
        assert DEFAULT_CHUNK_SIZE == 524288
        data = b"x" * (DEFAULT_CHUNK_SIZE + 1)
        assert [len(c.data) for c in split(data)] == [DEFAULT_CHUNK_SIZE, 1]


class TestJoin:
    @pytest.mark.parametrize("size", [1, 3, 7, 100, 4096])
    @pytest.mark.parametrize("length", [0, 1, 1234])
    def test_round_trip(self, size: int, length: int):
        data = os.urandom(length)
        assert join(split(data, size)) == data

    def test_order_independent(self):
        chunks = split(b"hello world", 3)
        assert join(reversed(chunks)) == b"hello world"

    def test_missing_index(self):
        chunks = split(b"abcdef", 2)
        del chunks[1]
        with pytest.raises(ReconstructionError, match="Missing chunk 1"):
            join(chunks)

    def test_not_starting_at_zero(self):
        with pytest.raises(ReconstructionError):
            join([Chunk("b", 1, b"x"), Chunk("b", 2, b"y")])

    def test_duplicate_index(self):
        with pytest.raises(ReconstructionError, match="Duplicate"):
            join([Chunk("b", 0, b"x"), Chunk("b", 0, b"y")])

    def test_empty_when_data_expected(self):
        with pytest.raises(ReconstructionError):
            join([])

    def test_empty_allowed(self):
        assert join([], expect_data=False) == b""


class TestDecodePayload:
    def test_raw_bytes(self):
        assert decode_payload(b"\x00\x01") == b"\x00\x01"
        assert decode_payload(bytearray(b"ab")) == b"ab"
        assert decode_payload(memoryview(b"cd")) == b"cd"

    def test_legacy_base64_text(self):
        encoded = base64.b64encode(b"\xffbinary\x00").decode("ascii")
        assert decode_payload(encoded) == b"\xffbinary\x00"

    def test_invalid_text(self):
        with pytest.raises(ReconstructionError):
            decode_payload("not base64!!")

    def test_unsupported_type(self):
        with pytest.raises(ReconstructionError):
            decode_payload(None)
