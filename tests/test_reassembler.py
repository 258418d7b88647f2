"""
Tests for chunk parsing, splitting and reassembly.
"""
import pytest

from uniprov.engine.reassembler import (
    ChunkAccumulator,
    ChunkReassembler,
    parse_chunk,
    split_chunks,
    wrap_chunk,
)
from uniprov.exceptions import ChunkError


class TestChunkReassembler:

    def test_single_chunk(self):
        reassembler = ChunkReassembler()
        assert reassembler.observe(1, 1, b"SN-1") == b"SN-1"
        assert reassembler.completed

    def test_out_of_order_chunks(self):
        reassembler = ChunkReassembler()

        assert reassembler.observe(3, 3, b"-C") is None
        assert reassembler.observe(1, 3, b"A") is None
        assert reassembler.observe(2, 3, b"-B") == b"A-B-C"

    def test_completion_is_one_shot_until_reset(self):
        reassembler = ChunkReassembler()
        assert reassembler.observe(1, 1, b"X") == b"X"
        assert reassembler.observe(1, 1, b"X") is None

        reassembler.reset()
        assert not reassembler.completed
        assert reassembler.observe(1, 1, b"Y") == b"Y"

    def test_duplicate_index_overwrites(self):
        reassembler = ChunkReassembler()
        assert reassembler.observe(1, 2, b"old") is None
        assert reassembler.observe(1, 2, b"new") is None
        assert reassembler.observe(2, 2, b"!") == b"new!"

    def test_zero_padding_removed(self):
        reassembler = ChunkReassembler()
        assert reassembler.observe(1, 1, b"AB\x00\x00C\x00") == b"ABC"

    def test_indices_beyond_total_count_but_are_not_joined(self):
        reassembler = ChunkReassembler()
        assert reassembler.observe(1, 2, b"A") is None
        assert reassembler.observe(3, 2, b"Z") == b"A"

    def test_observe_payload_parses_header(self):
        reassembler = ChunkReassembler()
        assert reassembler.observe_payload(b"\x01\x01SERIAL") == b"SERIAL"


class TestChunkHelpers:

    def test_parse_chunk(self):
        assert parse_chunk(b"\x02\x03abc") == (2, 3, b"abc")
        assert parse_chunk(b"\x01\x01") == (1, 1, b"")

    @pytest.mark.parametrize("payload", [b"", b"\x00"])
    def test_parse_chunk_requires_header(self, payload):
        with pytest.raises(ChunkError):
            parse_chunk(payload)

    def test_wrap_chunk(self):
        assert wrap_chunk(1, 2, b"ab") == b"\x01\x02ab"

    def test_split_chunks(self):
        assert split_chunks(b"abcdefghij", 4) == [
            b"\x01\x03abcd",
            b"\x02\x03efgh",
            b"\x03\x03ij",
        ]

    def test_split_empty_value_yields_one_chunk(self):
        assert split_chunks(b"", 14) == [b"\x01\x01"]

    def test_split_rejects_bad_size(self):
        with pytest.raises(ChunkError):
            split_chunks(b"abc", 0)

    def test_split_rejects_too_many_chunks(self):
        split_chunks(bytes(255), 1)
        with pytest.raises(ChunkError):
            split_chunks(bytes(256), 1)


class TestChunkAccumulator:

    def test_counts_in_arrival_order(self):
        accumulator = ChunkAccumulator()

        assert accumulator.append(2, b"Home") is None
        assert accumulator.buffer == bytearray(b"Home")
        assert accumulator.received_count == 1

        assert accumulator.append(2, b"Wifi") == b"HomeWifi"
        assert accumulator.buffer == bytearray()
        assert accumulator.received_count == 0

    def test_clear(self):
        accumulator = ChunkAccumulator()
        accumulator.append(3, b"x")
        accumulator.clear()
        assert accumulator.received_count == 0
        assert not accumulator.buffer
