"""
Chunk handling for values that span several frames.

Two disciplines exist because the two sides of the protocol behave
differently:

- ChunkReassembler (receiver of a chunked response, i.e. the scanner):
  chunks are keyed by index, duplicates overwrite, arrival order does not
  matter, completion fires once per exchange.
- ChunkAccumulator (robot side, SET_SSID / SET_PASSWORD): chunks are
  appended in arrival order and only counted. The index byte is logged but
  never used for placement, matching the device firmware.

Chunk payload layout: ``[chunk_index, total_chunks, data...]`` with a
1-based index.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from uniprov.exceptions import ChunkError

logger = structlog.get_logger()

CHUNK_HEADER_SIZE = 2
MAX_CHUNKS = 0xFF


def parse_chunk(payload: bytes) -> Tuple[int, int, bytes]:
    """
    Split a chunk payload into (index, total, data).

    Raises:
        ChunkError: payload shorter than the chunk header
    """
    if len(payload) < CHUNK_HEADER_SIZE:
        raise ChunkError(
            "Chunk header missing",
            details={"payload_size": len(payload)},
        )
    return payload[0], payload[1], bytes(payload[CHUNK_HEADER_SIZE:])


def wrap_chunk(index: int, total: int, data: bytes) -> bytes:
    return bytes([index & 0xFF, total & 0xFF]) + bytes(data)


def split_chunks(value: bytes, chunk_size: int) -> List[bytes]:
    """
    Split ``value`` into chunk payloads ready for SET_SSID / SET_PASSWORD.

    An empty value still produces one (empty) chunk so the receiver commits.

    Raises:
        ChunkError: chunk_size is not positive or the value needs more than
            255 chunks
    """
    if chunk_size <= 0:
        raise ChunkError("Chunk size must be positive", details={"chunk_size": chunk_size})

    pieces = [value[i:i + chunk_size] for i in range(0, len(value), chunk_size)] or [b""]
    total = len(pieces)
    if total > MAX_CHUNKS:
        raise ChunkError(
            f"Value needs {total} chunks (max {MAX_CHUNKS})",
            details={"value_size": len(value), "chunk_size": chunk_size},
        )
    return [wrap_chunk(index, total, piece) for index, piece in enumerate(pieces, start=1)]


class ChunkReassembler:
    """
    Order-tolerant, one-shot reassembly of a chunked value.

    Example:
        reassembler = ChunkReassembler()
        reassembler.observe(2, 2, b"-02")    # None
        reassembler.observe(1, 2, b"SN")     # b"SN-02"
        reassembler.observe(1, 2, b"SN")     # None (already completed)
        reassembler.reset()
    """

    def __init__(self):
        self.chunks: Dict[int, bytes] = {}
        self.total_chunks = 0
        self.completed = False
        self.value: Optional[bytes] = None

    def reset(self) -> None:
        """Prepare for a new chunked exchange."""
        self.chunks.clear()
        self.total_chunks = 0
        self.completed = False
        self.value = None

    def observe(self, chunk_index: int, total_chunks: int, data: bytes) -> Optional[bytes]:
        """
        Record one chunk.

        Returns:
            The reassembled value the first time the exchange completes,
            None otherwise.
        """
        self.chunks[chunk_index] = bytes(data)
        self.total_chunks = total_chunks

        if self.completed:
            logger.debug(
                "chunk_after_completion_ignored",
                chunk_index=chunk_index,
                total_chunks=total_chunks,
            )
            return None

        if len(self.chunks) < total_chunks:
            logger.debug(
                "chunk_received",
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                have=len(self.chunks),
            )
            return None

        assembled = bytearray()
        for index in range(1, total_chunks + 1):
            chunk = self.chunks.get(index)
            if chunk is None:
                continue
            # zero bytes are padding
            assembled.extend(byte for byte in chunk if byte != 0x00)

        self.completed = True
        self.value = bytes(assembled)
        logger.debug("chunked_value_complete", total_chunks=total_chunks, size=len(self.value))
        return self.value

    def observe_payload(self, payload: bytes) -> Optional[bytes]:
        chunk_index, total_chunks, data = parse_chunk(payload)
        return self.observe(chunk_index, total_chunks, data)


@dataclass
class ChunkAccumulator:
    """In-order, counting accumulator used by the robot for inbound values"""

    buffer: bytearray = field(default_factory=bytearray)
    received_count: int = 0

    def append(self, total_chunks: int, data: bytes) -> Optional[bytes]:
        """
        Append one chunk.

        Returns:
            The accumulated bytes once ``received_count >= total_chunks``
            (accumulator is then cleared), None for intermediate chunks.
        """
        self.buffer.extend(data)
        self.received_count += 1

        if self.received_count < total_chunks:
            return None

        value = bytes(self.buffer)
        self.clear()
        return value

    def clear(self) -> None:
        self.buffer.clear()
        self.received_count = 0
