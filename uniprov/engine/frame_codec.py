"""
Frame Codec - builds and parses provisioning frames

Frame layout (before the cipher transform):

    +--------+--------+-------------+-----------------+----------+
    | opcode | length | instruction | payload (0..n)  | checksum |
    |   1B   |   1B   |     1B      |                 |    1B    |
    +--------+--------+-------------+-----------------+----------+

``length`` counts the whole frame, checksum included. The checksum is the
two's complement of the byte-sum of everything before it, so the unsigned
sum of a valid frame is 0 modulo 256.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import structlog

from uniprov.engine.cipher import FrameCipher, default_cipher
from uniprov.exceptions import (
    ChecksumError,
    FrameEncodeError,
    FrameTooShortError,
    UnexpectedOpcodeError,
)
from uniprov.models import Instruction, Opcode

logger = structlog.get_logger()

HEADER_SIZE = 3  # opcode, length, instruction
MIN_FRAME_SIZE = HEADER_SIZE + 1
MAX_FRAME_SIZE = 0xFF
MAX_PAYLOAD_SIZE = MAX_FRAME_SIZE - MIN_FRAME_SIZE


@dataclass(frozen=True)
class Frame:
    """Decoded, checksum-validated frame"""

    opcode: int
    length: int
    instruction: int
    payload: bytes
    checksum: int
    length_mismatch: bool = False

    @property
    def is_request(self) -> bool:
        return self.opcode == Opcode.REQUEST

    @property
    def is_response(self) -> bool:
        return self.opcode == Opcode.RESPONSE


def checksum(data: bytes) -> int:
    """Byte that brings the unsigned sum of ``data`` to 0 mod 256."""
    return (-sum(data)) & 0xFF


def checksum_valid(frame_bytes: bytes) -> bool:
    if len(frame_bytes) < MIN_FRAME_SIZE:
        return False
    return sum(frame_bytes) & 0xFF == 0


def encode(instruction: Union[Instruction, int], payload: bytes, opcode: Union[Opcode, int]) -> bytes:
    """
    Lay out a plaintext frame.

    The caller decides request vs response through ``opcode``.

    Raises:
        FrameEncodeError: payload does not fit the one-byte length field
    """
    payload = bytes(payload)
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise FrameEncodeError(
            f"Payload of {len(payload)} bytes exceeds frame capacity",
            details={"max_payload": MAX_PAYLOAD_SIZE},
        )

    length = MIN_FRAME_SIZE + len(payload)
    body = bytes([int(opcode), length, int(instruction)]) + payload
    return body + bytes([checksum(body)])


def encode_request(instruction: Union[Instruction, int], payload: bytes = b"") -> bytes:
    return encode(instruction, payload, Opcode.REQUEST)


def encode_response(instruction: Union[Instruction, int], payload: bytes = b"") -> bytes:
    return encode(instruction, payload, Opcode.RESPONSE)


def decode(data: bytes, expected_opcode: Optional[Union[Opcode, int]] = None) -> Frame:
    """
    Parse and validate a plaintext frame.

    Args:
        data: Decrypted frame bytes
        expected_opcode: Opcode the receiving side accepts (None = either)

    Returns:
        Frame

    Raises:
        FrameTooShortError: fewer than 4 bytes
        ChecksumError: byte-sum over the whole buffer is not 0 mod 256
        UnexpectedOpcodeError: opcode is not accepted by the receiver
    """
    data = bytes(data)
    if len(data) < MIN_FRAME_SIZE:
        raise FrameTooShortError(
            f"Frame too short ({len(data)} bytes)",
            details={"size": len(data), "minimum": MIN_FRAME_SIZE},
        )

    opcode, length, instruction = data[0], data[1], data[2]

    if expected_opcode is not None:
        if opcode != int(expected_opcode):
            raise UnexpectedOpcodeError(
                f"Invalid opcode 0x{opcode:02X} (expected 0x{int(expected_opcode):02X})",
                details={"opcode": opcode},
            )
    elif opcode not in (Opcode.REQUEST, Opcode.RESPONSE):
        raise UnexpectedOpcodeError(
            f"Invalid opcode 0x{opcode:02X}",
            details={"opcode": opcode},
        )

    mismatch = length != len(data)
    if mismatch:
        logger.warning(
            "frame_length_mismatch",
            header_length=length,
            actual_length=len(data),
        )

    if not checksum_valid(data):
        raise ChecksumError(
            "Checksum validation failed",
            details={"sum": sum(data) & 0xFF},
        )

    return Frame(
        opcode=opcode,
        length=length,
        instruction=instruction,
        payload=data[HEADER_SIZE:-1],
        checksum=data[-1],
        length_mismatch=mismatch,
    )


def seal(
    instruction: Union[Instruction, int],
    payload: bytes,
    opcode: Union[Opcode, int],
    cipher: Optional[FrameCipher] = None,
) -> bytes:
    """Encode and encrypt a frame for the wire."""
    cipher = cipher or default_cipher()
    return cipher.encrypt(encode(instruction, payload, opcode))


def open_frame(
    data: bytes,
    expected_opcode: Optional[Union[Opcode, int]] = None,
    cipher: Optional[FrameCipher] = None,
) -> Frame:
    """Decrypt and decode a frame received from the wire."""
    cipher = cipher or default_cipher()
    return decode(cipher.decrypt(data), expected_opcode)
