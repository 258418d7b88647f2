"""
Client session - the configuration-client side of the protocol.

Builds encrypted requests, routes encrypted notifications back to the
request waiting for them, and reassembles the chunked serial number.
Every wait has an explicit deadline; nothing is retried at this level.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

import structlog

from uniprov.config import settings
from uniprov.engine import frame_codec
from uniprov.engine.cipher import FrameCipher, default_cipher
from uniprov.engine.reassembler import ChunkReassembler, split_chunks
from uniprov.engine.transport import Transport
from uniprov.exceptions import (
    ChunkError,
    ExchangeError,
    FrameError,
    HandshakeRejectedError,
    NotAuthenticatedError,
    ResponseTimeoutError,
)
from uniprov.models import (
    HANDSHAKE_LITERAL,
    RESULT_SUCCESS,
    Instruction,
    Opcode,
    WifiMode,
)

logger = structlog.get_logger()

HANDSHAKE_PAYLOAD = b"\x00\x00" + HANDSHAKE_LITERAL
GET_SERIAL_PAYLOAD = b"\x00"
COUNTRY_PREFIX = b"\x01"


@dataclass
class PendingResponse:
    """A request awaiting its response notification."""

    instruction: int
    timeout_sec: float
    # created on first use
    _future: Optional[asyncio.Future] = field(default=None, repr=False)
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    async def wait(self) -> bytes:
        try:
            return await asyncio.wait_for(self.future, timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            raise ResponseTimeoutError(
                f"Timeout waiting for response to instruction 0x{self.instruction:02X}",
                details={"instruction": self.instruction, "timeout_sec": self.timeout_sec},
            )

    def resolve(self, data: bytes) -> None:
        if not self.future.done():
            self.future.set_result(data)

    def fail(self, error: Exception) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class ProvisioningClient:
    """
    Speaks the protocol to one device over an already connected transport.

    Args:
        transport: Connected link to the device
        cipher: Frame cipher (defaults to the firmware key/IV)
        handshake_timeout_sec: Deadline for the HANDSHAKE response
        response_timeout_sec: Deadline for every other response
        chunk_size: Bytes of value data per SET_SSID / SET_PASSWORD chunk

    Example:
        client = ProvisioningClient(transport)
        await client.handshake()
        serial = await client.get_serial()
    """

    def __init__(
        self,
        transport: Transport,
        cipher: Optional[FrameCipher] = None,
        handshake_timeout_sec: Optional[float] = None,
        response_timeout_sec: Optional[float] = None,
        chunk_size: Optional[int] = None,
    ):
        self.transport = transport
        self.cipher = cipher or default_cipher()
        self.handshake_timeout_sec = (
            settings.handshake_timeout_sec if handshake_timeout_sec is None else handshake_timeout_sec
        )
        self.response_timeout_sec = (
            settings.response_timeout_sec if response_timeout_sec is None else response_timeout_sec
        )
        self.chunk_size = settings.chunk_size if chunk_size is None else chunk_size
        self.serial_reassembler = ChunkReassembler()
        self._pending: Dict[int, PendingResponse] = {}
        self.authenticated = False

        transport.on_receive(self.on_notification)

    def on_notification(self, data: bytes) -> None:
        """Route one encrypted notification to the request waiting for it."""
        plaintext = self.cipher.decrypt(data)
        try:
            frame = frame_codec.decode(plaintext, expected_opcode=Opcode.RESPONSE)
        except FrameError as exc:
            logger.warning(
                "notification_dropped",
                error=exc.message,
                error_type=type(exc).__name__,
                decrypted=plaintext,
            )
            return

        pending = self._pending.get(frame.instruction)
        if pending is None:
            logger.debug("unsolicited_response", instruction=frame.instruction, payload=frame.payload)
            return

        if frame.instruction == Instruction.GET_SERIAL:
            self._on_serial_chunk(pending, frame.payload)
            return

        self._pending.pop(frame.instruction, None)
        pending.resolve(frame.payload)

    def _on_serial_chunk(self, pending: PendingResponse, payload: bytes) -> None:
        try:
            value = self.serial_reassembler.observe_payload(payload)
        except ChunkError:
            # device answers a bare [0x00] when not authenticated
            self._pending.pop(Instruction.GET_SERIAL, None)
            pending.fail(NotAuthenticatedError(
                "Device refused GET_SERIAL",
                details={"payload": payload.hex()},
            ))
            return

        if value is not None:
            self._pending.pop(Instruction.GET_SERIAL, None)
            pending.resolve(value)

    async def send_request(self, instruction: int, payload: bytes) -> None:
        frame = frame_codec.seal(instruction, payload, Opcode.REQUEST, cipher=self.cipher)
        logger.debug("request_sent", instruction=instruction, size=len(frame))
        await self.transport.send(frame)

    async def request(self, instruction: int, payload: bytes, timeout_sec: Optional[float] = None) -> bytes:
        """
        Send one request and wait for its response payload.

        Raises:
            ResponseTimeoutError: no (complete) response before the deadline
            TransportError: the request could not be sent
        """
        pending = PendingResponse(
            instruction=instruction,
            timeout_sec=self.response_timeout_sec if timeout_sec is None else timeout_sec,
        )
        # registered before sending; the response can arrive during send()
        self._pending[instruction] = pending
        try:
            await self.send_request(instruction, payload)
            return await pending.wait()
        finally:
            if self._pending.get(instruction) is pending:
                del self._pending[instruction]

    async def _expect_success(self, instruction: Instruction, payload: bytes) -> None:
        response = await self.request(instruction, payload)
        if response != RESULT_SUCCESS:
            raise ExchangeError(
                f"{instruction.name} rejected by device",
                details={"response": response.hex()},
            )

    async def handshake(self) -> None:
        """
        Raises:
            HandshakeRejectedError: device answered with the failure payload
        """
        response = await self.request(
            Instruction.HANDSHAKE,
            HANDSHAKE_PAYLOAD,
            timeout_sec=self.handshake_timeout_sec,
        )
        if response != RESULT_SUCCESS:
            self.authenticated = False
            raise HandshakeRejectedError(
                "Handshake rejected",
                details={"response": response.hex()},
            )
        self.authenticated = True
        logger.info("handshake_accepted")

    async def get_serial(self) -> str:
        self.serial_reassembler.reset()
        value = await self.request(Instruction.GET_SERIAL, GET_SERIAL_PAYLOAD)
        serial = value.decode("utf-8", errors="replace")
        logger.info("serial_number_received", serial_number=serial)
        return serial

    async def init_wifi(self, mode: WifiMode = WifiMode.STATION) -> None:
        await self._expect_success(Instruction.INIT_WIFI, bytes([int(mode)]))

    async def _send_chunked(self, instruction: Instruction, value: str) -> None:
        chunks = split_chunks(value.encode("utf-8"), self.chunk_size)
        # device is silent on intermediate chunks
        for chunk in chunks[:-1]:
            await self.send_request(instruction, chunk)
        await self._expect_success(instruction, chunks[-1])
        logger.debug("chunked_value_sent", instruction=instruction.name, chunks=len(chunks))

    async def set_ssid(self, ssid: str) -> None:
        await self._send_chunked(Instruction.SET_SSID, ssid)

    async def set_password(self, password: str) -> None:
        await self._send_chunked(Instruction.SET_PASSWORD, password)

    async def set_country(self, country: str) -> None:
        await self._expect_success(Instruction.SET_COUNTRY, COUNTRY_PREFIX + country.encode("ascii"))

    async def provision(
        self,
        ssid: str,
        password: str,
        country: str,
        mode: WifiMode = WifiMode.STATION,
    ) -> None:
        """Push a full Wi-Fi configuration; SET_COUNTRY commits it."""
        if not self.authenticated:
            await self.handshake()
        await self.init_wifi(mode)
        await self.set_ssid(ssid)
        await self.set_password(password)
        await self.set_country(country)
        logger.info("configuration_pushed", ssid=ssid, country=country, mode=mode.name.lower())
