"""
Transport Abstraction Layer

The protocol core only needs two capabilities from a link: ``send(bytes)``
and a callback delivering each inbound transport-layer write as one call.
Implementations:

- LoopbackTransport: in-process pair, used to run scanner and emulator
  against each other and in tests
- StreamTransport / TCPBridgeTransport: length-prefixed writes over TCP
  (2-byte big-endian length, then the write bytes)
- scanner.ble.BleakCentralTransport: BLE GATT central via bleak
"""
from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Tuple, Union

import structlog

from uniprov.exceptions import (
    ConnectionError,
    ConnectionTimeoutError,
    SendError,
    TransportError,
)

logger = structlog.get_logger()

ReceiveHandler = Callable[[bytes], Union[None, Awaitable[None]]]
DisconnectHandler = Callable[[], Union[None, Awaitable[None]]]

BRIDGE_LENGTH_SIZE = 2
BRIDGE_MAX_WRITE = 0xFFFF


async def _invoke(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Transport(ABC):
    """
    Abstract base class for all transport implementations.

    Inbound writes are delivered one at a time; a receive handler runs to
    completion before the next write is delivered.
    """

    def __init__(self):
        self._receive_handler: Optional[ReceiveHandler] = None
        self._disconnect_handler: Optional[DisconnectHandler] = None

    def on_receive(self, handler: ReceiveHandler) -> None:
        self._receive_handler = handler

    def on_disconnect(self, handler: DisconnectHandler) -> None:
        self._disconnect_handler = handler

    async def _deliver(self, data: bytes) -> None:
        if self._receive_handler is None:
            logger.debug("inbound_write_without_handler", size=len(data))
            return
        await _invoke(self._receive_handler, bytes(data))

    async def _notify_disconnect(self) -> None:
        if self._disconnect_handler is not None:
            await _invoke(self._disconnect_handler)

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """
        Deliver one transport-layer write to the peer.

        Raises:
            TransportError: link is down or the write failed
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class LoopbackTransport(Transport):
    """
    One end of an in-process link.

    ``send`` awaits the peer's receive handler directly, so a request and
    everything it triggers on the other side complete before ``send``
    returns.
    """

    def __init__(self, name: str = "loopback"):
        super().__init__()
        self.name = name
        self.peer: Optional["LoopbackTransport"] = None
        self._connected = False
        self.sent: list[bytes] = []

    @classmethod
    def pair(cls, left: str = "central", right: str = "peripheral") -> Tuple["LoopbackTransport", "LoopbackTransport"]:
        a, b = cls(left), cls(right)
        a.peer, b.peer = b, a
        a._connected = b._connected = True
        return a, b

    @property
    def connected(self) -> bool:
        return self._connected and self.peer is not None

    async def send(self, data: bytes) -> None:
        if not self.connected:
            raise TransportError("Not connected")
        self.sent.append(bytes(data))
        await self.peer._deliver(data)

    async def close(self) -> None:
        if not self._connected:
            return
        peer = self.peer
        self._connected = False
        await self._notify_disconnect()
        if peer is not None and peer._connected:
            peer._connected = False
            await peer._notify_disconnect()
        logger.debug("loopback_closed", name=self.name)


def encode_bridge_write(data: bytes) -> bytes:
    if len(data) > BRIDGE_MAX_WRITE:
        raise SendError(
            "Write exceeds bridge frame size",
            details={"data_size": len(data)},
        )
    return len(data).to_bytes(BRIDGE_LENGTH_SIZE, "big") + bytes(data)


async def read_bridge_write(reader: asyncio.StreamReader) -> Optional[bytes]:
    """Read one length-prefixed write; None on clean EOF."""
    try:
        header = await reader.readexactly(BRIDGE_LENGTH_SIZE)
        size = int.from_bytes(header, "big")
        return await reader.readexactly(size)
    except asyncio.IncompleteReadError:
        return None


class StreamTransport(Transport):
    """
    Bridge transport over an asyncio stream pair.

    ``run()`` pumps inbound writes until the peer closes, then fires the
    disconnect handler.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        super().__init__()
        self._reader = reader
        self._writer = writer
        self._connected = True
        self._pump: Optional[asyncio.Task] = None
        peer = writer.get_extra_info("peername")
        self.peer_name = f"{peer[0]}:{peer[1]}" if peer else "unknown"

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        if self._pump is None:
            self._pump = asyncio.create_task(self.run())

    async def run(self) -> None:
        try:
            while self._connected:
                data = await read_bridge_write(self._reader)
                if data is None:
                    break
                await self._deliver(data)
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning("bridge_read_failed", peer=self.peer_name, error=str(e))
        finally:
            was_connected = self._connected
            self._connected = False
            if was_connected:
                await self._notify_disconnect()

    async def send(self, data: bytes) -> None:
        if not self._connected:
            raise TransportError("Not connected")
        try:
            self._writer.write(encode_bridge_write(data))
            await self._writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            self._connected = False
            raise SendError(
                f"Failed to send data to {self.peer_name}",
                details={"error": str(e), "data_size": len(data)},
            )

    async def close(self) -> None:
        was_connected = self._connected
        self._connected = False
        if self._pump is not None and self._pump is not asyncio.current_task():
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning(
                "bridge_writer_close_failed",
                peer=self.peer_name,
                error=str(e),
                error_type=type(e).__name__,
            )
        if was_connected:
            await self._notify_disconnect()


class TCPBridgeTransport(StreamTransport):
    """Scanner-side bridge connection to a TCP-served emulator."""

    @classmethod
    async def connect(cls, host: str, port: int, timeout_sec: float) -> "TCPBridgeTransport":
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=timeout_sec,
            )
        except asyncio.TimeoutError:
            raise ConnectionTimeoutError(
                f"Connection timeout to {host}:{port}",
                details={"timeout_sec": timeout_sec},
            )
        except OSError as e:
            raise ConnectionError(
                f"Failed to connect to {host}:{port}",
                details={"error": str(e)},
            )

        transport = cls(reader, writer)
        transport.start()
        logger.debug("bridge_connected", host=host, port=port)
        return transport
