"""
Robot emulator

Impersonates a robot's provisioning endpoint: every attached transport gets
its own Session and SessionDispatcher, inbound writes are answered in order,
and every configuration committed by SET_COUNTRY is kept in ``applied``.
"""
from __future__ import annotations

import asyncio
import itertools
from typing import List, Optional

import structlog

from uniprov.engine.cipher import FrameCipher, default_cipher
from uniprov.engine.dispatcher import (
    Connected,
    Disconnected,
    FrameReceived,
    SessionDispatcher,
)
from uniprov.engine.handlers import DeviceProfile
from uniprov.engine.session import SessionManager
from uniprov.engine.transport import StreamTransport, Transport
from uniprov.exceptions import TransportError
from uniprov.models import WifiConfiguration

logger = structlog.get_logger()


class RobotEmulator:
    """
    Emulated robot serving any number of transports.

    Args:
        profile: Identity reported to clients
        cipher: Frame cipher (defaults to the firmware key/IV)
    """

    def __init__(self, profile: Optional[DeviceProfile] = None, cipher: Optional[FrameCipher] = None):
        self.profile = profile or DeviceProfile.from_settings()
        self.cipher = cipher or default_cipher()
        self.sessions = SessionManager()
        self.applied: List[WifiConfiguration] = []
        self._ids = itertools.count(1)
        self._server: Optional[asyncio.AbstractServer] = None

    def attach(self, transport: Transport, connection_id: Optional[str] = None) -> SessionDispatcher:
        """Bind a connected transport to a fresh session."""
        connection_id = connection_id or f"conn-{next(self._ids)}"
        dispatcher = SessionDispatcher(
            profile=self.profile,
            cipher=self.cipher,
            session=self.sessions.open(connection_id),
        )
        dispatcher.handle(Connected())

        async def on_receive(data: bytes) -> None:
            before = dispatcher.session.applied
            response = dispatcher.handle(FrameReceived(data))
            after = dispatcher.session.applied
            if after is not None and after is not before:
                self.applied.append(after)

            if response is None:
                return
            try:
                await transport.send(response)
            except TransportError as exc:
                logger.error("response_send_failed", connection_id=connection_id, error=exc.message)

        def on_disconnect() -> None:
            dispatcher.handle(Disconnected())
            self.sessions.close(connection_id)

        transport.on_receive(on_receive)
        transport.on_disconnect(on_disconnect)
        logger.info("transport_attached", connection_id=connection_id, device_name=self.profile.device_name)
        return dispatcher

    @property
    def last_configuration(self) -> Optional[WifiConfiguration]:
        return self.applied[-1] if self.applied else None

    async def _handle_bridge_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        transport = StreamTransport(reader, writer)
        self.attach(transport, connection_id=transport.peer_name)
        await transport.run()
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.debug("bridge_client_close_failed", peer=transport.peer_name, error=str(e))

    async def start_tcp(self, host: str, port: int) -> asyncio.AbstractServer:
        """Start serving the TCP bridge; returns the listening server."""
        self._server = await asyncio.start_server(self._handle_bridge_client, host, port)
        sockets = self._server.sockets or []
        bound = sockets[0].getsockname() if sockets else (host, port)
        logger.info(
            "emulator_listening",
            host=bound[0],
            port=bound[1],
            device_name=self.profile.device_name,
            serial_number=self.profile.serial_number,
        )
        return self._server

    async def serve_tcp(self, host: str, port: int) -> None:
        server = await self.start_tcp(host, port)
        async with server:
            await server.serve_forever()

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("emulator_stopped")
