"""
BLE central transport (bleak)

Writes requests to the write characteristic and delivers every notification
of the notify characteristic as one inbound write.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Union

import structlog
from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from uniprov.engine.transport import Transport
from uniprov.exceptions import (
    ConnectionError,
    ConnectionTimeoutError,
    SendError,
    ServiceNotFoundError,
    TransportError,
)
from uniprov.models import (
    NOTIFY_CHARACTERISTIC_UUID,
    SERVICE_UUID,
    WRITE_CHARACTERISTIC_UUID,
)

logger = structlog.get_logger()


class BleakCentralTransport(Transport):
    """Connected GATT client speaking to one robot."""

    def __init__(self, client: BleakClient, address: str):
        super().__init__()
        self.client = client
        self.address = address
        self._closing = False

    @classmethod
    async def connect(cls, device: Union[str, BLEDevice], timeout_sec: float) -> "BleakCentralTransport":
        """
        Connect, locate the provisioning service and subscribe to notifications.

        Raises:
            ConnectionTimeoutError: connection not established in time
            ConnectionError: the BLE stack refused the connection
            ServiceNotFoundError: service or characteristics missing
        """
        address = device if isinstance(device, str) else device.address
        transport: Optional[BleakCentralTransport] = None

        def on_disconnected(_client: BleakClient) -> None:
            if transport is not None:
                transport._on_link_lost()

        client = BleakClient(device, disconnected_callback=on_disconnected, timeout=timeout_sec)
        transport = cls(client, address)

        try:
            await client.connect()
        except asyncio.TimeoutError:
            raise ConnectionTimeoutError(
                f"Connection timeout to {address}",
                details={"timeout_sec": timeout_sec},
            )
        except BleakError as e:
            raise ConnectionError(f"Failed to connect to {address}", details={"error": str(e)})

        try:
            await transport._subscribe()
        except TransportError:
            await transport.close()
            raise

        logger.info("ble_connected", address=address)
        return transport

    async def _subscribe(self) -> None:
        service = self.client.services.get_service(SERVICE_UUID)
        if service is None:
            raise ServiceNotFoundError(
                f"Provisioning service not found on {self.address}",
                details={"service_uuid": SERVICE_UUID},
            )
        for uuid in (NOTIFY_CHARACTERISTIC_UUID, WRITE_CHARACTERISTIC_UUID):
            if service.get_characteristic(uuid) is None:
                raise ServiceNotFoundError(
                    f"Characteristic {uuid} not found on {self.address}",
                    details={"characteristic_uuid": uuid},
                )
        try:
            await self.client.start_notify(NOTIFY_CHARACTERISTIC_UUID, self._on_notify)
        except BleakError as e:
            raise ConnectionError(
                f"Failed to subscribe to notifications on {self.address}",
                details={"error": str(e)},
            )

    async def _on_notify(self, _characteristic: BleakGATTCharacteristic, data: bytearray) -> None:
        await self._deliver(bytes(data))

    def _on_link_lost(self) -> None:
        if self._closing:
            return
        logger.warning("ble_link_lost", address=self.address)
        asyncio.get_running_loop().create_task(self._notify_disconnect())

    @property
    def connected(self) -> bool:
        return self.client.is_connected

    async def send(self, data: bytes) -> None:
        if not self.connected:
            raise TransportError("Not connected", details={"address": self.address})
        try:
            await self.client.write_gatt_char(WRITE_CHARACTERISTIC_UUID, data, response=True)
        except BleakError as e:
            raise SendError(
                f"Failed to write to {self.address}",
                details={"error": str(e), "data_size": len(data)},
            )

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        try:
            if self.client.is_connected:
                try:
                    await self.client.stop_notify(NOTIFY_CHARACTERISTIC_UUID)
                except BleakError as e:
                    logger.debug("stop_notify_failed", address=self.address, error=str(e))
                await self.client.disconnect()
        except BleakError as e:
            logger.warning("ble_disconnect_failed", address=self.address, error=str(e))
        finally:
            await self._notify_disconnect()
            logger.info("ble_disconnected", address=self.address)
