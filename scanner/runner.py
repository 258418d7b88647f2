"""
Scan loop

For every discovered robot not already in the store: connect, authenticate,
harvest the serial number and persist it. Each attempt is reported as an
ExchangeResult; no failure stops the loop.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog

from scanner.discovery import DiscoveredDevice
from uniprov.config import settings
from uniprov.engine.cipher import FrameCipher
from uniprov.engine.client import ProvisioningClient
from uniprov.engine.transport import Transport
from uniprov.exceptions import (
    ExchangeError,
    ProtocolError,
    ProvisioningError,
    ResponseTimeoutError,
    StorageError,
    TransportError,
)
from uniprov.models import ExchangeResult, ExchangeStatus, ScanRecord, WifiMode
from uniprov.storage.scan_store import ScanStore

logger = structlog.get_logger()

Connector = Callable[[str], Awaitable[Transport]]
Discoverer = Callable[[], Awaitable[List[DiscoveredDevice]]]


class DeviceScanner:
    """
    Drives ProvisioningClient exchanges against devices.

    Args:
        store: Scan record storage
        connect: Opens a transport to a device address
        cipher: Frame cipher override
        handshake_timeout_sec: Handshake deadline override
        response_timeout_sec: Response deadline override
    """

    def __init__(
        self,
        store: ScanStore,
        connect: Connector,
        cipher: Optional[FrameCipher] = None,
        handshake_timeout_sec: Optional[float] = None,
        response_timeout_sec: Optional[float] = None,
    ):
        self.store = store
        self.connect = connect
        self.cipher = cipher
        self.handshake_timeout_sec = handshake_timeout_sec
        self.response_timeout_sec = response_timeout_sec
        self.results: List[ExchangeResult] = []

    def _client(self, transport: Transport) -> ProvisioningClient:
        return ProvisioningClient(
            transport,
            cipher=self.cipher,
            handshake_timeout_sec=self.handshake_timeout_sec,
            response_timeout_sec=self.response_timeout_sec,
        )

    def _record(self, result: ExchangeResult) -> ExchangeResult:
        self.results.append(result)
        logger.info(
            "exchange_finished",
            address=result.address,
            status=result.status.value,
            serial_number=result.serial_number,
            reason=result.reason,
        )
        return result

    def _failed(self, address: str, exc: ProvisioningError) -> ExchangeResult:
        return self._record(ExchangeResult(
            address=address,
            status=ExchangeStatus.FAILED,
            reason=f"{type(exc).__name__}: {exc.message}",
        ))

    async def fetch_serial(self, address: str, device_name: Optional[str] = None) -> ExchangeResult:
        try:
            scanned = self.store.is_scanned(address)
        except StorageError as exc:
            return self._failed(address, exc)
        if scanned:
            return self._record(ExchangeResult(
                address=address,
                status=ExchangeStatus.SKIPPED,
                reason="already scanned",
            ))

        transport: Optional[Transport] = None
        try:
            transport = await self.connect(address)
            client = self._client(transport)
            await client.handshake()
            serial = await client.get_serial()
            self.store.save(ScanRecord(
                mac_address=address,
                serial_number=serial,
                device_name=device_name,
            ))
            return self._record(ExchangeResult(
                address=address,
                status=ExchangeStatus.SCANNED,
                serial_number=serial,
            ))
        except ResponseTimeoutError as exc:
            return self._record(ExchangeResult(address=address, status=ExchangeStatus.SKIPPED, reason=exc.message))
        except (TransportError, ExchangeError, ProtocolError, StorageError) as exc:
            return self._failed(address, exc)
        finally:
            if transport is not None:
                await transport.close()

    async def provision(
        self,
        address: str,
        ssid: str,
        password: str,
        country: str,
        mode: WifiMode = WifiMode.STATION,
    ) -> ExchangeResult:
        """Push a Wi-Fi configuration; the serial is harvested on the way."""
        transport: Optional[Transport] = None
        try:
            transport = await self.connect(address)
            client = self._client(transport)
            await client.handshake()
            serial = await client.get_serial()
            if not self.store.is_scanned(address):
                self.store.save(ScanRecord(mac_address=address, serial_number=serial))
            await client.provision(ssid, password, country, mode=mode)
            return self._record(ExchangeResult(
                address=address,
                status=ExchangeStatus.PROVISIONED,
                serial_number=serial,
            ))
        except ResponseTimeoutError as exc:
            return self._record(ExchangeResult(address=address, status=ExchangeStatus.SKIPPED, reason=exc.message))
        except (TransportError, ExchangeError, ProtocolError, StorageError) as exc:
            return self._failed(address, exc)
        finally:
            if transport is not None:
                await transport.close()

    async def scan_round(self, discover: Discoverer) -> List[ExchangeResult]:
        devices = await discover()
        round_results = []
        for device in devices:
            try:
                scanned = self.store.is_scanned(device.address)
            except StorageError as exc:
                round_results.append(self._failed(device.address, exc))
                continue
            if scanned:
                logger.debug("device_already_scanned", address=device.address)
                continue
            logger.info("device_found", address=device.address, name=device.name, rssi=device.rssi)
            round_results.append(await self.fetch_serial(device.address, device_name=device.name))
        return round_results

    async def run(
        self,
        discover: Discoverer,
        max_rounds: Optional[int] = None,
        rescan_delay_sec: Optional[float] = None,
    ) -> List[ExchangeResult]:
        """Repeat discovery rounds until ``max_rounds`` (forever if None)."""
        delay = settings.rescan_delay_sec if rescan_delay_sec is None else rescan_delay_sec
        rounds = 0
        while max_rounds is None or rounds < max_rounds:
            results = await self.scan_round(discover)
            rounds += 1
            try:
                stored: Optional[int] = self.store.count()
            except StorageError:
                stored = None
            logger.info(
                "scan_round_complete",
                round=rounds,
                attempted=len(results),
                stored=stored,
            )
            if max_rounds is None or rounds < max_rounds:
                await asyncio.sleep(delay)
        return self.results
