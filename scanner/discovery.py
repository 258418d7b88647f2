"""
Device discovery

Scans for advertisements and keeps the devices whose advertised name starts
with one of the robot name prefixes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

import structlog
from bleak import BleakScanner
from bleak.backends.device import BLEDevice

logger = structlog.get_logger()


@dataclass(frozen=True)
class DiscoveredDevice:
    address: str
    name: str
    rssi: Optional[int] = None
    ble_device: Optional[BLEDevice] = None


def matches_prefix(name: Optional[str], prefixes: Iterable[str]) -> bool:
    if not name:
        return False
    return any(name.startswith(prefix) for prefix in prefixes)


async def discover(prefixes: Iterable[str], timeout_sec: float) -> List[DiscoveredDevice]:
    """Scan for ``timeout_sec`` seconds and return matching robots, strongest first."""
    prefixes = list(prefixes)
    found = await BleakScanner.discover(timeout=timeout_sec, return_adv=True)

    devices = []
    for device, advertisement in found.values():
        name = advertisement.local_name or device.name
        if not matches_prefix(name, prefixes):
            continue
        devices.append(DiscoveredDevice(
            address=device.address,
            name=name,
            rssi=advertisement.rssi,
            ble_device=device,
        ))

    devices.sort(key=lambda d: d.rssi if d.rssi is not None else -999, reverse=True)
    logger.info("discovery_complete", seen=len(found), matched=len(devices))
    return devices
