"""
Core data models
"""
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional
from pydantic import BaseModel, Field


# BLE GATT layout used by the robots
SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
NOTIFY_CHARACTERISTIC_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"
WRITE_CHARACTERISTIC_UUID = "0000ffe2-0000-1000-8000-00805f9b34fb"

HANDSHAKE_LITERAL = b"unitree"

RESULT_SUCCESS = b"\x01"
RESULT_FAILURE = b"\x00"


class Opcode(IntEnum):
    """Frame direction tag"""

    RESPONSE = 0x51
    REQUEST = 0x52


class Instruction(IntEnum):
    """Protocol instructions"""

    HANDSHAKE = 0x01
    GET_SERIAL = 0x02
    INIT_WIFI = 0x03
    SET_SSID = 0x04
    SET_PASSWORD = 0x05
    SET_COUNTRY = 0x06


class WifiMode(IntEnum):
    """Mode byte carried by INIT_WIFI"""

    ACCESS_POINT = 0x01
    STATION = 0x02


class SessionState(str, Enum):
    """Authentication state of an emulator session"""

    IDLE = "idle"
    AUTHENTICATED = "authenticated"


class ExchangeStatus(str, Enum):
    """Outcome of one scanner connection attempt"""

    SCANNED = "scanned"
    PROVISIONED = "provisioned"
    SKIPPED = "skipped"
    FAILED = "failed"


class WifiConfiguration(BaseModel):
    """Configuration committed by the SET_COUNTRY trigger"""

    ssid: str
    password: str
    country: str
    injection_patterns: List[str] = Field(default_factory=list)
    injected_command: Optional[str] = None
    applied_at: datetime = Field(default_factory=datetime.utcnow)


class ScanRecord(BaseModel):
    """Serial number harvested from one device"""

    mac_address: str
    serial_number: str
    device_name: Optional[str] = None
    scanned_at: datetime = Field(default_factory=datetime.utcnow)


class DeviceListResponse(BaseModel):
    """Monitoring view of the scan store"""

    count: int
    devices: List[ScanRecord] = Field(default_factory=list)


class ExchangeResult(BaseModel):
    """Result of a scan / provisioning attempt against one device"""

    address: str
    status: ExchangeStatus
    serial_number: Optional[str] = None
    reason: Optional[str] = None
