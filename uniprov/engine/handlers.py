"""
Instruction handlers (robot side)

Each handler takes the connection's Session and the decoded request payload
and returns the response payload, or None when the device stays silent
(intermediate SET_SSID / SET_PASSWORD chunks).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import structlog

from uniprov.config import settings
from uniprov.engine.frame_codec import MAX_PAYLOAD_SIZE
from uniprov.engine.reassembler import CHUNK_HEADER_SIZE, parse_chunk, wrap_chunk
from uniprov.engine.session import Session
from uniprov.exceptions import ChunkError, ConfigurationError
from uniprov.models import (
    HANDSHAKE_LITERAL,
    RESULT_FAILURE,
    RESULT_SUCCESS,
    Instruction,
    WifiConfiguration,
    WifiMode,
)

logger = structlog.get_logger()

# Shell metacharacter sequences reported when they show up in a password
INJECTION_PATTERNS = (";$(", "`;", "&&", "||")

# GET_SERIAL answers the whole serial in one chunk
MAX_SERIAL_SIZE = MAX_PAYLOAD_SIZE - CHUNK_HEADER_SIZE

# Command the real firmware builds from the committed credentials
PROVISION_COMMAND = (
    'sudo sh /unitree/module/network_manager/upper_bluetooth/hostapd_restart.sh "{ssid} {password}"'
)


@dataclass(frozen=True)
class DeviceProfile:
    """Identity the emulated robot reports"""

    device_name: str
    serial_number: str

    def __post_init__(self):
        if not self.serial_number.isascii():
            raise ConfigurationError(
                "Serial number must be ASCII",
                details={"serial_number": self.serial_number},
            )
        if len(self.serial_number) > MAX_SERIAL_SIZE:
            raise ConfigurationError(
                f"Serial number longer than {MAX_SERIAL_SIZE} bytes",
                details={"serial_size": len(self.serial_number)},
            )

    @classmethod
    def from_settings(cls) -> "DeviceProfile":
        return cls(device_name=settings.device_name, serial_number=settings.serial_number)


Handler = Callable[[Session, bytes, DeviceProfile], Optional[bytes]]


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def detect_injection(value: str) -> List[str]:
    """Return the shell metacharacter sequences present in ``value``."""
    return [pattern for pattern in INJECTION_PATTERNS if pattern in value]


def extract_injected_command(value: str) -> Optional[str]:
    """Command substituted by a ``;$(...);`` sequence, if any."""
    start = value.find(";$(")
    if start < 0:
        return None
    start += 3
    end = value.find(");", start)
    if end <= start:
        return None
    return value[start:end]


def handle_handshake(session: Session, payload: bytes, profile: DeviceProfile) -> Optional[bytes]:
    # payload: [0x00, 0x00] + literal
    content = payload[2:]
    if content == HANDSHAKE_LITERAL:
        session.authenticated = True
        logger.info("handshake_succeeded")
        return RESULT_SUCCESS

    session.authenticated = False
    logger.warning(
        "handshake_failed",
        received=_decode_text(content),
        payload_size=len(payload),
    )
    return RESULT_FAILURE


def handle_get_serial(session: Session, payload: bytes, profile: DeviceProfile) -> Optional[bytes]:
    if not session.authenticated:
        logger.warning("get_serial_rejected", reason="not_authenticated")
        return RESULT_FAILURE

    logger.info("serial_number_returned", serial_number=profile.serial_number)
    return wrap_chunk(1, 1, profile.serial_number.encode("ascii"))


def handle_init_wifi(session: Session, payload: bytes, profile: DeviceProfile) -> Optional[bytes]:
    mode_byte = payload[0] if payload else None
    try:
        mode = WifiMode(mode_byte).name.lower() if mode_byte is not None else "unknown"
    except ValueError:
        mode = "unknown"
    logger.info("wifi_mode_selected", mode=mode, raw=mode_byte)
    return RESULT_SUCCESS


def _accumulate(session: Session, payload: bytes, field_name: str) -> Optional[bytes]:
    try:
        chunk_index, total_chunks, data = parse_chunk(payload)
    except ChunkError:
        logger.error("chunk_header_missing", field=field_name, payload_size=len(payload))
        return RESULT_FAILURE

    accumulator = getattr(session, f"{field_name}_buffer")
    logger.debug(
        "chunk_received",
        field=field_name,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
    )

    value = accumulator.append(total_chunks, data)
    if value is None:
        # the device never answers intermediate chunks
        logger.debug("intermediate_chunk_no_response", field=field_name)
        return None

    setattr(session, field_name, _decode_text(value))
    return RESULT_SUCCESS


def handle_set_ssid(session: Session, payload: bytes, profile: DeviceProfile) -> Optional[bytes]:
    response = _accumulate(session, payload, "ssid")
    if response == RESULT_SUCCESS:
        logger.info("ssid_committed", ssid=session.ssid)
    return response


def handle_set_password(session: Session, payload: bytes, profile: DeviceProfile) -> Optional[bytes]:
    response = _accumulate(session, payload, "password")
    if response == RESULT_SUCCESS:
        logger.info("password_committed", length=len(session.password))
        patterns = detect_injection(session.password)
        if patterns:
            logger.warning(
                "injection_detected",
                patterns=patterns,
                password=session.password,
            )
    return response


def handle_set_country(session: Session, payload: bytes, profile: DeviceProfile) -> Optional[bytes]:
    if not payload:
        logger.error("country_payload_missing")
        return RESULT_FAILURE

    session.country = _decode_text(bytes(b for b in payload[1:] if b != 0x00))

    config = WifiConfiguration(
        ssid=session.ssid,
        password=session.password,
        country=session.country,
        injection_patterns=detect_injection(session.password),
        injected_command=extract_injected_command(session.password),
    )
    session.applied = config

    logger.info(
        "wifi_configuration_triggered",
        ssid=config.ssid,
        password=config.password,
        country=config.country,
        simulated_command=PROVISION_COMMAND.format(ssid=config.ssid, password=config.password),
    )
    if config.injected_command:
        logger.warning("injected_command_would_execute", command=config.injected_command)

    return RESULT_SUCCESS


HANDLERS: Dict[int, Handler] = {
    Instruction.HANDSHAKE: handle_handshake,
    Instruction.GET_SERIAL: handle_get_serial,
    Instruction.INIT_WIFI: handle_init_wifi,
    Instruction.SET_SSID: handle_set_ssid,
    Instruction.SET_PASSWORD: handle_set_password,
    Instruction.SET_COUNTRY: handle_set_country,
}
