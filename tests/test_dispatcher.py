"""
Tests for the robot-side session dispatcher and instruction handlers.

Tests cover:
- Handshake authentication
- Serial number disclosure
- SSID / password chunk accumulation
- Commit on SET_COUNTRY and injection diagnostics
- Dropped frames and session reset
"""
from typing import Optional

import pytest

from uniprov.engine import frame_codec
from uniprov.engine.cipher import FrameCipher
from uniprov.engine.dispatcher import Connected, Disconnected, FrameReceived, SessionDispatcher
from uniprov.engine.handlers import (
    MAX_SERIAL_SIZE,
    DeviceProfile,
    detect_injection,
    extract_injected_command,
)
from uniprov.engine.reassembler import split_chunks
from uniprov.exceptions import ConfigurationError, UnknownInstructionError
from uniprov.models import Instruction, Opcode, SessionState

SERIAL = "ESP32-EMULATOR-v1.0-TESTDEVICE"


@pytest.fixture
def cipher():
    return FrameCipher()


@pytest.fixture
def dispatcher(cipher):
    return SessionDispatcher(
        profile=DeviceProfile(device_name="Go2_ESP32EMU", serial_number=SERIAL),
        cipher=cipher,
    )


def exchange(dispatcher: SessionDispatcher, instruction: int, payload: bytes) -> Optional[bytes]:
    """Send one encrypted request; return the decrypted response payload."""
    wire = frame_codec.seal(instruction, payload, Opcode.REQUEST, cipher=dispatcher.cipher)
    response = dispatcher.handle(FrameReceived(wire))
    if response is None:
        return None
    frame = frame_codec.open_frame(response, expected_opcode=Opcode.RESPONSE, cipher=dispatcher.cipher)
    assert frame.instruction == instruction
    return frame.payload


def authenticate(dispatcher: SessionDispatcher) -> None:
    assert exchange(dispatcher, Instruction.HANDSHAKE, b"\x00\x00unitree") == b"\x01"


class TestHandshake:

    def test_correct_literal_authenticates(self, dispatcher):
        assert dispatcher.session.state == SessionState.IDLE
        authenticate(dispatcher)
        assert dispatcher.session.state == SessionState.AUTHENTICATED

    @pytest.mark.parametrize("literal", [b"unitre", b"unitreex", b"UNITREE", b""])
    def test_wrong_literal_rejected(self, dispatcher, literal):
        assert exchange(dispatcher, Instruction.HANDSHAKE, b"\x00\x00" + literal) == b"\x00"
        assert dispatcher.session.state == SessionState.IDLE

    def test_failed_handshake_drops_authentication(self, dispatcher):
        authenticate(dispatcher)
        assert exchange(dispatcher, Instruction.HANDSHAKE, b"\x00\x00nope") == b"\x00"
        assert not dispatcher.session.authenticated


class TestGetSerial:

    def test_unauthenticated_request_refused(self, dispatcher):
        assert exchange(dispatcher, Instruction.GET_SERIAL, b"\x00") == b"\x00"

    def test_serial_returned_as_single_chunk(self, dispatcher):
        authenticate(dispatcher)
        payload = exchange(dispatcher, Instruction.GET_SERIAL, b"\x00")
        assert payload == b"\x01\x01" + SERIAL.encode("ascii")

    def test_longest_serial_fits_one_frame(self, cipher):
        serial = "S" * MAX_SERIAL_SIZE
        dispatcher = SessionDispatcher(
            profile=DeviceProfile(device_name="Go2_ESP32EMU", serial_number=serial),
            cipher=cipher,
        )
        authenticate(dispatcher)
        assert exchange(dispatcher, Instruction.GET_SERIAL, b"\x00") == b"\x01\x01" + serial.encode("ascii")


class TestDeviceProfile:

    def test_non_ascii_serial_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            DeviceProfile(device_name="Go2_ESP32EMU", serial_number="SN-\u00dc-01")
        assert exc_info.value.details["serial_number"] == "SN-\u00dc-01"

    def test_oversized_serial_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            DeviceProfile(device_name="Go2_ESP32EMU", serial_number="S" * (MAX_SERIAL_SIZE + 1))
        assert exc_info.value.details["serial_size"] == MAX_SERIAL_SIZE + 1

    def test_serial_size_limit(self):
        assert MAX_SERIAL_SIZE == 249
        profile = DeviceProfile(device_name="Go2_ESP32EMU", serial_number="S" * MAX_SERIAL_SIZE)
        assert len(profile.serial_number) == MAX_SERIAL_SIZE


class TestWifiConfiguration:

    def test_init_wifi_always_succeeds(self, dispatcher):
        assert exchange(dispatcher, Instruction.INIT_WIFI, b"\x02") == b"\x01"
        assert exchange(dispatcher, Instruction.INIT_WIFI, b"") == b"\x01"

    def test_ssid_in_two_chunks(self, dispatcher):
        session = dispatcher.session

        assert exchange(dispatcher, Instruction.SET_SSID, b"\x01\x02Home") is None
        assert session.ssid_buffer.buffer == bytearray(b"Home")
        assert session.ssid_buffer.received_count == 1
        assert session.ssid == ""

        assert exchange(dispatcher, Instruction.SET_SSID, b"\x02\x02Wifi") == b"\x01"
        assert session.ssid == "HomeWifi"
        assert session.ssid_buffer.buffer == bytearray()
        assert session.ssid_buffer.received_count == 0

    def test_chunks_are_placed_by_arrival_not_index(self, dispatcher):
        exchange(dispatcher, Instruction.SET_SSID, b"\x02\x02Wifi")
        exchange(dispatcher, Instruction.SET_SSID, b"\x01\x02Home")
        assert dispatcher.session.ssid == "WifiHome"

    @pytest.mark.parametrize("instruction", [Instruction.SET_SSID, Instruction.SET_PASSWORD])
    def test_missing_chunk_header_rejected(self, dispatcher, instruction):
        assert exchange(dispatcher, instruction, b"\x01") == b"\x00"

    def test_password_chunks(self, dispatcher):
        for chunk in split_chunks(b"correct horse battery staple", 8):
            response = exchange(dispatcher, Instruction.SET_PASSWORD, chunk)
        assert response == b"\x01"
        assert dispatcher.session.password == "correct horse battery staple"

    def test_country_commits_configuration(self, dispatcher):
        exchange(dispatcher, Instruction.SET_SSID, b"\x01\x01Lab")
        exchange(dispatcher, Instruction.SET_PASSWORD, b"\x01\x01secret99")

        assert exchange(dispatcher, Instruction.SET_COUNTRY, b"\x01US\x00\x00") == b"\x01"

        applied = dispatcher.session.applied
        assert applied.ssid == "Lab"
        assert applied.password == "secret99"
        assert applied.country == "US"
        assert applied.injection_patterns == []
        assert applied.injected_command is None

    def test_empty_country_rejected(self, dispatcher):
        assert exchange(dispatcher, Instruction.SET_COUNTRY, b"") == b"\x00"
        assert dispatcher.session.applied is None

    def test_injected_password_is_reported(self, dispatcher):
        exchange(dispatcher, Instruction.SET_SSID, b"\x01\x01Lab")
        exchange(dispatcher, Instruction.SET_PASSWORD, b"\x01\x01x;$(reboot);")
        exchange(dispatcher, Instruction.SET_COUNTRY, b"\x01CN")

        applied = dispatcher.session.applied
        assert ";$(" in applied.injection_patterns
        assert applied.injected_command == "reboot"


class TestInjectionDiagnostics:

    def test_detect_injection(self):
        assert detect_injection("plain-password") == []
        assert detect_injection("a && b || c") == ["&&", "||"]
        assert detect_injection("x`;y") == ["`;"]

    def test_extract_injected_command(self):
        assert extract_injected_command("pw;$(touch /tmp/x);") == "touch /tmp/x"
        assert extract_injected_command("pw;$(unterminated") is None
        assert extract_injected_command("pw;$();") is None
        assert extract_injected_command("plain") is None


class TestDroppedFrames:

    def test_unknown_instruction_dropped(self, dispatcher):
        assert exchange(dispatcher, 0x09, b"\x00") is None

    def test_dispatch_raises_for_unknown_instruction(self, dispatcher):
        with pytest.raises(UnknownInstructionError) as exc_info:
            dispatcher.dispatch(0x7F, b"")
        assert exc_info.value.instruction == 0x7F

    def test_bad_checksum_dropped(self, dispatcher, cipher):
        frame = bytearray(frame_codec.encode_request(Instruction.HANDSHAKE, b"\x00\x00unitree"))
        frame[-1] ^= 0x01

        assert dispatcher.handle(FrameReceived(cipher.encrypt(bytes(frame)))) is None
        assert not dispatcher.session.authenticated

    def test_response_opcode_dropped(self, dispatcher, cipher):
        wire = frame_codec.seal(Instruction.HANDSHAKE, b"\x00\x00unitree", Opcode.RESPONSE, cipher=cipher)
        assert dispatcher.handle(FrameReceived(wire)) is None
        assert not dispatcher.session.authenticated

    def test_short_and_empty_writes_dropped(self, dispatcher, cipher):
        assert dispatcher.handle(FrameReceived(b"")) is None
        assert dispatcher.handle(FrameReceived(cipher.encrypt(b"\x52\x04"))) is None

    def test_plaintext_frame_dropped(self, dispatcher):
        plaintext = frame_codec.encode_request(Instruction.HANDSHAKE, b"\x00\x00unitree")
        assert dispatcher.handle(FrameReceived(plaintext)) is None

    def test_oversized_response_dropped(self, cipher):
        dispatcher = SessionDispatcher(
            profile=DeviceProfile(device_name="Go2_ESP32EMU", serial_number=SERIAL),
            cipher=cipher,
            handlers={Instruction.INIT_WIFI: lambda session, payload, profile: bytes(252)},
        )
        wire = frame_codec.seal(Instruction.INIT_WIFI, b"\x01", Opcode.REQUEST, cipher=cipher)

        assert dispatcher.handle(FrameReceived(wire)) is None


class TestSessionLifecycle:

    def _dirty_session(self, dispatcher):
        authenticate(dispatcher)
        exchange(dispatcher, Instruction.SET_SSID, b"\x01\x01Lab")
        exchange(dispatcher, Instruction.SET_PASSWORD, b"\x01\x02half")
        exchange(dispatcher, Instruction.SET_COUNTRY, b"\x01US")
        exchange(dispatcher, Instruction.SET_SSID, b"\x01\x03pending")

    def _assert_pristine(self, session):
        assert not session.authenticated
        assert session.ssid == ""
        assert session.password == ""
        assert session.country == ""
        assert session.applied is None
        assert session.ssid_buffer.received_count == 0
        assert session.password_buffer.received_count == 0
        assert not session.ssid_buffer.buffer
        assert not session.password_buffer.buffer

    def test_disconnect_resets_every_field(self, dispatcher):
        self._dirty_session(dispatcher)
        assert dispatcher.handle(Disconnected(reason=0x13)) is None
        self._assert_pristine(dispatcher.session)

    def test_connect_reinitializes(self, dispatcher):
        self._dirty_session(dispatcher)
        dispatcher.handle(Connected())
        self._assert_pristine(dispatcher.session)

    def test_serial_refused_after_reconnect(self, dispatcher):
        authenticate(dispatcher)
        dispatcher.handle(Disconnected())
        dispatcher.handle(Connected())
        assert exchange(dispatcher, Instruction.GET_SERIAL, b"\x00") == b"\x00"

    def test_unsupported_event(self, dispatcher):
        with pytest.raises(TypeError):
            dispatcher.handle("connected")
