"""
Session dispatcher - the robot-side protocol state machine.

Transport callbacks are turned into explicit events and fed to a single
``handle`` method that returns the bytes to send back (already encrypted)
or None. The dispatcher never touches a transport, so it can be driven
directly from tests.

    FrameReceived(bytes) -> decrypt -> decode -> handler -> encode -> encrypt
    Connected            -> Session reinitialized
    Disconnected         -> Session reset

States: IDLE --HANDSHAKE("unitree")--> AUTHENTICATED; any failed handshake
returns to IDLE, disconnect always does.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Union

import structlog

from uniprov.engine import frame_codec
from uniprov.engine.cipher import FrameCipher, default_cipher
from uniprov.engine.handlers import HANDLERS, DeviceProfile, Handler
from uniprov.engine.session import Session
from uniprov.exceptions import FrameEncodeError, FrameError, UnknownInstructionError
from uniprov.models import Instruction, Opcode

logger = structlog.get_logger()


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: Optional[int] = None


@dataclass(frozen=True)
class FrameReceived:
    data: bytes


SessionEvent = Union[Connected, Disconnected, FrameReceived]


class SessionDispatcher:
    """
    Drives one Session through the instruction table.

    Args:
        profile: Identity reported by GET_SERIAL
        cipher: Frame cipher (defaults to the firmware key/IV)
        session: Session to drive (a new one if omitted)
        handlers: Instruction table override
    """

    def __init__(
        self,
        profile: Optional[DeviceProfile] = None,
        cipher: Optional[FrameCipher] = None,
        session: Optional[Session] = None,
        handlers: Optional[Dict[int, Handler]] = None,
    ):
        self.profile = profile or DeviceProfile.from_settings()
        self.cipher = cipher or default_cipher()
        self.session = session or Session()
        self.handlers = handlers if handlers is not None else dict(HANDLERS)

    def handle(self, event: SessionEvent) -> Optional[bytes]:
        if isinstance(event, FrameReceived):
            return self._on_frame(event.data)
        if isinstance(event, Connected):
            self.session.reset()
            logger.info("client_connected")
            return None
        if isinstance(event, Disconnected):
            self.session.reset()
            logger.info("client_disconnected", reason=event.reason)
            return None
        raise TypeError(f"Unsupported session event: {event!r}")

    def _on_frame(self, data: bytes) -> Optional[bytes]:
        if not data:
            logger.debug("empty_write_ignored")
            return None

        logger.debug("frame_received", encrypted=data, size=len(data))
        plaintext = self.cipher.decrypt(data)

        try:
            frame = frame_codec.decode(plaintext, expected_opcode=Opcode.REQUEST)
        except FrameError as exc:
            logger.error(
                "frame_dropped",
                error=exc.message,
                error_type=type(exc).__name__,
                decrypted=plaintext,
            )
            return None

        try:
            response_payload = self.dispatch(frame.instruction, frame.payload)
        except UnknownInstructionError as exc:
            logger.error("frame_dropped", error=exc.message, instruction=exc.instruction)
            return None

        if response_payload is None:
            return None

        try:
            response = frame_codec.encode_response(frame.instruction, response_payload)
        except FrameEncodeError as exc:
            logger.error(
                "response_dropped",
                error=exc.message,
                instruction=frame.instruction,
                payload_size=len(response_payload),
            )
            return None
        logger.debug("response_built", plaintext=response)
        return self.cipher.encrypt(response)

    def dispatch(self, instruction: int, payload: bytes) -> Optional[bytes]:
        """
        Run the handler for ``instruction`` against the current session.

        Raises:
            UnknownInstructionError: no handler is registered
        """
        handler = self.handlers.get(instruction)
        if handler is None:
            raise UnknownInstructionError(instruction)

        try:
            name = Instruction(instruction).name
        except ValueError:
            name = f"0x{instruction:02X}"
        logger.info(
            "instruction_dispatched",
            instruction=name,
            state=self.session.state.value,
        )
        return handler(self.session, payload, self.profile)
