"""
Custom Exception Hierarchy for the provisioning protocol

Provides structured exceptions so each side can tell framing problems,
transport failures and failed exchanges apart.
All custom exceptions inherit from ProvisioningError base class.
"""
from typing import Optional


class ProvisioningError(Exception):
    """
    Base exception for all provisioning-protocol errors.

    All custom exceptions should inherit from this class to allow
    catching all protocol errors with a single except clause.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors

class ConfigurationError(ProvisioningError):
    """
    Invalid configuration or settings.

    Raised when configuration validation fails or required settings are missing.
    """
    pass


class CipherConfigurationError(ConfigurationError):
    """Cipher primitive could not be initialized with the configured key/IV."""
    pass


# Protocol and Framing Errors

class ProtocolError(ProvisioningError):
    """
    Protocol-related errors during framing or dispatch.

    Base class for all protocol handling errors.
    """
    pass


class FrameError(ProtocolError):
    """Frame could not be decoded; the frame is dropped without a reply."""
    pass


class FrameTooShortError(FrameError):
    """Buffer is shorter than the minimal frame (opcode, length, instruction, checksum)."""
    pass


class ChecksumError(FrameError):
    """Byte-sum of the frame is not zero modulo 256."""
    pass


class UnexpectedOpcodeError(FrameError):
    """Opcode is not the one the receiving side expects."""
    pass


class FrameEncodeError(FrameError):
    """Frame cannot be built (payload exceeds the one-byte length field)."""
    pass


class UnknownInstructionError(ProtocolError):
    """Instruction byte has no registered handler."""
    def __init__(self, instruction: int):
        super().__init__(
            f"Unknown instruction 0x{instruction:02X}",
            {"instruction": instruction},
        )
        self.instruction = instruction


class ChunkError(ProtocolError):
    """Chunk header missing or inconsistent."""
    pass


# Transport Errors

class TransportError(ProvisioningError):
    """
    Transport failures.

    Base class for all link-level errors. Aborts the current exchange only.
    """
    pass


class ConnectionError(TransportError):
    """Failed to establish a connection to the device."""
    pass


class ConnectionTimeoutError(TransportError):
    """Connection attempt timed out."""
    pass


class SendError(TransportError):
    """Failed to deliver bytes to the peer."""
    pass


class ServiceNotFoundError(TransportError):
    """Provisioning service or one of its characteristics is missing."""
    pass


# Exchange Errors (client side)

class ExchangeError(ProvisioningError):
    """
    A request/response exchange did not complete.

    Reported as a skip by the scan loop, never fatal.
    """
    pass


class HandshakeRejectedError(ExchangeError):
    """Device answered the handshake with the failure payload."""
    pass


class NotAuthenticatedError(ExchangeError):
    """Device refused a privileged instruction."""
    pass


class ResponseTimeoutError(ExchangeError):
    """Timeout waiting for a (possibly multi-chunk) response."""
    pass


# Storage Errors

class StorageError(ProvisioningError):
    """Failed to read/write scan records."""
    pass
