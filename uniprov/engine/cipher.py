"""
Stream Cipher Transform

AES-128 in CFB128 feedback mode, applied byte-wise to every frame in both
directions. The robots ship a fixed key/IV pair; every call starts from a
fresh copy of the IV so two frames with the same plaintext encrypt to the
same ciphertext. This reproduces the device behaviour and offers no
confidentiality.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

import structlog
from cryptography.hazmat.decrepit.ciphers.modes import CFB
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from uniprov.config import settings
from uniprov.exceptions import CipherConfigurationError

logger = structlog.get_logger()

KEY_SIZE = 16
IV_SIZE = 16


class Direction(str, Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


def _build_cipher(key: bytes, iv: bytes) -> Cipher:
    if len(key) != KEY_SIZE:
        raise CipherConfigurationError(
            "AES key must be 128 bits",
            details={"key_size": len(key)},
        )
    if len(iv) != IV_SIZE:
        raise CipherConfigurationError(
            "AES IV must be 128 bits",
            details={"iv_size": len(iv)},
        )
    try:
        return Cipher(algorithms.AES(key), CFB(iv))
    except ValueError as exc:
        raise CipherConfigurationError(
            "AES-CFB initialization failed",
            details={"error": str(exc)},
        ) from exc


def transform(direction: Direction, key: bytes, iv: bytes, data: bytes) -> bytes:
    """
    Encrypt or decrypt one buffer with AES-128-CFB128.

    Output length always equals input length. A new cipher context is built
    per call, so the IV never carries over between frames.

    Raises:
        CipherConfigurationError: key or IV has the wrong size
    """
    cipher = _build_cipher(key, iv)
    if direction == Direction.ENCRYPT:
        context = cipher.encryptor()
    else:
        context = cipher.decryptor()
    return context.update(bytes(data)) + context.finalize()


class FrameCipher:
    """Cipher transform bound to one key/IV pair"""

    def __init__(self, key: Optional[bytes] = None, iv: Optional[bytes] = None):
        self.key = key if key is not None else bytes.fromhex(settings.cipher_key_hex)
        self.iv = iv if iv is not None else bytes.fromhex(settings.cipher_iv_hex)
        # validates key/IV sizes
        _build_cipher(self.key, self.iv)

    def encrypt(self, data: bytes) -> bytes:
        return transform(Direction.ENCRYPT, self.key, self.iv, data)

    def decrypt(self, data: bytes) -> bytes:
        return transform(Direction.DECRYPT, self.key, self.iv, data)


_default_cipher: Optional[FrameCipher] = None


def default_cipher() -> FrameCipher:
    """Cipher using the configured (firmware) key and IV."""
    global _default_cipher
    if _default_cipher is None:
        _default_cipher = FrameCipher()
        logger.debug("frame_cipher_initialized", mode="aes-128-cfb128")
    return _default_cipher


def encrypt(data: bytes) -> bytes:
    return default_cipher().encrypt(data)


def decrypt(data: bytes) -> bytes:
    return default_cipher().decrypt(data)
