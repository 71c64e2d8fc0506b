"""Reading and checking the VMess response header on the client side."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tunnelcore.hashing import kdf

logger = logging.getLogger(__name__)

HEADER_TAG_LEN = 16
_LEGACY_HEADER_LEN = 4


class ResponseHeaderError(ValueError):
    """The server's response header could not be opened or was invalid."""


@dataclass(frozen=True)
class ResponseHeaderInfo:
    """What the client needs to read the server's response header."""

    is_aead: bool
    response_key: bytes
    response_iv: bytes
    response_auth: int


def check_response_header(header: bytes, response_auth: int) -> None:
    """Check a decrypted response header against the expected auth value."""
    if header[0] != response_auth:
        raise ResponseHeaderError(
            f"Invalid response auth value, expected {response_auth}, got {header[0]}"
        )
    # The option byte is ignored: connections are never reused.
    if header[2] & 0x01:
        logger.warning("Ignoring unsupported server dynamic port instructions.")


class ResponseHeaderReader:
    """Consumes the response header from incoming bytes, then passes data through."""

    def __init__(self, info: ResponseHeaderInfo) -> None:
        self._info = info
        self._buffer = bytearray()
        self._content_len: int | None = None
        self._done = False

    @property
    def done(self) -> bool:
        """Whether the whole header has been read and checked."""
        return self._done

    def feed(self, data: bytes) -> bytes | None:
        """Add received bytes.

        Returns None while the header is incomplete; once it is complete,
        returns the bytes that followed it (possibly empty).
        """
        if self._done:
            return bytes(data)
        self._buffer += data
        finished = self._read_aead() if self._info.is_aead else self._read_legacy()
        if not finished:
            return None
        self._done = True
        rest = bytes(self._buffer)
        self._buffer.clear()
        return rest

    def _open(self, key_label: bytes, iv_label: bytes, sealed: bytes, what: str) -> bytes:
        key = kdf(self._info.response_key, [key_label])[:16]
        nonce = kdf(self._info.response_iv, [iv_label])[:12]
        try:
            return AESGCM(key).decrypt(nonce, sealed, None)
        except InvalidTag:
            raise ResponseHeaderError(f"failed to open encrypted {what}") from None

    def _read_aead(self) -> bool:
        if self._content_len is None:
            if len(self._buffer) < 2 + HEADER_TAG_LEN:
                return False
            length = self._open(
                b"AEAD Resp Header Len Key",
                b"AEAD Resp Header Len IV",
                bytes(self._buffer[: 2 + HEADER_TAG_LEN]),
                "response header length",
            )
            del self._buffer[: 2 + HEADER_TAG_LEN]
            self._content_len = int.from_bytes(length, "big")

        total = self._content_len + HEADER_TAG_LEN
        if len(self._buffer) < total:
            return False
        header = self._open(
            b"AEAD Resp Header Key",
            b"AEAD Resp Header IV",
            bytes(self._buffer[:total]),
            "response header",
        )
        del self._buffer[:total]
        if len(header) < _LEGACY_HEADER_LEN:
            raise ResponseHeaderError(f"response header too short ({len(header)} bytes)")
        if header[3] > 0:
            logger.warning("Ignoring unused command bytes from AEAD block")
        check_response_header(header, self._info.response_auth)
        return True

    def _read_legacy(self) -> bool:
        if len(self._buffer) < _LEGACY_HEADER_LEN:
            return False
        decryptor = Cipher(
            algorithms.AES(self._info.response_key), modes.CFB(self._info.response_iv)
        ).decryptor()
        header = decryptor.update(bytes(self._buffer[:_LEGACY_HEADER_LEN]))
        if header[3] > 0:
            raise ResponseHeaderError("extra command bytes")
        del self._buffer[:_LEGACY_HEADER_LEN]
        check_response_header(header, self._info.response_auth)
        return True