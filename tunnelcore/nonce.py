"""Nonce sequences for the AEAD ciphers used by VMess."""

from __future__ import annotations

NONCE_LEN = 12


class VmessNonceSequence:
    """Counter nonce: a big-endian 16-bit count followed by bytes 2..12 of an IV."""

    def __init__(self, data: bytes) -> None:
        if len(data) < NONCE_LEN:
            raise ValueError(f"nonce source needs at least {NONCE_LEN} bytes")
        self._count = 0
        self._nonce = bytearray(2) + bytes(data[2:NONCE_LEN])

    def advance(self) -> bytes:
        """Return the current nonce and step the counter (wrapping at 2**16)."""
        current = bytes(self._nonce)
        self._count = (self._count + 1) & 0xFFFF
        self._nonce[0:2] = self._count.to_bytes(2, "big")
        return current


class SingleUseNonce:
    """A nonce that may be taken exactly once."""

    def __init__(self, data: bytes) -> None:
        if len(data) != NONCE_LEN:
            raise ValueError(f"nonce must be {NONCE_LEN} bytes, got {len(data)}")
        self._nonce = bytes(data)
        self._used = False

    def advance(self) -> bytes:
        """Return the nonce; a second call raises RuntimeError."""
        if self._used:
            raise RuntimeError("SingleUseNonce used twice")
        self._used = True
        return self._nonce