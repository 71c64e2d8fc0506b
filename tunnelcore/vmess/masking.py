"""SHAKE128-driven chunk length masking and padding for VMess data streams."""

from __future__ import annotations

import hashlib

MAX_PADDING_LEN = 64
_INITIAL_OUTPUT = 256


class _ShakeStream:
    """Reads the SHAKE128 output of a seed as an endless byte stream."""

    def __init__(self, seed: bytes) -> None:
        self._shake = hashlib.shake_128(seed)
        self._produced = 0
        self._pending = bytearray()

    def read(self, n: int) -> bytes:
        if len(self._pending) < n:
            total = max(self._produced * 2, self._produced + n, _INITIAL_OUTPUT)
            self._pending += self._shake.digest(total)[self._produced:]
            self._produced = total
        chunk = bytes(self._pending[:n])
        del self._pending[:n]
        return chunk


class LengthMask:
    """Produces the length masks (and optional padding lengths) of successive chunks."""

    def __init__(self, seed: bytes, enable_padding: bool = False) -> None:
        self._stream = _ShakeStream(bytes(seed))
        self.enable_padding = enable_padding

    def next_u16(self) -> int:
        """Return the next big-endian 16-bit value of the SHAKE128 stream."""
        return int.from_bytes(self._stream.read(2), "big")

    def next_values(self) -> tuple[int, int]:
        """Return ``(padding_len, length_mask)`` for the next chunk."""
        padding = self.next_u16() % MAX_PADDING_LEN if self.enable_padding else 0
        return padding, self.next_u16()