"""Reading VMess data chunks: unmasking lengths, opening bodies, dropping padding."""

from __future__ import annotations

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from tunnelcore.hashing import chacha_key
from tunnelcore.nonce import VmessNonceSequence
from tunnelcore.vmess.auth import DataCipher
from tunnelcore.vmess.masking import LengthMask

TAG_LEN = 16


class PacketError(ValueError):
    """A data chunk was malformed or failed authentication."""


def _opener_for(cipher: DataCipher, key: bytes):
    if cipher is DataCipher.AES_128_GCM:
        return AESGCM(bytes(key))
    if cipher is DataCipher.CHACHA20_POLY1305:
        return ChaCha20Poly1305(chacha_key(bytes(key)))
    if cipher is DataCipher.NONE:
        return None
    raise ValueError(f"cannot build a data stream for cipher {cipher.value}")


class PacketReader:
    """Turns received VMess data chunks back into plaintext.

    The arguments mirror those of the peer's PacketWriter.
    """

    def __init__(
        self,
        cipher: DataCipher,
        key: bytes,
        iv: bytes,
        mask: LengthMask | None = None,
    ) -> None:
        self._aead = _opener_for(cipher, key)
        self._tag_len = TAG_LEN if self._aead is not None else 0
        self._nonces = VmessNonceSequence(iv) if self._aead is not None else None
        self._mask = mask
        self._buffer = bytearray()
        self._pending: tuple[int, int] | None = None
        self._eof = False

    @property
    def tag_len(self) -> int:
        return self._tag_len

    @property
    def eof(self) -> bool:
        """Whether the end-of-stream chunk has been seen."""
        return self._eof

    def feed(self, data: bytes) -> None:
        """Add received bytes."""
        self._buffer += data

    def next_packet(self) -> bytes | None:
        """Return the plaintext of the next chunk.

        Returns None when more data is needed and b"" once the end-of-stream
        chunk has arrived.
        """
        if self._eof:
            return b""

        if self._pending is None:
            if len(self._buffer) < 2:
                return None
            length = int.from_bytes(self._buffer[:2], "big")
            if self._mask is not None:
                padding, length_mask = self._mask.next_values()
                length ^= length_mask
            else:
                padding = 0
            if length < padding + self._tag_len:
                raise PacketError(
                    f"data length ({length}) is smaller than tag length ({self._tag_len})"
                )
            if length - padding == self._tag_len:
                self._eof = True
                return b""
            del self._buffer[:2]
            self._pending = (padding, length)

        padding, length = self._pending
        if len(self._buffer) < length:
            return None
        self._pending = None

        body = bytes(self._buffer[: length - padding])
        del self._buffer[:length]
        if self._aead is None:
            return body
        try:
            return self._aead.decrypt(self._nonces.advance(), body, None)
        except InvalidTag:
            raise PacketError("open failed for data") from None