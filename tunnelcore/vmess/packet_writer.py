"""Packing outgoing data into VMess chunks: length, sealed body, padding."""

from __future__ import annotations

import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from tunnelcore.hashing import chacha_key
from tunnelcore.nonce import VmessNonceSequence
from tunnelcore.vmess.auth import DataCipher
from tunnelcore.vmess.masking import LengthMask

TAG_LEN = 16
# One less than 2**14 for compatibility with clients that reject full-size chunks.
MAX_ENCRYPTED_WRITE_DATA_SIZE = 2**14 - 1


def _aead_for(cipher: DataCipher, key: bytes):
    if cipher is DataCipher.AES_128_GCM:
        return AESGCM(bytes(key))
    if cipher is DataCipher.CHACHA20_POLY1305:
        return ChaCha20Poly1305(chacha_key(bytes(key)))
    if cipher is DataCipher.NONE:
        return None
    raise ValueError(f"cannot build a data stream for cipher {cipher.value}")


class PacketWriter:
    """Turns plaintext into VMess data chunks.

    *key* is the 16-byte data key (expanded internally for ChaCha20), *iv* the
    16-byte data iv the nonces come from, and *mask* an optional LengthMask.
    """

    def __init__(
        self,
        cipher: DataCipher,
        key: bytes,
        iv: bytes,
        mask: LengthMask | None = None,
    ) -> None:
        self._aead = _aead_for(cipher, key)
        self._tag_len = TAG_LEN if self._aead is not None else 0
        self._nonces = VmessNonceSequence(iv) if self._aead is not None else None
        self._mask = mask

    @property
    def tag_len(self) -> int:
        return self._tag_len

    def pack(self, data: bytes) -> bytes:
        """Return *data* as one or more chunks; empty data gives no chunks."""
        out = bytearray()
        view = memoryview(bytes(data))
        while view:
            used, chunk = self._pack_one(view)
            out += chunk
            view = view[used:]
        return bytes(out)

    def pack_eof(self) -> bytes:
        """Return the empty chunk that marks the end of the stream."""
        return self._pack_one(b"")[1]

    def _pack_one(self, data) -> tuple[int, bytes]:
        if self._mask is not None:
            padding, length_mask = self._mask.next_values()
        else:
            padding, length_mask = 0, 0
        size = min(len(data), MAX_ENCRYPTED_WRITE_DATA_SIZE - padding - self._tag_len)
        body = bytes(data[:size])
        if self._aead is not None:
            body = self._aead.encrypt(self._nonces.advance(), body, None)
        length = (size + padding + self._tag_len) ^ length_mask
        return size, length.to_bytes(2, "big") + body + os.urandom(padding)