"""Checksums, digests and the key derivation used by the VMess protocol."""

from __future__ import annotations

import hashlib
import hmac
import zlib
from collections.abc import Iterable

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 16777619
_KDF_ROOT_KEY = b"VMess AEAD KDF"
_HMAC_BLOCK_SIZE = 64


def crc32c(data: bytes) -> int:
    """Return the CRC-32 (reflected polynomial 0xEDB88320) of *data*."""
    return zlib.crc32(data) & _MASK32


class CrcBuilder:
    """Incremental CRC-32 over several chunks of data.

    *initial* is the raw register value; the default starts a fresh checksum.
    """

    def __init__(self, initial: int = _MASK32) -> None:
        self._state = initial & _MASK32

    def update(self, data: bytes) -> None:
        """Feed *data* into the checksum."""
        self._state = ~zlib.crc32(data, ~self._state & _MASK32) & _MASK32

    def crc(self) -> int:
        """Return the checksum of everything fed so far."""
        return ~self._state & _MASK32


class Fnv1aHasher:
    """Incremental 32-bit FNV-1a hash."""

    def __init__(self) -> None:
        self._hash = _FNV_OFFSET_BASIS

    def update(self, data: bytes) -> None:
        """Feed *data* into the hash."""
        value = self._hash
        for byte in data:
            value = ((value ^ byte) * _FNV_PRIME) & _MASK32
        self._hash = value

    def finish(self) -> int:
        """Return the hash of everything fed so far."""
        return self._hash


def fnv1a(data: bytes) -> int:
    """Return the 32-bit FNV-1a hash of *data*."""
    hasher = Fnv1aHasher()
    hasher.update(data)
    return hasher.finish()


def md5(data: bytes) -> bytes:
    """Return the MD5 digest of *data*."""
    return hashlib.md5(data).digest()


def md5_repeating(data: bytes, times: int) -> bytes:
    """Return the MD5 digest of *data* fed *times* times in a row."""
    context = hashlib.md5()
    for _ in range(times):
        context.update(data)
    return context.digest()


def chacha_key(data: bytes) -> bytes:
    """Expand a 16-byte key into the 32-byte ChaCha20 key: md5(data) + md5(md5(data))."""
    first = hashlib.md5(data).digest()
    return first + hashlib.md5(first).digest()


def hmac_md5(key: bytes, data: bytes) -> bytes:
    """Return HMAC-MD5 of *data* under *key*."""
    return hmac.new(key, data, hashlib.md5).digest()


def sha256(data: bytes) -> bytes:
    """Return the SHA-256 digest of *data*."""
    return hashlib.sha256(data).digest()


class _HmacLayer:
    """An HMAC construction over an arbitrary hash object with copy/update/digest."""

    def __init__(self, key: bytes, base) -> None:
        if len(key) > _HMAC_BLOCK_SIZE:
            raise ValueError(
                f"key of {len(key)} bytes is longer than {_HMAC_BLOCK_SIZE} bytes"
            )
        padded = key.ljust(_HMAC_BLOCK_SIZE, b"\0")
        self._opad = bytes(b ^ 0x5C for b in padded)
        self._inner = base.copy()
        self._inner.update(bytes(b ^ 0x36 for b in padded))
        self._outer = base

    @classmethod
    def _from_parts(cls, inner, outer, opad: bytes) -> "_HmacLayer":
        layer = cls.__new__(cls)
        layer._inner = inner
        layer._outer = outer
        layer._opad = opad
        return layer

    def copy(self) -> "_HmacLayer":
        return self._from_parts(self._inner.copy(), self._outer.copy(), self._opad)

    def update(self, data: bytes) -> None:
        self._inner.update(data)

    def digest(self) -> bytes:
        outer = self._outer.copy()
        outer.update(self._opad)
        outer.update(self._inner.digest())
        return outer.digest()


def kdf(key: bytes, path: Iterable[bytes]) -> bytes:
    """Derive 32 bytes from *key* with the nested-HMAC VMess AEAD KDF.

    Each item of *path* wraps the previous HMAC layer as its hash function.
    Path items longer than 64 bytes raise ValueError.
    """
    current = _HmacLayer(_KDF_ROOT_KEY, hashlib.sha256())
    for item in path:
        current = _HmacLayer(bytes(item), current)
    current.update(key)
    return current.digest()