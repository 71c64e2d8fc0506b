"""User authentication for VMess: cipher names, user ids and the auth id."""

from __future__ import annotations

import enum
import os
import threading
import time

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tunnelcore.hashing import crc32c, hmac_md5, kdf, md5

USER_ID_SUFFIX = b"c48619fe-8f02-49e0-b9e9-edf763e17e21"
AUTH_ID_LEN = 16
AUTH_ID_RANDOM_LEN = 4
_HASH_WINDOW_SECS = 32
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class DataCipher(enum.Enum):
    """The data stream ciphers a VMess endpoint may use or allow."""

    ANY = "any"
    AES_128_GCM = "aes-128-gcm"
    CHACHA20_POLY1305 = "chacha20-poly1305"
    NONE = "none"


_CIPHER_NAMES = {
    "": DataCipher.ANY,
    "any": DataCipher.ANY,
    "aes-128-gcm": DataCipher.AES_128_GCM,
    "chacha20-poly1305": DataCipher.CHACHA20_POLY1305,
    "chacha20-ietf-poly1305": DataCipher.CHACHA20_POLY1305,
    "none": DataCipher.NONE,
}


def parse_cipher(name: str) -> DataCipher:
    """Return the cipher for a configured name; unknown names raise ValueError."""
    try:
        return _CIPHER_NAMES[name]
    except KeyError:
        raise ValueError(f"Unknown cipher: {name}") from None


def parse_hex(text: str) -> bytes:
    """Return the bytes spelt by the hex digits of *text*, ignoring other characters.

    A trailing unpaired digit is dropped.
    """
    digits = [int(c, 16) for c in text if c in _HEX_DIGITS]
    return bytes((high << 4) | low for high, low in zip(digits[0::2], digits[1::2]))


def derive_instruction_key(user_id_bytes: bytes) -> bytes:
    """Return the 16-byte instruction key (command key) of a user id."""
    return md5(bytes(user_id_bytes) + USER_ID_SUFFIX)


class CertHashProvider:
    """Recognises legacy (non-AEAD) auth hashes within a window around the current time."""

    def __init__(self, user_key: bytes) -> None:
        if len(user_key) != 16:
            raise ValueError(f"invalid user id bytes length ({len(user_key)})")
        self._user_key = bytes(user_key)
        self._hashes: dict[bytes, int] = {}
        self._last_hash_time = 0
        self._lock = threading.Lock()

    def check(self, cert_hash: bytes, now: int | None = None) -> int | None:
        """Return the timestamp *cert_hash* was made for, or None if it is unknown.

        *now* is the current Unix time in seconds; the clock is read when it is None.
        """
        key = bytes(cert_hash)
        with self._lock:
            found = self._hashes.get(key)
            if found is not None:
                return found
            self._update(int(time.time()) if now is None else int(now))
            return self._hashes.get(key)

    def _update(self, now: int) -> None:
        to_time = now + _HASH_WINDOW_SECS
        if self._last_hash_time >= to_time:
            return
        from_time = now - _HASH_WINDOW_SECS
        self._hashes = {h: t for h, t in self._hashes.items() if t >= from_time}
        for stamp in range(max(from_time, self._last_hash_time), to_time + 1):
            self._hashes[hmac_md5(self._user_key, stamp.to_bytes(8, "big"))] = stamp
        self._last_hash_time = to_time


class AuthIdCipher:
    """Seals and opens the 16-byte AEAD auth id (timestamp, random bytes, CRC)."""

    def __init__(self, instruction_key: bytes) -> None:
        key = kdf(instruction_key, [b"AES Auth ID Encryption"])[:16]
        self._cipher = Cipher(algorithms.AES(key), modes.ECB())

    def seal(self, time_secs: int, random_bytes: bytes | None = None) -> bytes:
        """Return the encrypted auth id for *time_secs*."""
        if random_bytes is None:
            random_bytes = os.urandom(AUTH_ID_RANDOM_LEN)
        if len(random_bytes) != AUTH_ID_RANDOM_LEN:
            raise ValueError(f"auth id needs {AUTH_ID_RANDOM_LEN} random bytes")
        plain = time_secs.to_bytes(8, "big") + bytes(random_bytes)
        plain += crc32c(plain).to_bytes(4, "big")
        encryptor = self._cipher.encryptor()
        return encryptor.update(plain) + encryptor.finalize()

    def open(self, data: bytes) -> int | None:
        """Return the timestamp inside an auth id, or None if its checksum is wrong."""
        if len(data) != AUTH_ID_LEN:
            raise ValueError(f"auth id must be {AUTH_ID_LEN} bytes, got {len(data)}")
        decryptor = self._cipher.decryptor()
        plain = decryptor.update(bytes(data)) + decryptor.finalize()
        if crc32c(plain[:12]) != int.from_bytes(plain[12:], "big"):
            return None
        return int.from_bytes(plain[:8], "big")