"""Sealing and opening the VMess request and response headers."""

from __future__ import annotations

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tunnelcore.hashing import kdf
from tunnelcore.nonce import SingleUseNonce

TAG_LEN = 16
AEAD_NONCE_LEN = 8
SEALED_LENGTH_LEN = 2 + TAG_LEN
MAX_HEADER_LEN = 0xFFFF
RESPONSE_HEADER_LEN = 4


class AeadHeaderError(ValueError):
    """A sealed header could not be opened."""


def _header_aead(
    instruction_key: bytes,
    auth_id: bytes,
    nonce: bytes,
    key_label: bytes,
    nonce_label: bytes,
) -> tuple[AESGCM, SingleUseNonce]:
    key = kdf(instruction_key, [key_label, auth_id, nonce])[:16]
    iv = kdf(instruction_key, [nonce_label, auth_id, nonce])[:12]
    return AESGCM(key), SingleUseNonce(iv)


def _length_aead(instruction_key: bytes, auth_id: bytes, nonce: bytes):
    return _header_aead(
        instruction_key,
        auth_id,
        nonce,
        b"VMess Header AEAD Key_Length",
        b"VMess Header AEAD Nonce_Length",
    )


def _body_aead(instruction_key: bytes, auth_id: bytes, nonce: bytes):
    return _header_aead(
        instruction_key,
        auth_id,
        nonce,
        b"VMess Header AEAD Key",
        b"VMess Header AEAD Nonce",
    )


def _check_nonce(nonce: bytes) -> bytes:
    if len(nonce) != AEAD_NONCE_LEN:
        raise ValueError(f"header nonce must be {AEAD_NONCE_LEN} bytes, got {len(nonce)}")
    return bytes(nonce)


def seal_aead_request(
    instruction_key: bytes, auth_id: bytes, nonce: bytes, header: bytes
) -> bytes:
    """Return the sealed length, the nonce and the sealed header, in wire order."""
    nonce = _check_nonce(nonce)
    auth_id = bytes(auth_id)
    header = bytes(header)
    if len(header) > MAX_HEADER_LEN:
        raise ValueError(f"header is longer than {MAX_HEADER_LEN} bytes")

    aead, seq = _length_aead(instruction_key, auth_id, nonce)
    sealed_length = aead.encrypt(seq.advance(), len(header).to_bytes(2, "big"), auth_id)

    aead, seq = _body_aead(instruction_key, auth_id, nonce)
    sealed_header = aead.encrypt(seq.advance(), header, auth_id)
    return sealed_length + nonce + sealed_header


def open_aead_length(
    instruction_key: bytes, auth_id: bytes, nonce: bytes, sealed: bytes
) -> int:
    """Return the header length held in the 18-byte sealed length field."""
    nonce = _check_nonce(nonce)
    if len(sealed) != SEALED_LENGTH_LEN:
        raise AeadHeaderError(
            f"sealed header length must be {SEALED_LENGTH_LEN} bytes, got {len(sealed)}"
        )
    auth_id = bytes(auth_id)
    aead, seq = _length_aead(instruction_key, auth_id, nonce)
    try:
        plain = aead.decrypt(seq.advance(), bytes(sealed), auth_id)
    except InvalidTag:
        raise AeadHeaderError("failed to open encrypted header length") from None
    return int.from_bytes(plain, "big")


def open_aead_header(
    instruction_key: bytes, auth_id: bytes, nonce: bytes, sealed: bytes
) -> bytes:
    """Return the plaintext request header from its sealed form."""
    nonce = _check_nonce(nonce)
    auth_id = bytes(auth_id)
    aead, seq = _body_aead(instruction_key, auth_id, nonce)
    try:
        return aead.decrypt(seq.advance(), bytes(sealed), auth_id)
    except (InvalidTag, ValueError):
        raise AeadHeaderError("failed to open encrypted header") from None


def cfb_encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """Encrypt *data* with AES-128-CFB."""
    encryptor = Cipher(algorithms.AES(bytes(key)), modes.CFB(bytes(iv))).encryptor()
    return encryptor.update(bytes(data)) + encryptor.finalize()


def cfb_decryptor(key: bytes, iv: bytes):
    """Return an AES-128-CFB decryptor whose update() decrypts successive chunks."""
    return Cipher(algorithms.AES(bytes(key)), modes.CFB(bytes(iv))).decryptor()


def seal_response_header(
    response_key: bytes, response_iv: bytes, response_auth: int, is_aead: bool
) -> bytes:
    """Return the server's encrypted response header (auth value, no options or command)."""
    header = bytes([response_auth, 0, 0, 0])
    if not is_aead:
        return cfb_encrypt(response_key, response_iv, header)

    length_key = kdf(response_key, [b"AEAD Resp Header Len Key"])[:16]
    length_nonce = SingleUseNonce(kdf(response_iv, [b"AEAD Resp Header Len IV"])[:12])
    sealed_length = AESGCM(length_key).encrypt(
        length_nonce.advance(), len(header).to_bytes(2, "big"), None
    )

    header_key = kdf(response_key, [b"AEAD Resp Header Key"])[:16]
    header_nonce = SingleUseNonce(kdf(response_iv, [b"AEAD Resp Header IV"])[:12])
    sealed_header = AESGCM(header_key).encrypt(header_nonce.advance(), header, None)
    return sealed_length + sealed_header