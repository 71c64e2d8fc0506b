"""The client side of a VMess connection: send the request, build the data stream."""

from __future__ import annotations

import os
import secrets
import time

from tunnelcore.hashing import hmac_md5, md5_repeating
from tunnelcore.vmess.aead_header import AEAD_NONCE_LEN, cfb_encrypt, seal_aead_request
from tunnelcore.vmess.auth import (
    AuthIdCipher,
    DataCipher,
    derive_instruction_key,
    parse_cipher,
    parse_hex,
)
from tunnelcore.vmess.header import (
    COMMAND_TCP,
    MAX_MARGIN_LEN,
    OPTION_CHUNK_MASKING,
    OPTION_STANDARD_FORMAT,
    NetLocation,
    RequestHeader,
    response_keys,
)
from tunnelcore.vmess.masking import LengthMask
from tunnelcore.vmess.packet_reader import PacketReader
from tunnelcore.vmess.packet_writer import PacketWriter
from tunnelcore.vmess.response import ResponseHeaderInfo
from tunnelcore.vmess.stream import VmessStream

# Timestamps are spread over the window each kind of server accepts.
AEAD_TIME_SPREAD = 120
LEGACY_TIME_SPREAD = 30
_USER_KEY_LEN = 16


def _spread_time(spread: int) -> int:
    return int(time.time()) - spread + secrets.randbelow(2 * spread + 1)


class VmessClientHandler:
    """Opens VMess connections for one user id."""

    def __init__(self, cipher_name: str, user_id: str, is_aead: bool = True) -> None:
        user_id_bytes = parse_hex(user_id)
        if len(user_id_bytes) != _USER_KEY_LEN:
            raise ValueError(f"invalid user id bytes length ({len(user_id_bytes)})")
        self._user_key = user_id_bytes
        self._data_cipher = parse_cipher(cipher_name)
        self._instruction_key = derive_instruction_key(user_id_bytes)
        self._auth_cipher = AuthIdCipher(self._instruction_key)
        self._is_aead = is_aead

    @property
    def _wire_cipher(self) -> DataCipher:
        if self._data_cipher is DataCipher.ANY:
            return DataCipher.CHACHA20_POLY1305
        return self._data_cipher

    async def setup_client_stream(self, stream, remote_location: NetLocation) -> VmessStream:
        """Send a request for *remote_location* over *stream* and return the data stream."""
        if self._is_aead:
            time_secs = _spread_time(AEAD_TIME_SPREAD)
            auth_id = self._auth_cipher.seal(time_secs)
        else:
            time_secs = _spread_time(LEGACY_TIME_SPREAD)
            auth_id = hmac_md5(self._user_key, time_secs.to_bytes(8, "big"))

        data_iv = os.urandom(16)
        data_key = os.urandom(16)
        response_auth = secrets.randbelow(256)
        cipher = self._wire_cipher
        header = RequestHeader(
            data_iv=data_iv,
            data_key=data_key,
            response_auth=response_auth,
            option=OPTION_STANDARD_FORMAT | OPTION_CHUNK_MASKING,
            cipher=cipher,
            command=COMMAND_TCP,
            location=remote_location,
        )
        encoded = header.encode(os.urandom(secrets.randbelow(MAX_MARGIN_LEN + 1)))

        stream.write(auth_id)
        if self._is_aead:
            nonce = os.urandom(AEAD_NONCE_LEN)
            stream.write(seal_aead_request(self._instruction_key, auth_id, nonce, encoded))
        else:
            iv = md5_repeating(time_secs.to_bytes(8, "big"), 4)
            stream.write(cfb_encrypt(self._instruction_key, iv, encoded))
        await stream.drain()

        response_iv, response_key = response_keys(data_iv, data_key, self._is_aead)
        reader = PacketReader(cipher, response_key, response_iv, LengthMask(response_iv))
        writer = PacketWriter(cipher, data_key, data_iv, LengthMask(data_iv))
        info = ResponseHeaderInfo(
            is_aead=self._is_aead,
            response_key=response_key,
            response_iv=response_iv,
            response_auth=response_auth,
        )
        return VmessStream(stream, reader, writer, response_info=info)