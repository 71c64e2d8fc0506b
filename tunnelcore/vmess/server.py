"""The server side of a VMess connection: authenticate, read the request, build streams."""

from __future__ import annotations

import asyncio
import io
import time
from dataclasses import dataclass
from typing import Any

from tunnelcore.hashing import md5_repeating
from tunnelcore.vmess.aead_header import (
    AEAD_NONCE_LEN,
    SEALED_LENGTH_LEN,
    TAG_LEN,
    cfb_decryptor,
    open_aead_header,
    open_aead_length,
    seal_response_header,
)
from tunnelcore.vmess.auth import (
    AUTH_ID_LEN,
    AuthIdCipher,
    CertHashProvider,
    DataCipher,
    derive_instruction_key,
    parse_cipher,
    parse_hex,
)
from tunnelcore.vmess.header import (
    COMMAND_TCP,
    COMMAND_UDP,
    NetLocation,
    decode_request_header,
    response_keys,
)
from tunnelcore.vmess.masking import LengthMask
from tunnelcore.vmess.message_stream import VmessMessageStream
from tunnelcore.vmess.packet_reader import PacketReader
from tunnelcore.vmess.packet_writer import PacketWriter
from tunnelcore.vmess.stream import VmessStream

MAX_AUTH_TIME_DELTA = 120


class ServerSetupError(ValueError):
    """A client request was refused."""


@dataclass
class ServerSetup:
    """The outcome of accepting a VMess request."""

    remote_location: NetLocation
    stream: VmessStream
    is_udp: bool = False
    # The response header is held back until there is data to send.
    need_initial_flush: bool = False
    override_proxy_provider: Any = None


async def _read_exact(stream, n: int) -> bytes:
    data = bytearray()
    while len(data) < n:
        chunk = await stream.read(n - len(data))
        if not chunk:
            raise asyncio.IncompleteReadError(bytes(data), n)
        data += chunk
    return bytes(data)


class VmessServerHandler:
    """Accepts VMess requests for one user id."""

    def __init__(
        self,
        cipher_name: str,
        user_id: str,
        force_aead: bool = False,
        udp_enabled: bool = False,
    ) -> None:
        user_id_bytes = parse_hex(user_id)
        self._cert_hashes = None if force_aead else CertHashProvider(user_id_bytes)
        self._data_cipher = parse_cipher(cipher_name)
        self._instruction_key = derive_instruction_key(user_id_bytes)
        self._auth_cipher = AuthIdCipher(self._instruction_key)
        self._udp_enabled = udp_enabled

    async def setup_server_stream(self, stream) -> ServerSetup:
        """Read and check a request from *stream* and return the data stream for it."""
        auth_id = await _read_exact(stream, AUTH_ID_LEN)
        auth_time = self._auth_cipher.open(auth_id)
        is_aead = auth_time is not None

        if is_aead:
            delta = abs(auth_time - int(time.time()))
            if delta > MAX_AUTH_TIME_DELTA:
                raise ServerSetupError(
                    f"Hash timestamp is too old ({auth_time} is {delta} seconds old)"
                )
            sealed_length = await _read_exact(stream, SEALED_LENGTH_LEN)
            nonce = await _read_exact(stream, AEAD_NONCE_LEN)
            length = open_aead_length(self._instruction_key, auth_id, nonce, sealed_length)
            sealed_header = await _read_exact(stream, length + TAG_LEN)
            plain = open_aead_header(self._instruction_key, auth_id, nonce, sealed_header)
            read_header = io.BytesIO(plain).read
        else:
            if self._cert_hashes is None:
                raise ServerSetupError("unauthorized request, unknown aead hash")
            hash_time = self._cert_hashes.check(auth_id)
            if hash_time is None:
                raise ServerSetupError("unauthorized request, unknown hash")
            iv = md5_repeating(hash_time.to_bytes(8, "big"), 4)
            decryptor = cfb_decryptor(self._instruction_key, iv)

            async def read_header(n: int) -> bytes:
                return decryptor.update(await _read_exact(stream, n))

        header = await decode_request_header(read_header)

        if self._data_cipher is not DataCipher.ANY and header.cipher is not self._data_cipher:
            raise ServerSetupError(
                f"Server only allows {self._data_cipher.value} "
                f"but client requested {header.cipher.value}"
            )

        if header.command == COMMAND_TCP:
            is_udp = False
        elif header.command == COMMAND_UDP:
            if not self._udp_enabled:
                raise ServerSetupError("UDP not enabled")
            is_udp = True
        else:
            raise ServerSetupError(f"Unknown requested protocol: {header.command}")

        response_iv, response_key = response_keys(header.data_iv, header.data_key, is_aead)
        if header.chunk_masking:
            read_mask = LengthMask(header.data_iv, header.global_padding)
            write_mask = LengthMask(response_iv, header.global_padding)
        else:
            read_mask = write_mask = None

        reader = PacketReader(header.cipher, header.data_key, header.data_iv, read_mask)
        writer = PacketWriter(header.cipher, response_key, response_iv, write_mask)
        prefix = seal_response_header(response_key, response_iv, header.response_auth, is_aead)

        stream_class = VmessMessageStream if is_udp else VmessStream
        return ServerSetup(
            remote_location=header.location,
            stream=stream_class(stream, reader, writer, prefix=prefix),
            is_udp=is_udp,
        )