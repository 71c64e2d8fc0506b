"""A VMess data stream layered over another duplex byte stream."""

from __future__ import annotations

import inspect

from tunnelcore.vmess.packet_reader import PacketReader
from tunnelcore.vmess.packet_writer import MAX_ENCRYPTED_WRITE_DATA_SIZE, PacketWriter
from tunnelcore.vmess.response import ResponseHeaderInfo, ResponseHeaderReader

_READ_SIZE = 0xFFFF + 2


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class VmessStream:
    """Encrypts and chunks data written, decrypts and unchunks data read.

    *stream* offers ``async read(n)``, ``write(data)``, ``async drain()`` and
    ``close()``; this class offers the same. *prefix* is sent ahead of the
    first chunk (the server's response header) and *response_info*, on the
    client side, describes the response header expected before any data.
    """

    def __init__(
        self,
        stream,
        reader: PacketReader,
        writer: PacketWriter,
        prefix: bytes = b"",
        response_info: ResponseHeaderInfo | None = None,
    ) -> None:
        self._stream = stream
        self._reader = reader
        self._writer = writer
        self._outgoing = bytearray(prefix or b"")
        self._pending = bytearray()
        self._plain = bytearray()
        self._header = ResponseHeaderReader(response_info) if response_info else None
        self._eof = False
        self._closed = False

    async def read(self, n: int = -1) -> bytes:
        """Return up to *n* bytes of plaintext (all buffered if n < 0); b"" at end of stream."""
        if n == 0:
            return b""
        while not self._plain:
            if self._eof:
                return b""
            await self._fill()
        if n < 0 or n >= len(self._plain):
            data = bytes(self._plain)
            self._plain.clear()
        else:
            data = bytes(self._plain[:n])
            del self._plain[:n]
        return data

    async def _fill(self) -> None:
        chunk = await self._stream.read(_READ_SIZE)
        if not chunk:
            self._eof = True
            return
        if self._header is not None and not self._header.done:
            rest = self._header.feed(chunk)
            if rest is None:
                return
            chunk = rest
        self._reader.feed(chunk)
        while (packet := self._reader.next_packet()) is not None:
            if not packet:
                self._eof = True
                break
            self._plain += packet

    def write(self, data: bytes) -> None:
        """Queue *data*; it is sent as chunks on drain() or once enough is queued."""
        if self._closed:
            raise ValueError("write to a closed stream")
        self._pending += data
        if len(self._pending) >= MAX_ENCRYPTED_WRITE_DATA_SIZE:
            self._push()

    def _push(self, final: bool = False) -> None:
        if self._pending:
            self._outgoing += self._writer.pack(bytes(self._pending))
            self._pending.clear()
        if final:
            self._outgoing += self._writer.pack_eof()
        if self._outgoing:
            self._stream.write(bytes(self._outgoing))
            self._outgoing.clear()

    async def drain(self) -> None:
        """Send everything queued and wait for the underlying stream to drain."""
        self._push()
        await self._stream.drain()

    async def close(self) -> None:
        """Send queued data and the end-of-stream chunk, then close the underlying stream."""
        if self._closed:
            return
        self._closed = True
        self._push(final=True)
        await self._stream.drain()
        await _maybe_await(self._stream.close())

    def supports_ping(self) -> bool:
        """Whether the underlying stream can send keep-alive pings."""
        check = getattr(self._stream, "supports_ping", None)
        return bool(check is not None and check())

    async def write_ping(self) -> bool:
        """Ask the underlying stream to send a ping; returns whether one was queued."""
        if not self.supports_ping():
            return False
        return bool(await _maybe_await(self._stream.write_ping()))