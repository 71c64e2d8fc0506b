"""A VMess data stream that keeps message boundaries, for UDP traffic."""

from __future__ import annotations

from collections import deque

from tunnelcore.vmess.packet_reader import PacketReader
from tunnelcore.vmess.packet_writer import PacketWriter
from tunnelcore.vmess.response import ResponseHeaderInfo
from tunnelcore.vmess.stream import VmessStream

MAX_MESSAGE_LEN = 0xFFFF
_READ_SIZE = 0xFFFF + 2


class VmessMessageStream(VmessStream):
    """A VmessStream in which every received chunk is one message.

    A message too large for one chunk is sent as several chunks and so
    arrives as several messages.
    """

    def __init__(
        self,
        stream,
        reader: PacketReader,
        writer: PacketWriter,
        prefix: bytes = b"",
        response_info: ResponseHeaderInfo | None = None,
    ) -> None:
        super().__init__(stream, reader, writer, prefix, response_info)
        self._messages: deque[bytes] = deque()

    async def read_message(self) -> bytes:
        """Return the next message; b"" once the stream has ended."""
        while not self._messages:
            if self._eof:
                return b""
            await self._fill_messages()
        return self._messages.popleft()

    async def _fill_messages(self) -> None:
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
            self._messages.append(packet)

    def write_message(self, data: bytes) -> None:
        """Queue one message; it is sent on flush_message()."""
        if self._closed:
            raise ValueError("write to a closed stream")
        if not data:
            raise ValueError("cannot send an empty message")
        if len(data) > MAX_MESSAGE_LEN:
            raise ValueError(f"message is longer than {MAX_MESSAGE_LEN} bytes")
        self._outgoing += self._writer.pack(bytes(data))

    async def flush_message(self) -> None:
        """Send every queued message."""
        self._push()
        await self._stream.drain()