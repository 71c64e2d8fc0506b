"""A WebSocket byte stream layered over another duplex byte stream."""

from __future__ import annotations

import inspect

from tunnelcore.websocket.frames import FrameDecoder, OpCode, WebsocketPingType, pack_frame

# Largest payload put in one outgoing frame (write frame size less the header room).
MAX_FRAME_PAYLOAD = 32768 - 14
_READ_SIZE = 16384


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class WebsocketStream:
    """Carries a byte stream in binary WebSocket frames.

    *stream* offers ``async read(n)``, ``write(data)``, ``async drain()`` and
    ``close()``; this class offers the same. Frames written by a client are
    masked. *initial_data* holds bytes already read past the HTTP handshake.
    """

    def __init__(
        self,
        stream,
        is_client: bool,
        ping_type: WebsocketPingType = WebsocketPingType.DISABLED,
        initial_data: bytes = b"",
    ) -> None:
        self._stream = stream
        self._is_client = bool(is_client)
        self._ping_type = WebsocketPingType(ping_type)
        self._decoder = FrameDecoder()
        self._initial = bytes(initial_data or b"")
        self._plain = bytearray()
        self._eof = False

    async def read(self, n: int = -1) -> bytes:
        """Return up to *n* payload bytes (all buffered if n < 0); b"" at end of stream."""
        if n == 0:
            return b""
        while not self._plain:
            if self._eof:
                return b""
            if self._initial:
                chunk, self._initial = self._initial, b""
            else:
                chunk = await self._stream.read(_READ_SIZE)
                if not chunk:
                    self._eof = True
                    return b""
            self._plain += self._decoder.feed(chunk)
        if n < 0 or n >= len(self._plain):
            data = bytes(self._plain)
            self._plain.clear()
        else:
            data = bytes(self._plain[:n])
            del self._plain[:n]
        return data

    def _pong_frame(self) -> bytes:
        payload = self._decoder.take_pong()
        if payload is None:
            return b""
        return pack_frame(OpCode.PONG, self._is_client, payload)

    def write(self, data: bytes) -> None:
        """Send *data* as binary frames, preceded by any pong that is due."""
        out = bytearray(self._pong_frame())
        view = memoryview(bytes(data))
        while view:
            out += pack_frame(OpCode.BINARY, self._is_client, view[:MAX_FRAME_PAYLOAD])
            view = view[MAX_FRAME_PAYLOAD:]
        if out:
            self._stream.write(bytes(out))

    async def drain(self) -> None:
        """Wait for the underlying stream to drain."""
        await self._stream.drain()

    async def close(self) -> None:
        """Close the underlying stream."""
        await self._stream.drain()
        await _maybe_await(self._stream.close())

    def supports_ping(self) -> bool:
        """Whether keep-alive pings are enabled."""
        return self._ping_type is not WebsocketPingType.DISABLED

    def write_ping(self) -> bool:
        """Send a due pong, or else a keep-alive ping; returns True when a frame was sent."""
        pong = self._pong_frame()
        if pong:
            self._stream.write(pong)
            return True
        if self._ping_type is WebsocketPingType.PING_FRAME:
            frame = pack_frame(OpCode.PING, self._is_client)
        elif self._ping_type is WebsocketPingType.EMPTY_FRAME:
            frame = pack_frame(OpCode.BINARY, self._is_client)
        else:
            raise ValueError(f"Unexpected ping type: {self._ping_type.value}")
        self._stream.write(frame)
        return True