import asyncio
from dataclasses import dataclass
from typing import Any

import pytest

from tunnelcore.websocket.frames import OpCode, WebsocketPingType, pack_frame
from tunnelcore.websocket.handler import (
    WebsocketClientHandler,
    WebsocketHandshakeError,
    WebsocketServerHandler,
    WebsocketServerTarget,
)

RFC_KEY = "dGhlIHNhbXBsZSBub25jZQ=="
RFC_ACCEPT = "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


class FakeStream:
    def __init__(self, *chunks):
        self._chunks = [bytes(c) for c in chunks]
        self.written = bytearray()

    async def read(self, n):
        if not self._chunks:
            return b""
        chunk = self._chunks.pop(0)
        if len(chunk) > n:
            self._chunks.insert(0, chunk[n:])
            chunk = chunk[:n]
        return chunk

    def write(self, data):
        self.written += data

    async def drain(self):
        return None

    def close(self):
        return None


class PipeEnd:
    def __init__(self):
        self.incoming = asyncio.Queue()
        self.peer = None
        self._buffer = b""

    async def read(self, n):
        if not self._buffer:
            chunk = await self.incoming.get()
            if chunk is None:
                return b""
            self._buffer = chunk
        data, self._buffer = self._buffer[:n], self._buffer[n:]
        return data

    def write(self, data):
        if data:
            self.peer.incoming.put_nowait(bytes(data))

    async def drain(self):
        await asyncio.sleep(0)

    def close(self):
        self.peer.incoming.put_nowait(None)


def pipe_pair():
    a, b = PipeEnd(), PipeEnd()
    a.peer, b.peer = b, a
    return a, b


@dataclass
class Setup:
    stream: Any
    marker: str = ""
    need_initial_flush: bool = False
    override_proxy_provider: Any = None
    is_udp: bool = False


class RecordingServerHandler:
    def __init__(self, marker="", override=None):
        self.marker = marker
        self.override = override

    async def setup_server_stream(self, stream):
        return Setup(stream=stream, marker=self.marker, override_proxy_provider=self.override)


class PassClientHandler:
    async def setup_client_stream(self, stream, remote_location):
        return stream, remote_location


def request(path="/", extra=""):
    return (
        f"GET {path} HTTP/1.1\r\nHost: example.com\r\n{extra}"
        f"Sec-WebSocket-Key: {RFC_KEY}\r\n\r\n"
    ).encode()


def target(path=None, headers=None, marker="", override=None, inner_override=None):
    return WebsocketServerTarget(
        matching_path=path,
        matching_headers=headers,
        ping_type=WebsocketPingType.DISABLED,
        handler=RecordingServerHandler(marker, inner_override),
        override_proxy_provider=override,
    )


@pytest.mark.asyncio
async def test_server_response_and_flags():
    fake = FakeStream(request("/ws"))
    server = WebsocketServerHandler([target("/ws", override="provider-a")])
    result = await server.setup_server_stream(fake)
    response = bytes(fake.written).decode()
    assert response.startswith("HTTP/1.1 101 Switching Protocol\r\n")
    assert f"Sec-WebSocket-Accept: {RFC_ACCEPT}\r\n" in response
    assert "Host: example.com\r\n" in response
    assert result.need_initial_flush is True
    assert result.override_proxy_provider == "provider-a"


@pytest.mark.asyncio
async def test_inner_override_is_kept():
    fake = FakeStream(request())
    server = WebsocketServerHandler([target(override="outer", inner_override="inner")])
    result = await server.setup_server_stream(fake)
    assert result.override_proxy_provider == "inner"


@pytest.mark.asyncio
async def test_server_routes_by_path_and_headers():
    fake = FakeStream(request("/b", "X-Tag: tag\r\n"))
    server = WebsocketServerHandler(
        [
            target("/a", marker="first"),
            target(None, {"x-tag": "other"}, marker="second"),
            target(None, {"x-tag": "tag"}, marker="third"),
        ]
    )
    result = await server.setup_server_stream(fake)
    assert result.marker == "third"


@pytest.mark.asyncio
async def test_server_passes_bytes_read_past_head():
    fake = FakeStream(request() + pack_frame(OpCode.BINARY, True, b"early"))
    server = WebsocketServerHandler([target()])
    result = await server.setup_server_stream(fake)
    assert await result.stream.read() == b"early"


@pytest.mark.asyncio
async def test_server_no_matching_target():
    server = WebsocketServerHandler([target("/a")])
    with pytest.raises(WebsocketHandshakeError, match="No matching"):
        await server.setup_server_stream(FakeStream(request("/b")))


@pytest.mark.asyncio
async def test_server_rejects_bad_version():
    server = WebsocketServerHandler([target()])
    with pytest.raises(WebsocketHandshakeError, match="version"):
        await server.setup_server_stream(FakeStream(b"GET / HTTP/2.0\r\n\r\n"))


@pytest.mark.asyncio
async def test_server_rejects_non_get():
    server = WebsocketServerHandler([target()])
    with pytest.raises(WebsocketHandshakeError, match="invalid http request"):
        await server.setup_server_stream(FakeStream(b"POST / HTTP/1.1\r\n\r\n"))


@pytest.mark.asyncio
async def test_server_requires_key():
    server = WebsocketServerHandler([target()])
    with pytest.raises(WebsocketHandshakeError, match="missing websocket key"):
        await server.setup_server_stream(FakeStream(b"GET / HTTP/1.1\r\nHost: a\r\n\r\n"))


@pytest.mark.asyncio
async def test_client_rejects_bad_status():
    client = WebsocketClientHandler(None, None, WebsocketPingType.DISABLED, PassClientHandler())
    fake = FakeStream(b"HTTP/1.1 200 OK\r\n\r\n")
    with pytest.raises(WebsocketHandshakeError, match="Bad websocket response"):
        await client.setup_client_stream(fake, "example.com:80")
    assert bytes(fake.written).startswith(b"GET / HTTP/1.1\r\n")


@pytest.mark.asyncio
async def test_client_rejects_missing_accept():
    client = WebsocketClientHandler(None, None, WebsocketPingType.DISABLED, PassClientHandler())
    fake = FakeStream(b"HTTP/1.1 101 Switching Protocols\r\n\r\n")
    with pytest.raises(WebsocketHandshakeError, match="missing"):
        await client.setup_client_stream(fake, "example.com:80")


@pytest.mark.asyncio
async def test_client_rejects_wrong_accept():
    client = WebsocketClientHandler(None, None, WebsocketPingType.DISABLED, PassClientHandler())
    fake = FakeStream(b"HTTP/1.1 101 Switching Protocols\r\nSec-WebSocket-Accept: wrong\r\n\r\n")
    with pytest.raises(WebsocketHandshakeError, match="incorrect"):
        await client.setup_client_stream(fake, "example.com:80")


@pytest.mark.asyncio
async def test_client_server_round_trip():
    client_end, server_end = pipe_pair()
    server = WebsocketServerHandler([target("/ws", {"x-tag": "tag"}, marker="ok")])
    client = WebsocketClientHandler(
        "/ws", {"X-Tag": "tag"}, WebsocketPingType.PING_FRAME, PassClientHandler()
    )
    server_result, (client_ws, location) = await asyncio.gather(
        server.setup_server_stream(server_end),
        client.setup_client_stream(client_end, "example.com:443"),
    )
    assert server_result.marker == "ok"
    assert location == "example.com:443"
    assert client_ws.supports_ping() is True

    client_ws.write(b"from client")
    await client_ws.drain()
    assert await server_result.stream.read() == b"from client"

    server_result.stream.write(b"from server")
    await server_result.stream.drain()
    assert await client_ws.read() == b"from server"