import pytest

from tunnelcore.websocket.frames import (
    FrameDecoder,
    FrameError,
    OpCode,
    WebsocketPingType,
    pack_frame,
)
from tunnelcore.websocket.stream import MAX_FRAME_PAYLOAD, WebsocketStream


class FakeStream:
    def __init__(self, *chunks):
        self._chunks = [bytes(c) for c in chunks]
        self.written = bytearray()
        self.closed = False

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
        self.closed = True


@pytest.mark.asyncio
async def test_server_reads_masked_frame():
    fake = FakeStream(pack_frame(OpCode.BINARY, True, b"hello"))
    ws = WebsocketStream(fake, False, WebsocketPingType.DISABLED)
    assert await ws.read() == b"hello"
    assert await ws.read() == b""


@pytest.mark.asyncio
async def test_partial_read():
    fake = FakeStream(pack_frame(OpCode.BINARY, False, b"abcdef"))
    ws = WebsocketStream(fake, True)
    assert await ws.read(2) == b"ab"
    assert await ws.read() == b"cdef"


def test_server_write_is_unmasked():
    fake = FakeStream()
    ws = WebsocketStream(fake, False)
    ws.write(b"hi")
    assert bytes(fake.written) == b"\x82\x02hi"


def test_client_write_is_masked():
    fake = FakeStream()
    ws = WebsocketStream(fake, True)
    ws.write(b"payload data")
    assert fake.written[1] & 0x80
    assert FrameDecoder().feed(bytes(fake.written)) == b"payload data"


def test_large_write_is_split():
    data = bytes(range(256)) * 200
    fake = FakeStream()
    ws = WebsocketStream(fake, False)
    ws.write(data)
    written = bytes(fake.written)
    assert FrameDecoder().feed(written) == data
    assert written[0] == 0x82
    assert written[4 + MAX_FRAME_PAYLOAD] == 0x82


@pytest.mark.asyncio
async def test_ping_gets_pong_on_next_write():
    fake = FakeStream(
        pack_frame(OpCode.PING, True, b"abc") + pack_frame(OpCode.BINARY, True, b"data")
    )
    ws = WebsocketStream(fake, False)
    assert await ws.read() == b"data"
    ws.write(b"x")
    assert bytes(fake.written) == b"\x8a\x03abc\x82\x01x"


@pytest.mark.asyncio
async def test_write_ping_sends_pending_pong_first():
    fake = FakeStream(pack_frame(OpCode.PING, True, b"zz") + pack_frame(OpCode.BINARY, True, b"d"))
    ws = WebsocketStream(fake, False, WebsocketPingType.PING_FRAME)
    await ws.read()
    assert ws.write_ping() is True
    assert bytes(fake.written) == b"\x8a\x02zz"


def test_write_ping_frame():
    fake = FakeStream()
    ws = WebsocketStream(fake, False, WebsocketPingType.PING_FRAME)
    assert ws.supports_ping() is True
    assert ws.write_ping() is True
    assert bytes(fake.written) == b"\x89\x00"


def test_write_empty_frame_ping():
    fake = FakeStream()
    ws = WebsocketStream(fake, False, WebsocketPingType.EMPTY_FRAME)
    assert ws.write_ping() is True
    assert bytes(fake.written) == b"\x82\x00"


def test_disabled_ping():
    ws = WebsocketStream(FakeStream(), False, WebsocketPingType.DISABLED)
    assert ws.supports_ping() is False
    with pytest.raises(ValueError):
        ws.write_ping()


@pytest.mark.asyncio
async def test_initial_data_is_read_first():
    initial = pack_frame(OpCode.BINARY, True, b"early")
    fake = FakeStream(pack_frame(OpCode.BINARY, True, b"late"))
    ws = WebsocketStream(fake, False, initial_data=initial)
    assert await ws.read() == b"early"
    assert await ws.read() == b"late"


@pytest.mark.asyncio
async def test_non_final_text_frame_fails():
    fake = FakeStream(bytes([0x01, 0x00]))
    ws = WebsocketStream(fake, False)
    with pytest.raises(FrameError):
        await ws.read()


@pytest.mark.asyncio
async def test_close_closes_underlying():
    fake = FakeStream()
    ws = WebsocketStream(fake, True)
    await ws.close()
    assert fake.closed is True