import pytest

from tunnelcore.websocket.frames import (
    FrameDecoder,
    FrameError,
    OpCode,
    WebsocketPingType,
    pack_frame,
)


def test_pack_small_unmasked_binary_frame():
    assert pack_frame(OpCode.BINARY, False, b"abc") == b"\x82\x03abc"


def test_pack_medium_frame_uses_two_length_bytes():
    payload = b"x" * 200
    frame = pack_frame(OpCode.BINARY, False, payload)
    assert frame[:2] == b"\x82\x7e"
    assert int.from_bytes(frame[2:4], "big") == len(payload)
    assert frame[4:] == payload


def test_pack_large_frame_uses_eight_length_bytes():
    payload = b"y" * 70000
    frame = pack_frame(OpCode.BINARY, False, payload)
    assert frame[1] == 0x7F
    assert int.from_bytes(frame[2:10], "big") == len(payload)
    assert len(frame) == 10 + len(payload)


def test_pack_masked_sets_mask_bit_and_hides_payload():
    payload = b"hello websocket"
    frame = pack_frame(OpCode.BINARY, True, payload)
    assert frame[1] & 0x80
    assert frame[1] & 0x7F == len(payload)
    assert len(frame) == 2 + 4 + len(payload)


def test_ping_frame_header():
    frame = pack_frame(OpCode.PING, False)
    assert frame == b"\x89\x00"


@pytest.mark.parametrize("masked", [False, True])
@pytest.mark.parametrize("size", [0, 1, 125, 126, 65535, 65536])
def test_round_trip(masked, size):
    payload = bytes(i % 251 for i in range(size))
    decoder = FrameDecoder()
    assert decoder.feed(pack_frame(OpCode.BINARY, masked, payload)) == payload


@pytest.mark.parametrize("masked", [False, True])
def test_byte_by_byte_feeding(masked):
    payload = b"split across many reads"
    frame = pack_frame(OpCode.BINARY, masked, payload) * 2
    decoder = FrameDecoder()
    out = b"".join(decoder.feed(frame[i : i + 1]) for i in range(len(frame)))
    assert out == payload * 2


def test_continuation_frames_concatenate():
    first = bytes([OpCode.BINARY, 3]) + b"abc"
    rest = pack_frame(OpCode.CONTINUE, False, b"def")
    decoder = FrameDecoder()
    assert decoder.feed(first + rest) == b"abcdef"


def test_ping_produces_pong_payload():
    decoder = FrameDecoder()
    assert decoder.feed(pack_frame(OpCode.PING, True, b"ping-data")) == b""
    assert decoder.pong_pending
    assert decoder.take_pong() == b"ping-data"
    assert decoder.take_pong() is None


def test_empty_ping_produces_empty_pong():
    decoder = FrameDecoder()
    decoder.feed(pack_frame(OpCode.PING, False))
    assert decoder.take_pong() == b""


def test_data_after_ping_is_decoded():
    stream = pack_frame(OpCode.PING, False, b"p") + pack_frame(OpCode.BINARY, False, b"data")
    decoder = FrameDecoder()
    assert decoder.feed(stream) == b"data"
    assert decoder.take_pong() == b"p"


def test_oversized_ping_rejected():
    decoder = FrameDecoder()
    with pytest.raises(FrameError):
        decoder.feed(pack_frame(OpCode.PING, False, b"z" * 81))


def test_empty_pong_is_accepted():
    decoder = FrameDecoder()
    stream = pack_frame(OpCode.PONG, False) + pack_frame(OpCode.BINARY, False, b"ok")
    assert decoder.feed(stream) == b"ok"


def test_pong_with_data_rejected():
    decoder = FrameDecoder()
    with pytest.raises(FrameError):
        decoder.feed(pack_frame(OpCode.PONG, False, b"data"))


def test_non_final_text_frame_rejected():
    decoder = FrameDecoder()
    with pytest.raises(FrameError):
        decoder.feed(bytes([OpCode.TEXT, 1]) + b"a")


def test_unknown_frames_are_skipped():
    stream = (
        pack_frame(OpCode.TEXT, True, b"ignored text")
        + pack_frame(OpCode.CLOSE, False, b"\x03\xe8")
        + pack_frame(OpCode.BINARY, False, b"kept")
    )
    decoder = FrameDecoder()
    assert decoder.feed(stream) == b"kept"


def test_zero_length_binary_frame_yields_nothing():
    stream = pack_frame(OpCode.BINARY, False) + pack_frame(OpCode.BINARY, True, b"after")
    decoder = FrameDecoder()
    assert decoder.feed(stream) == b"after"


def test_invalid_eight_byte_length_rejected():
    decoder = FrameDecoder()
    with pytest.raises(FrameError):
        decoder.feed(b"\x82\x7f" + b"\xff" * 8)


def test_opcode_from_code():
    assert OpCode.from_code(9) is OpCode.PING
    assert OpCode.from_code(3) is None


def test_ping_types_are_distinct():
    assert len({t for t in WebsocketPingType}) == 3
    assert WebsocketPingType("disabled") is WebsocketPingType.DISABLED