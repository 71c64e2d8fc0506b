"""WebSocket frame packing and incremental frame decoding."""

from __future__ import annotations

import enum
import logging
import os

logger = logging.getLogger(__name__)

MAX_PING_DATA_LEN = 80
MAX_FRAME_LEN = 0x7FFFFFFFFFFFFFFF
_FINAL_BIT = 0x80
_MASK_BIT = 0x80


class FrameError(ValueError):
    """A received WebSocket frame could not be handled."""


class OpCode(enum.IntEnum):
    """WebSocket frame opcodes."""

    CONTINUE = 0
    TEXT = 1
    BINARY = 2
    CLOSE = 8
    PING = 9
    PONG = 10

    @classmethod
    def from_code(cls, code: int) -> "OpCode | None":
        """Return the opcode for *code*, or None if it is not a known one."""
        try:
            return cls(code)
        except ValueError:
            return None


class WebsocketPingType(enum.Enum):
    """How keep-alive pings are sent over a WebSocket."""

    DISABLED = "disabled"
    PING_FRAME = "ping-frame"
    EMPTY_FRAME = "empty-frame"


def _apply_mask(data: bytes, mask: bytes, offset: int = 0) -> bytes:
    """XOR *data* with the 4-byte *mask*, starting at position *offset* of the mask."""
    if not data:
        return b""
    rotated = mask[offset:] + mask[:offset]
    key = (rotated * (len(data) // 4 + 1))[: len(data)]
    value = int.from_bytes(data, "big") ^ int.from_bytes(key, "big")
    return value.to_bytes(len(data), "big")


def pack_frame(opcode: int, use_mask: bool, payload: bytes = b"") -> bytes:
    """Return a final frame of *opcode* carrying *payload*, masked with a random key if asked."""
    payload = bytes(payload)
    length = len(payload)
    out = bytearray([int(opcode) | _FINAL_BIT])
    if length < 126:
        out.append(length)
    elif length <= 0xFFFF:
        out.append(126)
        out += length.to_bytes(2, "big")
    else:
        out.append(127)
        out += length.to_bytes(8, "big")

    if use_mask:
        out[1] |= _MASK_BIT
        mask = os.urandom(4)
        out += mask
        out += _apply_mask(payload, mask)
    else:
        out += payload
    return bytes(out)


class _State(enum.Enum):
    HEADER = enum.auto()
    LENGTH = enum.auto()
    MASK = enum.auto()
    CONTENT = enum.auto()
    PING = enum.auto()
    SKIP = enum.auto()


class FrameDecoder:
    """Decodes a stream of WebSocket frames into the binary payload they carry.

    Ping payloads are kept so that a pong can be sent back; pongs must be empty;
    other frame types are skipped with a warning.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._state = _State.HEADER
        self._masked = False
        self._opcode = 0
        self._length = 0
        self._length_bytes = 0
        self._mask = b"\0\0\0\0"
        self._mask_offset = 0
        self._ping_data = bytearray()
        self._pong_pending = False

    @property
    def pong_pending(self) -> bool:
        """Whether a received ping still awaits its pong."""
        return self._pong_pending

    def feed(self, data: bytes) -> bytes:
        """Add received bytes and return the binary payload they completed."""
        self._buffer += data
        out = bytearray()
        while self._step(out):
            pass
        return bytes(out)

    def take_pong(self) -> bytes | None:
        """Return the payload of the pending pong and clear it, or None if none is due."""
        if not self._pong_pending:
            return None
        self._pong_pending = False
        return bytes(self._ping_data)

    def _take(self, n: int) -> bytes:
        chunk = bytes(self._buffer[:n])
        del self._buffer[:n]
        return chunk

    def _step(self, out: bytearray) -> bool:
        state = self._state
        if state is _State.HEADER:
            return self._step_header()
        if state is _State.LENGTH:
            return self._step_length()
        if state is _State.MASK:
            return self._step_mask()
        if state is _State.SKIP:
            return self._step_skip()
        return self._step_content(out)

    def _step_header(self) -> bool:
        if len(self._buffer) < 2:
            return False
        first, second = self._take(2)
        final = bool(first & _FINAL_BIT)
        self._masked = bool(second & _MASK_BIT)
        self._opcode = first & 0x0F
        if not final and self._opcode not in (OpCode.BINARY, OpCode.CONTINUE):
            name = OpCode.from_code(self._opcode) or self._opcode
            raise FrameError(f"cannot handle non-final frames of type {name!r}")

        length = second & 0x7F
        if length == 126:
            self._length_bytes = 2
            self._state = _State.LENGTH
        elif length == 127:
            self._length_bytes = 8
            self._state = _State.LENGTH
        else:
            self._length = length
            self._after_length()
        return True

    def _step_length(self) -> bool:
        if len(self._buffer) < self._length_bytes:
            return False
        self._length = int.from_bytes(self._take(self._length_bytes), "big")
        if self._length > MAX_FRAME_LEN:
            raise FrameError(f"Invalid frame length ({self._length})")
        self._after_length()
        return True

    def _after_length(self) -> None:
        if self._masked:
            self._state = _State.MASK
        else:
            self._begin_content()

    def _step_mask(self) -> bool:
        if len(self._buffer) < 4:
            return False
        self._mask = self._take(4)
        self._begin_content()
        return True

    def _begin_content(self) -> None:
        opcode = OpCode.from_code(self._opcode)
        self._mask_offset = 0
        if opcode in (OpCode.BINARY, OpCode.CONTINUE):
            self._state = _State.CONTENT if self._length else _State.HEADER
        elif opcode is OpCode.PING:
            self._ping_data = bytearray()
            if self._length == 0:
                self._pong_pending = True
                self._state = _State.HEADER
                return
            if self._length > MAX_PING_DATA_LEN:
                raise FrameError(f"cannot handle ping data length ({self._length})")
            # A new ping replaces any pong that was still due.
            self._pong_pending = False
            self._state = _State.PING
        elif opcode is OpCode.PONG:
            # Our pings never carry data, so neither may their pongs.
            if self._length != 0:
                raise FrameError(f"unexpected pong data length ({self._length})")
            self._state = _State.HEADER
        else:
            logger.warning("Ignoring unknown frame type: %r", opcode or self._opcode)
            self._state = _State.SKIP if self._length else _State.HEADER

    def _read_content(self) -> bytes | None:
        amount = min(len(self._buffer), self._length)
        if amount == 0:
            return None
        chunk = self._take(amount)
        if self._masked:
            chunk = _apply_mask(chunk, self._mask, self._mask_offset)
            self._mask_offset = (self._mask_offset + amount) % 4
        self._length -= amount
        return chunk

    def _step_content(self, out: bytearray) -> bool:
        chunk = self._read_content()
        if chunk is None:
            return False
        if self._state is _State.PING:
            self._ping_data += chunk
            if self._length == 0:
                self._pong_pending = True
        else:
            out += chunk
        if self._length == 0:
            self._mask_offset = 0
            self._state = _State.HEADER
        return True

    def _step_skip(self) -> bool:
        amount = min(len(self._buffer), self._length)
        if amount == 0:
            return False
        del self._buffer[:amount]
        self._length -= amount
        if self._length == 0:
            self._state = _State.HEADER
        return True