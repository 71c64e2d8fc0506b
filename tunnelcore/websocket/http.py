"""The HTTP upgrade handshake that opens a WebSocket connection."""

from __future__ import annotations

import base64
import hashlib
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
MAX_LINE_LEN = 4096
MAX_LINES = 40
_READ_SIZE = 4096


class HttpError(ValueError):
    """An HTTP request or response head was malformed or too large."""


@dataclass
class HttpHead:
    """The first line and headers of an HTTP message, plus bytes read past them."""

    first_line: str
    headers: dict[str, str] = field(default_factory=dict)
    remaining: bytes = b""


async def _read_line(stream, buffer: bytearray) -> str:
    while True:
        end = buffer.find(b"\n")
        if end >= 0:
            raw = bytes(buffer[:end])
            del buffer[: end + 1]
            if raw.endswith(b"\r"):
                raw = raw[:-1]
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise HttpError(f"invalid http line: {exc}") from None
        if len(buffer) > MAX_LINE_LEN:
            raise HttpError("http request line is too long")
        chunk = await stream.read(_READ_SIZE)
        if not chunk:
            raise HttpError("unexpected end of stream while reading http head")
        buffer += chunk


async def read_http_head(stream) -> HttpHead:
    """Read an HTTP head from *stream* (which has ``async read(n)``).

    Header names are lower-cased and values trimmed; a repeated header keeps its last value.
    """
    buffer = bytearray()
    first_line: str | None = None
    headers: dict[str, str] = {}
    line_count = 0
    while True:
        line = await _read_line(stream, buffer)
        if not line:
            break
        if len(line) >= MAX_LINE_LEN:
            raise HttpError("http request line is too long")
        if first_line is None:
            first_line = line
        else:
            name, sep, value = line.partition(":")
            if not sep:
                raise HttpError(f"invalid http request line: {line}")
            headers[name.strip().lower()] = value.strip()
        line_count += 1
        if line_count >= MAX_LINES:
            raise HttpError("http request is too long")

    if first_line is None:
        raise HttpError("empty http request")
    return HttpHead(first_line=first_line, headers=headers, remaining=bytes(buffer))


def create_websocket_key() -> str:
    """Return a fresh random Sec-WebSocket-Key value."""
    return base64.b64encode(os.urandom(16)).decode("ascii")


def websocket_accept_key(key: str) -> str:
    """Return the Sec-WebSocket-Accept value answering *key*."""
    digest = hashlib.sha1((key + WEBSOCKET_GUID).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def build_upgrade_request(
    path: str | None, headers: Mapping[str, str] | None, key: str
) -> bytes:
    """Return the client's upgrade request for *path* (default "/") with extra *headers*."""
    lines = [
        f"GET {path or '/'} HTTP/1.1",
        "Connection: Upgrade",
        "Upgrade: websocket",
    ]
    lines.extend(f"{name}: {value}" for name, value in (headers or {}).items())
    lines.append("Sec-WebSocket-Version: 13")
    lines.append(f"Sec-WebSocket-Key: {key}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def build_upgrade_response(headers: Mapping[str, str], accept_key: str) -> bytes:
    """Return the server's 101 response, echoing the host of the request *headers*."""
    parts = ["HTTP/1.1 101 Switching Protocol\r\n"]
    host = headers.get("host")
    if host is not None:
        parts.append(f"Host: {host}\r\n")
    parts.append("Upgrade: websocket\r\n")
    parts.append("Connection: Upgrade\r\n")
    version = headers.get("sec-websocket_version")
    if version is not None:
        parts.append(f"Sec-WebSocket-Version: {version}\r\n")
    parts.append(f"Sec-WebSocket-Accept: {accept_key}\r\n")
    parts.append("\r\n")
    return "".join(parts).encode("utf-8")