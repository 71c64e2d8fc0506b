"""WebSocket handshakes that wrap another proxy protocol in WebSocket frames."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from tunnelcore.websocket.frames import WebsocketPingType
from tunnelcore.websocket.http import (
    build_upgrade_request,
    build_upgrade_response,
    create_websocket_key,
    read_http_head,
    websocket_accept_key,
)
from tunnelcore.websocket.stream import WebsocketStream


class WebsocketHandshakeError(ValueError):
    """The WebSocket handshake failed or matched no target."""


@dataclass
class WebsocketServerTarget:
    """A protocol handler served on a WebSocket path and/or set of headers.

    Header names in *matching_headers* are compared with lower-cased request headers.
    """

    matching_path: str | None
    matching_headers: Mapping[str, str] | None
    ping_type: WebsocketPingType
    handler: Any
    override_proxy_provider: Any = None

    def matches(self, path: str, headers: Mapping[str, str]) -> bool:
        if self.matching_path is not None and self.matching_path != path:
            return False
        return all(
            headers.get(name) == value
            for name, value in (self.matching_headers or {}).items()
        )


class WebsocketServerHandler:
    """Accepts WebSocket upgrades and hands the framed stream to the matching target."""

    def __init__(self, targets) -> None:
        self._targets = list(targets)

    async def setup_server_stream(self, stream):
        """Complete the upgrade on *stream* and return the target handler's result."""
        head = await read_http_head(stream)
        first_line = head.first_line
        if not first_line.endswith((" HTTP/1.0", " HTTP/1.1")):
            raise WebsocketHandshakeError(f"invalid http request version: {first_line}")
        if not first_line.startswith("GET "):
            raise WebsocketHandshakeError(f"invalid http request: {first_line}")
        path = first_line[4:-9]

        headers = dict(head.headers)
        key = headers.pop("sec-websocket-key", None)
        if key is None:
            raise WebsocketHandshakeError("missing websocket key header")

        for target in self._targets:
            if not target.matches(path, headers):
                continue

            stream.write(build_upgrade_response(headers, websocket_accept_key(key)))
            await stream.drain()

            websocket = WebsocketStream(stream, False, target.ping_type, head.remaining)
            result = await target.handler.setup_server_stream(websocket)
            if hasattr(result, "need_initial_flush") and not getattr(result, "is_udp", False):
                result.need_initial_flush = True
                if (
                    getattr(result, "override_proxy_provider", None) is None
                    and target.override_proxy_provider is not None
                ):
                    result.override_proxy_provider = target.override_proxy_provider
            return result

        raise WebsocketHandshakeError("No matching websocket targets")


class WebsocketClientHandler:
    """Opens a WebSocket over a stream and runs another client handler inside it."""

    def __init__(
        self,
        matching_path: str | None,
        matching_headers: Mapping[str, str] | None,
        ping_type: WebsocketPingType,
        handler,
    ) -> None:
        self._path = matching_path
        self._headers = dict(matching_headers) if matching_headers else None
        self._ping_type = WebsocketPingType(ping_type)
        self._handler = handler

    async def setup_client_stream(self, stream, remote_location):
        """Send the upgrade request, check the reply and set up the inner protocol."""
        key = create_websocket_key()
        stream.write(build_upgrade_request(self._path, self._headers, key))
        await stream.drain()

        head = await read_http_head(stream)
        if not head.first_line.startswith(("HTTP/1.1 101", "HTTP/1.0 101")):
            raise WebsocketHandshakeError(f"Bad websocket response: {head.first_line}")

        answer = head.headers.get("sec-websocket-accept")
        if answer is None:
            raise WebsocketHandshakeError("missing websocket key response header")
        expected = websocket_accept_key(key)
        if answer != expected:
            raise WebsocketHandshakeError(
                f"incorrect websocket key response, expected {expected}, got {answer}"
            )

        websocket = WebsocketStream(stream, True, self._ping_type, head.remaining)
        return await self._handler.setup_client_stream(websocket, remote_location)