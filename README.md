# tunnelcore

`tunnelcore` provides the protocol layers a proxy needs to speak VMess,
optionally carried inside WebSocket frames. It covers both sides of a
connection: a server handler that authenticates and decodes an incoming
VMess request, and a client handler that sends one.

## Installation

```
pip install tunnelcore
```

For running the test suite:

```
pip install "tunnelcore[test]"
pytest
```

## Streams

The handlers and streams work on a single duplex stream object that offers
`async read(n)`, `write(data)`, `async drain()` and `close()` (which may be
a coroutine). `VmessStream` and `WebsocketStream` offer the same methods,
so the layers can be stacked: a VMess stream can run over a WebSocket
stream, which runs over a TCP connection.

## VMess (`tunnelcore.vmess`)

- `tunnelcore.vmess.server.VmessServerHandler(cipher_name, user_id,
  force_aead=False, udp_enabled=False)`. Its coroutine
  `setup_server_stream(stream)` reads the request, checks it and returns a
  `ServerSetup` with the requested `remote_location` (a `NetLocation`), a
  `stream` that carries the decrypted payload, and `is_udp`. Both AEAD
  request headers (timestamps within 120 seconds) and the older time-hash
  (AES-CFB) headers are accepted; `force_aead=True` refuses the older
  form. UDP requests are refused unless `udp_enabled` is set, and are
  served by a `VmessMessageStream`. The server's response header is sent
  ahead of the first data it writes. Refused requests raise
  `ServerSetupError`.
- `tunnelcore.vmess.client.VmessClientHandler(cipher_name, user_id,
  is_aead=True)`. Its coroutine `setup_client_stream(stream,
  remote_location)` writes a TCP request with chunk masking enabled and
  returns a `VmessStream`; the server's response header is read and
  checked before the first data is returned.
- Data ciphers are chosen by name: `"aes-128-gcm"`,
  `"chacha20-poly1305"` (also `"chacha20-ietf-poly1305"`), `"none"`, or
  `"any"` / `""` to let a server accept whatever the client asks for. A
  client given `"any"` asks for ChaCha20-Poly1305. An unknown name raises
  `ValueError`.
- The user id is the usual UUID text, for example
  `"00000000-0000-0000-0000-000000000001"`; characters that are not hex
  digits, such as dashes, are ignored.
- Chunk length masking (SHAKE128) and global padding are supported.
  Written chunks, counting tag and padding, are at most 16383 bytes; any
  chunk the 16-bit length field can describe is accepted when reading.

Lower-level building blocks sit next to the handlers:

- `tunnelcore.vmess.auth`: `parse_cipher`, `parse_hex`,
  `derive_instruction_key`, `CertHashProvider` (time-hash lookup) and
  `AuthIdCipher` (the 16-byte AEAD auth id).
- `tunnelcore.vmess.header`: `RequestHeader.encode`,
  `decode_request_header`, `cipher_from_code`, `response_keys`,
  `NetLocation`.
- `tunnelcore.vmess.aead_header`: `seal_aead_request`,
  `open_aead_length`, `open_aead_header`, `seal_response_header`,
  `cfb_encrypt`, `cfb_decryptor`.
- `tunnelcore.vmess.packet_writer.PacketWriter` and
  `tunnelcore.vmess.packet_reader.PacketReader`: data chunk framing.
- `tunnelcore.vmess.masking.LengthMask` and
  `tunnelcore.vmess.response.ResponseHeaderReader`.

## WebSocket (`tunnelcore.websocket`)

- `tunnelcore.websocket.handler.WebsocketServerHandler(targets)` answers an
  HTTP/1.0 or HTTP/1.1 `GET` upgrade request and hands the framed stream to
  the first `WebsocketServerTarget` whose path and headers match, returning
  that target handler's result.
- `tunnelcore.websocket.handler.WebsocketClientHandler(matching_path,
  matching_headers, ping_type, handler)` sends the upgrade request, checks
  `Sec-WebSocket-Accept`, and passes the framed stream to an inner client
  handler such as a `VmessClientHandler`.
- `tunnelcore.websocket.stream.WebsocketStream` carries data in binary
  frames (masked when it is the client), answers pings with a pong on the
  next write or `write_ping()`, and can send keep-alives as ping frames or
  empty binary frames (`WebsocketPingType`).
- `tunnelcore.websocket.frames` holds `pack_frame` and the incremental
  `FrameDecoder`; `tunnelcore.websocket.http` holds the handshake helpers.

```python
from tunnelcore.websocket.frames import FrameDecoder, OpCode, pack_frame

frame = pack_frame(OpCode.BINARY, False, b"hi")
assert frame == b"\x82\x02hi"
assert FrameDecoder().feed(frame) == b"hi"
```

## Hashing helpers (`tunnelcore.hashing`)

```python
from tunnelcore.hashing import crc32c, fnv1a, kdf

assert crc32c(b"123456789") == 0xCBF43926
assert fnv1a(b"") == 0x811C9DC5
assert len(kdf(b"\x00" * 16, [b"AES Auth ID Encryption"])) == 32
```

`kdf` is the nested HMAC-SHA256 key derivation VMess uses for its AEAD
header keys; `md5`, `md5_repeating`, `hmac_md5`, `chacha_key`, `sha256`,
`CrcBuilder` and `Fnv1aHasher` cover the other digests the protocol uses.

## Errors

Malformed or unauthenticated input raises an exception (a `ValueError`
subclass such as `HeaderError`, `PacketError`, `FrameError` or
`WebsocketHandshakeError`) from the handler or stream method that met it.
Unknown WebSocket frame types, close frames included, are skipped with a
logged warning.

## What this package does not do

`tunnelcore` is a library of protocol layers only. It has no command-line
program and no configuration format, does not listen for connections, does
not open connections to the requested destination, and does not relay data
between the two sides or choose which proxy to use; the
`override_proxy_provider` values it passes along are left to the caller.