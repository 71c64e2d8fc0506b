"""WebSocket frames, upgrade handshake, framed streams and handlers."""