"""VMess authentication, request headers, data framing, streams and handlers."""