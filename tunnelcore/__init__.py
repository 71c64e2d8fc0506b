"""VMess and WebSocket transport layers for proxies."""

__version__ = "0.1.0"