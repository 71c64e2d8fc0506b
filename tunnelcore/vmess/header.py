"""The VMess request header: encoding, decoding and response key derivation."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Union

from tunnelcore.hashing import Fnv1aHasher, fnv1a, md5, sha256
from tunnelcore.vmess.auth import DataCipher

VERSION = 1
ADDRESS_IPV4 = 1
ADDRESS_DOMAIN = 2
ADDRESS_IPV6 = 3
COMMAND_TCP = 1
COMMAND_UDP = 2
OPTION_STANDARD_FORMAT = 0x01
OPTION_CHUNK_MASKING = 0x04
OPTION_GLOBAL_PADDING = 0x08
OPTION_AUTH_LENGTH = 0x10
MAX_MARGIN_LEN = 15
MAX_HOSTNAME_LEN = 255
_FIXED_LEN = 41

_CIPHER_CODES = {
    DataCipher.AES_128_GCM: 3,
    DataCipher.CHACHA20_POLY1305: 4,
    DataCipher.NONE: 5,
}
_CODE_CIPHERS = {code: cipher for cipher, code in _CIPHER_CODES.items()}

Address = Union[IPv4Address, IPv6Address, str]
ReadExact = Callable[[int], Union[bytes, Awaitable[bytes]]]


class HeaderError(ValueError):
    """A request header is malformed or asks for something unsupported."""


@dataclass(frozen=True)
class NetLocation:
    """A remote address (IP address or hostname) and port."""

    address: Address
    port: int

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"invalid port {self.port}")

    def __str__(self) -> str:
        if isinstance(self.address, IPv6Address):
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


def _parse_host(text: str) -> Address:
    # Some clients send IP addresses as domain names.
    try:
        return ip_address(text)
    except ValueError:
        return text


@dataclass(frozen=True)
class RequestHeader:
    """The decrypted instruction part of a VMess request."""

    data_iv: bytes
    data_key: bytes
    response_auth: int
    option: int
    cipher: DataCipher
    command: int
    location: NetLocation

    def __post_init__(self) -> None:
        if len(self.data_iv) != 16 or len(self.data_key) != 16:
            raise ValueError("data iv and key must be 16 bytes each")

    @property
    def chunk_masking(self) -> bool:
        return bool(self.option & OPTION_CHUNK_MASKING)

    @property
    def global_padding(self) -> bool:
        return bool(self.option & OPTION_GLOBAL_PADDING)

    def encode(self, margin: bytes = b"") -> bytes:
        """Return the plaintext header with *margin* bytes and the FNV-1a check."""
        if len(margin) > MAX_MARGIN_LEN:
            raise ValueError(f"margin is longer than {MAX_MARGIN_LEN} bytes")
        try:
            code = _CIPHER_CODES[self.cipher]
        except KeyError:
            raise ValueError(f"cipher {self.cipher.value} has no wire code") from None

        out = bytearray([VERSION])
        out += self.data_iv
        out += self.data_key
        out += bytes([self.response_auth, self.option, (len(margin) << 4) | code, 0, self.command])
        out += self.location.port.to_bytes(2, "big")

        address = self.location.address
        if isinstance(address, IPv4Address):
            out.append(ADDRESS_IPV4)
            out += address.packed
        elif isinstance(address, IPv6Address):
            out.append(ADDRESS_IPV6)
            out += address.packed
        else:
            encoded = address.encode("utf-8")
            if len(encoded) > MAX_HOSTNAME_LEN:
                raise HeaderError(f"Hostname is too long: {address}")
            out.append(ADDRESS_DOMAIN)
            out.append(len(encoded))
            out += encoded

        out += margin
        out += fnv1a(bytes(out)).to_bytes(4, "big")
        return bytes(out)


def cipher_from_code(code: int) -> DataCipher:
    """Return the data cipher for a wire security code."""
    if code == 1:
        raise HeaderError("Unsupported aes-128-cfb data cipher requested")
    try:
        return _CODE_CIPHERS[code]
    except KeyError:
        raise HeaderError(f"Unknown requested cipher: {code}") from None


async def decode_request_header(read_exact: ReadExact) -> RequestHeader:
    """Read and check a request header through *read_exact*.

    *read_exact(n)* returns exactly *n* decrypted bytes, directly or as an awaitable.
    """
    hasher = Fnv1aHasher()

    async def take(n: int, checked: bool = True) -> bytes:
        data = read_exact(n)
        if inspect.isawaitable(data):
            data = await data
        data = bytes(data)
        if len(data) != n:
            raise HeaderError(f"short header read: wanted {n} bytes, got {len(data)}")
        if checked:
            hasher.update(data)
        return data

    fixed = await take(_FIXED_LEN)
    if fixed[0] != VERSION:
        raise HeaderError(f"Invalid version {fixed[0]}")

    port = int.from_bytes(fixed[38:40], "big")
    address_type = fixed[40]
    address: Address
    if address_type == ADDRESS_IPV4:
        address = IPv4Address(await take(4))
    elif address_type == ADDRESS_DOMAIN:
        length = (await take(1))[0]
        raw = await take(length)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HeaderError(f"Failed to decode address: {exc}") from None
        address = _parse_host(text)
    elif address_type == ADDRESS_IPV6:
        address = IPv6Address(await take(16))
    else:
        raise HeaderError(f"Invalid address type: {address_type}")

    margin_len = fixed[35] >> 4
    if margin_len:
        await take(margin_len)

    expected = int.from_bytes(await take(4, checked=False), "big")
    actual = hasher.finish()
    if expected != actual:
        raise HeaderError(f"Bad fnv1a checksum, expected {expected}, got {actual}")

    option = fixed[34]
    if not option & OPTION_STANDARD_FORMAT:
        raise HeaderError("Standard format data stream was not requested")
    if option & OPTION_AUTH_LENGTH:
        raise HeaderError("Auth length option is not supported")
    if option & OPTION_GLOBAL_PADDING and not option & OPTION_CHUNK_MASKING:
        raise HeaderError("Global padding cannot be enabled without chunk masking")

    return RequestHeader(
        data_iv=fixed[1:17],
        data_key=fixed[17:33],
        response_auth=fixed[33],
        option=option,
        cipher=cipher_from_code(fixed[35] & 0x0F),
        command=fixed[37],
        location=NetLocation(address, port),
    )


def response_keys(data_iv: bytes, data_key: bytes, is_aead: bool) -> tuple[bytes, bytes]:
    """Return ``(response_iv, response_key)`` derived from the request's data iv and key."""
    if is_aead:
        return sha256(data_iv)[:16], sha256(data_key)[:16]
    return md5(data_iv), md5(data_key)