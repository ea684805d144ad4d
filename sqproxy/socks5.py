"""SOCKS5 wire messages and the binary helpers they are built from.

Every ``encode`` returns the bytes of a message; every ``decode`` is a
coroutine that reads from any object with an awaitable ``readexactly``,
such as :class:`asyncio.StreamReader` or :class:`ByteReader`.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Protocol, Union

from .errors import ProtocolViolation

SOCKS5_VERSION = 0x05

SOCKS5_AUTH_METHOD_NONE = 0x00
SOCKS5_AUTH_METHOD_GSSAPI = 0x01
SOCKS5_AUTH_METHOD_PASSWORD = 0x02
SOCKS5_AUTH_METHOD_NOT_ACCEPTABLE = 0xFF

SOCKS5_CMD_TCP_CONNECT = 0x01
SOCKS5_CMD_TCP_BIND = 0x02
SOCKS5_CMD_UDP_ASSOCIATE = 0x03

SOCKS5_ADDR_TYPE_IPV4 = 0x01
SOCKS5_ADDR_TYPE_DOMAIN_NAME = 0x03
SOCKS5_ADDR_TYPE_IPV6 = 0x04

SOCKS5_REPLY_SUCCEEDED = 0x00
SOCKS5_REPLY_GENERAL_FAILURE = 0x01
SOCKS5_REPLY_CONNECTION_NOT_ALLOWED = 0x02
SOCKS5_REPLY_NETWORK_UNREACHABLE = 0x03
SOCKS5_REPLY_HOST_UNREACHABLE = 0x04
SOCKS5_REPLY_CONNECTION_REFUSED = 0x05
SOCKS5_REPLY_TTL_EXPIRED = 0x06
SOCKS5_REPLY_COMMAND_NOT_SUPPORTED = 0x07
SOCKS5_REPLY_ADDRESS_TYPE_NOT_SUPPORTED = 0x08
SOCKS5_RESERVE = 0x00


class AsyncByteSource(Protocol):
    async def readexactly(self, n: int) -> bytes: ...


class ByteReader:
    """An in-memory byte source with the reading interface of a stream."""

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)
        self._pos = 0

    async def readexactly(self, n: int) -> bytes:
        if n < 0:
            raise ValueError("read length must not be negative")
        end = self._pos + n
        if end > len(self._data):
            partial = self._data[self._pos :]
            self._pos = len(self._data)
            raise asyncio.IncompleteReadError(partial, n)
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def position(self) -> int:
        """Number of bytes consumed so far."""
        return self._pos

    def remaining(self) -> bytes:
        """The bytes not yet consumed."""
        return self._data[self._pos :]


def _u8(value: int) -> bytes:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{value} does not fit in one byte")
    return bytes((value,))


async def read_u8(reader: AsyncByteSource) -> int:
    return (await reader.readexactly(1))[0]


async def read_u16(reader: AsyncByteSource) -> int:
    return int.from_bytes(await reader.readexactly(2), "big")


def encode_u16(value: int) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{value} does not fit in two bytes")
    return value.to_bytes(2, "big")


def encode_varvec(data: bytes) -> bytes:
    """Encode bytes with a one-byte length prefix."""
    data = bytes(data)
    if len(data) > 0xFF:
        raise ValueError("length-prefixed field longer than 255 bytes")
    return bytes((len(data),)) + data


async def read_varvec(reader: AsyncByteSource) -> bytes:
    length = await read_u8(reader)
    return await reader.readexactly(length)


Host = Union[ipaddress.IPv4Address, ipaddress.IPv6Address, bytes]


@dataclass(frozen=True)
class SocksAddr:
    """A SOCKS5 address: an IPv4 or IPv6 address, or a domain name as bytes."""

    addr: Host
    port: int

    def __post_init__(self) -> None:
        if isinstance(self.addr, (bytearray, memoryview)):
            object.__setattr__(self, "addr", bytes(self.addr))
        if not isinstance(
            self.addr, (ipaddress.IPv4Address, ipaddress.IPv6Address, bytes)
        ):
            raise TypeError(f"unsupported address {self.addr!r}")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port {self.port} out of range")

    @property
    def atype(self) -> int:
        if isinstance(self.addr, ipaddress.IPv4Address):
            return SOCKS5_ADDR_TYPE_IPV4
        if isinstance(self.addr, ipaddress.IPv6Address):
            return SOCKS5_ADDR_TYPE_IPV6
        return SOCKS5_ADDR_TYPE_DOMAIN_NAME

    @property
    def is_domain(self) -> bool:
        return isinstance(self.addr, bytes)

    @classmethod
    def from_domain(cls, name: str, port: int) -> SocksAddr:
        return cls(name.encode(), port)

    @classmethod
    def from_sockaddr(cls, addr: tuple) -> SocksAddr:
        """Build from a socket address tuple whose host is an IP literal."""
        host, port = addr[0], addr[1]
        return cls(ipaddress.ip_address(host), port)

    def encode(self) -> bytes:
        if isinstance(self.addr, bytes):
            body = encode_varvec(self.addr)
        else:
            body = self.addr.packed
        return bytes((self.atype,)) + body + encode_u16(self.port)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> SocksAddr:
        atype = await read_u8(reader)
        addr: Host
        if atype == SOCKS5_ADDR_TYPE_IPV4:
            addr = ipaddress.IPv4Address(await reader.readexactly(4))
        elif atype == SOCKS5_ADDR_TYPE_IPV6:
            addr = ipaddress.IPv6Address(await reader.readexactly(16))
        elif atype == SOCKS5_ADDR_TYPE_DOMAIN_NAME:
            addr = await read_varvec(reader)
        else:
            raise ProtocolViolation("Socks Protocol Violated")
        port = await read_u16(reader)
        return cls(addr, port)

    def to_socket_addrs(self) -> list[tuple[str, int]]:
        """Resolve to a list of ``(ip, port)`` pairs; domains are looked up."""
        if isinstance(self.addr, bytes):
            host = self.addr.decode("utf-8")
            result: list[tuple[str, int]] = []
            for *_, sockaddr in socket.getaddrinfo(
                host, self.port, type=socket.SOCK_STREAM
            ):
                pair = (sockaddr[0], sockaddr[1])
                if pair not in result:
                    result.append(pair)
            return result
        return [(str(self.addr), self.port)]

    def __str__(self) -> str:
        if isinstance(self.addr, ipaddress.IPv6Address):
            return f"[{self.addr}]:{self.port}"
        if isinstance(self.addr, bytes):
            return f"{self.addr.decode('utf-8')}:{self.port}"
        return f"{self.addr}:{self.port}"


@dataclass(frozen=True)
class AuthReq:
    version: int
    methods: bytes

    def encode(self) -> bytes:
        return _u8(self.version) + encode_varvec(self.methods)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> AuthReq:
        return cls(await read_u8(reader), await read_varvec(reader))


@dataclass(frozen=True)
class PasswordAuthReq:
    version: int
    username: bytes
    password: bytes

    def encode(self) -> bytes:
        return (
            _u8(self.version)
            + encode_varvec(self.username)
            + encode_varvec(self.password)
        )

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> PasswordAuthReq:
        version = await read_u8(reader)
        username = await read_varvec(reader)
        secret = await read_varvec(reader)
        return cls(version, username, secret)


@dataclass(frozen=True)
class PasswordAuthReply:
    version: int
    status: int

    def encode(self) -> bytes:
        return _u8(self.version) + _u8(self.status)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> PasswordAuthReply:
        return cls(await read_u8(reader), await read_u8(reader))


@dataclass(frozen=True)
class AuthReply:
    version: int
    method: int

    def encode(self) -> bytes:
        return _u8(self.version) + _u8(self.method)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> AuthReply:
        return cls(await read_u8(reader), await read_u8(reader))


@dataclass(frozen=True)
class CmdReq:
    version: int
    cmd: int
    rsv: int
    dst: SocksAddr

    def encode(self) -> bytes:
        return _u8(self.version) + _u8(self.cmd) + _u8(self.rsv) + self.dst.encode()

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> CmdReq:
        version = await read_u8(reader)
        cmd = await read_u8(reader)
        rsv = await read_u8(reader)
        return cls(version, cmd, rsv, await SocksAddr.decode(reader))


@dataclass(frozen=True)
class CmdReply:
    version: int
    rep: int
    rsv: int
    bind_addr: SocksAddr

    def encode(self) -> bytes:
        return (
            _u8(self.version) + _u8(self.rep) + _u8(self.rsv) + self.bind_addr.encode()
        )

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> CmdReply:
        version = await read_u8(reader)
        rep = await read_u8(reader)
        rsv = await read_u8(reader)
        return cls(version, rep, rsv, await SocksAddr.decode(reader))


@dataclass(frozen=True)
class UdpReqHeader:
    rsv: int
    frag: int
    dst: SocksAddr

    def encode(self) -> bytes:
        return encode_u16(self.rsv) + _u8(self.frag) + self.dst.encode()

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> UdpReqHeader:
        rsv = await read_u16(reader)
        frag = await read_u8(reader)
        return cls(rsv, frag, await SocksAddr.decode(reader))