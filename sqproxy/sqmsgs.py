"""Messages exchanged between the proxy client and server over QUIC."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .errors import ProtocolViolation
from .socks5 import AsyncByteSource, SocksAddr, encode_u16, read_u16, read_u8


class SQCmd(IntEnum):
    CONNECT = 0x01
    BIND = 0x02
    ASSOCIATE_OVER_DATAGRAM = 0x03
    ASSOCIATE_OVER_STREAM = 0x04

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> SQCmd:
        value = await read_u8(reader)
        try:
            return cls(value)
        except ValueError:
            raise ProtocolViolation() from None


@dataclass(frozen=True)
class SQReq:
    """Request sent at the start of every bidirectional stream."""

    cmd: SQCmd
    dst: SocksAddr

    def encode(self) -> bytes:
        return bytes((int(self.cmd),)) + self.dst.encode()

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> SQReq:
        cmd = await SQCmd.decode(reader)
        return cls(cmd, await SocksAddr.decode(reader))


@dataclass(frozen=True)
class SQUdpControlHeader:
    """Binds a UDP id to its proxied destination."""

    dst: SocksAddr
    id: int

    def encode(self) -> bytes:
        return self.dst.encode() + encode_u16(self.id)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> SQUdpControlHeader:
        dst = await SocksAddr.decode(reader)
        return cls(dst, await read_u16(reader))


@dataclass(frozen=True)
class SQPacketStreamHeader:
    id: int
    len: int

    def encode(self) -> bytes:
        return encode_u16(self.id) + encode_u16(self.len)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> SQPacketStreamHeader:
        id_ = await read_u16(reader)
        return cls(id_, await read_u16(reader))


@dataclass(frozen=True)
class SQPacketDatagramHeader:
    id: int

    def encode(self) -> bytes:
        return encode_u16(self.id)

    @classmethod
    async def decode(cls, reader: AsyncByteSource) -> SQPacketDatagramHeader:
        return cls(await read_u16(reader))