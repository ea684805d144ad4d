import asyncio

import pytest

from sqproxy.errors import ProtocolViolation
from sqproxy.socks5 import ByteReader, SocksAddr, encode_u16
from sqproxy.sqmsgs import (
    SQCmd,
    SQPacketDatagramHeader,
    SQPacketStreamHeader,
    SQReq,
    SQUdpControlHeader,
)

DST = SocksAddr.from_domain("localhost", 443)
IP_DST = SocksAddr.from_sockaddr(("127.0.0.1", 1445))


@pytest.mark.asyncio
@pytest.mark.parametrize("cmd", list(SQCmd))
async def test_cmd_decode(cmd):
    assert await SQCmd.decode(ByteReader(bytes([cmd.value]))) is cmd


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [0, 5, 255])
async def test_cmd_invalid(raw):
    with pytest.raises(ProtocolViolation):
        await SQCmd.decode(ByteReader(bytes([raw])))


@pytest.mark.asyncio
@pytest.mark.parametrize("cmd", list(SQCmd))
async def test_req_round_trip(cmd):
    req = SQReq(cmd, DST)
    reader = ByteReader(req.encode())
    assert await SQReq.decode(reader) == req
    assert reader.remaining() == b""


def test_req_layout():
    encoded = SQReq(SQCmd.ASSOCIATE_OVER_STREAM, IP_DST).encode()
    assert encoded[0] == SQCmd.ASSOCIATE_OVER_STREAM
    assert encoded[1:] == IP_DST.encode()


@pytest.mark.asyncio
async def test_control_header_round_trip():
    header = SQUdpControlHeader(dst=IP_DST, id=65535)
    reader = ByteReader(header.encode())
    assert await SQUdpControlHeader.decode(reader) == header
    assert reader.remaining() == b""


def test_control_header_order():
    header = SQUdpControlHeader(dst=DST, id=7)
    assert header.encode().startswith(DST.encode())
    assert header.encode().endswith(encode_u16(7))


@pytest.mark.asyncio
async def test_stream_header_round_trip():
    header = SQPacketStreamHeader(id=3, len=1000)
    assert await SQPacketStreamHeader.decode(ByteReader(header.encode())) == header
    assert len(header.encode()) == 4


def test_datagram_header_wire_bytes():
    assert SQPacketDatagramHeader(id=0x0102).encode() == b"\x01\x02"


@pytest.mark.asyncio
async def test_datagram_header_leaves_payload():
    payload = b"\x00" * 1000
    reader = ByteReader(SQPacketDatagramHeader(id=42).encode() + payload)
    assert await SQPacketDatagramHeader.decode(reader) == SQPacketDatagramHeader(42)
    assert reader.remaining() == payload


def test_id_out_of_range():
    with pytest.raises(ValueError):
        SQPacketDatagramHeader(id=65536).encode()


@pytest.mark.asyncio
async def test_truncated_request():
    data = SQReq(SQCmd.CONNECT, DST).encode()
    with pytest.raises(asyncio.IncompleteReadError):
        await SQReq.decode(ByteReader(data[:-2]))


@pytest.mark.asyncio
async def test_decode_from_stream_reader():
    stream = asyncio.StreamReader()
    header = SQUdpControlHeader(dst=DST, id=9)
    stream.feed_data(header.encode())
    stream.feed_eof()
    assert await SQUdpControlHeader.decode(stream) == header