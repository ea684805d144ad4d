import asyncio
from ipaddress import IPv4Address

import pytest

from sqproxy.core import TcpSession, UdpSession, udp_channel
from sqproxy.direct import DirectOut, DnsResolve, handle_udp, resolve
from sqproxy.errors import DomainResolveFailed, OutboundUnavailable
from sqproxy.socks5 import SocksAddr


def dns_request(domain):
    query = bytearray(
        [0x13, 0x37, 0x01, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]
    )
    for part in domain.split("."):
        query.append(len(part))
        query.extend(part.encode())
    query.extend([0, 0, 1, 0, 1])
    return bytes(query)


class _Echo(asyncio.DatagramProtocol):
    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.transport.sendto(data, addr)


async def _echo_server():
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        _Echo, local_addr=("127.0.0.1", 0)
    )
    return transport, transport.get_extra_info("sockname")[1]


@pytest.mark.asyncio
async def test_resolve_ip_address():
    assert await resolve(SocksAddr(IPv4Address("8.8.8.8"), 53), True) == ("8.8.8.8", 53)


@pytest.mark.asyncio
async def test_resolve_bad_domain_bytes():
    with pytest.raises(DomainResolveFailed):
        await resolve(SocksAddr(b"\xff\xfe", 53), False)


@pytest.mark.asyncio
async def test_dns_cache_maps_replies_back_to_domain():
    cache = DnsResolve()
    resolved = await cache.resolve(SocksAddr.from_domain("localhost", 5353), True)
    assert resolved == ("127.0.0.1", 5353)
    assert await cache.inv_resolve(resolved) == SocksAddr(b"localhost", 5353)
    assert await cache.inv_resolve(("127.0.0.1", 9)) == SocksAddr(
        IPv4Address("127.0.0.1"), 9
    )


@pytest.mark.asyncio
async def test_udp_dns_query_through_direct():
    transport, port = await _echo_server()
    to_up_send, to_up_recv = udp_channel(10)
    from_up_send, from_up_recv = udp_channel(10)
    session = UdpSession(
        recv=to_up_recv,
        send=from_up_send,
        dst=SocksAddr(IPv4Address("0.0.0.0"), 0),
    )
    task = asyncio.create_task(handle_udp(session))
    try:
        query = dns_request("www.gstatic.com")
        target = SocksAddr(IPv4Address("127.0.0.1"), port)
        await to_up_send.send_to(query, target)
        msg, source = await asyncio.wait_for(from_up_recv.recv_from(), 5)
        assert msg[0] == 0x13
        assert msg[1] == 0x37
        assert msg == query
        assert source == target

        await to_up_send.send_to(query, SocksAddr.from_domain("localhost", port))
        msg, source = await asyncio.wait_for(from_up_recv.recv_from(), 5)
        assert msg[:2] == b"\x13\x37"
        assert source == SocksAddr(b"localhost", port)

        to_up_send.close()
        with pytest.raises(OutboundUnavailable):
            await asyncio.wait_for(task, 5)
    finally:
        task.cancel()
        transport.close()


@pytest.mark.asyncio
async def test_direct_out_relays_tcp():
    async def echo(reader, writer):
        while data := await reader.read(1024):
            writer.write(data)
            await writer.drain()
        writer.close()

    echo_server = await asyncio.start_server(echo, "127.0.0.1", 0)
    echo_port = echo_server.sockets[0].getsockname()[1]
    accepted = asyncio.Queue()

    async def on_client(reader, writer):
        await accepted.put((reader, writer))

    front = await asyncio.start_server(on_client, "127.0.0.1", 0)
    front_port = front.sockets[0].getsockname()[1]
    client_reader, client_writer = await asyncio.open_connection("127.0.0.1", front_port)
    try:
        reader, writer = await asyncio.wait_for(accepted.get(), 2)
        out = DirectOut()
        handled = await out.handle(
            TcpSession(reader, writer, SocksAddr(IPv4Address("127.0.0.1"), echo_port))
        )
        assert handled is None
        payload = b"hello through the proxy"
        client_writer.write(payload)
        await client_writer.drain()
        got = await asyncio.wait_for(client_reader.readexactly(len(payload)), 5)
        assert got == payload
        second = b"and back again"
        client_writer.write(second)
        await client_writer.drain()
        got = await asyncio.wait_for(client_reader.readexactly(len(second)), 5)
        assert got == second
    finally:
        client_writer.close()
        front.close()
        echo_server.close()