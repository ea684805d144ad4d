"""Outbound that connects straight to the requested destination."""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import logging
import socket

from .core import ProxyRequest, TcpSession, UdpSession, Outbound, _try_join, relay
from .dualsock import DualSocket
from .errors import DomainResolveFailed
from .socks5 import SocksAddr

log = logging.getLogger(__name__)

_CHUNK = 16 * 1024
_MAX_DATAGRAM = 2000


async def resolve(addr: SocksAddr, ipv4_only: bool) -> tuple[str, int]:
    """Resolve a SOCKS address to an ``(ip, port)`` pair."""
    if not addr.is_domain:
        return str(addr.addr), addr.port
    try:
        host = addr.addr.decode("utf-8")
    except UnicodeDecodeError:
        raise DomainResolveFailed() from None
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, addr.port, type=socket.SOCK_DGRAM)
    for family, *_, sockaddr in infos:
        if family == socket.AF_INET or not ipv4_only:
            return str(ipaddress.ip_address(sockaddr[0])), addr.port
    raise DomainResolveFailed()


class DnsResolve:
    """Caches domain lookups so replies can be reported under the domain name."""

    def __init__(self) -> None:
        self._cache: dict[bytes, tuple[str, int]] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, addr: SocksAddr, ipv4_only: bool) -> tuple[str, int]:
        if not addr.is_domain:
            return await resolve(addr, ipv4_only)
        async with self._lock:
            cached = self._cache.get(addr.addr)
        if cached is not None:
            return cached
        resolved = await resolve(addr, ipv4_only)
        async with self._lock:
            self._cache[addr.addr] = resolved
        return resolved

    async def inv_resolve(self, addr: tuple) -> SocksAddr:
        host, port = addr[0], addr[1]
        try:
            key = (str(ipaddress.ip_address(host)), port)
        except ValueError:
            key = (host, port)
        async with self._lock:
            for name, value in self._cache.items():
                if value == key:
                    return SocksAddr(name, port)
        return SocksAddr.from_sockaddr(addr)


async def _close_writer(writer) -> None:
    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()


async def _handle_tcp(session: TcpSession) -> None:
    log.debug("direct tcp to %s", session.dst)
    host, port = await resolve(session.dst, False)
    log.debug("resolved to %s:%s", host, port)
    up_reader, up_writer = await asyncio.open_connection(host, port)
    try:
        await relay(session.reader, session.writer, up_reader, up_writer, _CHUNK)
    finally:
        await _close_writer(up_writer)
        await _close_writer(session.writer)


async def handle_udp(session: UdpSession) -> None:
    """Relay an association through a local UDP socket until one side fails."""
    log.debug("associating udp to %s", session.dst)
    dst = await resolve(session.dst, False)
    ipv4_only = ipaddress.ip_address(dst[0]).version == 4
    upstream = DualSocket.bind(dst, not ipv4_only)
    cache = DnsResolve()

    async def upstream_to_session() -> None:
        while True:
            data, source = await upstream.recv_from(_MAX_DATAGRAM)
            await session.send.send_to(data, await cache.inv_resolve(source))

    async def session_to_upstream() -> None:
        while True:
            data, target = await session.recv.recv_from()
            await upstream.send_to(data, await cache.resolve(target, ipv4_only))

    try:
        await _try_join(upstream_to_session(), session_to_upstream())
    finally:
        upstream.close()
        if session.stream is not None:
            await _close_writer(session.stream[1])


class DirectOut(Outbound):
    """Carries each request out over a direct connection in the background."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    async def handle(self, req: ProxyRequest) -> None:
        task = asyncio.create_task(self._serve(req))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _serve(req: ProxyRequest) -> None:
        try:
            if isinstance(req, TcpSession):
                await _handle_tcp(req)
            else:
                await handle_udp(req)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("%s", exc)