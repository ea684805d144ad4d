"""A UDP socket that can talk to IPv4 and IPv6 peers from one IPv6 socket."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket

log = logging.getLogger(__name__)


def _parse_ip(host: str):
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def to_ipv4_mapped(addr: tuple) -> tuple[str, int]:
    """Turn an IPv4-mapped IPv6 address back into plain IPv4; leave others alone."""
    host, port = addr[0], addr[1]
    ip = _parse_ip(host)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped), port
    return host, port


class DualSocket:
    """A non-blocking UDP socket; in dual-stack mode IPv4 peers are mapped by hand."""

    def __init__(self, sock: socket.socket, dual_stack: bool) -> None:
        self.sock = sock
        self.dual_stack = dual_stack

    @classmethod
    def bind(cls, addr: tuple, dual_stack: bool) -> DualSocket:
        family = socket.AF_INET6 if dual_stack else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            if dual_stack:
                try:
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
                except OSError as exc:
                    log.warning("set dual stack for failed: %s", exc)
            sock.setblocking(False)
            sock.bind((addr[0], addr[1]))
        except BaseException:
            sock.close()
            raise
        return cls(sock, dual_stack)

    async def send_to(self, buf: bytes, addr: tuple) -> int:
        host, port = addr[0], addr[1]
        ip = _parse_ip(host)
        if self.dual_stack and isinstance(ip, ipaddress.IPv4Address):
            host = f"::ffff:{ip}"
        loop = asyncio.get_running_loop()
        return await loop.sock_sendto(self.sock, buf, (host, port))

    async def recv_from(self, bufsize: int = 2000) -> tuple[bytes, tuple[str, int]]:
        loop = asyncio.get_running_loop()
        data, addr = await loop.sock_recvfrom(self.sock, bufsize)
        peer = (addr[0], addr[1])
        if self.dual_stack:
            peer = to_ipv4_mapped(peer)
        return data, peer

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> DualSocket:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()