"""A UDP socket that speaks the SOCKS5 UDP relay framing."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional

from .core import UdpRecv, UdpSend
from .errors import ProtocolUnimpl
from .socks5 import ByteReader, SocksAddr, UdpReqHeader

log = logging.getLogger(__name__)

_MAX_DATAGRAM = 2000


class UdpSocksWrap(UdpSend, UdpRecv):
    """Wraps a non-blocking UDP socket; the first sender becomes the only peer."""

    def __init__(self, sock: socket.socket, remote: Optional[tuple] = None) -> None:
        self.sock = sock
        self.remote = remote

    async def recv_from(self) -> tuple[bytes, SocksAddr]:
        loop = asyncio.get_running_loop()
        data, source = await loop.sock_recvfrom(self.sock, _MAX_DATAGRAM)
        reader = ByteReader(data)
        header = await UdpReqHeader.decode(reader)
        if header.frag != 0:
            log.warning("dropping fragmented udp datagram")
            raise ProtocolUnimpl()
        if self.remote is None:
            try:
                self.sock.connect(source)
            except OSError:
                pass
            self.remote = source
        return reader.remaining(), header.dst

    async def send_to(self, buf: bytes, addr: SocksAddr) -> int:
        packet = UdpReqHeader(rsv=0, frag=0, dst=addr).encode() + bytes(buf)
        loop = asyncio.get_running_loop()
        await loop.sock_sendall(self.sock, packet)
        return len(packet)