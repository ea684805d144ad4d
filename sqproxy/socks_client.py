"""Outbound that forwards requests through an upstream SOCKS5 server."""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import logging
import socket
from typing import Optional

from .core import Outbound, ProxyRequest, TcpSession, UdpSession, _try_join, relay
from .errors import SocksError, UDPSessionClosed
from .socks5 import (
    SOCKS5_AUTH_METHOD_NONE,
    SOCKS5_AUTH_METHOD_PASSWORD,
    SOCKS5_CMD_TCP_CONNECT,
    SOCKS5_CMD_UDP_ASSOCIATE,
    SOCKS5_REPLY_SUCCEEDED,
    SOCKS5_RESERVE,
    SOCKS5_VERSION,
    AuthReply,
    AuthReq,
    CmdReply,
    CmdReq,
    PasswordAuthReply,
    PasswordAuthReq,
)
from .udpsocks import UdpSocksWrap

log = logging.getLogger(__name__)

_CHUNK = 16 * 1024
_PASSWORD_AUTH_VERSION = 0x01


def _split_host_port(addr: str) -> tuple[str, int]:
    """Split ``host:port`` or ``[v6]:port`` into its parts."""
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid server address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    number = int(port)
    if number > 0xFFFF:
        raise ValueError(f"port {number} out of range")
    return host, number


async def _close_writer(writer) -> None:
    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()


class SocksClient(Outbound):
    """Sends every request to a SOCKS5 server, with optional password login."""

    def __init__(
        self,
        addr: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        self.addr = addr
        self.username = username
        self.password = password
        self._tasks: set[asyncio.Task] = set()

    async def handle(self, req: ProxyRequest) -> None:
        task = asyncio.create_task(self._serve(req))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _serve(self, req: ProxyRequest) -> None:
        try:
            if isinstance(req, TcpSession):
                await self.handle_tcp(req)
            else:
                await self.handle_udp(req)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("error due to handle socks request:%s", exc)

    async def authenticate(self, reader, writer) -> None:
        """Negotiate the auth method and log in if a username is set."""
        method = (
            SOCKS5_AUTH_METHOD_PASSWORD
            if self.username is not None
            else SOCKS5_AUTH_METHOD_NONE
        )
        writer.write(AuthReq(SOCKS5_VERSION, bytes((method,))).encode())
        await writer.drain()
        reply = await AuthReply.decode(reader)
        if reply.version != SOCKS5_VERSION:
            raise SocksError("version not supported")
        if reply.method != method:
            raise SocksError("authenticate method not supported")
        if self.username is None:
            return
        if self.password is None:
            raise SocksError("password not provided")
        login = PasswordAuthReq(
            _PASSWORD_AUTH_VERSION,
            self.username.encode(),
            self.password.encode(),
        )
        writer.write(login.encode())
        await writer.drain()
        status = await PasswordAuthReply.decode(reader)
        if status.status != SOCKS5_REPLY_SUCCEEDED:
            raise SocksError("authenticate failed")

    async def _open(self):
        host, port = _split_host_port(self.addr)
        return await asyncio.open_connection(host, port)

    async def handle_tcp(self, session: TcpSession) -> None:
        reader, writer = await self._open()
        try:
            await self.authenticate(reader, writer)
            request = CmdReq(
                SOCKS5_VERSION, SOCKS5_CMD_TCP_CONNECT, SOCKS5_RESERVE, session.dst
            )
            writer.write(request.encode())
            await writer.drain()
            await CmdReply.decode(reader)
            await relay(reader, writer, session.reader, session.writer, _CHUNK)
        finally:
            await _close_writer(writer)
            await _close_writer(session.writer)

    async def handle_udp(self, session: UdpSession) -> None:
        reader, writer = await self._open()
        sock: Optional[socket.socket] = None
        try:
            await self.authenticate(reader, writer)
            request = CmdReq(
                SOCKS5_VERSION, SOCKS5_CMD_UDP_ASSOCIATE, SOCKS5_RESERVE, session.dst
            )
            writer.write(request.encode())
            await writer.drain()
            reply = await CmdReply.decode(reader)
            try:
                peers = reply.bind_addr.to_socket_addrs()
            except (OSError, UnicodeDecodeError):
                peers = []
            if not peers:
                raise SocksError("socks server return a unresolvable address")
            peer = peers[0]
            if ipaddress.ip_address(peer[0]).version == 4:
                sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
                sock.bind(("0.0.0.0", 0))
            else:
                sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
                sock.bind(("::", 0))
            sock.setblocking(False)
            sock.connect(peer)
            upstream = UdpSocksWrap(sock, peer)

            async def upstream_to_session() -> None:
                while True:
                    data, dst = await upstream.recv_from()
                    await session.send.send_to(data, dst)

            async def session_to_upstream() -> None:
                while True:
                    data, dst = await session.recv.recv_from()
                    await upstream.send_to(data, dst)

            async def watch_control() -> None:
                # The association lives as long as the control stream stays silent.
                if session.stream is None:
                    return
                control_reader = session.stream[0]
                try:
                    await control_reader.readexactly(1)
                except (asyncio.IncompleteReadError, OSError) as exc:
                    raise UDPSessionClosed(str(exc)) from exc
                log.error("unexpected data received from socks control stream")
                raise UDPSessionClosed(
                    "unexpected data received from socks control stream"
                )

            await _try_join(upstream_to_session(), session_to_upstream(), watch_control())
        finally:
            if sock is not None:
                sock.close()
            await _close_writer(writer)