"""Proxy sessions, the inbound and outbound interfaces, and the dispatch loop."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Union

from .errors import ChannelError, InboundUnavailable, OutboundUnavailable, SError
from .socks5 import SocksAddr

log = logging.getLogger(__name__)

DEFAULT_CHUNK = 16 * 1024


class UdpSend(ABC):
    """The sending half of a proxied UDP socket."""

    @abstractmethod
    async def send_to(self, buf: bytes, addr: SocksAddr) -> int:
        """Send ``buf`` toward the proxied address ``addr``."""


class UdpRecv(ABC):
    """The receiving half of a proxied UDP socket."""

    @abstractmethod
    async def recv_from(self) -> tuple[bytes, SocksAddr]:
        """Wait for a datagram and the proxied address it belongs to."""


@dataclass
class TcpSession:
    """A TCP stream to be proxied to ``dst``."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    dst: SocksAddr


@dataclass
class UdpSession:
    """A UDP association; ``stream`` is a control stream kept open meanwhile."""

    recv: UdpRecv
    send: UdpSend
    dst: SocksAddr
    stream: Optional[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = None


ProxyRequest = Union[TcpSession, UdpSession]

_CLOSED = object()


class _Channel:
    def __init__(self, maxsize: int) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue(maxsize)
        self.send_closed = False
        self.recv_closed = False


class ChannelSend(UdpSend):
    """Sending end of an in-process datagram channel."""

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel

    async def send_to(self, buf: bytes, addr: SocksAddr) -> int:
        channel = self._channel
        if channel.recv_closed:
            raise InboundUnavailable()
        if channel.send_closed:
            raise ChannelError("sender closed")
        await channel.queue.put((bytes(buf), addr))
        return len(buf)

    def close(self) -> None:
        """Tell the receiver no more datagrams will come."""
        channel = self._channel
        if channel.send_closed:
            return
        channel.send_closed = True
        try:
            channel.queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass


class ChannelRecv(UdpRecv):
    """Receiving end of an in-process datagram channel."""

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel

    async def recv_from(self) -> tuple[bytes, SocksAddr]:
        channel = self._channel
        if channel.queue.empty() and channel.send_closed:
            raise OutboundUnavailable()
        item = await channel.queue.get()
        if item is _CLOSED:
            raise OutboundUnavailable()
        return item

    def close(self) -> None:
        """Refuse further datagrams and drop the queued ones."""
        channel = self._channel
        channel.recv_closed = True
        while not channel.queue.empty():
            channel.queue.get_nowait()


def udp_channel(maxsize: int = 10) -> tuple[ChannelSend, ChannelRecv]:
    """Create a bounded datagram channel and return its two ends."""
    channel = _Channel(maxsize)
    return ChannelSend(channel), ChannelRecv(channel)


class Inbound(ABC):
    """A source of proxy requests."""

    @abstractmethod
    async def accept(self) -> ProxyRequest:
        """Wait for the next request."""

    async def init(self) -> None:
        """Start any background work; by default yield once to the event loop."""
        await asyncio.sleep(0)


class Outbound(ABC):
    """A destination that carries proxy requests out."""

    @abstractmethod
    async def handle(self, req: ProxyRequest) -> None:
        """Take charge of one request."""


_RECOVERABLE = (SError, OSError, EOFError)


@dataclass
class Manager:
    """Feeds every request from the inbound to the outbound."""

    inbound: Inbound
    outbound: Outbound

    async def run(self) -> None:
        await self.inbound.init()
        while True:
            try:
                req = await self.inbound.accept()
            except _RECOVERABLE as exc:
                log.error("error during accepting request: %s", exc)
                continue
            try:
                await self.outbound.handle(req)
            except _RECOVERABLE as exc:
                log.error("error during handling request: %s", exc)


async def _try_join(*aws: Awaitable[Any]) -> list[Any]:
    """Run awaitables together; the first failure cancels the rest and is raised."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_EXCEPTION
            )
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        return [task.result() for task in tasks]
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def _pipe(src: asyncio.StreamReader, dst: Any, chunk_size: int) -> int:
    total = 0
    while chunk := await src.read(chunk_size):
        dst.write(chunk)
        await dst.drain()
        total += len(chunk)
    if dst.can_write_eof():
        try:
            dst.write_eof()
        except OSError:
            pass
    return total


async def relay(
    reader_a: asyncio.StreamReader,
    writer_a: Any,
    reader_b: asyncio.StreamReader,
    writer_b: Any,
    chunk_size: int = DEFAULT_CHUNK,
) -> tuple[int, int]:
    """Copy both ways until each side ends; return bytes moved a->b and b->a."""
    a_to_b, b_to_a = await _try_join(
        _pipe(reader_a, writer_b, chunk_size),
        _pipe(reader_b, writer_a, chunk_size),
    )
    return a_to_b, b_to_a