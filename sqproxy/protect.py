"""Hand a socket to a local helper over a Unix socket so it bypasses the VPN."""

from __future__ import annotations

import asyncio
import os
import socket
from typing import Iterable

_RETRY_DELAYS_MS = (0, 100, 300, 800)
_FAILURE = 0xFF


async def _wait_writable(loop: asyncio.AbstractEventLoop, sock: socket.socket) -> None:
    ready = loop.create_future()
    fileno = sock.fileno()

    def mark_ready() -> None:
        if not ready.done():
            ready.set_result(None)

    loop.add_writer(fileno, mark_ready)
    try:
        await ready
    finally:
        loop.remove_writer(fileno)


async def send_with_fd(sock: socket.socket, buf: bytes, fds: Iterable[int]) -> int:
    """Send ``buf`` with file descriptors attached; wait while the socket is full."""
    loop = asyncio.get_running_loop()
    descriptors = list(fds)
    while True:
        try:
            return socket.send_fds(sock, [bytes(buf)], descriptors)
        except (BlockingIOError, InterruptedError):
            await _wait_writable(loop, sock)


async def protect_socket(path: str | os.PathLike, fd: int) -> None:
    """Pass ``fd`` to the helper listening at ``path`` and check its answer."""
    loop = asyncio.get_running_loop()
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.setblocking(False)
        await loop.sock_connect(sock, os.fspath(path))
        await send_with_fd(sock, b"\x00", [fd])
        response = await loop.sock_recv(sock, 1)
        if not response:
            raise ConnectionError("unexpected end of stream while waiting for reply")
        if response[0] == _FAILURE:
            raise OSError("protect socket failed")


async def protect_socket_with_retry(path: str | os.PathLike, fd: int) -> None:
    """Try :func:`protect_socket` with growing pauses; raise the last error."""
    error: OSError | None = None
    for delay in _RETRY_DELAYS_MS:
        await asyncio.sleep(delay / 1000)
        try:
            await protect_socket(path, fd)
        except OSError as exc:
            error = exc
        else:
            return
    assert error is not None
    raise error