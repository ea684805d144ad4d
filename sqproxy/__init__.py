"""Asyncio proxy core: SOCKS5 and QUIC-proxy wire messages, direct and SOCKS5 outbounds."""

__version__ = "0.2.1"