# sqproxy

`sqproxy` is an asyncio proxy core built around a simple model: an
**inbound** produces proxy requests (TCP streams or UDP associations), and an
**outbound** carries them to their destination. A `Manager` ties the two
together and keeps accepting and dispatching requests.

Python 3.11 or newer is required; the package has no third-party
dependencies.

```
pip install .
```

## What is included

- `sqproxy.errors` – the exception hierarchy. Every failure the package
  reports is a subclass of `SError`: `ProtocolViolation`, `ProtocolUnimpl`,
  `QuicError`, `OutboundUnavailable`, `InboundUnavailable`,
  `DomainResolveFailed`, `ChannelError`, `UDPSessionClosed` and `SocksError`.
- `sqproxy.socks5` – SOCKS5 wire messages: `SocksAddr`, `AuthReq`,
  `AuthReply`, `PasswordAuthReq`, `PasswordAuthReply`, `CmdReq`, `CmdReply`
  and `UdpReqHeader`. Each has `encode()`, returning bytes, and an async
  `decode(reader)` classmethod that reads from anything with an awaitable
  `readexactly`, such as `asyncio.StreamReader` or the in-memory
  `ByteReader`. The module also holds the protocol constants and the helpers
  `read_u8`, `read_u16`, `encode_u16`, `encode_varvec` and `read_varvec`.
- `sqproxy.sqmsgs` – the messages a QUIC proxy client and server exchange:
  `SQCmd`, `SQReq`, `SQUdpControlHeader`, `SQPacketStreamHeader` and
  `SQPacketDatagramHeader`, with the same `encode()` / `decode()` interface.
- `sqproxy.core` – `TcpSession`, `UdpSession`, the abstract `Inbound`,
  `Outbound`, `UdpSend` and `UdpRecv`, the `Manager`, an in-process datagram
  channel (`udp_channel`, returning a `ChannelSend` and a `ChannelRecv`), and
  `relay`, which copies two streams both ways and returns the byte counts.
- `sqproxy.dualsock` – `DualSocket`, a non-blocking UDP socket that in
  dual-stack mode sends to IPv4 peers through an IPv6 socket by mapping their
  addresses, and `to_ipv4_mapped` for the reverse direction.
- `sqproxy.udpsocks` – `UdpSocksWrap`, a UDP socket speaking the SOCKS5 UDP
  relay framing. Fragmented datagrams are refused with `ProtocolUnimpl`.
- `sqproxy.direct` – `DirectOut`, an outbound that connects straight to the
  destination, plus `resolve`, `DnsResolve` (a cache that lets UDP replies be
  reported under the domain name they were sent to) and `handle_udp`.
- `sqproxy.socks_client` – `SocksClient`, an outbound that forwards through
  an upstream SOCKS5 server, with optional username/password login.
- `sqproxy.protect` – `protect_socket`, `protect_socket_with_retry` and
  `send_with_fd`, which pass a socket's file descriptor to a helper listening
  on a Unix socket and check its one-byte answer (`0xFF` means failure).

## Addresses

```python
from sqproxy.socks5 import SocksAddr

addr = SocksAddr.from_domain("example.com", 443)
print(addr)            # example.com:443
wire = addr.encode()   # address type, length-prefixed name, big-endian port

v4 = SocksAddr.from_sockaddr(("127.0.0.1", 53))
print(v4)              # 127.0.0.1:53
```

IPv6 addresses are printed in brackets, e.g. `[::1]:53`.
`to_socket_addrs()` returns `(ip, port)` pairs, looking domains up.

## Forwarding through an upstream SOCKS5 server

```python
from sqproxy.core import Manager
from sqproxy.socks_client import SocksClient

password = "password"
outbound = SocksClient("127.0.0.1:1080", username="user", password=password)

manager = Manager(inbound=my_inbound, outbound=outbound)
await manager.run()
```

`my_inbound` is your own `Inbound` implementation producing `TcpSession` and
`UdpSession` requests. `SocksClient.handle` starts each request as a
background task and returns at once; errors inside it are logged. For UDP the
association lasts until either direction fails or the session's control
stream ends or sends data.

`Manager.run` never returns: it calls the inbound's `init()` and then loops,
logging any `SError`, `OSError` or `EOFError` raised while accepting or
handling a single request and carrying on.

## Direct outbound

```python
from sqproxy.core import Manager
from sqproxy.direct import DirectOut

manager = Manager(inbound=my_inbound, outbound=DirectOut())
```

TCP requests are relayed to the resolved destination in 16 KiB chunks; UDP
associations use a `DualSocket` so IPv4 and IPv6 destinations can share one
socket.

## What this package does not do

- It contains no QUIC transport and no outbound or inbound that multiplexes
  requests over QUIC; `sqmsgs` provides only the message formats.
- It has no SOCKS5 inbound server; you supply the `Inbound` that produces
  requests.
- It has no command-line program and reads no configuration files.

## Running the tests

```
pip install .[test]
pytest
```