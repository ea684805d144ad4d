"""Exceptions raised by the proxy."""

from __future__ import annotations


class SError(Exception):
    """Base class of every error the proxy reports."""

    default_message = "proxy error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class ProtocolViolation(SError):
    """The peer sent something the protocol does not allow."""

    default_message = "Protocol Violated"


class ProtocolUnimpl(SError):
    """The peer asked for a protocol feature that is not supported."""

    default_message = "Protocol Unimplemented"


class QuicError(SError):
    """An error raised by the QUIC transport, shown as the cause itself."""

    def __init__(self, cause: object) -> None:
        self.cause = cause
        super().__init__(str(cause))


class OutboundUnavailable(SError):
    """The outbound side has gone away."""

    default_message = "Outbound unavailable"


class InboundUnavailable(SError):
    """The inbound side has gone away."""

    default_message = "Inbound unavailable"


class DomainResolveFailed(SError):
    """A host name could not be resolved."""

    default_message = "hostname can't be resolved"


class _ReasonError(SError):
    template = "{}"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self.template.format(reason))


class ChannelError(_ReasonError):
    """An internal channel failed."""

    template = "mpsc channel error: {}"


class UDPSessionClosed(_ReasonError):
    """A UDP association ended."""

    template = "UDP session closed closed due to: {}"


class SocksError(_ReasonError):
    """A SOCKS5 upstream refused or misbehaved."""

    template = "socks error: {}"