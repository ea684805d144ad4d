import pytest

from sqproxy.errors import (
    ChannelError,
    DomainResolveFailed,
    InboundUnavailable,
    OutboundUnavailable,
    ProtocolUnimpl,
    ProtocolViolation,
    QuicError,
    SError,
    SocksError,
    UDPSessionClosed,
)


@pytest.mark.parametrize(
    "cls, text",
    [
        (ProtocolViolation, "Protocol Violated"),
        (ProtocolUnimpl, "Protocol Unimplemented"),
        (OutboundUnavailable, "Outbound unavailable"),
        (InboundUnavailable, "Inbound unavailable"),
        (DomainResolveFailed, "hostname can't be resolved"),
    ],
)
def test_default_messages(cls, text):
    err = cls()
    assert str(err) == text
    assert isinstance(err, SError)


@pytest.mark.parametrize(
    "cls, prefix",
    [
        (ChannelError, "mpsc channel error: "),
        (UDPSessionClosed, "UDP session closed closed due to: "),
        (SocksError, "socks error: "),
    ],
)
def test_reason_messages(cls, prefix):
    err = cls("authenticate failed")
    assert str(err) == prefix + "authenticate failed"
    assert err.reason == "authenticate failed"


def test_quic_error_is_transparent():
    cause = ConnectionResetError("connection lost")
    err = QuicError(cause)
    assert str(err) == str(cause)
    assert err.cause is cause


def test_errors_caught_as_base_class():
    err = UDPSessionClosed("notify sender dropped")
    with pytest.raises(SError) as info:
        raise err
    assert info.value is err
    assert info.value.reason == "notify sender dropped"
    assert str(info.value) == "UDP session closed closed due to: notify sender dropped"


def test_custom_message_overrides_default():
    assert str(ProtocolViolation("bad header")) == "bad header"