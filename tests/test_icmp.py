import pytest

from portprobe.icmp import (
    MAX_RETRIES,
    AddressMask,
    IcmpType,
    Timestamp,
    echo_body,
    marshal_message,
    parse_timestamp,
    ping_icmp_echo_request,
    ping_icmp_timestamp_request,
    ping_ndp_request,
    send_with_retries,
)
from portprobe.routing import NetworkInterface, RoutingError


class FakeSocket:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    def sendto(self, data, address):
        self.calls.append((data, address))
        if len(self.calls) <= self.failures:
            raise OSError("busy")
        return len(data)


class FakeRouter:
    def __init__(self, interface=None, error=None):
        self.interface = interface
        self.error = error

    def route(self, dst):
        if self.error is not None:
            raise self.error
        return self.interface, None, None


def test_timestamp_round_trip():
    ts = Timestamp(ident=0xBEEF, seq=7, origin_timestamp=1, receive_timestamp=2,
                   transmit_timestamp=0xFFFFFFFF)
    assert parse_timestamp(ts.marshal()) == ts


def test_timestamp_marshal_is_big_endian():
    ts = Timestamp(ident=0x0102, seq=0x0304, origin_timestamp=0x05060708)
    data = ts.marshal()
    assert len(data) == 16
    assert data[:8] == bytes([1, 2, 3, 4, 5, 6, 7, 8])


@pytest.mark.parametrize("size", [0, 15, 17])
def test_parse_timestamp_rejects_wrong_length(size):
    with pytest.raises(ValueError, match=f"timestamp body length {size} not equal to 16"):
        parse_timestamp(bytes(size))


def test_address_mask_marshal():
    data = AddressMask(ident=0, seq=5, address_mask=0xFFFFFF00).marshal()
    assert len(data) == 8
    assert data[3] == 5
    assert data[4:] == b"\xff\xff\xff\x00"


def test_echo_body_layout():
    assert echo_body(0x1234, 1, b"") == b"\x12\x34\x00\x01"
    assert echo_body(0x1234, 1, b"ab")[4:] == b"ab"


def test_echo_request_known_checksum():
    assert marshal_message(IcmpType.ECHO, 0, echo_body(0, 0)) == b"\x08\x00\xf7\xff\x00\x00\x00\x00"


def test_ipv6_checksum_left_zero():
    message = marshal_message(IcmpType.ECHO_REQUEST_V6, 0, echo_body(1, 1))
    assert message[0] == 128
    assert message[2:4] == b"\x00\x00"


def test_marshal_message_with_structured_bodies():
    ts_message = marshal_message(IcmpType.TIMESTAMP, 0, Timestamp(ident=3))
    assert len(ts_message) == 20
    assert ts_message[0] == 13
    assert parse_timestamp(ts_message[4:]).ident == 3
    mask_message = marshal_message(IcmpType.ADDRESS_MASK_REQUEST, 0, AddressMask())
    assert mask_message[0] == 17
    assert len(mask_message) == 12


def test_send_with_retries_gives_up():
    sock = FakeSocket(failures=100)
    assert send_with_retries(sock, b"x", ("127.0.0.1", 0)) is False
    assert len(sock.calls) == MAX_RETRIES


def test_send_with_retries_recovers():
    sock = FakeSocket(failures=2)
    assert send_with_retries(sock, b"x", ("127.0.0.1", 0)) is True
    assert len(sock.calls) == 3


def test_ping_invalid_ip_is_false():
    assert ping_icmp_echo_request("not-an-ip", 0.1) is False
    assert ping_icmp_timestamp_request("not-an-ip", 0.1) is False


def test_ndp_without_interface_sends_nothing():
    sock = FakeSocket()
    assert ping_ndp_request(sock, "ff02::1", FakeRouter()) is False
    assert sock.calls == []


def test_ndp_routing_error_sends_nothing():
    sock = FakeSocket()
    router = FakeRouter(error=RoutingError("no route"))
    assert ping_ndp_request(sock, "ff02::1", router) is False
    assert sock.calls == []


def test_ndp_sends_echo_on_interface_scope():
    sock = FakeSocket()
    router = FakeRouter(NetworkInterface(name="eth0", index=3))
    assert ping_ndp_request(sock, "ff02::1", router) is True
    data, address = sock.calls[0]
    assert address == ("ff02::1", 0, 0, 3)
    assert data[0] == IcmpType.ECHO_REQUEST_V6
    assert data[6:8] == b"\x00\x01"