"""ICMP message building and probes: echo, timestamp, address mask and NDP."""

from __future__ import annotations

import ipaddress
import logging
import os
import socket
import struct
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional, Protocol, Union

from portprobe.routing import RoutingError

logger = logging.getLogger(__name__)

MAX_RETRIES = 10
RETRY_DELAY_SEC = 0.010
READ_SIZE = 1500

MARSHALLED_TIMESTAMP_LEN = 16
MARSHALLED_ADDRESS_MASK_LEN = 8

_ORIGIN_TIMESTAMP = 4
_RECEIVE_TIMESTAMP = 8
_TRANSMIT_TIMESTAMP = 12


class IcmpType(IntEnum):
    """ICMP message types used by the probes."""

    ECHO_REPLY = 0
    ECHO = 8
    TIMESTAMP = 13
    TIMESTAMP_REPLY = 14
    ADDRESS_MASK_REQUEST = 17
    ECHO_REQUEST_V6 = 128
    ECHO_REPLY_V6 = 129

    @property
    def is_ipv6(self) -> bool:
        return self.value >= 128


class _Marshallable(Protocol):
    def marshal(self) -> bytes: ...


@dataclass
class Timestamp:
    """Body of an ICMP timestamp request or reply."""

    ident: int = 0
    seq: int = 0
    origin_timestamp: int = 0
    receive_timestamp: int = 0
    transmit_timestamp: int = 0

    def marshal(self) -> bytes:
        return struct.pack(
            "!HHIII",
            self.ident & 0xFFFF,
            self.seq & 0xFFFF,
            self.origin_timestamp & 0xFFFFFFFF,
            self.receive_timestamp & 0xFFFFFFFF,
            self.transmit_timestamp & 0xFFFFFFFF,
        )


def parse_timestamp(data: bytes) -> Timestamp:
    """Decode a 16-byte ICMP timestamp body."""
    if len(data) != MARSHALLED_TIMESTAMP_LEN:
        raise ValueError(
            f"timestamp body length {len(data)} not equal to {MARSHALLED_TIMESTAMP_LEN}"
        )
    ident, seq = struct.unpack_from("!HH", data, 0)
    (origin,) = struct.unpack_from("!I", data, _ORIGIN_TIMESTAMP)
    (receive,) = struct.unpack_from("!I", data, _RECEIVE_TIMESTAMP)
    (transmit,) = struct.unpack_from("!I", data, _TRANSMIT_TIMESTAMP)
    return Timestamp(ident, seq, origin, receive, transmit)


@dataclass
class AddressMask:
    """Body of an ICMP address mask request."""

    ident: int = 0
    seq: int = 0
    address_mask: int = 0

    def marshal(self) -> bytes:
        # the identifier and sequence high bytes are taken with a 4-bit shift
        return bytes(
            (
                (self.ident >> 4) & 0xFF,
                self.ident & 0xFF,
                (self.seq >> 4) & 0xFF,
                self.seq & 0xFF,
            )
        ) + struct.pack("!I", self.address_mask & 0xFFFFFFFF)


def echo_body(ident: int, seq: int, data: bytes = b"") -> bytes:
    """Body of an ICMP echo request: identifier, sequence and payload."""
    return struct.pack("!HH", ident & 0xFFFF, seq & 0xFFFF) + bytes(data)


def _checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def marshal_message(
    icmp_type: Union[IcmpType, int],
    code: int,
    body: Union[bytes, bytearray, _Marshallable],
) -> bytes:
    """Serialize an ICMP message.

    The checksum of ICMPv6 messages is left zero for the kernel to fill in.
    """
    kind = IcmpType(icmp_type)
    payload = bytes(body) if isinstance(body, (bytes, bytearray)) else body.marshal()
    message = struct.pack("!BBH", int(kind), code & 0xFF, 0) + payload
    if kind.is_ipv6:
        return message
    checksum = _checksum(message)
    return message[:2] + struct.pack("!H", checksum) + message[4:]


def send_with_retries(sock: Any, data: bytes, address: Any) -> bool:
    """Send a datagram, retrying with a short delay while the send fails."""
    for attempt in range(MAX_RETRIES):
        try:
            sock.sendto(data, address)
        except OSError as exc:
            logger.debug("send to %s failed (attempt %d): %s", address, attempt + 1, exc)
            # give the network interface time to flush its queue
            time.sleep(RETRY_DELAY_SEC)
            continue
        return True
    return False


def _valid_ipv4(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).version == 4
    except ValueError:
        return False


def _request_reply(ip: str, message: bytes, timeout: float) -> bool:
    if not _valid_ipv4(ip):
        return False
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
    except OSError:
        return False
    with sock:
        try:
            sock.sendto(message, (ip, 0))
            sock.settimeout(timeout)
            reply, source = sock.recvfrom(READ_SIZE)
        except OSError:
            return False
    # anything read back from the target means the host is alive
    return source[0] == ip and len(reply) > 0


def ping_icmp_echo_request(ip: str, timeout: float) -> bool:
    """Send one ICMP echo request and wait for any answer from the ip."""
    body = echo_body(os.getpid() & 0xFFFF, 0, b"")
    return _request_reply(ip, marshal_message(IcmpType.ECHO, 0, body), timeout)


def ping_icmp_timestamp_request(ip: str, timeout: float) -> bool:
    """Send one ICMP timestamp request and wait for any answer from the ip."""
    body = Timestamp(ident=os.getpid() & 0xFFFF)
    return _request_reply(ip, marshal_message(IcmpType.TIMESTAMP, 0, body), timeout)


def ping_ndp_request(sock: Any, ip: str, router: Any) -> bool:
    """Send an ICMPv6 echo request out of the interface routing to the ip."""
    try:
        interface, _, _ = router.route(ip)
    except (RoutingError, ValueError) as exc:
        logger.debug("%s", exc)
        return False
    if interface is None:
        logger.debug(
            "Could not send PingNdp Request packet to %s: no interface with outbound source found",
            ip,
        )
        return False
    scope_id: Optional[int] = interface.index
    if not scope_id:
        try:
            scope_id = socket.if_nametoindex(interface.name)
        except (OSError, AttributeError):
            scope_id = 0
    body = echo_body(os.getpid() & 0xFFFF, 1, b"")
    data = marshal_message(IcmpType.ECHO_REQUEST_V6, 0, body)
    return send_with_retries(sock, data, (ip, 0, 0, scope_id))