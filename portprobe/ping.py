"""ICMP echo probes for choosing the fastest host, and external ip lookup."""

from __future__ import annotations

import os
import socket
import struct
import time
import urllib.request
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional

DEADLINE_SEC = 10
PROTOCOL_ICMP = 1
PROTOCOL_IPV6_ICMP = 58

IP_ECHO_URL = "https://api.ipify.org?format=text"
IP_ECHO_TIMEOUT = 30

_ICMP_ECHO_REPLY = 0
_ICMP_ECHO_REQUEST = 8
_READ_SIZE = 1500


class PingResultType(IntEnum):
    """Outcome of a ping on one address."""

    HOST_INACTIVE = 0
    HOST_ACTIVE = 1


@dataclass
class Ping:
    """Ping result for a single host; latency is in seconds."""

    type: PingResultType = PingResultType.HOST_INACTIVE
    latency: float = 0.0
    error: Optional[BaseException] = None
    host: str = ""


@dataclass
class PingResult:
    """Ping results for a list of hosts."""

    hosts: list[Ping] = field(default_factory=list)

    def fastest_host(self) -> Ping:
        """The active host with the lowest latency."""
        best = Ping()
        for host in self.hosts:
            if host.type is PingResultType.HOST_ACTIVE and (
                host.latency < best.latency or best.latency == 0
            ):
                best = Ping(
                    type=PingResultType.HOST_ACTIVE, latency=host.latency, host=host.host
                )
        if best.type is not PingResultType.HOST_ACTIVE:
            raise LookupError("no active host found for target")
        return best


def _checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def _echo_request(ident: int, sequence: int) -> bytes:
    fields = (_ICMP_ECHO_REQUEST, 0, 0, ident & 0xFFFF, sequence & 0xFFFF)
    checksum = _checksum(struct.pack("!BBHHH", *fields))
    return struct.pack("!BBHHH", _ICMP_ECHO_REQUEST, 0, checksum, *fields[3:])


def _icmp_payload(packet: bytes) -> bytes:
    # raw ipv4 sockets hand back the ip header in front of the message
    if len(packet) >= 20 and packet[0] >> 4 == 4:
        header_length = (packet[0] & 0x0F) * 4
        if header_length >= 20:
            return packet[header_length:]
    return packet


def _probe(sock: socket.socket, destination: str, host: str, ident: int, sequence: int) -> Ping:
    data = _echo_request(ident, sequence)
    try:
        start = time.perf_counter()
        sock.sendto(data, (destination, 0))
        sock.settimeout(DEADLINE_SEC)
        reply, _ = sock.recvfrom(_READ_SIZE)
    except OSError as exc:
        return Ping(error=exc, host=host)
    latency = time.perf_counter() - start
    message = _icmp_payload(reply)
    if len(message) < 4:
        return Ping(error=ValueError("truncated ICMP message"), host=host)
    if message[0] == _ICMP_ECHO_REPLY:
        return Ping(type=PingResultType.HOST_ACTIVE, latency=latency, host=host)
    return Ping(error=RuntimeError("no reply found for ping probe"), host=host)


def ping_hosts(addresses: Iterable[str]) -> PingResult:
    """Ping every address once; unreachable ones are marked inactive.

    Raises OSError when the raw ICMP socket cannot be opened.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
    results = PingResult()
    ident = os.getpid() & 0xFFFF
    sequence = 0
    try:
        for address in addresses:
            try:
                destination = socket.gethostbyname(address)
            except OSError as exc:
                results.hosts.append(Ping(error=exc, host=address))
                continue
            sequence += 1
            results.hosts.append(_probe(sock, destination, address, ident, sequence))
    finally:
        sock.close()
    return results


def whats_my_ip() -> str:
    """The external ip address as reported by a public echo service."""
    with urllib.request.urlopen(IP_ECHO_URL, timeout=IP_ECHO_TIMEOUT) as response:
        return response.read().decode()