"""Thread-safe store of discovered hosts and open ports."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from portprobe.port import Port


@dataclass
class HostResult:
    """Ports found for one host."""

    host: str = ""
    ip: str = ""
    ports: list[Port] = field(default_factory=list)


class ScanResult:
    """Results of a scan: seen ips, their ports and skipped ips."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ip_ports: dict[str, dict[str, Port]] = {}
        self._ips: dict[str, None] = {}
        self._skipped: set[str] = set()

    def ips(self) -> Iterator[str]:
        """Iterate over a snapshot of every seen ip."""
        with self._lock:
            snapshot = list(self._ips)
        return iter(snapshot)

    def has_ips(self) -> bool:
        with self._lock:
            return bool(self._ips)

    def ips_ports(self) -> Iterator[HostResult]:
        """Iterate over the ips with ports, leaving out skipped ones."""
        with self._lock:
            snapshot = [
                HostResult(ip=ip, ports=list(ports.values()))
                for ip, ports in self._ip_ports.items()
                if ip not in self._skipped
            ]
        return iter(snapshot)

    def has_ips_ports(self) -> bool:
        with self._lock:
            return bool(self._ip_ports)

    def add_port(self, ip: str, port: Port) -> None:
        with self._lock:
            self._ip_ports.setdefault(ip, {})[str(port)] = port
            self._ips[ip] = None

    def set_ports(self, ip: str, ports: Iterable[Port]) -> None:
        with self._lock:
            known = self._ip_ports.setdefault(ip, {})
            for port in ports:
                known[str(port)] = port
            self._ips[ip] = None

    def ip_has_port(self, ip: str, port: Port) -> bool:
        with self._lock:
            ports = self._ip_ports.get(ip)
            return ports is not None and str(port) in ports

    def add_ip(self, ip: str) -> None:
        with self._lock:
            self._ips[ip] = None

    def has_ip(self, ip: str) -> bool:
        with self._lock:
            return ip in self._ips

    def is_empty(self) -> bool:
        return len(self) == 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._ips)

    def port_count(self, host: str) -> int:
        """Number of ports discovered for an ip."""
        with self._lock:
            return len(self._ip_ports.get(host, {}))

    def add_skipped(self, ip: str) -> None:
        with self._lock:
            self._skipped.add(ip)

    def has_skipped(self, ip: str) -> bool:
        with self._lock:
            return ip in self._skipped