"""Writing scan results as plain text, JSON lines or CSV."""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, TextIO

from portprobe.port import Port

_ZERO_TIME_JSON = "0001-01-01T00:00:00Z"


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _fraction(ts: datetime) -> str:
    if not ts.microsecond:
        return ""
    return f".{ts.microsecond:06d}".rstrip("0")


def _rfc3339(ts: datetime) -> str:
    ts = _utc(ts)
    return ts.strftime("%Y-%m-%dT%H:%M:%S") + _fraction(ts) + "Z"


def _plain_time(ts: datetime) -> str:
    ts = _utc(ts)
    return ts.strftime("%Y-%m-%d %H:%M:%S") + _fraction(ts) + " +0000 UTC"


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value is not False


def _format_field(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return _plain_time(value)
    return str(value)


@dataclass
class Result:
    """One port found on a host, as written to the output."""

    host: str = ""
    ip: str = ""
    port: Port | None = None
    is_cdn_ip: bool = False
    cdn_name: str = ""
    timestamp: datetime | None = None

    def _tagged(self) -> list[tuple[str, Any]]:
        return [
            ("host", self.host),
            ("ip", self.ip),
            ("port", self.port),
            ("cdn", self.is_cdn_ip),
            ("cdn-name", self.cdn_name),
            ("timestamp", self.timestamp),
        ]

    def to_json(self) -> str:
        """Compact JSON; empty host, ip and cdn fields are left out."""
        data: dict[str, Any] = {}
        if self.host:
            data["host"] = self.host
        if self.ip:
            data["ip"] = self.ip
        data["port"] = (
            None
            if self.port is None
            else {
                "Port": self.port.port,
                "Protocol": int(self.port.protocol),
                "TLS": self.port.tls,
            }
        )
        if self.is_cdn_ip:
            data["cdn"] = True
        if self.cdn_name:
            data["cdn-name"] = self.cdn_name
        data["timestamp"] = (
            _ZERO_TIME_JSON if self.timestamp is None else _rfc3339(self.timestamp)
        )
        return json.dumps(data, separators=(",", ":"))

    def csv_headers(self) -> list[str]:
        """Column names of the fields that are set."""
        return [tag for tag, value in self._tagged() if _is_set(value)]

    def csv_fields(self) -> list[str]:
        """Values of the fields that are set, in header order."""
        return [_format_field(value) for _, value in self._tagged() if _is_set(value)]


def write_host_output(
    host: str,
    ports: Iterable[Port] | None,
    output_cdn: bool,
    cdn_name: str,
    writer: TextIO,
) -> None:
    """Write one host:port line per port."""
    suffix = f" [{cdn_name}]" if output_cdn and cdn_name else ""
    for port in ports or ():
        writer.write(f"{host}:{port.port}{suffix}\n")


def write_json_output(
    host: str,
    ip: str,
    ports: Iterable[Port] | None,
    output_cdn: bool,
    is_cdn: bool,
    cdn_name: str,
    writer: TextIO,
) -> None:
    """Write one JSON line per port."""
    data = Result(ip=ip, timestamp=datetime.now(timezone.utc))
    if host != ip:
        data.host = host
    if output_cdn:
        data.is_cdn_ip = is_cdn
        data.cdn_name = cdn_name
    for port in ports or ():
        data.port = port
        writer.write(data.to_json() + "\n")


def write_csv_output(
    host: str,
    ip: str,
    ports: Iterable[Port] | None,
    output_cdn: bool,
    is_cdn: bool,
    cdn_name: str,
    header: bool,
    writer: TextIO,
) -> None:
    """Write CSV rows, one per port, optionally preceded by a header."""
    encoder = csv.writer(writer, lineterminator="\n")
    data = Result(ip=ip, timestamp=datetime.now(timezone.utc), port=Port(0))
    if host != ip:
        data.host = host
    if output_cdn:
        data.is_cdn_ip = is_cdn
        data.cdn_name = cdn_name
    if header:
        encoder.writerow(data.csv_headers())
    for port in ports or ():
        data.port = port
        encoder.writerow(data.csv_fields())