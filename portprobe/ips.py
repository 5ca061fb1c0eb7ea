"""Parsing of the ips and networks excluded from a scan."""

from __future__ import annotations

import ipaddress
from pathlib import Path


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _is_cidr(value: str) -> bool:
    address, sep, prefix = value.partition("/")
    if not sep or not prefix.isdigit() or not _is_ip(address):
        return False
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError:
        return False
    return True


def is_ip_or_cidr(value: str) -> bool:
    """Whether the value is a single ip address or a network in CIDR form."""
    return _is_ip(value) or _is_cidr(value)


def parse_excluded_ips(
    exclude_ips: str = "", exclude_ips_file: str | Path | None = None
) -> list[str]:
    """Excluded entries: the comma-separated list, then valid lines of the file."""
    excluded: list[str] = []
    if exclude_ips:
        excluded.extend(exclude_ips.split(","))
    if exclude_ips_file:
        with open(exclude_ips_file, encoding="utf-8") as lines:
            excluded.extend(
                entry
                for entry in (line.strip() for line in lines)
                if is_ip_or_cidr(entry)
            )
    return excluded