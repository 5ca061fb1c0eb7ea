"""Routing lookups: which interface, gateway and source ip reach a target."""

from __future__ import annotations

import ipaddress
import socket
import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple, Union

import psutil

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]

PROC_IPV4_ROUTES = Path("/proc/net/route")
PROC_IPV6_ROUTES = Path("/proc/net/ipv6_route")

# Well known hosts used only to let the kernel pick an outbound address.
OUTBOUND_PROBE_IPV4 = "128.199.158.128"
OUTBOUND_PROBE_IPV6 = "2400:6180:0:d0::91:1001"

_RTF_UP = 0x0001
_RTF_REJECT = 0x0200


class RoutingError(Exception):
    """Raised when no route, interface or source address can be found."""


class RouteType(Enum):
    """Address family of a route."""

    IPV4 = "IPv4"
    IPV6 = "IPv6"

    def __str__(self) -> str:
        return self.value.lower()


@dataclass(frozen=True)
class NetworkInterface:
    """A local network interface with its hardware and ip addresses."""

    name: str
    index: int = 0
    hardware_addr: bytes = b""
    addresses: Tuple[IPInterface, ...] = ()
    mtu: int = 0
    is_up: bool = True


@dataclass
class Route:
    """An entry of a routing table read from a system tool."""

    type: RouteType = RouteType.IPV4
    default: bool = False
    network_interface: Optional[NetworkInterface] = None
    destination: str = ""
    gateway: str = ""
    flags: str = ""
    expire: str = ""
    default_source_ip: Optional[IPAddress] = None


@dataclass
class RouteInfo:
    """A kernel route; a missing src and dst marks the default gateway."""

    dst: Optional[IPNetwork] = None
    src: Optional[IPNetwork] = None
    gateway: Optional[IPAddress] = None
    pref_src: Optional[IPAddress] = None
    input_iface: str = ""
    output_iface: str = ""
    priority: int = 0


def _normalize(address: IPAddress) -> IPAddress:
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _parse_ip(value: Union[str, IPAddress]) -> IPAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return _normalize(value)
    return _normalize(ipaddress.ip_address(str(value).strip()))


def _try_ip(value: str) -> Optional[IPAddress]:
    try:
        return _parse_ip(value)
    except ValueError:
        return None


def _try_network(value: str) -> Optional[IPNetwork]:
    if "/" not in value:
        return None
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError:
        return None


def _parse_mac(value: Union[str, bytes, bytearray, None]) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value.replace(":", "").replace("-", "").replace(".", ""))


def _prefix_from_mask(mask: str) -> int:
    return bin(int(ipaddress.ip_address(mask))).count("1")


def _make_interface_address(address: str, netmask: Optional[str]) -> Optional[IPInterface]:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
        prefix = _prefix_from_mask(netmask) if netmask else ip.max_prefixlen
        return ipaddress.ip_interface(f"{ip}/{prefix}")
    except ValueError:
        return None


def _interface_index(name: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except (OSError, AttributeError):
        return 0


def list_interfaces() -> list[NetworkInterface]:
    """The network interfaces of this machine."""
    stats = psutil.net_if_stats()
    interfaces = []
    for name, entries in psutil.net_if_addrs().items():
        hardware = b""
        addresses = []
        for entry in entries:
            if entry.family == psutil.AF_LINK:
                try:
                    hardware = _parse_mac(entry.address)
                except ValueError:
                    hardware = b""
            elif entry.family in (socket.AF_INET, socket.AF_INET6):
                address = _make_interface_address(entry.address, entry.netmask)
                if address is not None:
                    addresses.append(address)
        stat = stats.get(name)
        interfaces.append(
            NetworkInterface(
                name=name,
                index=_interface_index(name),
                hardware_addr=hardware,
                addresses=tuple(addresses),
                mtu=stat.mtu if stat else 0,
                is_up=bool(stat.isup) if stat else False,
            )
        )
    return interfaces


def find_route_for_ip(ip: Union[str, IPAddress], routes: Iterable[Route]) -> Route:
    """The route whose destination is the ip or contains it, else the default."""
    target = _parse_ip(ip)
    default4: Optional[Route] = None
    default6: Optional[Route] = None
    for route in routes:
        if route.default and route.type is RouteType.IPV4 and default4 is None:
            default4 = route
        if route.default and route.type is RouteType.IPV6 and default6 is None:
            default6 = route
        destination_ip = _try_ip(route.destination)
        if destination_ip is not None and destination_ip == target:
            return route
        network = _try_network(route.destination)
        if network is not None and target in network:
            return route
    if target.version == 4 and default4 is not None:
        return default4
    if target.version == 6 and default6 is not None:
        return default6
    raise RoutingError(f"route not found for {target}")


def find_source_ip_for_ip(route: Route, ip: Union[str, IPAddress]) -> IPAddress:
    """An address of the route's interface in the same family as the ip."""
    target = _parse_ip(ip)
    interface = route.network_interface
    if interface is None:
        raise RoutingError(f'could not find source ip for target "{target}": no interface')
    for address in interface.addresses:
        candidate = _normalize(address.ip)
        if target.version == 4 and candidate.version == 4:
            return candidate
        # link local unicast addresses are not routable
        if target.version == 6 and candidate.version == 6 and not candidate.is_link_local:
            return candidate
    raise RoutingError(
        f'could not find source ip for target "{target}" with interface {interface.name}'
    )


def find_route_with_hw_and_ip(
    hardware_addr: Union[str, bytes, None],
    src: Union[str, IPAddress, None],
    routes: Iterable[Route],
) -> Route:
    """The first route on the interface with this hardware address (and src ip)."""
    wanted = _parse_mac(hardware_addr).lower()
    source = None if src is None else _parse_ip(src)
    for route in routes:
        interface = route.network_interface
        if interface is None or interface.hardware_addr.lower() != wanted:
            continue
        if source is None:
            return route
        if any(_normalize(address.ip) == source for address in interface.addresses):
            return route
    raise RoutingError("route not found")


def find_interface_by_ip(
    ip: Union[str, IPAddress],
    interfaces: Optional[Iterable[NetworkInterface]] = None,
) -> NetworkInterface:
    """The interface that holds the given address."""
    target = _parse_ip(ip)
    if interfaces is None:
        interfaces = list_interfaces()
    for interface in interfaces:
        for address in interface.addresses:
            candidate = _normalize(address.ip)
            if candidate == target and candidate.version == target.version:
                return interface
    raise RoutingError("interface not found")


def _source_ip_towards(target: str, family: socket.AddressFamily) -> IPAddress:
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.connect((target, 80))
        return _parse_ip(sock.getsockname()[0].split("%", 1)[0])


def get_outbound_ips() -> Tuple[IPAddress, Optional[IPAddress]]:
    """Default outbound ipv4 and ipv6 source addresses.

    Failing to find the ipv4 address is an error; a missing ipv6 route
    gives None for the second value.
    """
    try:
        source4 = _source_ip_towards(OUTBOUND_PROBE_IPV4, socket.AF_INET)
    except OSError as exc:
        raise RoutingError(f"couldn't determine ipv4 routing interface: {exc}") from exc
    try:
        source6: Optional[IPAddress] = _source_ip_towards(OUTBOUND_PROBE_IPV6, socket.AF_INET6)
    except OSError:
        source6 = None
    return source4, source6


def _hex_ipv4(text: str) -> ipaddress.IPv4Address:
    # The kernel prints the address as a host-order 32-bit word.
    return ipaddress.IPv4Address(struct.pack("=I", int(text, 16)))


def _hex_ipv6(text: str) -> ipaddress.IPv6Address:
    return ipaddress.IPv6Address(bytes.fromhex(text))


def _parse_ipv4_table(text: str) -> list[RouteInfo]:
    routes = []
    for line in text.splitlines():
        fields = line.split()
        if not fields or fields[0] == "Iface":
            continue
        try:
            name, dest_hex, gateway_hex, flags_hex = fields[:4]
            metric, mask_hex = fields[6], fields[7]
            flags = int(flags_hex, 16)
            if not flags & _RTF_UP or flags & _RTF_REJECT:
                continue
            destination = _hex_ipv4(dest_hex)
            prefix = bin(int(_hex_ipv4(mask_hex))).count("1")
            gateway = _hex_ipv4(gateway_hex)
            dst = (
                None
                if prefix == 0 and int(destination) == 0
                else ipaddress.ip_network(f"{destination}/{prefix}", strict=False)
            )
            priority = int(metric)
        except (ValueError, IndexError, struct.error) as exc:
            raise RoutingError(f"invalid route entry: {line!r}") from exc
        routes.append(
            RouteInfo(
                dst=dst,
                gateway=None if int(gateway) == 0 else gateway,
                output_iface=name,
                priority=priority,
            )
        )
    return routes


def _parse_ipv6_table(text: str) -> list[RouteInfo]:
    routes = []
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        try:
            dest_hex, dest_len, src_hex, src_len, hop_hex, metric = fields[:6]
            flags = int(fields[8], 16)
            name = fields[9]
            if not flags & _RTF_UP or flags & _RTF_REJECT:
                continue
            dst_prefix = int(dest_len, 16)
            src_prefix = int(src_len, 16)
            dst = (
                None
                if dst_prefix == 0
                else ipaddress.ip_network(f"{_hex_ipv6(dest_hex)}/{dst_prefix}", strict=False)
            )
            src = (
                None
                if src_prefix == 0
                else ipaddress.ip_network(f"{_hex_ipv6(src_hex)}/{src_prefix}", strict=False)
            )
            hop = _hex_ipv6(hop_hex)
            priority = int(metric, 16)
        except (ValueError, IndexError) as exc:
            raise RoutingError(f"invalid route entry: {line!r}") from exc
        routes.append(
            RouteInfo(
                dst=dst,
                src=src,
                gateway=None if int(hop) == 0 else hop,
                output_iface=name,
                priority=priority,
            )
        )
    return routes


def parse_proc_routes(
    ipv4_text: str, ipv6_text: str
) -> Tuple[list[RouteInfo], list[RouteInfo]]:
    """Parse the kernel route tables, each sorted by priority."""
    v4 = sorted(_parse_ipv4_table(ipv4_text), key=lambda route: route.priority)
    v6 = sorted(_parse_ipv6_table(ipv6_text), key=lambda route: route.priority)
    return v4, v6


def _read_system_routes() -> Tuple[list[RouteInfo], list[RouteInfo]]:
    try:
        ipv4_text = PROC_IPV4_ROUTES.read_text(encoding="ascii")
    except OSError as exc:
        raise RoutingError(f"could not read routing table: {exc}") from exc
    try:
        ipv6_text = PROC_IPV6_ROUTES.read_text(encoding="ascii")
    except OSError:
        ipv6_text = ""
    return parse_proc_routes(ipv4_text, ipv6_text)


def _preferred_addresses(
    interface: NetworkInterface,
) -> Tuple[Optional[IPAddress], Optional[IPAddress]]:
    v4: Optional[IPAddress] = None
    v6: Optional[IPAddress] = None
    for address in interface.addresses:
        candidate = _normalize(address.ip)
        # mapped v4 addresses are only ever used as v4 preferred addresses
        if candidate.version == 4:
            if v4 is None:
                v4 = candidate
        elif v6 is None:
            v6 = candidate
    return v4, v6


RouteAnswer = Tuple[Optional[NetworkInterface], Optional[IPAddress], Optional[IPAddress]]


class LinuxRouter:
    """Routes packets using the kernel routing table.

    Without arguments the interfaces and routes are read from the system.
    The table is not refreshed after construction.
    """

    def __init__(
        self,
        interfaces: Optional[Iterable[NetworkInterface]] = None,
        v4_routes: Optional[Sequence[RouteInfo]] = None,
        v6_routes: Optional[Sequence[RouteInfo]] = None,
    ) -> None:
        if interfaces is None:
            interfaces = list_interfaces()
        if v4_routes is None and v6_routes is None:
            v4_routes, v6_routes = _read_system_routes()
        self.interfaces = {interface.name: interface for interface in interfaces}
        self.v4 = sorted(v4_routes or (), key=lambda route: route.priority)
        self.v6 = sorted(v6_routes or (), key=lambda route: route.priority)
        self._addresses = {
            name: _preferred_addresses(interface)
            for name, interface in self.interfaces.items()
        }

    def __str__(self) -> str:
        lines = ["ROUTER", "--- V4 ---"]
        lines.extend(repr(route) for route in self.v4)
        lines.append("--- V6 ---")
        lines.extend(repr(route) for route in self.v6)
        return "\n".join(lines)

    def route(self, dst: Union[str, IPAddress]) -> RouteAnswer:
        """Interface, gateway and preferred source ip for a destination."""
        return self.route_with_src(None, None, dst)

    def route_with_src(
        self,
        input_hw: Union[str, bytes, None],
        src: Union[str, IPAddress, None],
        dst: Union[str, IPAddress],
    ) -> RouteAnswer:
        """Like route, also matching the input interface and source ip."""
        try:
            target = _parse_ip(dst)
            source = None if src is None else _parse_ip(src)
        except ValueError as exc:
            raise RoutingError("IP is not valid as IPv4 or IPv6") from exc
        routes = self.v4 if target.version == 4 else self.v6
        name, gateway, preferred = self._route(routes, input_hw, source, target)
        interface = self.interfaces.get(name)
        if preferred is None:
            v4, v6 = self._addresses.get(name, (None, None))
            preferred = v4 if target.version == 4 else v6
        return interface, gateway, preferred

    def _input_name(self, input_hw: Union[str, bytes, None]) -> str:
        if input_hw is None:
            return ""
        wanted = _parse_mac(input_hw)
        return next(
            (name for name, iface in self.interfaces.items() if iface.hardware_addr == wanted),
            "",
        )

    def _route(
        self,
        routes: Sequence[RouteInfo],
        input_hw: Union[str, bytes, None],
        src: Optional[IPAddress],
        dst: IPAddress,
    ) -> Tuple[str, Optional[IPAddress], Optional[IPAddress]]:
        input_name = self._input_name(input_hw)
        default: Optional[RouteInfo] = None
        for route in routes:
            if route.input_iface and route.input_iface != input_name:
                continue
            if route.src is None and route.dst is None:
                default = route
                continue
            if route.src is not None and (src is None or src not in route.src):
                continue
            if route.dst is not None and dst not in route.dst:
                continue
            return route.output_iface, route.gateway, route.pref_src
        if default is not None:
            return default.output_iface, default.gateway, default.pref_src
        raise RoutingError(f"no route found for {dst}")