"""Routing tables read from netstat (macOS) and netsh (Windows) output."""

from __future__ import annotations

import ipaddress
import logging
import subprocess
import sys
from typing import Iterable, Optional, Sequence, Tuple, Union

from portprobe.routing import (
    IPAddress,
    LinuxRouter,
    NetworkInterface,
    Route,
    RouteType,
    RoutingError,
    find_interface_by_ip,
    find_route_for_ip,
    find_route_with_hw_and_ip,
    find_source_ip_for_ip,
    get_outbound_ips,
    list_interfaces,
)

logger = logging.getLogger(__name__)

_DEFAULT_PREFIXES = ("0.0.0.0/0", "::/0")

RouteAnswer = Tuple[Optional[NetworkInterface], Optional[IPAddress], Optional[IPAddress]]


def _parse_gateway(text: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(text.split("%", 1)[0])
    except ValueError:
        return None


def _is_numeric(text: str) -> bool:
    return text.isascii() and text.isdigit()


def _route_type_of(destination: str, gateway: str) -> Optional[RouteType]:
    if "." in destination or "." in gateway:
        return RouteType.IPV4
    if ":" in destination or ":" in gateway:
        return RouteType.IPV6
    return None


def parse_netstat_routes(
    output: str, interfaces: Optional[Iterable[NetworkInterface]] = None
) -> list[Route]:
    """Parse the output of ``netstat -nr``.

    A line whose family cannot be told from its addresses takes the family
    of the line before it; if there is none, RoutingError is raised.
    """
    if interfaces is None:
        interfaces = list_interfaces()
    by_name = {interface.name: interface for interface in interfaces}
    routes: list[Route] = []
    last_type: Optional[RouteType] = None
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) < 4 or "Destination" in parts:
            continue
        destination, gateway, flags, netif = parts[:4]
        expire = parts[4] if len(parts) > 4 else "-1"
        route_type = _route_type_of(destination, gateway)
        if route_type is None:
            if last_type is None:
                raise RoutingError(f"could not determine route type for: '{line}'")
            logger.debug("using '%s' for unknown route type: '%s'", last_type, line)
            route_type = last_type
        last_type = route_type
        routes.append(
            Route(
                type=route_type,
                default=destination.casefold() == "default",
                network_interface=by_name.get(netif),
                destination=destination,
                gateway=gateway,
                flags=flags,
                expire=expire,
            )
        )
    return routes


def parse_netsh_routes(
    output: str,
    route_type: RouteType,
    interfaces: Optional[Iterable[NetworkInterface]] = None,
) -> list[Route]:
    """Parse the output of ``netsh interface <ipv4|ipv6> show route``."""
    if interfaces is None:
        interfaces = list_interfaces()
    by_index = {interface.index: interface for interface in interfaces}
    routes: list[Route] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) < 6 or not _is_numeric(parts[4]):
            continue
        prefix = parts[3]
        if "/" not in prefix:
            raise RoutingError(f"invalid CIDR address: {prefix}")
        try:
            ipaddress.ip_network(prefix, strict=False)
        except ValueError as exc:
            raise RoutingError(f"invalid CIDR address: {prefix}") from exc
        index = int(parts[4])
        interface = by_index.get(index)
        if interface is None:
            raise RoutingError(f"no network interface with index {index}")
        routes.append(
            Route(
                type=route_type,
                default=prefix.casefold() in _DEFAULT_PREFIXES,
                destination=prefix,
                gateway=parts[5],
                network_interface=interface,
            )
        )
    return routes


class TableRouter:
    """Routes packets using a routing table read from a system tool."""

    def __init__(self, routes: Sequence[Route]) -> None:
        self.routes = list(routes)

    def route(self, dst: Union[str, IPAddress]) -> RouteAnswer:
        """Interface, gateway and preferred source ip for a destination."""
        try:
            route = find_route_for_ip(dst, self.routes)
        except RoutingError as exc:
            raise RoutingError(f"could not find route: {exc}") from exc
        if route.default_source_ip is not None:
            return None, None, route.default_source_ip
        if route.network_interface is None:
            raise RoutingError("could not find network interface")
        try:
            source = find_source_ip_for_ip(route, dst)
        except RoutingError as exc:
            raise RoutingError(f"could not find source ip: {exc}") from exc
        return route.network_interface, _parse_gateway(route.gateway), source

    def route_with_src(
        self,
        input_hw: Union[str, bytes, None],
        src: Union[str, IPAddress, None],
        dst: Union[str, IPAddress],
    ) -> RouteAnswer:
        """Route by the input hardware address and source ip."""
        route = find_route_with_hw_and_ip(input_hw, src, self.routes)
        source = None if src is None else ipaddress.ip_address(str(src))
        return route.network_interface, _parse_gateway(route.gateway), source


def _run(args: list[str]) -> str:
    completed = subprocess.run(args, capture_output=True, text=True, check=True)
    return completed.stdout


def _outbound_router() -> TableRouter:
    ip4, ip6 = get_outbound_ips()
    interface4 = find_interface_by_ip(ip4)
    routes = [
        Route(
            type=RouteType.IPV4,
            default=True,
            default_source_ip=ip4,
            network_interface=interface4,
        )
    ]
    if ip6 is not None:
        try:
            interface6: Optional[NetworkInterface] = find_interface_by_ip(ip6)
        except RoutingError:
            interface6 = None
        routes.append(
            Route(
                type=RouteType.IPV6,
                default=True,
                default_source_ip=ip6,
                network_interface=interface6,
            )
        )
    else:
        # without an ipv6 source, reuse the ipv4 interface
        routes.append(
            Route(type=RouteType.IPV6, default=True, network_interface=interface4)
        )
    return TableRouter(routes)


def _darwin_router() -> TableRouter:
    try:
        output = _run(["netstat", "-nr"])
    except (OSError, subprocess.CalledProcessError):
        return _outbound_router()
    return TableRouter(parse_netstat_routes(output))


def _windows_router() -> TableRouter:
    interfaces = list_interfaces()
    routes: list[Route] = []
    for route_type in (RouteType.IPV4, RouteType.IPV6):
        try:
            output = _run(["netsh", "interface", str(route_type), "show", "route"])
        except (OSError, subprocess.CalledProcessError) as exc:
            raise RoutingError(f"could not read routing table: {exc}") from exc
        routes.extend(parse_netsh_routes(output, route_type, interfaces))
    return TableRouter(routes)


def new_router() -> Union[TableRouter, LinuxRouter]:
    """The routing engine for the running platform."""
    if sys.platform.startswith("win"):
        return _windows_router()
    if sys.platform == "darwin":
        return _darwin_router()
    return LinuxRouter()