from ipaddress import ip_address, ip_interface, ip_network

import psutil
import pytest

from portprobe.routing import (
    LinuxRouter,
    NetworkInterface,
    Route,
    RouteInfo,
    RouteType,
    RoutingError,
    find_interface_by_ip,
    find_route_for_ip,
    find_route_with_hw_and_ip,
    find_source_ip_for_ip,
    list_interfaces,
    parse_proc_routes,
)

MAC = bytes.fromhex("020000000001")
OTHER_MAC = bytes.fromhex("020000000002")

ETH0 = NetworkInterface(
    name="eth0",
    index=2,
    hardware_addr=MAC,
    addresses=(
        ip_interface("10.0.0.5/24"),
        ip_interface("fe80::1/64"),
        ip_interface("2001:db8::5/64"),
    ),
)
ETH1 = NetworkInterface(
    name="eth1",
    index=3,
    hardware_addr=OTHER_MAC,
    addresses=(ip_interface("192.0.2.10/24"),),
)
LINK_LOCAL_ONLY = NetworkInterface(
    name="tun0", addresses=(ip_interface("fe80::9/64"),)
)


def test_route_type_string_is_lower_case():
    assert str(RouteType.IPV4) == "ipv4"
    assert str(RouteType.IPV6) == RouteType.IPV6.value.lower()


def test_find_route_exact_ip_and_cidr():
    exact = Route(destination="192.0.2.7", network_interface=ETH1)
    cidr = Route(destination="192.0.2.0/24", network_interface=ETH1)
    routes = [exact, cidr]
    assert find_route_for_ip("192.0.2.7", routes) is exact
    assert find_route_for_ip("192.0.2.8", routes) is cidr


def test_find_route_ipv4_mapped_matches_ipv4_route():
    exact = Route(destination="192.0.2.7", network_interface=ETH1)
    assert find_route_for_ip("::ffff:192.0.2.7", [exact]) is exact


def test_find_route_falls_back_to_first_default_of_family():
    default4 = Route(type=RouteType.IPV4, default=True, destination="default")
    second4 = Route(type=RouteType.IPV4, default=True, destination="default")
    default6 = Route(type=RouteType.IPV6, default=True, destination="default")
    routes = [default4, second4, default6]
    assert find_route_for_ip("198.51.100.1", routes) is default4
    assert find_route_for_ip("2001:db8::9", routes) is default6


def test_find_route_without_match_raises():
    routes = [Route(destination="192.0.2.0/24")]
    with pytest.raises(RoutingError, match="route not found"):
        find_route_for_ip("198.51.100.1", routes)


def test_find_source_ip_matches_family_and_skips_link_local():
    route = Route(network_interface=ETH0)
    assert find_source_ip_for_ip(route, "198.51.100.1") == ETH0.addresses[0].ip
    assert find_source_ip_for_ip(route, "2001:db8:1::1") == ETH0.addresses[2].ip


def test_find_source_ip_without_candidate_raises():
    route = Route(type=RouteType.IPV6, network_interface=LINK_LOCAL_ONLY)
    with pytest.raises(RoutingError, match="tun0"):
        find_source_ip_for_ip(route, "2001:db8::1")


def test_find_route_with_hw_and_ip():
    first = Route(network_interface=ETH1)
    second = Route(network_interface=ETH0)
    routes = [first, second]
    assert find_route_with_hw_and_ip(MAC, None, routes) is second
    assert find_route_with_hw_and_ip(MAC, "10.0.0.5", routes) is second
    assert find_route_with_hw_and_ip("02:00:00:00:00:02", None, routes) is first


def test_find_route_with_hw_and_wrong_src_raises():
    routes = [Route(network_interface=ETH0)]
    with pytest.raises(RoutingError, match="route not found"):
        find_route_with_hw_and_ip(MAC, "10.0.0.6", routes)


def test_find_interface_by_ip():
    assert find_interface_by_ip("2001:db8::5", [ETH1, ETH0]) is ETH0
    assert find_interface_by_ip("192.0.2.10", [ETH1, ETH0]) is ETH1
    with pytest.raises(RoutingError, match="interface not found"):
        find_interface_by_ip("198.51.100.1", [ETH1, ETH0])


IPV4_TABLE = (
    "Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT\n"
    "eth0\t00000000\t0100000A\t0003\t0\t0\t600\t00000000\t0\t0\t0\n"
    "eth0\t0000000A\t00000000\t0001\t0\t0\t100\t00FFFFFF\t0\t0\t0\n"
)
IPV6_TABLE = (
    "20010db8000000000000000000000000 40 00000000000000000000000000000000 00 "
    "00000000000000000000000000000000 00000100 00000001 00000000 00000001 eth0\n"
    "00000000000000000000000000000000 00 00000000000000000000000000000000 00 "
    "20010db8000000000000000000000001 00000400 00000001 00000000 00000003 eth0\n"
    "00000000000000000000000000000000 00 00000000000000000000000000000000 00 "
    "00000000000000000000000000000000 ffffffff 00000001 00000000 00200200 lo\n"
)


def test_parse_proc_routes_ipv4():
    v4, _ = parse_proc_routes(IPV4_TABLE, "")
    assert [route.priority for route in v4] == sorted(route.priority for route in v4)
    assert v4[0].dst == ip_network("10.0.0.0/24")
    assert v4[1].dst is None
    assert v4[1].gateway in v4[0].dst
    assert {route.output_iface for route in v4} == {"eth0"}


def test_parse_proc_routes_ipv6_skips_reject_routes():
    _, v6 = parse_proc_routes("", IPV6_TABLE)
    assert [route.output_iface for route in v6] == ["eth0", "eth0"]
    assert v6[1].dst is None
    assert v6[1].gateway in v6[0].dst
    assert v6[0].gateway is None


def test_parse_proc_routes_rejects_garbage():
    with pytest.raises(RoutingError):
        parse_proc_routes("eth0 zz yy xx 0 0 1 00000000\n", "")


def _router():
    v4 = [
        RouteInfo(gateway=ip_address("10.0.0.1"), output_iface="eth0", priority=100),
        RouteInfo(dst=ip_network("10.0.0.0/24"), output_iface="eth0", priority=0),
    ]
    v6 = [RouteInfo(dst=ip_network("2001:db8::/64"), output_iface="eth0")]
    return LinuxRouter([ETH0, ETH1], v4, v6)


def test_linux_router_direct_route():
    iface, gateway, preferred = _router().route("10.0.0.9")
    assert iface is ETH0
    assert gateway is None
    assert preferred == ETH0.addresses[0].ip


def test_linux_router_default_gateway():
    gateway_ip = ip_address("10.0.0.1")
    iface, gateway, preferred = _router().route("203.0.113.5")
    assert iface is ETH0
    assert gateway == gateway_ip
    assert preferred == ETH0.addresses[0].ip


def test_linux_router_ipv6_uses_first_ipv6_address():
    iface, _, preferred = _router().route("2001:db8::77")
    assert iface is ETH0
    assert preferred == ETH0.addresses[1].ip


def test_linux_router_preferred_source_from_route():
    pref = ip_address("192.0.2.10")
    router = LinuxRouter(
        [ETH0, ETH1], [RouteInfo(output_iface="eth1", pref_src=pref)], []
    )
    iface, _, preferred = router.route("198.51.100.3")
    assert iface is ETH1
    assert preferred == pref


def test_linux_router_no_route_raises():
    router = LinuxRouter([ETH0], [RouteInfo(dst=ip_network("10.0.0.0/24"), output_iface="eth0")], [])
    with pytest.raises(RoutingError, match="no route found"):
        router.route("2001:db8::9")
    with pytest.raises(RoutingError, match="no route found"):
        router.route("198.51.100.1")


def test_linux_router_invalid_destination_raises():
    with pytest.raises(RoutingError, match="not valid"):
        _router().route("not-an-ip")


def test_linux_router_input_interface_and_source_filters():
    routes = [
        RouteInfo(dst=ip_network("198.51.100.0/24"), input_iface="eth1", output_iface="eth1"),
        RouteInfo(src=ip_network("10.0.0.0/24"), dst=ip_network("198.51.100.0/24"), output_iface="eth0", priority=1),
    ]
    router = LinuxRouter([ETH0, ETH1], routes, [])
    assert router.route_with_src(OTHER_MAC, None, "198.51.100.4")[0] is ETH1
    assert router.route_with_src(MAC, "10.0.0.5", "198.51.100.4")[0] is ETH0
    with pytest.raises(RoutingError):
        router.route_with_src(MAC, None, "198.51.100.4")


def test_list_interfaces_matches_system():
    interfaces = list_interfaces()
    assert {iface.name for iface in interfaces} == set(psutil.net_if_addrs())
    assert all(isinstance(iface.hardware_addr, bytes) for iface in interfaces)