# portprobe

A library of building blocks for a port scanner:

- **Result collection** (`portprobe.result`) that is safe to share between
  threads, and **writers** (`portprobe.output`) for plain text, JSON lines
  and CSV.
- **Routing lookup** (`portprobe.routing`, `portprobe.routetables`) that
  picks the outgoing interface, gateway and source address for a
  destination from the system routing table.
- **ICMP probes** (`portprobe.icmp`, `portprobe.ping`): echo, timestamp and
  address-mask messages, IPv6 echo requests for neighbour discovery, and
  a latency check that picks the fastest of several addresses.
- **Exclusion lists** (`portprobe.ips`), **resume checkpoints**
  (`portprobe.resume`) and a **privilege check** (`portprobe.privileges`).

## Ports and protocols

`Protocol` is an enum of `TCP`, `UDP` and `ARP`; `str(Protocol.TCP)` is
`"tcp"`. `Port` is a frozen dataclass of `port`, `protocol` (default TCP)
and `tls` (default false). Its string form, such as `"8080-0-false"`, is
the key used to deduplicate ports.

## Collecting results

```python
from portprobe.port import Port
from portprobe.protocol import Protocol
from portprobe.result import ScanResult

results = ScanResult()
results.add_port("127.0.0.1", Port(port=8080, protocol=Protocol.TCP))
results.set_ports("127.0.0.1", [
    Port(port=80, protocol=Protocol.TCP),
    Port(port=443, protocol=Protocol.TCP),
])

results.has_ip("127.0.0.1")        # True
results.port_count("127.0.0.1")    # 3
len(results)                       # 1
for host_result in results.ips_ports():
    print(host_result.ip, sorted(p.port for p in host_result.ports))
```

`add_ip` records a live host without ports, `ip_has_port` checks for a
port, and `ips()` iterates over every seen address. Addresses marked with
`add_skipped` are left out of `ips_ports()`.

## Writing output

```python
import sys

from portprobe.output import write_csv_output, write_host_output, write_json_output

ports = [Port(port=80), Port(port=8080)]

write_host_output("127.0.0.1", ports, False, "", sys.stdout)
# 127.0.0.1:80
# 127.0.0.1:8080

write_json_output("localhost", "127.0.0.1", ports, False, False, "", sys.stdout)
# {"host":"localhost","ip":"127.0.0.1","port":{"Port":80,"Protocol":0,"TLS":false},"timestamp":"..."}

write_csv_output("localhost", "127.0.0.1", ports, False, False, "", True, sys.stdout)
```

The host is written only when it differs from the IP. CDN fields are
written only when `output_cdn` is true. In CSV, fields that are empty
or false are left out of both the header and the rows. The `Result`
dataclass behind these has `to_json`, `csv_headers` and `csv_fields`.

## Excluding targets

```python
from portprobe.ips import is_ip_or_cidr, parse_excluded_ips

is_ip_or_cidr("10.0.0.0/8")   # True
is_ip_or_cidr("77")           # False

excluded = parse_excluded_ips("8.8.8.0/24,7.7.7.7", "exclude.txt")
```

Inline entries are taken as they are. Lines read from the file are kept
only if they are an IP address or a CIDR range.

## Routing

`portprobe.routing.list_interfaces()` returns `NetworkInterface` records
with name, index, hardware address, addresses, MTU and up state.
`find_route_for_ip` returns the route whose destination equals or
contains the address, or else the default route of its family.
`find_source_ip_for_ip`, `find_route_with_hw_and_ip` and
`find_interface_by_ip` cover the other lookups. Failures raise
`RoutingError`.

`LinuxRouter` reads `/proc/net/route` and `/proc/net/ipv6_route`, or takes
interfaces and `RouteInfo` lists that you pass in (see
`parse_proc_routes`). `portprobe.routetables.new_router()` returns the
router for the running platform. On macOS it parses `netstat -nr`; if that
fails it falls back to the outbound addresses from `get_outbound_ips()`.
On Windows it parses `netsh interface ipv4|ipv6 show route`. Elsewhere it
returns a `LinuxRouter`. Each router's `route(dst)` returns
`(interface, gateway, preferred_source)`.

## ICMP

`portprobe.icmp.marshal_message` serialises a message of any `IcmpType`
with a raw body or a `Timestamp` / `AddressMask` body. It fills in the
checksum for ICMPv4 messages. `parse_timestamp` decodes a 16-byte
timestamp body. `ping_icmp_echo_request` and
`ping_icmp_timestamp_request` send one probe over a raw socket and report
whether the target answered. `ping_ndp_request` sends an ICMPv6 echo out of
the interface a router chooses. `send_with_retries` retries a failed send
up to ten times.

`portprobe.ping.ping_hosts` pings a list of addresses once each.
`PingResult.fastest_host()` returns the active host with the lowest
latency, or raises `LookupError`. `whats_my_ip()` asks a public echo
service for the external address.

Raw ICMP sockets need root or `CAP_NET_RAW`. `is_privileged()` reports
whether the process has them; it is always false on Windows.

## Resuming

```python
from portprobe.resume import ResumeConfig

checkpoint = ResumeConfig(retry=1, seed=42, index=1000)
checkpoint.save()      # ~/.config/portprobe/resume.cfg
restored = ResumeConfig()
restored.load()
restored.cleanup()
```

Every method also takes an explicit path.

## What it does not do

portprobe does not scan. It has no connect or SYN scanner, no job queue,
no builder for raw TCP, UDP or ARP packets, no nmap integration and no
command-line program. It supplies the pieces such a tool is built from:
results, output, routing, ICMP probes, exclusions and checkpoints.