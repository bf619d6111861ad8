"""Turn a host-name map into DNS zones for the user-mode network."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass
class Record:
    """A DNS record inside a zone."""

    name: str
    ip: Optional[IPAddress] = None


@dataclass
class Zone:
    """A DNS zone with an optional default address and its records."""

    name: str
    default_ip: Optional[IPAddress] = None
    records: List[Record] = field(default_factory=list)


def zone_name(host: str) -> str:
    """Zone a host belongs to: the part after the last dot, dot-terminated."""
    i = host.rfind(".")
    if i < 0:
        return host
    return host[i + 1:] + "."


def record_name(host: str) -> str:
    """Record name of a host: everything before the last dot."""
    i = host.rfind(".")
    if i < 0:
        return ""
    return host[:i]


def host_ip(hosts: Mapping[str, str], host: str) -> Optional[IPAddress]:
    """Resolve ``host`` through ``hosts``, following name aliases to an address."""
    seen = set()
    while True:
        target = hosts.get(host)
        if not target:
            return None
        try:
            return ipaddress.ip_address(target)
        except ValueError:
            pass
        seen.add(host)
        if target in seen:
            return None
        host = target


def extract_zones(hosts: Mapping[str, str]) -> List[Zone]:
    """Group the hosts into zones keyed by their last label."""
    zones: dict = {}
    for host in hosts:
        name = zone_name(host)
        zone = zones.setdefault(name, Zone(name=name))
        rec = record_name(host)
        if rec == "":
            if zone.default_ip is None:
                zone.default_ip = host_ip(hosts, host)
        else:
            zone.records.append(Record(name=rec, ip=host_ip(hosts, host)))
    return list(zones.values())