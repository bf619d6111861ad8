"""Paths and addresses of the user-mode (user-v2) network."""

from __future__ import annotations

import ipaddress
import logging
import os
import sys
from typing import List, Union

from .netconfig import NetworksConfig

log = logging.getLogger(__name__)

FD_SOCK = "fd"
QEMU_SOCK = "qemu"
ENDPOINT_SOCK = "ep"

UNIX_PATH_MAX = 104 if sys.platform == "darwin" else 108

IPv4 = ipaddress.IPv4Address


def _check_length(kind: str, p: str) -> str:
    if len(p) >= UNIX_PATH_MAX:
        raise ValueError(
            f'usernet {kind} path "{p}" too long: must be less than '
            f"UNIX_PATH_MAX={UNIX_PATH_MAX} characters, but is {len(p)}"
        )
    return p


def sock_with_directory(directory: Union[str, os.PathLike], name: str, sock_type: str) -> str:
    """Socket path of type ``sock_type`` for network ``name`` inside ``directory``."""
    if name == "":
        name = "default"
    p = os.path.join(os.fspath(directory), f"{name}_{sock_type}.sock")
    return _check_length("socket", p)


def sock(networks_dir: Union[str, os.PathLike], name: str, sock_type: str) -> str:
    """Socket path of type ``sock_type`` for network ``name``."""
    return sock_with_directory(os.path.join(os.fspath(networks_dir), name), name, sock_type)


def pid_file(networks_dir: Union[str, os.PathLike], name: str) -> str:
    """PID file path of the usernet daemon for network ``name``."""
    return os.path.join(os.fspath(networks_dir), name, f"usernet_{name}.pid")


def leases_file(networks_dir: Union[str, os.PathLike], name: str) -> str:
    """DHCP leases file path for network ``name``."""
    p = os.path.join(os.fspath(networks_dir), name, "leases.json")
    return _check_length("leases", p)


def _prefix_length(netmask) -> int:
    if netmask is None or not isinstance(netmask, ipaddress.IPv4Address):
        return 0
    try:
        return ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen
    except ValueError:
        return 0


def subnet_cidr(config: NetworksConfig, name: str) -> ipaddress.IPv4Network:
    """Subnet of network ``name`` derived from its gateway and netmask."""
    config.check(name)
    nw = config.networks[name]
    if nw.gateway is None:
        raise ValueError(f'network "{name}" has no gateway: invalid CIDR address')
    return ipaddress.ip_network(f"{nw.gateway}/{_prefix_length(nw.netmask)}", strict=False)


def subnet(config: NetworksConfig, name: str):
    """Network address of the subnet of network ``name``."""
    return subnet_cidr(config, name).network_address


def _addr(value) -> ipaddress.IPv4Address:
    return ipaddress.ip_address(str(value))


def gateway_ip(subnet) -> str:
    """The second address of the subnet."""
    return str(_addr(subnet) + 2)


def dns_ip(subnet) -> str:
    """The third address of the subnet."""
    return str(_addr(subnet) + 3)


def resolve_search_domain(file: Union[str, os.PathLike]) -> List[str]:
    """Search domains from the first ``search`` line of a resolv.conf file."""
    prefix = "search "
    try:
        with open(file, encoding="utf-8", errors="replace") as fh:
            for line in fh:
                line = line.rstrip("\n").removesuffix("\r")
                if line.startswith(prefix):
                    domains = line[len(prefix):].split(" ")
                    log.debug("Using search domains: %s", domains)
                    return domains
    except OSError as exc:
        log.error("open file error: %s", exc)
    return []


def search_domains() -> List[str]:
    """Search domains of the host, empty on Windows."""
    if sys.platform.startswith("win"):
        return []
    return resolve_search_domain("/etc/resolv.conf")