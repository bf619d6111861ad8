"""Host network configuration (networks.yaml): model, defaults and loading."""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
import shutil
from dataclasses import dataclass, field
from os import PathLike, path as ospath
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

log = logging.getLogger(__name__)

MODE_USER_V2 = "user-v2"
MODE_HOST = "host"
MODE_SHARED = "shared"
MODE_BRIDGED = "bridged"

SLIRP_NIC_NAME = "eth0"
# Hardcoded on purpose: every QEMU instance has its own independent slirp network.
SLIRP_NETWORK = "192.168.5.0/24"
SLIRP_GATEWAY = "192.168.5.2"
SLIRP_IP_ADDRESS = "192.168.5.15"

NETWORKS_CONFIG_FILENAME = "networks.yaml"

SOCKET_VMNET_CANDIDATES = (
    "/opt/socket_vmnet/bin/socket_vmnet",
    "socket_vmnet",
    "/usr/local/opt/socket_vmnet/bin/socket_vmnet",
    "/opt/homebrew/opt/socket_vmnet/bin/socket_vmnet",
)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class NetworksConfigError(ValueError):
    """The networks configuration could not be parsed."""


class NetworkNotDefinedError(LookupError):
    """A network name is not present in the configuration."""

    def __init__(self, name: str) -> None:
        super().__init__(f'network "{name}" is not defined')
        self.name = name


def _parse_ip(value: Any, where: str) -> Optional[IPAddress]:
    if value is None or value == "":
        return None
    try:
        return ipaddress.ip_address(str(value))
    except ValueError as exc:
        raise NetworksConfigError(f"{where}: invalid IP address {value!r}") from exc


def _check_mapping(data: Any, allowed: set, where: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise NetworksConfigError(f"{where}: expected a mapping, got {type(data).__name__}")
    unknown = sorted(str(k) for k in data if k not in allowed)
    if unknown:
        raise NetworksConfigError(f"{where}: unknown field(s) {', '.join(unknown)}")
    return data


def _str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise NetworksConfigError(f"{where}: expected a string, got {value!r}")
    return value


@dataclass(frozen=True)
class Paths:
    """Locations of the network daemons and their runtime directory."""

    socket_vmnet: str = ""
    vde_switch: str = ""
    vde_vmnet: str = ""
    var_run: str = ""
    sudoers: str = ""

    _KEYS = {
        "socketVMNet": "socket_vmnet",
        "vdeSwitch": "vde_switch",
        "vdeVMNet": "vde_vmnet",
        "varRun": "var_run",
        "sudoers": "sudoers",
    }

    @classmethod
    def from_dict(cls, data: Any) -> "Paths":
        data = _check_mapping(data, set(cls._KEYS), "paths")
        return cls(**{attr: _str(data.get(key), f"paths.{key}") for key, attr in cls._KEYS.items()})

    def to_dict(self) -> dict:
        out = {key: getattr(self, attr) for key, attr in self._KEYS.items()}
        if not out["sudoers"]:
            del out["sudoers"]
        return out


@dataclass(frozen=True)
class Network:
    """One named network definition."""

    mode: str = ""
    interface: str = ""
    gateway: Optional[IPAddress] = None
    dhcp_end: Optional[IPAddress] = None
    netmask: Optional[IPAddress] = None

    @classmethod
    def from_dict(cls, data: Any, where: str = "network") -> "Network":
        data = _check_mapping(data, {"mode", "interface", "gateway", "dhcpEnd", "netmask"}, where)
        return cls(
            mode=_str(data.get("mode"), f"{where}.mode"),
            interface=_str(data.get("interface"), f"{where}.interface"),
            gateway=_parse_ip(data.get("gateway"), f"{where}.gateway"),
            dhcp_end=_parse_ip(data.get("dhcpEnd"), f"{where}.dhcpEnd"),
            netmask=_parse_ip(data.get("netmask"), f"{where}.netmask"),
        )

    def to_dict(self) -> dict:
        out: dict = {"mode": self.mode}
        if self.interface:
            out["interface"] = self.interface
        for key, value in (("gateway", self.gateway), ("dhcpEnd", self.dhcp_end), ("netmask", self.netmask)):
            if value is not None:
                out[key] = str(value)
        return out


@dataclass
class NetworksConfig:
    """The whole networks.yaml document."""

    paths: Paths = field(default_factory=Paths)
    group: str = ""
    networks: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "NetworksConfig":
        data = _check_mapping(data, {"paths", "group", "networks"}, "networks.yaml")
        raw_networks = data.get("networks") or {}
        if not isinstance(raw_networks, Mapping):
            raise NetworksConfigError("networks: expected a mapping")
        return cls(
            paths=Paths.from_dict(data.get("paths")),
            group=_str(data.get("group"), "group"),
            networks={
                str(name): Network.from_dict(body, f"networks.{name}")
                for name, body in raw_networks.items()
            },
        )

    def to_dict(self) -> dict:
        out: dict = {"paths": self.paths.to_dict()}
        if self.group:
            out["group"] = self.group
        out["networks"] = {name: nw.to_dict() for name, nw in self.networks.items()}
        return out

    def check(self, name: str) -> None:
        """Raise NetworkNotDefinedError unless ``name`` is defined."""
        if name not in self.networks:
            raise NetworkNotDefinedError(name)

    def is_usernet(self, name: str) -> bool:
        """Whether the named network uses the user-v2 mode."""
        try:
            return self.networks[name].mode == MODE_USER_V2
        except KeyError:
            raise NetworkNotDefinedError(name) from None


def _find_socket_vmnet() -> str:
    for candidate in SOCKET_VMNET_CANDIDATES:
        found = shutil.which(candidate)
        if found:
            return ospath.realpath(found)
        log.debug("Failed to look up socket_vmnet path %r", candidate)
    return SOCKET_VMNET_CANDIDATES[0]


def _default_config_data(socket_vmnet: str) -> dict:
    return {
        "paths": {
            "socketVMNet": socket_vmnet,
            "vdeSwitch": "/opt/vde/bin/vde_switch",
            "vdeVMNet": "/opt/vde/bin/vde_vmnet",
            "varRun": "/private/var/run/lima",
            "sudoers": "/etc/sudoers.d/lima",
        },
        "group": "everyone",
        "networks": {
            MODE_USER_V2: {
                "mode": MODE_USER_V2,
                "gateway": "192.168.104.1",
                "netmask": "255.255.255.0",
            },
            MODE_SHARED: {
                "mode": MODE_SHARED,
                "gateway": "192.168.105.1",
                "dhcpEnd": "192.168.105.254",
                "netmask": "255.255.255.0",
            },
            MODE_BRIDGED: {
                "mode": MODE_BRIDGED,
                "interface": "en0",
            },
            MODE_HOST: {
                "mode": MODE_HOST,
                "gateway": "192.168.106.1",
                "dhcpEnd": "192.168.106.254",
                "netmask": "255.255.255.0",
            },
        },
    }


def default_config() -> NetworksConfig:
    """Return the built-in default configuration."""
    return NetworksConfig.from_dict(_default_config_data(_find_socket_vmnet()))


def fill_defaults(config: NetworksConfig) -> NetworksConfig:
    """Return a copy of ``config`` with the default user-v2 network added if needed."""
    networks = dict(config.networks)
    usernet_found = any(
        nw.mode == MODE_USER_V2 and nw.gateway is not None for nw in networks.values()
    )
    if not usernet_found:
        networks[MODE_USER_V2] = default_config().networks[MODE_USER_V2]
    return dataclasses.replace(config, networks=networks)


def config_file(config_dir: Union[str, PathLike]) -> Path:
    """Path of networks.yaml inside the given configuration directory."""
    return Path(config_dir) / NETWORKS_CONFIG_FILENAME


def load_config(path: Union[str, PathLike]) -> NetworksConfig:
    """Load networks.yaml, creating it from the defaults when missing."""
    path = Path(path)
    if not path.exists():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OSError(f'could not create "{path.parent}" directory: {exc}') from exc
        path.write_text(yaml.safe_dump(default_config().to_dict(), sort_keys=False))
    text = path.read_text()
    try:
        config = NetworksConfig.from_dict(yaml.safe_load(text))
    except (yaml.YAMLError, NetworksConfigError) as exc:
        raise NetworksConfigError(f'cannot parse "{path}": {exc}') from exc
    return fill_defaults(config)