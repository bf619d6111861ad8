"""Data model of an instance configuration (lima.yaml)."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

log = logging.getLogger(__name__)

LINUX = "Linux"

X8664 = "x86_64"
AARCH64 = "aarch64"
ARMV7L = "armv7l"
RISCV64 = "riscv64"
ARCHES = (X8664, AARCH64, ARMV7L, RISCV64)

REVSSHFS = "reverse-sshfs"
NINEP = "9p"
VIRTIOFS = "virtiofs"
WSL_MOUNT = "wsl2"

QEMU = "qemu"
VZ = "vz"
WSL2 = "wsl2"

SFTP_DRIVER_BUILTIN = "builtin"
SFTP_DRIVER_OPENSSH_SFTP_SERVER = "openssh-sftp-server"

PROVISION_MODE_SYSTEM = "system"
PROVISION_MODE_USER = "user"
PROVISION_MODE_BOOT = "boot"
PROVISION_MODE_DEPENDENCY = "dependency"

PROBE_MODE_READINESS = "readiness"

TCP = "tcp"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ModelError(ValueError):
    """A configuration document does not match the expected structure."""


def _type_error(where: str, expected: str, value: Any) -> ModelError:
    return ModelError(f"{where or 'document'}: expected {expected}, got {value!r}")


def _join(where: str, key: str) -> str:
    return f"{where}.{key}" if where else key


# ---- scalar parsers -------------------------------------------------------

def _str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise _type_error(where, "a string", value)
    return str(value)


def _opt_str(value: Any, where: str) -> Optional[str]:
    return None if value is None else _str(value, where)


def _bool(value: Any, where: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise _type_error(where, "a boolean", value)
    return value


def _opt_bool(value: Any, where: str) -> Optional[bool]:
    return None if value is None else _bool(value, where)


def _int(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise _type_error(where, "an integer", value)
    return value


def _opt_int(value: Any, where: str) -> Optional[int]:
    return None if value is None else _int(value, where)


def _uint16(value: Any, where: str) -> int:
    n = _int(value, where)
    if not 0 <= n <= 0xFFFF:
        raise _type_error(where, "an integer in 0..65535", value)
    return n


def _ip(value: Any, where: str) -> Optional[IPAddress]:
    if value is None or value == "":
        return None
    try:
        return ipaddress.ip_address(str(value))
    except ValueError as exc:
        raise _type_error(where, "an IP address", value) from exc


def _ip_list(value: Any, where: str) -> List[IPAddress]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _type_error(where, "a list", value)
    result = []
    for i, item in enumerate(value):
        ip = _ip(item, f"{where}[{i}]")
        if ip is None:
            raise _type_error(f"{where}[{i}]", "an IP address", item)
        result.append(ip)
    return result


def _str_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _type_error(where, "a list", value)
    return [_str(item, f"{where}[{i}]") for i, item in enumerate(value)]


def _str_map(value: Any, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise _type_error(where, "a mapping", value)
    return {str(k): _str(v, _join(where, str(k))) for k, v in value.items()}


def _port_range(value: Any, where: str) -> Tuple[int, int]:
    if value is None:
        return (0, 0)
    if not isinstance(value, list) or len(value) != 2:
        raise _type_error(where, "a list of two integers", value)
    return (_int(value[0], f"{where}[0]"), _int(value[1], f"{where}[1]"))


def _node(cls: type) -> Callable[[Any, str], Any]:
    return lambda value, where: cls._parse(value, where)


def _opt_node(cls: type) -> Callable[[Any, str], Any]:
    return lambda value, where: None if value is None else cls._parse(value, where)


def _node_list(cls: type) -> Callable[[Any, str], list]:
    def parse(value: Any, where: str) -> list:
        if value is None:
            return []
        if not isinstance(value, list):
            raise _type_error(where, "a list", value)
        return [cls._parse(item, f"{where}[{i}]") for i, item in enumerate(value)]

    return parse


# ---- dumpers --------------------------------------------------------------

def _same(value: Any) -> Any:
    return value


def _dump_ip(value: Any) -> str:
    return str(value)


def _dump_ip_list(value: list) -> list:
    return [str(ip) for ip in value]


def _dump_node(value: "_Node") -> dict:
    return value._dump()


def _dump_node_list(value: list) -> list:
    return [item._dump() for item in value]


def _dump_list(value: list) -> list:
    return list(value)


def _dump_map(value: dict) -> dict:
    return dict(value)


def _field(key: str, parse: Callable, dump: Callable = _same, *, omit: str = "empty",
           default: Any = None, factory: Optional[Callable[[], Any]] = None) -> Any:
    """Declare a document field.

    ``omit`` is "empty" (left out when zero-valued), "none" (left out when
    unset) or "never" (always written).
    """
    metadata = {"key": key, "parse": parse, "dump": dump, "omit": omit}
    if factory is not None:
        return field(default_factory=factory, metadata=metadata)
    return field(default=default, metadata=metadata)


def _is_empty(raw: Any, dumped: Any) -> bool:
    if raw is None or raw is False:
        return True
    if isinstance(raw, (str, list, dict)) and not raw:
        return True
    if isinstance(raw, int) and raw == 0:
        return True
    if isinstance(raw, tuple) and not any(raw):
        return True
    return isinstance(dumped, dict) and not dumped


class _Node:
    """Shared mapping conversion for the configuration dataclasses."""

    @classmethod
    def _parse(cls, data: Any, where: str):
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise _type_error(where, "a mapping", data)
        known = {f.metadata["key"]: f for f in fields(cls)}
        unknown = sorted(str(k) for k in data if k not in known)
        if unknown:
            log.warning("%s: unknown field(s) %s", where or "document", ", ".join(unknown))
        kwargs = {
            f.name: f.metadata["parse"](data[key], _join(where, key))
            for key, f in known.items()
            if key in data
        }
        return cls(**kwargs)

    def _dump(self) -> dict:
        out: dict = {}
        for f in fields(self):
            raw = getattr(self, f.name)
            omit = f.metadata["omit"]
            if omit == "none" and raw is None:
                continue
            dumped = None if raw is None else f.metadata["dump"](raw)
            if omit == "empty" and _is_empty(raw, dumped):
                continue
            out[f.metadata["key"]] = dumped
        return out

    @classmethod
    def from_dict(cls, data: Any):
        """Build an instance from a parsed YAML mapping."""
        return cls._parse(data, "")

    def to_dict(self) -> dict:
        """Convert to a mapping suitable for YAML output."""
        return self._dump()


@dataclass
class File(_Node):
    location: str = _field("location", _str, omit="never", default="")
    arch: str = _field("arch", _str, default="")
    digest: str = _field("digest", _str, default="")


@dataclass
class FileWithVMType(File):
    vm_type: str = _field("vmType", _str, default="")


@dataclass
class Kernel(File):
    cmdline: str = _field("cmdline", _str, default="")


@dataclass
class Image(File):
    kernel: Optional[Kernel] = _field("kernel", _opt_node(Kernel), _dump_node, omit="none")
    initrd: Optional[File] = _field("initrd", _opt_node(File), _dump_node, omit="none")


@dataclass
class Disk(_Node):
    name: str = _field("name", _str, omit="never", default="")
    format: Optional[bool] = _field("format", _opt_bool, omit="none")
    fs_type: Optional[str] = _field("fsType", _opt_str, omit="none")
    fs_args: List[str] = _field("fsArgs", _str_list, _dump_list, factory=list)

    @classmethod
    def _parse(cls, data: Any, where: str) -> "Disk":
        if isinstance(data, str):
            return cls(name=data)
        return super()._parse(data, where)


@dataclass
class SSHFS(_Node):
    cache: Optional[bool] = _field("cache", _opt_bool, omit="none")
    follow_symlinks: Optional[bool] = _field("followSymlinks", _opt_bool, omit="none")
    sftp_driver: Optional[str] = _field("sftpDriver", _opt_str, omit="none")


@dataclass
class NineP(_Node):
    security_model: Optional[str] = _field("securityModel", _opt_str, omit="none")
    protocol_version: Optional[str] = _field("protocolVersion", _opt_str, omit="none")
    msize: Optional[str] = _field("msize", _opt_str, omit="none")
    cache: Optional[str] = _field("cache", _opt_str, omit="none")


@dataclass
class Virtiofs(_Node):
    queue_size: Optional[int] = _field("queueSize", _opt_int, omit="none")


@dataclass
class Mount(_Node):
    location: str = _field("location", _str, omit="never", default="")
    mount_point: str = _field("mountPoint", _str, default="")
    writable: Optional[bool] = _field("writable", _opt_bool, omit="none")
    sshfs: SSHFS = _field("sshfs", _node(SSHFS), _dump_node, factory=SSHFS)
    nine_p: NineP = _field("9p", _node(NineP), _dump_node, factory=NineP)
    virtiofs: Virtiofs = _field("virtiofs", _node(Virtiofs), _dump_node, factory=Virtiofs)


@dataclass
class SSH(_Node):
    local_port: Optional[int] = _field("localPort", _opt_int, omit="none")
    load_dot_ssh_pub_keys: Optional[bool] = _field("loadDotSSHPubKeys", _opt_bool, omit="none")
    forward_agent: Optional[bool] = _field("forwardAgent", _opt_bool, omit="none")
    forward_x11: Optional[bool] = _field("forwardX11", _opt_bool, omit="none")
    forward_x11_trusted: Optional[bool] = _field("forwardX11Trusted", _opt_bool, omit="none")


@dataclass
class Firmware(_Node):
    legacy_bios: Optional[bool] = _field("legacyBIOS", _opt_bool, omit="none")
    images: List[FileWithVMType] = _field(
        "images", _node_list(FileWithVMType), _dump_node_list, factory=list
    )


@dataclass
class Audio(_Node):
    device: Optional[str] = _field("device", _opt_str, omit="none")


@dataclass
class VNCOptions(_Node):
    display: Optional[str] = _field("display", _opt_str, omit="none")


@dataclass
class Video(_Node):
    display: Optional[str] = _field("display", _opt_str, omit="none")
    vnc: VNCOptions = _field("vnc", _node(VNCOptions), _dump_node, omit="never", factory=VNCOptions)


@dataclass
class Provision(_Node):
    mode: str = _field("mode", _str, omit="never", default="")
    skip_default_dependency_resolution: Optional[bool] = _field(
        "skipDefaultDependencyResolution", _opt_bool, omit="none"
    )
    script: str = _field("script", _str, omit="never", default="")


@dataclass
class Containerd(_Node):
    system: Optional[bool] = _field("system", _opt_bool, omit="none")
    user: Optional[bool] = _field("user", _opt_bool, omit="none")
    archives: List[File] = _field("archives", _node_list(File), _dump_node_list, factory=list)


@dataclass
class Probe(_Node):
    mode: str = _field("mode", _str, omit="never", default="")
    description: str = _field("description", _str, omit="never", default="")
    script: str = _field("script", _str, omit="never", default="")
    hint: str = _field("hint", _str, omit="never", default="")


@dataclass
class PortForward(_Node):
    guest_ip_must_be_zero: bool = _field("guestIPMustBeZero", _bool, default=False)
    guest_ip: Optional[IPAddress] = _field("guestIP", _ip, _dump_ip, omit="none")
    guest_port: int = _field("guestPort", _int, default=0)
    guest_port_range: Tuple[int, int] = _field("guestPortRange", _port_range, _dump_list, default=(0, 0))
    guest_socket: str = _field("guestSocket", _str, default="")
    host_ip: Optional[IPAddress] = _field("hostIP", _ip, _dump_ip, omit="none")
    host_port: int = _field("hostPort", _int, default=0)
    host_port_range: Tuple[int, int] = _field("hostPortRange", _port_range, _dump_list, default=(0, 0))
    host_socket: str = _field("hostSocket", _str, default="")
    proto: str = _field("proto", _str, default="")
    reverse: bool = _field("reverse", _bool, default=False)
    ignore: bool = _field("ignore", _bool, default=False)


@dataclass
class CopyToHost(_Node):
    guest_file: str = _field("guest", _str, default="")
    host_file: str = _field("host", _str, default="")
    delete_on_stop: bool = _field("deleteOnStop", _bool, default=False)


@dataclass
class Network(_Node):
    lima: str = _field("lima", _str, default="")
    socket: str = _field("socket", _str, default="")
    vz_nat: Optional[bool] = _field("vzNAT", _opt_bool, omit="none")
    vnl_deprecated: str = _field("vnl", _str, default="")
    switch_port_deprecated: int = _field("switchPort", _uint16, default=0)
    mac_address: str = _field("macAddress", _str, default="")
    interface: str = _field("interface", _str, default="")


@dataclass
class HostResolver(_Node):
    enabled: Optional[bool] = _field("enabled", _opt_bool, omit="none")
    ipv6: Optional[bool] = _field("ipv6", _opt_bool, omit="none")
    hosts: Dict[str, str] = _field("hosts", _str_map, _dump_map, factory=dict)


@dataclass
class CACertificates(_Node):
    remove_defaults: Optional[bool] = _field("removeDefaults", _opt_bool, omit="none")
    files: List[str] = _field("files", _str_list, _dump_list, factory=list)
    certs: List[str] = _field("certs", _str_list, _dump_list, factory=list)


@dataclass
class Rosetta(_Node):
    enabled: Optional[bool] = _field("enabled", _opt_bool, omit="none")
    binfmt: Optional[bool] = _field("binfmt", _opt_bool, omit="none")


@dataclass
class LimaYAML(_Node):
    vm_type: Optional[str] = _field("vmType", _opt_str, omit="none")
    os: Optional[str] = _field("os", _opt_str, omit="none")
    arch: Optional[str] = _field("arch", _opt_str, omit="none")
    images: List[Image] = _field("images", _node_list(Image), _dump_node_list, omit="never", factory=list)
    cpu_type: Dict[str, str] = _field("cpuType", _str_map, _dump_map, factory=dict)
    cpus: Optional[int] = _field("cpus", _opt_int, omit="none")
    memory: Optional[str] = _field("memory", _opt_str, omit="none")
    disk: Optional[str] = _field("disk", _opt_str, omit="none")
    additional_disks: List[Disk] = _field("additionalDisks", _node_list(Disk), _dump_node_list, factory=list)
    mounts: List[Mount] = _field("mounts", _node_list(Mount), _dump_node_list, factory=list)
    mount_type: Optional[str] = _field("mountType", _opt_str, omit="none")
    ssh: SSH = _field("ssh", _node(SSH), _dump_node, factory=SSH)
    firmware: Firmware = _field("firmware", _node(Firmware), _dump_node, factory=Firmware)
    audio: Audio = _field("audio", _node(Audio), _dump_node, factory=Audio)
    video: Video = _field("video", _node(Video), _dump_node, factory=Video)
    provision: List[Provision] = _field("provision", _node_list(Provision), _dump_node_list, factory=list)
    containerd: Containerd = _field("containerd", _node(Containerd), _dump_node, factory=Containerd)
    guest_install_prefix: Optional[str] = _field("guestInstallPrefix", _opt_str, omit="none")
    probes: List[Probe] = _field("probes", _node_list(Probe), _dump_node_list, factory=list)
    port_forwards: List[PortForward] = _field(
        "portForwards", _node_list(PortForward), _dump_node_list, factory=list
    )
    copy_to_host: List[CopyToHost] = _field(
        "copyToHost", _node_list(CopyToHost), _dump_node_list, factory=list
    )
    message: str = _field("message", _str, default="")
    networks: List[Network] = _field("networks", _node_list(Network), _dump_node_list, factory=list)
    env: Dict[str, str] = _field("env", _str_map, _dump_map, factory=dict)
    dns: List[IPAddress] = _field("dns", _ip_list, _dump_ip_list, factory=list)
    host_resolver: HostResolver = _field("hostResolver", _node(HostResolver), _dump_node, factory=HostResolver)
    propagate_proxy_env: Optional[bool] = _field("propagateProxyEnv", _opt_bool, omit="none")
    ca_certificates: CACertificates = _field(
        "caCerts", _node(CACertificates), _dump_node, factory=CACertificates
    )
    rosetta: Rosetta = _field("rosetta", _node(Rosetta), _dump_node, factory=Rosetta)
    plain: Optional[bool] = _field("plain", _opt_bool, omit="none")
    time_zone: Optional[str] = _field("timezone", _opt_str, omit="none")

    @classmethod
    def from_dict(cls, data: Any) -> "LimaYAML":
        """Build a configuration from a parsed YAML document; None gives an empty one."""
        return cls._parse(data, "")

    def to_dict(self) -> dict:
        """Convert to a mapping using the YAML field names, leaving out unset fields."""
        return self._dump()