"""Resolution of OS, architecture and VM type, and built-in default values."""

from __future__ import annotations

import getpass
import hashlib
import ipaddress
import logging
import os
import platform
import re
import socket
import sys
from typing import Dict, List, Optional, Tuple, Union

from .model import (
    AARCH64,
    ARMV7L,
    LINUX,
    QEMU,
    RISCV64,
    TCP,
    VZ,
    WSL2,
    X8664,
    CopyToHost,
    File,
    FileWithVMType,
    PortForward,
)

log = logging.getLogger(__name__)

# "none" keeps symlinks working with 9p.
DEFAULT_9P_SECURITY_MODEL = "none"
DEFAULT_9P_PROTOCOL_VERSION = "9p2000.L"
DEFAULT_9P_MSIZE = "128KiB"
DEFAULT_9P_CACHE_FOR_RO = "fscache"
DEFAULT_9P_CACHE_FOR_RW = "mmap"

DEFAULT_VIRTIOFS_QUEUE_SIZE = 1024

DEFAULT_DISK_SIZE = "100GiB"
DEFAULT_GUEST_INSTALL_PREFIX = "/usr/local"

SOCKET_DIR = "sock"

IPV4_LOOPBACK1 = ipaddress.IPv4Address("127.0.0.1")
IPV4_ZERO = ipaddress.IPv4Address("0.0.0.0")

_NERDCTL_VERSION = "1.7.2"

_BINARY_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB", "YiB")


# ---- host detection -------------------------------------------------------

def _host_goos() -> str:
    plat = sys.platform
    if plat == "darwin":
        return "darwin"
    if plat.startswith("linux"):
        return "linux"
    if plat in ("win32", "cygwin"):
        return "windows"
    if plat.startswith("netbsd"):
        return "netbsd"
    return plat


def _host_goarch() -> str:
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "amd64"
    if machine in ("aarch64", "arm64"):
        return "arm64"
    if machine.startswith("arm"):
        return "arm"
    return machine


def _goarm() -> int:
    if _host_goos() != "linux" or _host_goarch() != "arm":
        return 0
    machine = platform.machine().lower()
    if machine.startswith("armv7") or machine.startswith("armv8"):
        return 7
    if machine.startswith("armv6"):
        return 6
    return 5


def _machine_id() -> str:
    for candidate in ("/etc/machine-id", "/var/lib/dbus/machine-id"):
        try:
            with open(candidate, encoding="utf-8") as fh:
                value = fh.read().strip()
        except OSError:
            continue
        if value:
            return value
    return socket.gethostname()


def _lima_user() -> Tuple[str, str]:
    try:
        name = getpass.getuser()
    except (KeyError, OSError):
        name = ""
    uid = str(os.getuid()) if hasattr(os, "getuid") else ""
    return name, uid


# ---- name resolution ------------------------------------------------------

def new_os(osname: str) -> str:
    """Map a Go-style OS name to the configuration OS name."""
    if osname == "linux":
        return LINUX
    log.warning("Unknown os: %s", osname)
    return osname


def new_arch(arch: str) -> str:
    """Map a Go-style architecture name to the configuration architecture."""
    if arch == "amd64":
        return X8664
    if arch == "arm64":
        return AARCH64
    if arch == "arm":
        arm = _goarm()
        if arm == 7:
            return ARMV7L
        log.warning("Unknown arm: %d", arm)
        return arch
    if arch == "riscv64":
        return RISCV64
    log.warning("Unknown arch: %s", arch)
    return arch


def new_vm_type(driver: str) -> str:
    """Map a driver name to a VM type."""
    if driver in (VZ, QEMU, WSL2):
        return driver
    log.warning("Unknown driver: %s", driver)
    return driver


def _is_default(value: Optional[str]) -> bool:
    return value is None or value == "" or value == "default"


def resolve_vm_type(value: Optional[str]) -> str:
    """VM type for ``value``, QEMU when unset."""
    return QEMU if _is_default(value) else new_vm_type(value)


def resolve_os(value: Optional[str]) -> str:
    """OS for ``value``, Linux when unset."""
    return new_os("linux") if _is_default(value) else value


def resolve_arch(value: Optional[str]) -> str:
    """Architecture for ``value``, the host architecture when unset."""
    return new_arch(_host_goarch()) if _is_default(value) else value


def is_accel_os() -> bool:
    """Whether the host OS offers a hardware accelerator."""
    return _host_goos() in ("darwin", "linux", "netbsd", "windows")


def has_host_cpu() -> bool:
    """Whether the accelerator supports the "host" CPU model."""
    return _host_goos() in ("darwin", "linux")


def has_max_cpu() -> bool:
    """Whether the accelerator supports the "max" CPU model."""
    return _host_goos() != "windows"


def is_native_arch(arch: str) -> bool:
    """Whether ``arch`` is the architecture of the host."""
    goarch = _host_goarch()
    return (
        (arch == X8664 and goarch == "amd64")
        or (arch == AARCH64 and goarch == "arm64")
        or (arch == ARMV7L and goarch == "arm" and _goarm() == 7)
        or (arch == RISCV64 and goarch == "riscv64")
    )


def mac_address(unique_id: str, machine_id: Optional[str] = None) -> str:
    """A stable, locally administered MAC address derived from the machine and ``unique_id``."""
    if machine_id is None:
        machine_id = _machine_id()
    digest = hashlib.sha256((machine_id + unique_id).encode("utf-8")).digest()
    # 52:55:55 - "5" for lima, with the second digit set to mark a local address.
    return ":".join(f"{b:02x}" for b in bytes((0x52, 0x55, 0x55)) + digest[:3])


# ---- built-in defaults ----------------------------------------------------

def host_time_zone() -> str:
    """Time zone name of the host, or an empty string when unknown."""
    if _host_goos() == "windows":
        return ""
    try:
        with open("/etc/timezone", encoding="utf-8") as fh:
            return fh.read().strip()
    except OSError:
        pass
    if not os.path.lexists("/etc/localtime"):
        return ""
    zoneinfo = os.path.realpath("/etc/localtime")
    if not os.path.exists(zoneinfo):
        return ""
    base = os.path.dirname(zoneinfo)
    while base != "/":
        if os.path.exists(os.path.join(base, "Etc/UTC")):
            prefix = base + "/"
            return zoneinfo[len(prefix):] if zoneinfo.startswith(prefix) else zoneinfo
        parent = os.path.dirname(base)
        if parent == base:
            break
        base = parent
    log.warning('could not locate zoneinfo directory from "%s"', zoneinfo)
    return ""


def default_cpus() -> int:
    """Number of host CPUs, capped at 4."""
    return min(os.cpu_count() or 1, 4)


def _total_memory() -> int:
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (ValueError, OSError, AttributeError):
        return 0


def default_memory() -> int:
    """Half of the host memory in bytes, capped at 4 GiB."""
    return min(_total_memory() // 2, 4 * 1024 ** 3)


def _bytes_size(size: float) -> str:
    i = 0
    while size >= 1024.0 and i < len(_BINARY_UNITS) - 1:
        size /= 1024.0
        i += 1
    return f"{size:.4g}{_BINARY_UNITS[i]}"


def default_memory_as_string() -> str:
    """The default memory size in human-readable binary units."""
    return _bytes_size(float(default_memory()))


def default_containerd_archives() -> List[File]:
    """The built-in nerdctl-full archives."""

    def location(goos: str, goarch: str) -> str:
        return (
            f"https://github.com/containerd/nerdctl/releases/download/v{_NERDCTL_VERSION}"
            f"/nerdctl-full-{_NERDCTL_VERSION}-{goos}-{goarch}.tar.gz"
        )

    return [
        File(
            location=location("linux", "amd64"),
            arch=X8664,
            digest="sha256:5ea4524ff346000bb32ef1d9fb8c4b8e809fbff69260d179218d7c308cc2aa99",
        ),
        File(
            location=location("linux", "arm64"),
            arch=AARCH64,
            digest="sha256:3d6f256181005a1b612cd340c8eb84c2b9218a0df040e59e300d6168b0701de2",
        ),
    ]


def default_firmware_images() -> List[FileWithVMType]:
    """The built-in UEFI images (patched edk2 for aarch64, plus a mirror)."""
    digest = "sha256:a5fc228623891297f2d82e22ea56ec57cde93fea5ec01abf543e4ed5cacaf277"
    return [
        FileWithVMType(
            location="https://gitlab.com/kraxel/qemu/-/raw/704f7cad5105246822686f65765ab92045f71a3b/pc-bios/edk2-aarch64-code.fd.bz2",
            arch=AARCH64,
            digest=digest,
            vm_type=QEMU,
        ),
        FileWithVMType(
            location="https://github.com/AkihiroSuda/qemu/raw/704f7cad5105246822686f65765ab92045f71a3b/pc-bios/edk2-aarch64-code.fd.bz2",
            arch=AARCH64,
            digest=digest,
            vm_type=QEMU,
        ),
    ]


# ---- templates ------------------------------------------------------------

class _TemplateError(ValueError):
    pass


_ACTION = re.compile(r"\{\{\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _render(fmt: str, data: Dict[str, str]) -> str:
    out = []
    pos = 0
    while True:
        start = fmt.find("{{", pos)
        if start < 0:
            out.append(fmt[pos:])
            return "".join(out)
        m = _ACTION.match(fmt, start)
        if not m:
            raise _TemplateError(f"unsupported or unterminated action at offset {start}")
        out.append(fmt[pos:start])
        out.append(data.get(m.group(1), "<no value>"))
        pos = m.end()


def _guest_data() -> Dict[str, str]:
    name, uid = _lima_user()
    return {"Home": f"/home/{name}.linux", "UID": uid, "User": name}


def _host_data(inst_dir: str) -> Dict[str, str]:
    name, uid = _lima_user()
    base = os.path.basename(inst_dir)
    lima_home = os.environ.get("LIMA_HOME") or os.path.join(os.path.expanduser("~"), ".lima")
    return {
        "Dir": inst_dir,
        "Home": os.path.expanduser("~"),
        "Name": base,
        "UID": uid,
        "User": name,
        "Instance": base,  # deprecated, use Name
        "LimaHome": lima_home,  # deprecated, use Dir
    }


def _expand(value: str, data: Dict[str, str], what: str) -> str:
    try:
        return _render(value, data)
    except _TemplateError as exc:
        log.warning('Couldn\'t process %s "%s" as a template: %s', what, value, exc)
        return value


# ---- rule defaults --------------------------------------------------------

def fill_port_forward_defaults(rule: PortForward, inst_dir: Union[str, os.PathLike]) -> PortForward:
    """Fill unset fields of a port-forwarding rule in place and return it."""
    inst_dir = os.fspath(inst_dir)
    if not rule.proto:
        rule.proto = TCP
    if rule.guest_ip is None:
        rule.guest_ip = IPV4_ZERO if rule.guest_ip_must_be_zero else IPV4_LOOPBACK1
    if rule.host_ip is None:
        rule.host_ip = IPV4_LOOPBACK1
    if tuple(rule.guest_port_range) == (0, 0):
        if rule.guest_port == 0:
            rule.guest_port_range = (1, 65535)
        else:
            rule.guest_port_range = (rule.guest_port, rule.guest_port)
    if tuple(rule.host_port_range) == (0, 0):
        if rule.host_port == 0:
            rule.host_port_range = tuple(rule.guest_port_range)
        else:
            rule.host_port_range = (rule.host_port, rule.host_port)
    if rule.guest_socket:
        rule.guest_socket = _expand(rule.guest_socket, _guest_data(), "guestSocket")
    if rule.host_socket:
        rule.host_socket = _expand(rule.host_socket, _host_data(inst_dir), "hostSocket")
        if not os.path.isabs(rule.host_socket):
            rule.host_socket = os.path.join(inst_dir, SOCKET_DIR, rule.host_socket)
    return rule


def fill_copy_to_host_defaults(rule: CopyToHost, inst_dir: Union[str, os.PathLike]) -> CopyToHost:
    """Expand the templates of a copy-to-host rule in place and return it."""
    inst_dir = os.fspath(inst_dir)
    if rule.guest_file:
        rule.guest_file = _expand(rule.guest_file, _guest_data(), "guest")
    if rule.host_file:
        rule.host_file = _expand(rule.host_file, _host_data(inst_dir), "host")
    return rule