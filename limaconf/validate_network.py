"""Validation of the network entries of an instance configuration."""

from __future__ import annotations

import logging
import os
import stat
import string
import sys
from typing import Dict, Optional

from .model import VZ, LimaYAML
from .netconfig import NetworkNotDefinedError, NetworksConfig, default_config
from .validate_ports import ValidationError

log = logging.getLogger(__name__)

# The NIC name used by the built-in slirp network.
SLIRP_NIC_NAME = "eth0"

_PTP_SWITCH_PORT = 65535
_MAX_INTERFACE_LEN = 16
_HEX = set(string.hexdigits)


def _parse_mac(s: str) -> bytes:
    """Parse a MAC-48, EUI-64 or 20-byte InfiniBand address written with ':', '-' or '.'."""
    error = ValueError(f"address {s}: invalid MAC address")
    if len(s) < 14:
        raise error
    if s[2] in ":-":
        if (len(s) + 1) % 3 != 0:
            raise error
        n = (len(s) + 1) // 3
        sep = s[2]
        groups = s.split(sep)
        if n not in (6, 8, 20) or len(groups) != n:
            raise error
        if any(len(g) != 2 or not set(g) <= _HEX for g in groups):
            raise error
        return bytes(int(g, 16) for g in groups)
    if s[4] == ".":
        if (len(s) + 1) % 5 != 0:
            raise error
        n = 2 * (len(s) + 1) // 5
        groups = s.split(".")
        if n not in (6, 8, 20) or len(groups) != n // 2:
            raise error
        if any(len(g) != 4 or not set(g) <= _HEX for g in groups):
            raise error
        return bytes.fromhex("".join(groups))
    raise error


def _stat(path: str) -> Optional[os.stat_result]:
    try:
        return os.stat(path)
    except FileNotFoundError:
        return None


def _validate_lima(field: str, nw, config: NetworksConfig) -> None:
    try:
        config.check(nw.lima)
        usernet = config.is_usernet(nw.lima)
    except (NetworkNotDefinedError, KeyError, ValueError) as exc:
        raise ValidationError(
            f'field `{field}.lima` references network "{nw.lima}" which is not defined in networks.yaml'
        ) from exc
    if not usernet and sys.platform != "darwin":
        raise ValidationError(f"field `{field}.lima` is only supported on macOS right now")
    if nw.socket:
        raise ValidationError(f"field `{field}.lima` and field `{field}.socket` are mutually exclusive")
    if nw.vz_nat:
        raise ValidationError(f"field `{field}.lima` and field `{field}.vzNAT` are mutually exclusive")
    if nw.vnl_deprecated:
        raise ValidationError(f"field `{field}.lima` and field `{field}.vnl` are mutually exclusive")
    if nw.switch_port_deprecated != 0:
        raise ValidationError(f"field `{field}.switchPort` cannot be used with field `{field}.lima`")


def _validate_socket(field: str, nw) -> None:
    if nw.vz_nat:
        raise ValidationError(f"field `{field}.socket` and field `{field}.vzNAT` are mutually exclusive")
    if nw.vnl_deprecated:
        raise ValidationError(f"field `{field}.socket` and field `{field}.vnl` are mutually exclusive")
    if nw.switch_port_deprecated != 0:
        raise ValidationError(f"field `{field}.switchPort` cannot be used with field `{field}.socket`")
    st = _stat(nw.socket)
    if st is not None and not stat.S_ISSOCK(st.st_mode):
        raise ValidationError(f'field `{field}.socket` "{nw.socket}" points to a non-socket file')


def _validate_vz_nat(field: str, nw, y: LimaYAML) -> None:
    if y.vm_type != VZ:
        raise ValidationError(f'field `{field}.vzNAT` requires `vmType` to be "{VZ}"')
    if nw.lima:
        raise ValidationError(f"field `{field}.vzNAT` and field `{field}.lima` are mutually exclusive")
    if nw.socket:
        raise ValidationError(f"field `{field}.vzNAT` and field `{field}.socket` are mutually exclusive")
    if nw.vnl_deprecated:
        raise ValidationError(f"field `{field}.vzNAT` and field `{field}.vnl` are mutually exclusive")
    if nw.switch_port_deprecated != 0:
        raise ValidationError(f"field `{field}.switchPort` cannot be used with field `{field}.vzNAT`")


def _validate_vnl(field: str, nw, warn: bool) -> None:
    vnl = nw.vnl_deprecated
    if not vnl:
        raise ValidationError(f"field `{field}.lima`, field `{field}.socket`, or field `{field}.vnl` must be set")
    # Only a path to a vde_switch socket directory (optionally with vde://) is usable on macOS.
    if "://" not in vnl or vnl.startswith("vde://"):
        vde_switch = vnl[len("vde://"):] if vnl.startswith("vde://") else vnl
        try:
            st = os.stat(vde_switch)
        except OSError as exc:
            # Harmless while the instance is stopped.
            log.debug('field `%s.vnl` "%s" failed stat: %s', field, vde_switch, exc)
            return
        if stat.S_ISDIR(st.st_mode):
            ctl_socket = os.path.join(vde_switch, "ctl")
            ctl = _stat(ctl_socket)
            if ctl is not None and not stat.S_ISSOCK(ctl.st_mode):
                raise ValidationError(f'field `{field}.vnl` file "{ctl_socket}" is not a UNIX socket')
            if nw.switch_port_deprecated == _PTP_SWITCH_PORT:
                raise ValidationError(
                    f"field `{field}.vnl` points to a non-PTP switch, so the port number must not be 65535"
                )
        else:
            if not stat.S_ISSOCK(st.st_mode):
                raise ValidationError(f'field `{field}.vnl` "{vde_switch}" is not a directory nor a UNIX socket')
            if nw.switch_port_deprecated != _PTP_SWITCH_PORT:
                raise ValidationError(
                    f'field `{field}.vnl` points to a PTP (switchless) socket "{vde_switch}", '
                    f"so the port number has to be 65535 (got {nw.switch_port_deprecated})"
                )
    elif not sys.platform.startswith("linux") and warn:
        log.warning(
            "field `%s.vnl` is unlikely to work for %s (unless libvdeplug4 has been ported to %s and is installed)",
            field, sys.platform, sys.platform,
        )


def validate_network(y: LimaYAML, warn: bool = False, networks_config: Optional[NetworksConfig] = None) -> None:
    """Raise ValidationError if a network entry of ``y`` is inconsistent.

    ``networks_config`` is consulted for ``lima`` networks; the built-in
    configuration is used when it is not given.
    """
    config = networks_config
    interface_index: Dict[str, int] = {}
    for i, nw in enumerate(y.networks):
        field = f"networks[{i}]"
        if nw.lima:
            if config is None:
                config = default_config()
            _validate_lima(field, nw, config)
        elif nw.socket:
            _validate_socket(field, nw)
        elif nw.vz_nat:
            _validate_vz_nat(field, nw, y)
        else:
            _validate_vnl(field, nw, warn)

        if nw.mac_address:
            try:
                hw = _parse_mac(nw.mac_address)
            except ValueError as exc:
                raise ValidationError(f"field `vmnet.mac` invalid: {exc}") from exc
            if len(hw) != 6:
                raise ValidationError(
                    f'field `{field}.macAddress` must be a 48 bit (6 bytes) MAC address; '
                    f'actual length of "{nw.mac_address}" is {len(hw)} bytes'
                )
        length = len(nw.interface.encode("utf-8"))
        if length >= _MAX_INTERFACE_LEN:
            raise ValidationError(
                f'field `{field}.interface` must be less than 16 bytes, but is {length} bytes: "{nw.interface}"'
            )
        if any(c in nw.interface for c in " \t\n/"):
            raise ValidationError(f"field `{field}.interface` must not contain whitespace or slashes")
        if nw.interface == SLIRP_NIC_NAME:
            raise ValidationError(
                f'field `{field}.interface` must not be set to "{SLIRP_NIC_NAME}" because it is reserved for slirp'
            )
        if nw.interface in interface_index:
            raise ValidationError(
                f'field `{field}.interface` value "{nw.interface}" has already been used by field '
                f"`networks[{interface_index[nw.interface]}].interface`"
            )
        interface_index[nw.interface] = i