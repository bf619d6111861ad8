"""Command lines, sockets and sudoers entries for the host network daemons."""

from __future__ import annotations

import grp
import logging
import os
import pwd
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .netconfig import (
    MODE_BRIDGED,
    MODE_HOST,
    MODE_SHARED,
    MODE_USER_V2,
    Network,
    NetworksConfig,
)

log = logging.getLogger(__name__)

VDE_SWITCH = "vde_switch"  # deprecated
VDE_VMNET = "vde_vmnet"  # deprecated
SOCKET_VMNET = "socket_vmnet"

_DAEMONS = (VDE_SWITCH, VDE_VMNET, SOCKET_VMNET)

# Commands in sudoers cannot use quotes, so every argument is printed bare;
# configured paths must therefore not contain whitespace.


class SudoAccessError(RuntimeError):
    """Password-less sudo is not available for the network daemons."""


@dataclass(frozen=True)
class DaemonUser:
    """The account a network daemon runs as."""

    user: str
    uid: int
    group: str
    gid: int


def daemon_path(config: NetworksConfig, daemon: str) -> str:
    """Configured executable path of ``daemon``."""
    paths = config.paths
    if daemon == VDE_SWITCH:
        return paths.vde_switch
    if daemon == VDE_VMNET:
        return paths.vde_vmnet
    if daemon == SOCKET_VMNET:
        return paths.socket_vmnet
    raise ValueError(f'unknown daemon type "{daemon}"')


def is_daemon_installed(config: NetworksConfig, daemon: str) -> bool:
    """Whether the daemon's configured path is an executable."""
    p = daemon_path(config, daemon)
    if not p:
        return False
    return shutil.which(p) is not None


def _installed(config: NetworksConfig, daemon: str) -> bool:
    try:
        return is_daemon_installed(config, daemon)
    except ValueError:
        return False


def sock(config: NetworksConfig, name: str) -> str:
    """socket_vmnet socket path for network ``name``."""
    return os.path.join(config.paths.var_run, f"socket_vmnet.{name}")


def vde_sock(config: NetworksConfig, name: str) -> str:
    """VDE control socket path for network ``name`` (deprecated)."""
    return os.path.join(config.paths.var_run, f"{name}.ctl")


def _trim_daemon(daemon: str) -> str:
    return daemon[len("vde_"):] if daemon.startswith("vde_") else daemon


def pid_file(config: NetworksConfig, name: str, daemon: str) -> str:
    """PID file path of ``daemon`` serving network ``name``."""
    return os.path.join(config.paths.var_run, f"{name}_{_trim_daemon(daemon)}.pid")


def log_file(networks_dir: Union[str, os.PathLike], name: str, daemon: str, stream: str) -> str:
    """Log file path of ``daemon``'s ``stream`` for network ``name``."""
    return os.path.join(os.fspath(networks_dir), f"{name}_{_trim_daemon(daemon)}.{stream}.log")


def _root_user() -> DaemonUser:
    try:
        pw = pwd.getpwnam("root")
        group = grp.getgrgid(pw.pw_gid)
    except KeyError as exc:
        raise LookupError(f"cannot look up user root: {exc}") from exc
    return DaemonUser(user=pw.pw_name, uid=pw.pw_uid, group=group.gr_name, gid=group.gr_gid)


def daemon_user(config: NetworksConfig, daemon: str) -> DaemonUser:
    """Return the user and group that ``daemon`` must run as."""
    if not _installed(config, daemon):
        try:
            p = daemon_path(config, daemon)
        except ValueError:
            p = ""
        raise LookupError(f'daemon "{daemon}" (path="{p}") is not available')
    if daemon == VDE_SWITCH:
        try:
            pw = pwd.getpwnam("daemon")
        except KeyError as exc:
            raise LookupError("cannot look up user daemon") from exc
        try:
            group = grp.getgrnam(config.group)
        except KeyError as exc:
            raise LookupError(f'cannot look up group "{config.group}"') from exc
        return DaemonUser(user=pw.pw_name, uid=pw.pw_uid, group=group.gr_name, gid=group.gr_gid)
    if daemon in (VDE_VMNET, SOCKET_VMNET):
        return _root_user()
    raise LookupError(f'daemon "{daemon}" not defined')


def mkdir_cmd(config: NetworksConfig) -> str:
    """Command that creates the runtime directory."""
    return f"/bin/mkdir -m 775 -p {config.paths.var_run}"


def _vmnet_args(nw: Network) -> str:
    if nw.mode == MODE_BRIDGED:
        return f" --vmnet-interface={nw.interface}"
    if nw.mode in (MODE_HOST, MODE_SHARED):
        return (
            f" --vmnet-gateway={nw.gateway} --vmnet-dhcp-end={nw.dhcp_end}"
            f" --vmnet-mask={nw.netmask}"
        )
    return ""


def start_cmd(config: NetworksConfig, name: str, daemon: str) -> str:
    """Command that starts ``daemon`` for network ``name``."""
    if not _installed(config, daemon):
        raise RuntimeError(f'daemon "{daemon}" is not available')
    paths = config.paths
    if daemon == VDE_SWITCH:
        return (
            f"{paths.vde_switch} --pidfile={pid_file(config, name, VDE_SWITCH)}"
            f" --sock={vde_sock(config, name)} --group={config.group}"
            " --dirmode=0770 --nostdin"
        )
    nw = config.networks.get(name, Network())
    if daemon == VDE_VMNET:
        return (
            f"{paths.vde_vmnet} --pidfile={pid_file(config, name, VDE_VMNET)}"
            f" --vde-group={config.group} --vmnet-mode={nw.mode}"
            f"{_vmnet_args(nw)} {vde_sock(config, name)}"
        )
    return (
        f"{paths.socket_vmnet} --pidfile={pid_file(config, name, SOCKET_VMNET)}"
        f" --socket-group={config.group} --vmnet-mode={nw.mode}"
        f"{_vmnet_args(nw)} {sock(config, name)}"
    )


def stop_cmd(config: NetworksConfig, name: str, daemon: str) -> str:
    """Command that stops ``daemon`` for network ``name``."""
    return f"/usr/bin/pkill -F {pid_file(config, name, daemon)}"


def sudoers(config: NetworksConfig) -> str:
    """Render the sudoers file needed to manage the network daemons."""
    parts = [f"%{config.group} ALL=(root:wheel) NOPASSWD:NOSETENV: {mkdir_cmd(config)}\n"]
    # Stable order so that an installed sudoers file can be compared.
    names = sorted(name for name, nw in config.networks.items() if nw.mode != MODE_USER_V2)
    for name in names:
        parts.append("\n")
        parts.append(f'# Manage "{name}" network daemons\n')
        for daemon in _DAEMONS:
            if not is_daemon_installed(config, daemon):
                continue
            user = daemon_user(config, daemon)
            parts.append("\n")
            parts.append(f"%{config.group} ALL=({user.user}:{user.group}) NOPASSWD:NOSETENV: \\\n")
            parts.append(f"    {start_cmd(config, name, daemon)}, \\\n")
            parts.append(f"    {stop_cmd(config, name, daemon)}\n")
    return "".join(parts)


def _run(args: list) -> None:
    try:
        subprocess.run(args, check=True, stdin=subprocess.DEVNULL, capture_output=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SudoAccessError(f"failed to run {args}: {exc}") from exc


def _passwordless_sudo(config: NetworksConfig) -> None:
    _run(["sudo", "-k"])
    for daemon in _DAEMONS:
        if not is_daemon_installed(config, daemon):
            continue
        user = daemon_user(config, daemon)
        _run(["sudo", "--user", user.user, "--group", user.group, "--non-interactive", "true"])


def verify_sudo_access(config: NetworksConfig, sudoers_file: str) -> None:
    """Raise SudoAccessError unless the daemons can be managed through sudo."""
    if not sudoers_file:
        try:
            _passwordless_sudo(config)
        except SudoAccessError as exc:
            raise SudoAccessError(f"passwordLessSudo error: {exc}") from exc
        log.debug("sudo doesn't seem to require a password")
        return
    hint = (
        f"run `{sys.argv[0]} sudoers >etc_sudoers.d_lima && "
        f'sudo install -o root etc_sudoers.d_lima "{sudoers_file}"`)'
    )
    try:
        content = Path(sudoers_file).read_text()
    except OSError as exc:
        if isinstance(exc, FileNotFoundError):
            try:
                _passwordless_sudo(config)
            except SudoAccessError as sudo_exc:
                log.debug("%r does not exist; passwordLessSudo error: %s", sudoers_file, sudo_exc)
            else:
                log.debug("%r does not exist, but sudo doesn't seem to require a password", sudoers_file)
                return
        raise SudoAccessError(f'can\'t read "{sudoers_file}": {exc} (Hint: {hint})') from exc
    if content != sudoers(config):
        raise SudoAccessError(
            f'sudoers file "{sudoers_file}" is out of sync and must be regenerated (Hint: {hint})'
        )