import dataclasses
import grp
import os

import pytest

from limaconf.netcommands import (
    SOCKET_VMNET,
    VDE_SWITCH,
    VDE_VMNET,
    SudoAccessError,
    daemon_path,
    daemon_user,
    is_daemon_installed,
    log_file,
    mkdir_cmd,
    pid_file,
    sock,
    start_cmd,
    stop_cmd,
    sudoers,
    verify_sudo_access,
    vde_sock,
)
from limaconf.netconfig import MODE_SHARED, MODE_USER_V2, Network, NetworksConfig, Paths, default_config

VAR_RUN = "/private/var/run/lima"


def _exe(tmp_path, name):
    p = tmp_path / name
    p.write_text("#!/bin/sh\n")
    p.chmod(0o755)
    return str(p)


def _with_paths(config, **kwargs):
    return dataclasses.replace(config, paths=dataclasses.replace(config.paths, **kwargs))


def test_sock():
    assert sock(default_config(), "foo") == "/private/var/run/lima/socket_vmnet.foo"


def test_vde_sock():
    assert vde_sock(default_config(), "foo") == "/private/var/run/lima/foo.ctl"


def test_pid_file():
    config = default_config()
    assert pid_file(config, "name", "daemon") == "/private/var/run/lima/name_daemon.pid"
    assert pid_file(config, "shared", VDE_SWITCH) == "/private/var/run/lima/shared_switch.pid"


def test_log_file(tmp_path):
    assert log_file(tmp_path, "name", "daemon", "stream") == os.path.join(
        str(tmp_path), "name_daemon.stream.log"
    )
    assert log_file(tmp_path, "n", VDE_VMNET, "stderr").endswith("n_vmnet.stderr.log")


def test_mkdir_cmd():
    assert mkdir_cmd(default_config()) == "/bin/mkdir -m 775 -p /private/var/run/lima"


def test_stop_cmd():
    assert stop_cmd(default_config(), "name", "daemon") == (
        "/usr/bin/pkill -F /private/var/run/lima/name_daemon.pid"
    )


def test_daemon_path():
    config = default_config()
    assert daemon_path(config, VDE_SWITCH) == "/opt/vde/bin/vde_switch"
    assert daemon_path(config, VDE_VMNET) == "/opt/vde/bin/vde_vmnet"
    with pytest.raises(ValueError, match="unknown daemon type"):
        daemon_path(config, "other")


def test_is_daemon_installed(tmp_path):
    config = _with_paths(default_config(), socket_vmnet=_exe(tmp_path, "socket_vmnet"), vde_switch="")
    assert is_daemon_installed(config, SOCKET_VMNET) is True
    assert is_daemon_installed(config, VDE_SWITCH) is False
    missing = _with_paths(config, vde_vmnet=str(tmp_path / "absent"))
    assert is_daemon_installed(missing, VDE_VMNET) is False


def test_start_cmd_socket_vmnet(tmp_path):
    exe = _exe(tmp_path, "socket_vmnet")
    config = _with_paths(default_config(), socket_vmnet=exe)
    assert start_cmd(config, "shared", SOCKET_VMNET) == (
        f"{exe} --pidfile={VAR_RUN}/shared_socket_vmnet.pid --socket-group=everyone "
        "--vmnet-mode=shared --vmnet-gateway=192.168.105.1 --vmnet-dhcp-end=192.168.105.254 "
        f"--vmnet-mask=255.255.255.0 {VAR_RUN}/socket_vmnet.shared"
    )
    assert start_cmd(config, "bridged", SOCKET_VMNET) == (
        f"{exe} --pidfile={VAR_RUN}/bridged_socket_vmnet.pid --socket-group=everyone "
        f"--vmnet-mode=bridged --vmnet-interface=en0 {VAR_RUN}/socket_vmnet.bridged"
    )


def test_start_cmd_vde(tmp_path):
    switch = _exe(tmp_path, "vde_switch")
    vmnet = _exe(tmp_path, "vde_vmnet")
    config = _with_paths(default_config(), vde_switch=switch, vde_vmnet=vmnet)
    assert start_cmd(config, "shared", VDE_SWITCH) == (
        f"{switch} --pidfile={VAR_RUN}/shared_switch.pid --sock={VAR_RUN}/shared.ctl "
        "--group=everyone --dirmode=0770 --nostdin"
    )
    assert start_cmd(config, "shared", VDE_VMNET) == (
        f"{vmnet} --pidfile={VAR_RUN}/shared_vmnet.pid --vde-group=everyone --vmnet-mode=shared "
        "--vmnet-gateway=192.168.105.1 --vmnet-dhcp-end=192.168.105.254 "
        f"--vmnet-mask=255.255.255.0 {VAR_RUN}/shared.ctl"
    )
    assert start_cmd(config, "bridged", VDE_VMNET) == (
        f"{vmnet} --pidfile={VAR_RUN}/bridged_vmnet.pid --vde-group=everyone "
        f"--vmnet-mode=bridged --vmnet-interface=en0 {VAR_RUN}/bridged.ctl"
    )


def test_start_cmd_not_installed(tmp_path):
    config = _with_paths(default_config(), socket_vmnet=str(tmp_path / "absent"))
    with pytest.raises(RuntimeError, match="is not available"):
        start_cmd(config, "shared", SOCKET_VMNET)


def test_daemon_user_root(tmp_path):
    config = _with_paths(default_config(), socket_vmnet=_exe(tmp_path, "socket_vmnet"))
    user = daemon_user(config, SOCKET_VMNET)
    assert user.user == "root"
    assert user.uid == 0
    assert user.gid == 0


def test_daemon_user_not_installed(tmp_path):
    config = _with_paths(default_config(), socket_vmnet=str(tmp_path / "absent"))
    with pytest.raises(LookupError, match="is not available"):
        daemon_user(config, SOCKET_VMNET)


def _shared_config(socket_path):
    return NetworksConfig(
        paths=Paths(socket_vmnet=socket_path, var_run="/var/run/lima"),
        group="staff",
        networks={
            "shared": Network(mode=MODE_SHARED),
            "user-v2": Network(mode=MODE_USER_V2),
        },
    )


def test_sudoers_without_daemons():
    config = _shared_config("")
    assert sudoers(config) == (
        "%staff ALL=(root:wheel) NOPASSWD:NOSETENV: /bin/mkdir -m 775 -p /var/run/lima\n"
        "\n"
        '# Manage "shared" network daemons\n'
    )


def test_sudoers_with_socket_vmnet(tmp_path):
    exe = _exe(tmp_path, "socket_vmnet")
    config = _shared_config(exe)
    root_group = grp.getgrgid(0).gr_name
    assert sudoers(config) == (
        "%staff ALL=(root:wheel) NOPASSWD:NOSETENV: /bin/mkdir -m 775 -p /var/run/lima\n"
        "\n"
        '# Manage "shared" network daemons\n'
        "\n"
        f"%staff ALL=(root:{root_group}) NOPASSWD:NOSETENV: \\\n"
        f"    {exe} --pidfile=/var/run/lima/shared_socket_vmnet.pid --socket-group=staff "
        "--vmnet-mode=shared --vmnet-gateway=None --vmnet-dhcp-end=None --vmnet-mask=None "
        "/var/run/lima/socket_vmnet.shared, \\\n"
        "    /usr/bin/pkill -F /var/run/lima/shared_socket_vmnet.pid\n"
    )


def test_verify_sudo_access_out_of_sync(tmp_path):
    config = _shared_config("")
    path = tmp_path / "lima"
    path.write_text("stale contents\n")
    with pytest.raises(SudoAccessError, match="out of sync"):
        verify_sudo_access(config, str(path))