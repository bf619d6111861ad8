"""Filling an instance configuration from built-in defaults, a defaults file and an override file."""

from __future__ import annotations

import copy
import os
import sys
from typing import Iterable, List, Optional, TypeVar

from .merge import fill_mount_defaults, fix_up_for_plain_mode, merge_mounts, merge_networks, unique
from .model import (
    AARCH64,
    ARMV7L,
    PROBE_MODE_READINESS,
    PROVISION_MODE_DEPENDENCY,
    PROVISION_MODE_SYSTEM,
    QEMU,
    REVSSHFS,
    RISCV64,
    VIRTIOFS,
    VZ,
    X8664,
    LimaYAML,
)
from .netconfig import NetworkNotDefinedError, NetworksConfig
from .resolve import (
    DEFAULT_DISK_SIZE,
    DEFAULT_GUEST_INSTALL_PREFIX,
    default_containerd_archives,
    default_cpus,
    default_firmware_images,
    default_memory_as_string,
    fill_copy_to_host_defaults,
    fill_port_forward_defaults,
    has_host_cpu,
    has_max_cpu,
    host_time_zone,
    is_accel_os,
    is_native_arch,
    resolve_arch,
    resolve_os,
    resolve_vm_type,
)

T = TypeVar("T")


def _pick(y_value: Optional[T], d_value: Optional[T], o_value: Optional[T]) -> Optional[T]:
    """The override value if set, else the user value if set, else the default value."""
    if o_value is not None:
        return o_value
    if y_value is not None:
        return y_value
    return d_value


def _chain(*lists: Iterable[T]) -> List[T]:
    return [copy.deepcopy(item) for items in lists for item in items]


def _cpu_types() -> dict:
    cpu_type = {
        AARCH64: "cortex-a72",
        ARMV7L: "cortex-a7",
        X8664: "qemu64",
        RISCV64: "rv64",
    }
    for arch in cpu_type:
        if is_native_arch(arch) and is_accel_os():
            if has_host_cpu():
                cpu_type[arch] = "host"
            elif has_max_cpu():
                cpu_type[arch] = "max"
        if arch == X8664 and sys.platform == "darwin" and cpu_type[arch] in ("host", "max"):
            # pdpe1gb breaks guests on Intel Macs.
            cpu_type[arch] += ",-pdpe1gb"
    return cpu_type


def fill_default(y: LimaYAML, d: LimaYAML, o: LimaYAML, file_path) -> None:
    """Fill unset fields of ``y`` in place from ``d`` (or built-in defaults), then apply ``o``.

    Scalars take the override value, then the user value, then the default.
    Maps are merged d, y, o with later entries winning. Lists are concatenated
    o, y, d so that higher-priority entries come first, except that mounts and
    networks are combined in d, y, o order, DNS is taken whole from the
    highest-priority non-empty list, and CA files and certs are appended
    without repeats in d, y, o order. ``d`` and ``o`` are not modified.
    """
    file_path = os.fspath(file_path)

    y.vm_type = resolve_vm_type(_pick(y.vm_type, d.vm_type, o.vm_type))
    y.os = resolve_os(_pick(y.os, d.os, o.os))
    y.arch = resolve_arch(_pick(y.arch, d.arch, o.arch))

    y.images = _chain(o.images, y.images, d.images)
    for img in y.images:
        if not img.arch:
            img.arch = y.arch
        if img.kernel is not None and not img.kernel.arch:
            img.kernel.arch = img.arch
        if img.initrd is not None and not img.initrd.arch:
            img.initrd.arch = img.arch

    cpu_type = _cpu_types()
    override_cpu_type = False
    for source in (d.cpu_type, y.cpu_type, o.cpu_type):
        for arch, value in source.items():
            if value:
                override_cpu_type = True
                cpu_type[arch] = value
    if y.vm_type == QEMU or override_cpu_type:
        y.cpu_type = cpu_type

    y.cpus = _pick(y.cpus, d.cpus, o.cpus)
    if not y.cpus:
        y.cpus = default_cpus()

    y.memory = _pick(y.memory, d.memory, o.memory)
    if not y.memory:
        y.memory = default_memory_as_string()

    y.disk = _pick(y.disk, d.disk, o.disk)
    if not y.disk:
        y.disk = DEFAULT_DISK_SIZE

    y.additional_disks = _chain(o.additional_disks, y.additional_disks, d.additional_disks)

    y.audio.device = _pick(y.audio.device, d.audio.device, o.audio.device)
    if y.audio.device is None:
        y.audio.device = ""

    y.video.display = _pick(y.video.display, d.video.display, o.video.display)
    if not y.video.display:
        y.video.display = "none"

    y.video.vnc.display = _pick(y.video.vnc.display, d.video.vnc.display, o.video.vnc.display)
    if not y.video.vnc.display and y.vm_type == QEMU:
        y.video.vnc.display = "127.0.0.1:0,to=9"

    y.firmware.legacy_bios = _pick(y.firmware.legacy_bios, d.firmware.legacy_bios, o.firmware.legacy_bios)
    if y.firmware.legacy_bios is None:
        y.firmware.legacy_bios = False

    y.firmware.images = _chain(o.firmware.images, y.firmware.images, d.firmware.images)
    if not y.firmware.images:
        y.firmware.images = default_firmware_images()
    for image in y.firmware.images:
        if not image.arch:
            image.arch = y.arch

    y.time_zone = _pick(y.time_zone, d.time_zone, o.time_zone)
    if y.time_zone is None:
        y.time_zone = host_time_zone()

    ssh, d_ssh, o_ssh = y.ssh, d.ssh, o.ssh
    ssh.local_port = _pick(ssh.local_port, d_ssh.local_port, o_ssh.local_port)
    if ssh.local_port is None:
        # The real port is chosen by the host agent.
        ssh.local_port = 0
    ssh.load_dot_ssh_pub_keys = _pick(
        ssh.load_dot_ssh_pub_keys, d_ssh.load_dot_ssh_pub_keys, o_ssh.load_dot_ssh_pub_keys
    )
    if ssh.load_dot_ssh_pub_keys is None:
        ssh.load_dot_ssh_pub_keys = True
    ssh.forward_agent = _pick(ssh.forward_agent, d_ssh.forward_agent, o_ssh.forward_agent)
    if ssh.forward_agent is None:
        ssh.forward_agent = False
    ssh.forward_x11 = _pick(ssh.forward_x11, d_ssh.forward_x11, o_ssh.forward_x11)
    if ssh.forward_x11 is None:
        ssh.forward_x11 = False
    ssh.forward_x11_trusted = _pick(
        ssh.forward_x11_trusted, d_ssh.forward_x11_trusted, o_ssh.forward_x11_trusted
    )
    if ssh.forward_x11_trusted is None:
        ssh.forward_x11_trusted = False

    # Values may be names or addresses; names are canonicalised by the resolver.
    y.host_resolver.hosts = {
        **d.host_resolver.hosts,
        **y.host_resolver.hosts,
        **o.host_resolver.hosts,
    }

    y.provision = _chain(o.provision, y.provision, d.provision)
    for provision in y.provision:
        if not provision.mode:
            provision.mode = PROVISION_MODE_SYSTEM
        if (
            provision.mode == PROVISION_MODE_DEPENDENCY
            and provision.skip_default_dependency_resolution is None
        ):
            provision.skip_default_dependency_resolution = False

    y.guest_install_prefix = _pick(y.guest_install_prefix, d.guest_install_prefix, o.guest_install_prefix)
    if y.guest_install_prefix is None:
        y.guest_install_prefix = DEFAULT_GUEST_INSTALL_PREFIX

    y.containerd.system = _pick(y.containerd.system, d.containerd.system, o.containerd.system)
    if y.containerd.system is None:
        y.containerd.system = False
    y.containerd.user = _pick(y.containerd.user, d.containerd.user, o.containerd.user)
    if y.containerd.user is None:
        y.containerd.user = True

    y.containerd.archives = _chain(o.containerd.archives, y.containerd.archives, d.containerd.archives)
    if not y.containerd.archives:
        y.containerd.archives = default_containerd_archives()
    for archive in y.containerd.archives:
        if not archive.arch:
            archive.arch = y.arch

    y.probes = _chain(o.probes, y.probes, d.probes)
    total = len(y.probes)
    for i, probe in enumerate(y.probes, start=1):
        if not probe.mode:
            probe.mode = PROBE_MODE_READINESS
        if not probe.description:
            probe.description = f"user probe {i}/{total}"

    inst_dir = os.path.dirname(file_path)
    y.port_forwards = _chain(o.port_forwards, y.port_forwards, d.port_forwards)
    for rule in y.port_forwards:
        fill_port_forward_defaults(rule, inst_dir)

    y.copy_to_host = _chain(o.copy_to_host, y.copy_to_host, d.copy_to_host)
    for rule in y.copy_to_host:
        fill_copy_to_host_defaults(rule, inst_dir)

    resolver, d_resolver, o_resolver = y.host_resolver, d.host_resolver, o.host_resolver
    resolver.enabled = _pick(resolver.enabled, d_resolver.enabled, o_resolver.enabled)
    if resolver.enabled is None:
        resolver.enabled = True
    resolver.ipv6 = _pick(resolver.ipv6, d_resolver.ipv6, o_resolver.ipv6)
    if resolver.ipv6 is None:
        resolver.ipv6 = False

    y.propagate_proxy_env = _pick(y.propagate_proxy_env, d.propagate_proxy_env, o.propagate_proxy_env)
    if y.propagate_proxy_env is None:
        y.propagate_proxy_env = True

    y.networks = merge_networks(d.networks, y.networks, o.networks, file_path)

    # The mount type must be known before the mounts are filled in.
    y.mount_type = _pick(y.mount_type, d.mount_type, o.mount_type)
    if not y.mount_type:
        y.mount_type = VIRTIOFS if y.vm_type == VZ else REVSSHFS

    y.mounts = merge_mounts(d.mounts, y.mounts, o.mounts)
    fill_mount_defaults(y.mounts, y.vm_type, y.mount_type)

    # DNS lists are not combined: the highest-priority non-empty one wins.
    if not y.dns:
        y.dns = list(d.dns)
    if o.dns:
        y.dns = list(o.dns)

    y.env = {**d.env, **y.env, **o.env}

    ca, d_ca, o_ca = y.ca_certificates, d.ca_certificates, o.ca_certificates
    ca.remove_defaults = _pick(ca.remove_defaults, d_ca.remove_defaults, o_ca.remove_defaults)
    if ca.remove_defaults is None:
        ca.remove_defaults = False
    ca.files = unique([*d_ca.files, *ca.files, *o_ca.files])
    ca.certs = unique([*d_ca.certs, *ca.certs, *o_ca.certs])

    if sys.platform == "darwin" and is_native_arch(AARCH64):
        y.rosetta.enabled = _pick(y.rosetta.enabled, d.rosetta.enabled, o.rosetta.enabled)
        if y.rosetta.enabled is None:
            y.rosetta.enabled = False
    else:
        y.rosetta.enabled = False

    y.rosetta.binfmt = _pick(y.rosetta.binfmt, d.rosetta.binfmt, o.rosetta.binfmt)
    if y.rosetta.binfmt is None:
        y.rosetta.binfmt = False

    y.plain = _pick(y.plain, d.plain, o.plain)
    if y.plain is None:
        y.plain = False

    fix_up_for_plain_mode(y)


def first_usernet_index(y: LimaYAML, config: NetworksConfig) -> int:
    """Index of the first network of ``y`` that is a user-v2 network, or -1 if there is none."""
    for i, nw in enumerate(y.networks):
        try:
            if config.is_usernet(nw.lima):
                return i
        except NetworkNotDefinedError:
            continue
    return -1