"""Validation of a filled-in instance configuration."""

from __future__ import annotations

import getpass
import logging
import os
import re
import stat
import sys
from typing import Optional

from .localpath import expand
from .model import (
    ARCHES,
    LINUX,
    NINEP,
    PROBE_MODE_READINESS,
    PROVISION_MODE_BOOT,
    PROVISION_MODE_DEPENDENCY,
    PROVISION_MODE_SYSTEM,
    PROVISION_MODE_USER,
    QEMU,
    REVSSHFS,
    RISCV64,
    VIRTIOFS,
    VZ,
    WSL2,
    WSL_MOUNT,
    AARCH64,
    ARMV7L,
    X8664,
    File,
    LimaYAML,
)
from .netconfig import NetworksConfig
from .resolve import is_native_arch, resolve_arch
from .validate_network import validate_network
from .validate_ports import ValidationError, validate_copy_to_host, validate_port, validate_port_forwards

log = logging.getLogger(__name__)

_SIZE = re.compile(r"(\d+(?:\.\d+)*) ?([kKmMgGtTpP])?[iI]?[bB]?")
_MULTIPLIERS = {"k": 1024, "m": 1024 ** 2, "g": 1024 ** 3, "t": 1024 ** 4, "p": 1024 ** 5}

_DIGEST_SIZES = {"sha256": 32, "sha384": 48, "sha512": 64}
_HEX_LOWER = re.compile(r"[a-f0-9]+")

_SYSTEM_PATHS = frozenset(("/", "/bin", "/dev", "/etc", "/home", "/opt", "/sbin", "/tmp", "/usr", "/var"))

_ARCH_CHOICES = f'"{X8664}", "{AARCH64}", "{ARMV7L}"'


def _ram_in_bytes(size: str) -> int:
    """Parse a human-readable size with binary multiples, such as ``4GiB`` or ``128k``."""
    m = _SIZE.fullmatch(size)
    if not m:
        raise ValueError(f"invalid size: '{size}'")
    try:
        value = float(m.group(1))
    except ValueError as exc:
        raise ValueError(f"invalid size: '{size}'") from exc
    unit = (m.group(2) or "").lower()
    return int(value * _MULTIPLIERS.get(unit, 1))


def _validate_digest(digest: str, field_name: str) -> None:
    i = digest.find(":")
    algorithm = digest[:i] if i > 0 else ""
    if algorithm not in _DIGEST_SIZES:
        raise ValidationError(f"field `{field_name}.digest` refers to an unavailable digest algorithm")
    encoded = digest[i + 1:]
    if not encoded:
        reason = "invalid checksum digest format"
    elif len(encoded) != _DIGEST_SIZES[algorithm] * 2:
        reason = "invalid checksum digest length"
    elif not _HEX_LOWER.fullmatch(encoded):
        reason = "invalid checksum digest format"
    else:
        return
    raise ValidationError(f"field `{field_name}.digest` is invalid: {digest}: {reason}")


def validate_file_object(f: File, field_name: str) -> None:
    """Check the location, architecture and digest of a downloadable file."""
    if "://" not in f.location:
        # The file need not exist yet; only the path itself is checked.
        try:
            expand(f.location)
        except (ValueError, OSError) as exc:
            raise ValidationError(
                f'field `{field_name}.location` refers to an invalid local file path: "{f.location}": {exc}'
            ) from exc
    if f.arch not in ARCHES:
        raise ValidationError(f'field `arch` must be {_ARCH_CHOICES}, or "{RISCV64}"; got "{f.arch}"')
    if f.digest:
        _validate_digest(f.digest, field_name)


def _validate_images(y: LimaYAML) -> None:
    if not y.images:
        raise ValidationError("field `images` must be set")
    for i, image in enumerate(y.images):
        validate_file_object(image, f"images[{i}]")
        if image.kernel is not None:
            validate_file_object(image.kernel, f"images[{i}].kernel")
            if image.kernel.arch != image.arch:
                raise ValidationError(
                    f'images[{i}].kernel has unexpected architecture "{image.kernel.arch}", must be "{image.arch}"'
                )
        elif image.arch == RISCV64:
            raise ValidationError('riscv64 needs the kernel (e.g., "uboot.elf") to be specified')
        if image.initrd is not None:
            validate_file_object(image.initrd, f"images[{i}].initrd")
            if image.kernel is None:
                raise ValidationError("initrd requires the kernel to be specified")
            if image.initrd.arch != image.arch:
                raise ValidationError(
                    f'images[{i}].initrd has unexpected architecture "{image.initrd.arch}", must be "{image.arch}"'
                )


def _validate_mounts(y: LimaYAML) -> None:
    try:
        user = getpass.getuser()
    except (KeyError, OSError) as exc:
        raise ValidationError(f"internal error (not an error of YAML): {exc}") from exc
    # The home directory the guest user gets from cloud-init.
    reserved_home = f"/home/{user}.linux"

    for i, mount in enumerate(y.mounts):
        if not os.path.isabs(mount.location) and not mount.location.startswith("~"):
            raise ValidationError(
                f'field `mounts[{i}].location` must be an absolute path, got "{mount.location}"'
            )
        try:
            loc = expand(mount.location)
        except (ValueError, OSError) as exc:
            raise ValidationError(
                f'field `mounts[{i}].location` refers to an unexpandable path: "{mount.location}": {exc}'
            ) from exc
        if loc in _SYSTEM_PATHS:
            raise ValidationError(f"field `mounts[{i}].location` must not be a system path such as /etc or /usr")
        if loc == reserved_home:
            raise ValidationError(f"field `mounts[{i}].location` is internally reserved")
        try:
            st = os.stat(loc)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise ValidationError(
                f'field `mounts[{i}].location` refers to an inaccessible path: "{mount.location}": {exc}'
            ) from exc
        else:
            if not stat.S_ISDIR(st.st_mode):
                raise ValidationError(
                    f'field `mounts[{i}].location` refers to a non-directory path: "{mount.location}"'
                )
        try:
            _ram_in_bytes(mount.nine_p.msize or "")
        except ValueError as exc:
            raise ValidationError(f"field `msize` has an invalid value: {exc}") from exc


def _validate_provision(y: LimaYAML) -> None:
    for i, p in enumerate(y.provision):
        if p.mode in (PROVISION_MODE_SYSTEM, PROVISION_MODE_USER, PROVISION_MODE_BOOT):
            if p.skip_default_dependency_resolution is not None:
                raise ValidationError(
                    f"field `provision[{i}].mode` cannot set skipDefaultDependencyResolution, "
                    f'only valid on scripts of type "{PROVISION_MODE_DEPENDENCY}"'
                )
        elif p.mode != PROVISION_MODE_DEPENDENCY:
            raise ValidationError(
                f'field `provision[{i}].mode` must one of "{PROVISION_MODE_SYSTEM}", "{PROVISION_MODE_USER}", '
                f'"{PROVISION_MODE_BOOT}", or "{PROVISION_MODE_DEPENDENCY}"'
            )


def validate(y: LimaYAML, warn: bool = False, networks_config: Optional[NetworksConfig] = None) -> None:
    """Raise ValidationError if the filled-in configuration ``y`` is invalid.

    With ``warn`` set, experimental or platform-dependent settings are logged.
    """
    if y.os != LINUX:
        raise ValidationError(f'field `os` must be "{LINUX}"; got "{y.os}"')
    if y.arch not in ARCHES:
        raise ValidationError(f'field `arch` must be {_ARCH_CHOICES} or "{RISCV64}"; got "{y.arch}"')

    if y.vm_type == VZ:
        if not is_native_arch(y.arch):
            raise ValidationError(f'field `arch` must be "{resolve_arch(None)}" for VZ; got "{y.arch}"')
    elif y.vm_type not in (QEMU, WSL2):
        raise ValidationError(f'field `vmType` must be "{QEMU}", "{VZ}", "{WSL2}"; got "{y.vm_type}"')

    _validate_images(y)

    for arch in y.cpu_type:
        if arch not in ARCHES:
            raise ValidationError(f'field `cpuType` uses unsupported arch "{arch}"')

    if not y.cpus:
        raise ValidationError("field `cpus` must be set")

    for value in (y.memory, y.disk):
        try:
            _ram_in_bytes(value or "")
        except ValueError as exc:
            raise ValidationError(f"field `memory` has an invalid value: {exc}") from exc

    _validate_mounts(y)

    if y.ssh.local_port:
        validate_port("ssh.localPort", y.ssh.local_port)

    if y.mount_type not in (REVSSHFS, NINEP, VIRTIOFS, WSL_MOUNT):
        raise ValidationError(
            f'field `mountType` must be "{REVSSHFS}" or "{NINEP}" or "{VIRTIOFS}", or "{WSL_MOUNT}", '
            f'got "{y.mount_type}"'
        )

    if warn and not sys.platform.startswith("linux"):
        for i, mount in enumerate(y.mounts):
            if mount.virtiofs.queue_size is not None:
                log.warning("field mounts[%d].virtiofs.queueSize is only supported on Linux", i)

    # firmware.legacyBIOS is ignored for aarch64 rather than rejected.

    _validate_provision(y)

    needs_archives = bool(y.containerd.user) or bool(y.containerd.system)
    if needs_archives and not y.containerd.archives:
        raise ValidationError("field `containerd.archives` must be provided")

    for i, probe in enumerate(y.probes):
        if probe.mode != PROBE_MODE_READINESS:
            raise ValidationError(f'field `probe[{i}].mode` can only be "{PROBE_MODE_READINESS}"')

    validate_port_forwards(y.port_forwards)
    validate_copy_to_host(y.copy_to_host)

    if y.host_resolver.enabled and y.dns:
        raise ValidationError("field `dns` must be empty when field `HostResolver.Enabled` is true")

    validate_network(y, warn, networks_config)
    if warn:
        warn_experimental(y)


def warn_experimental(y: LimaYAML) -> None:
    """Log a warning for each experimental setting in use."""
    if y.mount_type == NINEP:
        log.warning("`mountType: 9p` is experimental")
    if y.mount_type == VIRTIOFS and sys.platform.startswith("linux"):
        log.warning("`mountType: virtiofs` on Linux is experimental")
    if y.vm_type == VZ:
        log.warning("`vmType: vz` is experimental")
    if y.arch == RISCV64:
        log.warning("`arch: riscv64` is experimental")
    if y.video.display is not None and "vnc" in y.video.display:
        log.warning("`video.display: vnc` is experimental")
    if y.audio.device:
        log.warning("`audio.device` is experimental")