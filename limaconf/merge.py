"""Merging of list-valued settings from default, user and override configurations."""

from __future__ import annotations

import copy
import logging
from typing import Hashable, Iterable, List, Optional, Sequence, TypeVar

from .model import QEMU, VIRTIOFS, LimaYAML, Mount, Network
from .resolve import (
    DEFAULT_9P_CACHE_FOR_RO,
    DEFAULT_9P_CACHE_FOR_RW,
    DEFAULT_9P_MSIZE,
    DEFAULT_9P_PROTOCOL_VERSION,
    DEFAULT_9P_SECURITY_MODEL,
    DEFAULT_VIRTIOFS_QUEUE_SIZE,
    mac_address,
)

log = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


def merge_networks(
    d: Sequence[Network], y: Sequence[Network], o: Sequence[Network], file_path: str
) -> List[Network]:
    """Combine networks in d, y, o order; later entries update earlier ones with the same interface.

    Unnamed networks are never combined. Every resulting network gets a MAC
    address and an interface name.
    """
    networks: List[Network] = []
    by_interface = {}
    for nw in [*d, *y, *o]:
        i = by_interface.get(nw.interface) if nw.interface else None
        if i is None:
            if nw.interface:
                by_interface[nw.interface] = len(networks)
            networks.append(copy.deepcopy(nw))
            continue
        target = networks[i]
        if nw.vnl_deprecated:
            target.vnl_deprecated = nw.vnl_deprecated
            target.switch_port_deprecated = nw.switch_port_deprecated
            target.socket = ""
            target.lima = ""
        if nw.socket:
            if nw.vnl_deprecated:
                log.error('Network "%s" has both vnl="%s" and socket="%s" fields; ignoring vnl',
                          nw.interface, nw.vnl_deprecated, nw.socket)
            target.socket = nw.socket
            target.vnl_deprecated = ""
            target.switch_port_deprecated = 0
            target.lima = ""
        if nw.lima:
            if nw.vnl_deprecated:
                log.error('Network "%s" has both vnl="%s" and lima="%s" fields; ignoring vnl',
                          nw.interface, nw.vnl_deprecated, nw.lima)
            if nw.socket:
                log.error('Network "%s" has both socket="%s" and lima="%s" fields; ignoring socket',
                          nw.interface, nw.socket, nw.lima)
            target.lima = nw.lima
            target.socket = ""
            target.vnl_deprecated = ""
            target.switch_port_deprecated = 0
        if nw.mac_address:
            target.mac_address = nw.mac_address

    for i, nw in enumerate(networks):
        if not nw.mac_address:
            # Every interface of every instance gets its own address.
            nw.mac_address = mac_address(f"{file_path}#{i}")
        if not nw.interface:
            nw.interface = f"lima{i}"
    return networks


def merge_mounts(d: Sequence[Mount], y: Sequence[Mount], o: Sequence[Mount]) -> List[Mount]:
    """Combine mounts in d, y, o order; set fields of later entries win for the same location.

    Locations are compared exactly, without normalising case or symlinks.
    """
    mounts: List[Mount] = []
    by_location = {}
    for mount in [*d, *y, *o]:
        i = by_location.get(mount.location)
        if i is None:
            by_location[mount.location] = len(mounts)
            mounts.append(copy.deepcopy(mount))
            continue
        target = mounts[i]
        for part in ("sshfs", "nine_p", "virtiofs"):
            src, dst = getattr(mount, part), getattr(target, part)
            for name, value in vars(src).items():
                if value is not None:
                    setattr(dst, name, value)
        if mount.writable is not None:
            target.writable = mount.writable
        if mount.mount_point:
            target.mount_point = mount.mount_point
    return mounts


def fill_mount_defaults(mounts: Iterable[Mount], vm_type: str, mount_type: str) -> None:
    """Fill unset fields of each mount in place."""
    for mount in mounts:
        if mount.sshfs.cache is None:
            mount.sshfs.cache = True
        if mount.sshfs.follow_symlinks is None:
            mount.sshfs.follow_symlinks = False
        if mount.sshfs.sftp_driver is None:
            mount.sshfs.sftp_driver = ""
        if mount.nine_p.security_model is None:
            mount.nine_p.security_model = DEFAULT_9P_SECURITY_MODEL
        if mount.nine_p.protocol_version is None:
            mount.nine_p.protocol_version = DEFAULT_9P_PROTOCOL_VERSION
        if mount.nine_p.msize is None:
            mount.nine_p.msize = DEFAULT_9P_MSIZE
        if mount.virtiofs.queue_size is None and vm_type == QEMU and mount_type == VIRTIOFS:
            mount.virtiofs.queue_size = DEFAULT_VIRTIOFS_QUEUE_SIZE
        if mount.writable is None:
            mount.writable = False
        if mount.nine_p.cache is None:
            mount.nine_p.cache = DEFAULT_9P_CACHE_FOR_RW if mount.writable else DEFAULT_9P_CACHE_FOR_RO
        if not mount.mount_point:
            mount.mount_point = mount.location


def fix_up_for_plain_mode(y: LimaYAML) -> None:
    """Switch off mounts, forwards, containerd, rosetta and time zone in plain mode."""
    if not y.plain:
        return
    y.mounts = []
    y.port_forwards = []
    y.containerd.system = False
    y.containerd.user = False
    y.rosetta.binfmt = False
    y.rosetta.enabled = False
    y.time_zone = ""


def unique(items: Iterable[T]) -> List[T]:
    """Items without repeats, in order of first appearance."""
    return list(dict.fromkeys(items))