"""Validation of port-forwarding and copy-to-host rules."""

from __future__ import annotations

import ipaddress
import os
from typing import Iterable, Optional

from .model import TCP, CopyToHost, IPAddress, PortForward
from .usernet import UNIX_PATH_MAX


class ValidationError(ValueError):
    """An instance configuration is invalid."""


def validate_port(field: str, port: int) -> None:
    """Raise ValidationError unless ``port`` is a usable TCP port other than 22."""
    if port < 0:
        raise ValidationError(f"field `{field}` must be > 0")
    if port == 0:
        raise ValidationError(f"field `{field}` must be set")
    if port == 22:
        raise ValidationError(f"field `{field}` must not be 22")
    if port > 65535:
        raise ValidationError(f"field `{field}` must be < 65536")


def _is_ipv4_zero(ip: Optional[IPAddress]) -> bool:
    if ip is None:
        return False
    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ip.ipv4_mapped
        return mapped is not None and int(mapped) == 0
    return int(ip) == 0


def _validate_port_forward(field: str, rule: PortForward) -> None:
    if rule.guest_ip_must_be_zero and not _is_ipv4_zero(rule.guest_ip):
        raise ValidationError(
            f"field `{field}.guestIPMustBeZero` can only be true when field `{field}.guestIP` is 0.0.0.0"
        )
    if rule.guest_port != 0:
        if rule.guest_socket:
            raise ValidationError(f"field `{field}.guestPort` must be 0 when field `{field}.guestSocket` is set")
        if rule.guest_port != rule.guest_port_range[0]:
            raise ValidationError(f"field `{field}.guestPort` must match field `{field}.guestPortRange[0]`")
        validate_port(f"{field}.guestPort", rule.guest_port)
    if rule.host_port != 0:
        if rule.host_socket:
            raise ValidationError(f"field `{field}.hostPort` must be 0 when field `{field}.hostSocket` is set")
        if rule.host_port != rule.host_port_range[0]:
            raise ValidationError(f"field `{field}.hostPort` must match field `{field}.hostPortRange[0]`")
        validate_port(f"{field}.hostPort", rule.host_port)
    for j in range(2):
        validate_port(f"{field}.guestPortRange[{j}]", rule.guest_port_range[j])
        validate_port(f"{field}.hostPortRange[{j}]", rule.host_port_range[j])
    guest_lo, guest_hi = rule.guest_port_range
    host_lo, host_hi = rule.host_port_range
    if guest_lo > guest_hi:
        raise ValidationError(
            f"field `{field}.guestPortRange[1]` must be greater than or equal to field `{field}.guestPortRange[0]`"
        )
    if host_lo > host_hi:
        raise ValidationError(
            f"field `{field}.hostPortRange[1]` must be greater than or equal to field `{field}.hostPortRange[0]`"
        )
    if guest_hi - guest_lo != host_hi - host_lo:
        raise ValidationError(
            f"field `{field}.hostPortRange` must specify the same number of ports as field `{field}.guestPortRange`"
        )
    if rule.guest_socket:
        if not rule.guest_socket.startswith("/"):
            raise ValidationError(f"field `{field}.guestSocket` must be an absolute path")
        if not rule.host_socket and host_hi - host_lo > 0:
            raise ValidationError(
                f"field `{field}.guestSocket` can only be mapped to a single port or socket. not a range"
            )
    if rule.host_socket:
        if not os.path.isabs(rule.host_socket):
            raise ValidationError(
                f'field `{field}.hostSocket` must be an absolute path, but is "{rule.host_socket}"'
            )
        if not rule.guest_socket and guest_hi - guest_lo > 0:
            raise ValidationError(
                f"field `{field}.hostSocket` can only be mapped from a single port or socket. not a range"
            )
    length = len(rule.host_socket.encode("utf-8"))
    if length >= UNIX_PATH_MAX:
        raise ValidationError(
            f"field `{field}.hostSocket` must be less than UNIX_PATH_MAX={UNIX_PATH_MAX} characters, "
            f"but is {length}"
        )
    if rule.proto != TCP:
        raise ValidationError(f'field `{field}.proto` must be "{TCP}"')
    if rule.reverse and (not rule.guest_socket or not rule.host_socket):
        raise ValidationError(f"field `{field}.reverse` must be false")


def validate_port_forwards(rules: Iterable[PortForward]) -> None:
    """Check port-forwarding rules whose defaults have been filled in.

    Overlapping ranges are allowed: the first matching rule wins.
    """
    for i, rule in enumerate(rules):
        _validate_port_forward(f"portForwards[{i}]", rule)


def validate_copy_to_host(rules: Iterable[CopyToHost]) -> None:
    """Check that copy-to-host rules use absolute paths."""
    for i, rule in enumerate(rules):
        field = f"CopyToHost[{i}]"
        if rule.guest_file and not rule.guest_file.startswith("/"):
            raise ValidationError(f"field `{field}.guest` must be an absolute path")
        if rule.host_file and not os.path.isabs(rule.host_file):
            raise ValidationError(
                f'field `{field}.host` must be an absolute path, but is "{rule.host_file}"'
            )