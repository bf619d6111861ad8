"""Exclusive advisory locks on directories."""

from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar, Union

log = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def dir_lock(directory: Union[str, os.PathLike]) -> Iterator[None]:
    """Hold an exclusive flock on ``directory`` for the duration of the block."""
    fd = os.open(os.fspath(directory), os.O_RDONLY)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            raise OSError(exc.errno, f'failed to lock "{os.fspath(directory)}": {exc.strerror}') from exc
        try:
            yield
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            except OSError:
                log.exception('failed to unlock "%s"', os.fspath(directory))
    finally:
        os.close(fd)


def with_dir_lock(directory: Union[str, os.PathLike], fn: Callable[[], T]) -> T:
    """Call ``fn`` while holding the lock on ``directory`` and return its result."""
    with dir_lock(directory):
        return fn()