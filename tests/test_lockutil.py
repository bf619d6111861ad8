import fcntl
import os

import pytest

from limaconf.lockutil import dir_lock, with_dir_lock


def _try_lock(path):
    fd = os.open(str(path), os.O_RDONLY)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        fcntl.flock(fd, fcntl.LOCK_UN)
        return True
    finally:
        os.close(fd)


def test_with_dir_lock_returns_result(tmp_path):
    assert with_dir_lock(tmp_path, lambda: 42) == 42


def test_lock_is_held_inside_and_released_after(tmp_path):
    observed = []

    def inside():
        observed.append(_try_lock(tmp_path))
        return "done"

    assert with_dir_lock(tmp_path, inside) == "done"
    assert observed == [False]
    assert _try_lock(tmp_path) is True


def test_exception_propagates_and_releases_lock(tmp_path):
    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        with_dir_lock(tmp_path, boom)
    assert _try_lock(tmp_path) is True


def test_context_manager_holds_lock(tmp_path):
    with dir_lock(tmp_path):
        held = _try_lock(tmp_path)
    assert held is False
    assert _try_lock(tmp_path) is True


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        with_dir_lock(tmp_path / "missing", lambda: None)