"""Expansion of local paths that may start with a tilde."""

from __future__ import annotations

import os


def expand(orig: str) -> str:
    """Expand ``~``, ``~/`` and ``~/foo`` and return an absolute path.

    Paths naming another user's home, such as ``~foo/bar``, are rejected.
    """
    if orig == "":
        raise ValueError("empty path")
    s = orig
    if s.startswith("~"):
        if s != "~" and not s.startswith("~/"):
            raise ValueError(f'unexpandable path "{orig}"')
        home = os.path.expanduser("~")
        if home == "~" or not home:
            raise OSError("cannot determine the home directory")
        s = home + s[1:]
    return os.path.abspath(s)