"""Re-emit JSON log lines produced by a child process through a logger."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

EPSILON = timedelta(seconds=1)

_RFC3339 = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|z|[+-]\d{2}:\d{2})$"
)

_LEVELS = {
    "panic": logging.ERROR,
    "fatal": logging.ERROR,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}


class _Undecodable(Exception):
    pass


def _parse_time(text: str) -> datetime:
    m = _RFC3339.match(text)
    if not m:
        raise _Undecodable(text)
    year, month, day, hour, minute, second, frac, zone = m.groups()
    micro = int((frac or "0")[:6].ljust(6, "0"))
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    try:
        return datetime(int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tz)
    except ValueError as exc:
        raise _Undecodable(text) from exc


def _decode(text: str):
    try:
        obj = json.loads(text)
    except ValueError as exc:
        raise _Undecodable(text) from exc
    if obj is None:
        obj = {}
    if not isinstance(obj, dict):
        raise _Undecodable(text)
    fields = {"level": None, "msg": None, "time": None}
    for key, value in obj.items():
        lowered = key.lower()
        if lowered in fields:
            fields[lowered] = value
    level = fields["level"] if fields["level"] is not None else ""
    msg = fields["msg"] if fields["msg"] is not None else ""
    if not isinstance(level, str) or not isinstance(msg, str):
        raise _Undecodable(text)
    raw_time = fields["time"]
    if raw_time is None:
        when = None
    elif isinstance(raw_time, str):
        when = _parse_time(raw_time)
    else:
        raise _Undecodable(text)
    return level, msg, when


def propagate_json(
    logger: logging.Logger,
    json_line: Union[bytes, str],
    header: str,
    begin: Optional[datetime],
) -> None:
    """Log one JSON-formatted line through ``logger``, prefixed by ``header``.

    Panic and fatal entries are logged as errors with the original level kept
    in the record's ``level`` attribute. Entries older than ``begin`` (with one
    second of slack) are dropped. Lines that cannot be decoded are logged
    verbatim at info level.
    """
    text = json_line.decode("utf-8", errors="replace") if isinstance(json_line, bytes) else json_line
    if text.strip() == "":
        return
    try:
        level, msg, when = _decode(text)
        if when is not None and begin is not None:
            if begin.tzinfo is None:
                begin = begin.replace(tzinfo=timezone.utc)
            if begin > when + EPSILON:
                return
        name = level.lower()
        if name not in _LEVELS:
            raise _Undecodable(text)
    except _Undecodable:
        logger.info(header + text)
        return
    if name == "warn":
        name = "warning"
    if name in ("panic", "fatal"):
        logger.error(header + msg, extra={"level": name})
    else:
        logger.log(_LEVELS[name], header + msg)