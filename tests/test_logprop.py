import logging
from datetime import datetime, timezone

import pytest

from limaconf.logprop import TRACE, propagate_json

LOGGER_NAME = "tests.logprop"


@pytest.fixture
def logger(caplog):
    caplog.set_level(1, logger=LOGGER_NAME)
    return logging.getLogger(LOGGER_NAME)


def _records(caplog):
    return [r for r in caplog.records if r.name == LOGGER_NAME]


@pytest.mark.parametrize(
    "line, levelno",
    [
        (b'{"level": "trace"}', TRACE),
        (b'{"level": "debug"}', logging.DEBUG),
        (b'{"level": "info"}', logging.INFO),
        (b'{"level": "error"}', logging.ERROR),
        (b'{"level": "warning"}', logging.WARNING),
    ],
)
def test_levels(logger, caplog, line, levelno):
    propagate_json(logger, line, "header", None)
    records = _records(caplog)
    assert len(records) == 1
    assert records[0].levelno == levelno
    assert records[0].getMessage() == "header"


@pytest.mark.parametrize("level", ["panic", "fatal"])
def test_panic_and_fatal_become_error(logger, caplog, level):
    propagate_json(logger, ('{"level": "%s"}' % level).encode(), "header", None)
    records = _records(caplog)
    assert len(records) == 1
    assert records[0].levelno == logging.ERROR
    assert records[0].getMessage() == "header"
    assert records[0].level == level


def test_empty_json_line(logger, caplog):
    propagate_json(logger, b"", "header", None)
    assert _records(caplog) == []


def test_unmarshal_failed(logger, caplog):
    propagate_json(logger, b'"', "header", None)
    records = _records(caplog)
    assert len(records) == 1
    assert records[0].levelno == logging.INFO
    assert records[0].getMessage() == 'header"'


def test_begin_time_after_time_in_json_line(logger, caplog):
    line = b'{"level": "info", "time": "2023-12-01T00:00:00.0000+00:00"}'
    begin = datetime(2023, 12, 15, 0, 0, 0, tzinfo=timezone.utc)
    propagate_json(logger, line, "header", begin)
    assert _records(caplog) == []


def test_begin_time_before_time_in_json_line(logger, caplog):
    line = b'{"level": "info", "msg": "m", "time": "2023-12-01T00:00:00.0000+00:00"}'
    begin = datetime(2023, 11, 1, 0, 0, 0, tzinfo=timezone.utc)
    propagate_json(logger, line, "header", begin)
    assert [r.getMessage() for r in _records(caplog)] == ["headerm"]


def test_parse_level_failed(logger, caplog):
    line = b'{"level": "info", "level": "unknown level"}'
    propagate_json(logger, line, "header", None)
    records = _records(caplog)
    assert len(records) == 1
    assert records[0].levelno == logging.INFO
    assert records[0].getMessage() == 'header{"level": "info", "level": "unknown level"}'