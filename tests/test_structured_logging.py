"""Tests for logging setup"""

import json
import logging

import pytest

from caddyhost_cli.structured_logging import JSONFormatter, is_json_logging_enabled, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord("caddyhost.test", logging.WARNING, __file__, 10, msg, args, None, func="check_ports")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_fields():
    payload = json.loads(JSONFormatter().format(_record(port=443)))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "caddyhost.test"
    assert payload["message"] == "hello world"
    assert payload["function"] == "check_ports"
    assert payload["port"] == 443
    assert payload["timestamp"].endswith("Z")


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        import sys

        record = logging.LogRecord("caddyhost.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    payload = json.loads(JSONFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]


@pytest.mark.parametrize("value,expected", [("json", True), ("JSON", True), ("text", False)])
def test_is_json_logging_enabled(monkeypatch, value, expected):
    monkeypatch.setenv("CADDYHOST_LOG_FORMAT", value)
    assert is_json_logging_enabled() is expected


def test_setup_logging_json(monkeypatch):
    monkeypatch.setenv("CADDYHOST_LOG_FORMAT", "json")
    monkeypatch.delenv("CADDYHOST_LOG_FILE", raising=False)

    setup_logging(level="debug")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert isinstance(root.handlers[0].formatter, JSONFormatter)


def test_setup_logging_level_from_env_and_file(monkeypatch, tmp_path):
    log_file = tmp_path / "caddyhost.log"
    monkeypatch.setenv("CADDYHOST_LOG_FORMAT", "text")
    monkeypatch.setenv("CADDYHOST_LOG_LEVEL", "INFO")
    monkeypatch.setenv("CADDYHOST_LOG_FILE", str(log_file))

    setup_logging()
    logging.getLogger("caddyhost.test").info("written")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.INFO
    assert "written" in log_file.read_text()
