from __future__ import annotations

import json
import logging

from cptx.utils.logging import _json_formatter, configure_logging, get_logger

DOMAIN = "billing"
EXPECTED_POOL_SIZE = 10


def _record(msg: str = "hello", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=level,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record("Connecting to PostgreSQL")
    record.platform = "postgres"
    record.domain = DOMAIN

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "Connecting to PostgreSQL"
    assert payload["platform"] == "postgres"
    assert payload["domain"] == DOMAIN
    assert "pathname" not in payload
    assert "lineno" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"pool_max_size": EXPECTED_POOL_SIZE}

    payload = json.loads(_json_formatter(record))

    assert payload["pool_max_size"] == EXPECTED_POOL_SIZE
    assert "extra" not in payload


def test_json_formatter_renders_connection_failure_fields() -> None:
    logger = get_logger("cptx.test")
    record = logger.makeRecord(
        "cptx.test",
        logging.CRITICAL,
        __file__,
        1,
        "Connection to %s failed: %s",
        ("main", "timeout"),
        None,
        extra={"platform": "postgres", "domain": DOMAIN, "type": "main", "connection": "host=db"},
    )

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "CRITICAL"
    assert payload["message"] == "Connection to main failed: timeout"
    assert {key: payload[key] for key in ("platform", "domain", "type", "connection")} == {
        "platform": "postgres",
        "domain": DOMAIN,
        "type": "main",
        "connection": "host=db",
    }


def test_configure_logging_respects_force_flag() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(level="WARNING", json_logs=True)
        assert root.level == logging.WARNING
        configured = root.handlers[:]

        configure_logging(level="DEBUG", force=False)
        assert root.handlers == configured
        assert root.level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
