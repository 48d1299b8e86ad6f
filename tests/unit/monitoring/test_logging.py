"""
Unit tests for the logging module.
"""

import json
import logging

import pytest

from eventfusion.monitoring.logging import (
    ROOT_LOGGER_NAME,
    JsonFormatter,
    TextFormatter,
    setup_logging,
    with_context,
)


def make_record(msg="Fetched 3 events", **extra):
    record = logging.LogRecord("eventfusion.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def package_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


class TestFormatters:
    """Tests for JsonFormatter and TextFormatter."""

    def test_json_includes_context(self):
        line = JsonFormatter().format(make_record(run_id="abc123", source="yelp"))
        payload = json.loads(line)

        assert payload["level"] == "INFO"
        assert payload["msg"] == "Fetched 3 events"
        assert payload["run_id"] == "abc123"
        assert payload["source"] == "yelp"

    def test_text_includes_context(self):
        line = TextFormatter().format(make_record(run_id="abc123"))
        assert line == "INFO eventfusion.test [run_id=abc123] Fetched 3 events"


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_repeated_setup_does_not_stack_handlers(self, package_logger):
        setup_logging("DEBUG")
        setup_logging("DEBUG", json_logs=True)

        ours = [h for h in package_logger.handlers if getattr(h, "_eventfusion_handler", False)]
        assert len(ours) == 1
        assert isinstance(ours[0].formatter, JsonFormatter)
        assert package_logger.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, package_logger):
        assert setup_logging("chatty").level == logging.INFO


class TestWithContext:
    """Tests for with_context()."""

    def test_context_reaches_record(self, package_logger):
        records = []

        class Collector(logging.Handler):
            def emit(self, record):
                records.append(record)

        setup_logging("INFO")
        package_logger.addHandler(Collector())

        with_context(logging.getLogger("eventfusion.ingestion"), run_id="r1", source=None).info("hello")

        assert records[0].run_id == "r1"
        assert not hasattr(records[0], "source")
