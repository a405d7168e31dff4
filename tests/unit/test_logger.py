"""Tests for logging utilities."""

import logging

import pytest

from invoice_exchange_core.exceptions import clear_correlation_id, set_correlation_id
from invoice_exchange_core.utils.logger import (
    ContextAwareLogger,
    CorrelationIdFilter,
    configure_logging,
    get_logger,
    mask_secret,
    reset_logging,
)


class TestContextAwareLogger:
    """Test extra formatting."""

    def test_extras_rendered_in_message(self, caplog):
        logger = ContextAwareLogger(logging.getLogger("invoice_exchange.test_extras"))

        with caplog.at_level(logging.INFO, logger="invoice_exchange.test_extras"):
            logger.info("Token refreshed", extra={"trigger": "scheduled", "expires_at": 1000})

        record = caplog.records[-1]
        assert record.getMessage() == "Token refreshed | trigger=scheduled | expires_at=1000"
        assert record.trigger == "scheduled"

    def test_reserved_names_are_dropped_from_record(self, caplog):
        logger = ContextAwareLogger(logging.getLogger("invoice_exchange.test_reserved"))

        with caplog.at_level(logging.WARNING, logger="invoice_exchange.test_reserved"):
            logger.warning("Failed", extra={"message": "inner"})

        assert caplog.records[-1].getMessage() == "Failed | message=inner"

    def test_no_extras(self, caplog):
        logger = ContextAwareLogger(logging.getLogger("invoice_exchange.test_plain"))

        with caplog.at_level(logging.DEBUG, logger="invoice_exchange.test_plain"):
            logger.debug("Plain message")

        assert caplog.records[-1].getMessage() == "Plain message"


class TestCorrelationIdFilter:
    """Test correlation id stamping."""

    def test_stamps_correlation_id(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        set_correlation_id("corr-9")
        try:
            assert CorrelationIdFilter().filter(record) is True
        finally:
            clear_correlation_id()
        assert record.correlation_id == "corr-9"

    def test_without_correlation_id(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert CorrelationIdFilter().filter(record) is True
        assert not hasattr(record, "correlation_id")


class TestMaskSecret:
    """Test secret masking."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, "missing"),
            ("", "missing"),
            ("abcdefghij", "abcde... (len=10)"),
            ("abc", "abc... (len=3)"),
        ],
    )
    def test_mask(self, value, expected):
        assert mask_secret(value) == expected


class TestConfigureLogging:
    """Test component logger configuration."""

    def test_configure_sets_component_logger(self):
        logger = configure_logging("refresh_job", "DEBUG")
        try:
            assert get_logger() is logger
            assert logger.logger.name == "invoice_exchange.refresh_job"
            assert logger.logger.level == logging.DEBUG
            assert len(logger.logger.handlers) == 1
        finally:
            reset_logging()

    def test_reconfigure_replaces_handlers(self):
        configure_logging("web")
        logger = configure_logging("web")
        try:
            assert len(logger.logger.handlers) == 1
        finally:
            reset_logging()

    def test_default_logger(self):
        reset_logging()
        logger = get_logger("WARNING")
        assert isinstance(logger, ContextAwareLogger)
        assert logger.logger.name == "invoice_exchange"
        assert logger.logger.level == logging.WARNING
