"""
Test suite for configuration and logging

Tests environment-driven settings and the structured JSON log formatter.
"""

import json
import logging

from lending_core.config import LendingConfig, get_config, reload_config
from lending_core.logging_config import JSONFormatter, get_logger, log_action, setup_logging


class TestLendingConfig:
    """Test pydantic settings"""

    def test_defaults(self):
        settings = LendingConfig()

        assert settings.math_precision == 19
        assert settings.default_currency == "USD"
        assert settings.allocation_components == ["penalty", "fee", "interest", "principal"]
        assert settings.non_working_weekday_numbers == [6, 7]
        assert settings.allocation_spill_to_next_installment is True

    def test_environment_override(self, monkeypatch):
        """Test LENDING_ prefixed variables override defaults"""
        monkeypatch.setenv("LENDING_MATH_PRECISION", "28")
        monkeypatch.setenv("LENDING_DEFAULT_ALLOCATION_ORDER", "interest, principal, fee, penalty")
        monkeypatch.setenv("LENDING_NON_WORKING_WEEKDAYS", "5,6")

        settings = LendingConfig()

        assert settings.math_precision == 28
        assert settings.allocation_components == ["interest", "principal", "fee", "penalty"]
        assert settings.non_working_weekday_numbers == [5, 6]

    def test_reload_config(self, monkeypatch):
        """Test reload replaces the global instance"""
        monkeypatch.setenv("LENDING_LOG_LEVEL", "DEBUG")
        try:
            settings = reload_config()
            assert settings.log_level == "DEBUG"
            assert get_config() is settings
        finally:
            monkeypatch.delenv("LENDING_LOG_LEVEL")
            reload_config()

        assert get_config().log_level == "INFO"


class TestStructuredLogging:
    """Test JSON log output"""

    def test_json_formatter_drops_empty_fields(self):
        record = logging.LogRecord("lending.test", logging.INFO, __file__, 1, "hello", (), None)
        record.action = "generate_schedule"

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "hello"
        assert payload["action"] == "generate_schedule"
        assert payload["level"] == "INFO"
        assert "correlation_id" not in payload

    def test_log_action_attaches_fields(self, caplog):
        logger = get_logger("lending.test")
        with caplog.at_level(logging.INFO, logger="lending.test"):
            log_action(logger, "info", "allocated", action="allocate_transaction",
                       resource="transaction", extra={"mappings": 2})

        record = caplog.records[-1]
        assert record.action == "allocate_transaction"
        assert record.resource == "transaction"
        assert record.extra == {"mappings": 2}

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("WARNING", logger_name="lending.setup_test")
        setup_logging("WARNING", logger_name="lending.setup_test")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.WARNING

    def test_text_format(self):
        logger = setup_logging("INFO", logger_name="lending.text_test", log_format="text")
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
