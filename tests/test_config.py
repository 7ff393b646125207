"""Tests for settings and logging setup."""
import logging

import pytest
from pydantic import ValidationError

from config.settings import Settings
from src.logging_config import NOISY_LOGGERS, setup_logging


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.sync_default_lookback_days == 50
        assert settings.company_match_threshold == 0.5
        assert settings.keyword_match_threshold == 0.7

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_MESSAGES", "25")
        monkeypatch.setenv("KEYWORD_MATCH_THRESHOLD", "0.8")

        settings = Settings(_env_file=None)

        assert settings.sync_max_messages == 25
        assert settings.keyword_match_threshold == 0.8

    @pytest.mark.parametrize("field,value", [("keyword_match_threshold", 1.5), ("sync_max_messages", 0)])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestLoggingSetup:
    """Tests for setup_logging."""

    @pytest.fixture
    def bare_root(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        root.handlers = []
        yield root
        for handler in root.handlers:
            handler.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)

    def test_file_handler_and_quiet_libraries(self, bare_root, tmp_path):
        log_file = tmp_path / "logs" / "jobcat.log"

        setup_logging(level="info", log_file=str(log_file))

        assert bare_root.level == logging.INFO
        assert len(bare_root.handlers) == 2
        assert log_file.parent.exists()
        assert logging.getLogger(NOISY_LOGGERS[0]).level == logging.WARNING

    def test_second_call_is_noop(self, bare_root):
        setup_logging()
        setup_logging()

        assert len(bare_root.handlers) == 1
