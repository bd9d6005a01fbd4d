"""
Tests for settings loading and validation.
"""

import logging

import pytest
from pydantic import ValidationError

from prdsmith.config.logging import ColoredFormatter, get_logger, setup_logging
from prdsmith.config.settings import (
    FallbackSettings,
    RateLimitSettings,
    Settings,
    TokenSettings,
    load_settings,
)


class TestDefaults:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.llm.model == "openai/gpt-4-turbo-preview"
        assert settings.retry.upstream_timeout == 30.0
        assert settings.retry.max_retries == 2
        assert settings.rate_limit.quota == 100
        assert settings.rate_limit.window_seconds == 3600.0
        assert settings.cache.ttl_seconds == 1800.0
        assert settings.tokens.section_budget == 8000
        assert settings.fallback.eligible_kinds == ["network", "rate_limited"]

    def test_budget_for_section(self):
        tokens = TokenSettings(section_budgets={"requirements": 12000})
        assert tokens.budget_for("requirements") == 12000
        assert tokens.budget_for("goals") == 8000


class TestEnvironment:

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("LLM__MODEL", "anthropic/claude-3-5-sonnet-20241022")
        monkeypatch.setenv("RATE_LIMIT__QUOTA", "5")
        monkeypatch.setenv("CACHE__ENABLED", "false")

        settings = Settings(_env_file=None)

        assert settings.llm.model == "anthropic/claude-3-5-sonnet-20241022"
        assert settings.rate_limit.quota == 5
        assert settings.cache.enabled is False

    def test_json_env_for_mappings(self, monkeypatch):
        monkeypatch.setenv("TOKENS__SECTION_BUDGETS", '{"requirements": 12000}')
        monkeypatch.setenv("FALLBACK__ELIGIBLE_KINDS", '["network", "timeout"]')

        settings = Settings(_env_file=None)

        assert settings.tokens.section_budgets == {"requirements": 12000}
        assert settings.fallback.eligible_kinds == ["network", "timeout"]

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LLM__MODEL", raising=False)
        env_file = tmp_path / "test.env"
        env_file.write_text("LLM__MODEL=ollama/llama3\nLOG_LEVEL=DEBUG\n")

        settings = load_settings(env_file=env_file)

        assert settings.llm.model == "ollama/llama3"
        assert settings.log_level == "DEBUG"


class TestValidation:

    def test_quota_must_be_positive(self):
        with pytest.raises(ValidationError):
            RateLimitSettings(quota=0)

    def test_headroom_bounded(self):
        with pytest.raises(ValidationError):
            TokenSettings(headroom=1.5)

    def test_non_retriable_kind_not_fallback_eligible(self):
        with pytest.raises(ValidationError):
            FallbackSettings(eligible_kinds=["unauthorized"])

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="VERBOSE")


class TestLogging:

    def test_setup_logging_configures_package_logger(self, tmp_path):
        log_file = tmp_path / "logs" / "prdsmith.log"
        settings = Settings(_env_file=None, log_level="WARNING", log_file=log_file)

        setup_logging(settings)
        logger = logging.getLogger("prdsmith")

        assert logger.level == logging.WARNING
        assert logger.propagate is False
        assert len(logger.handlers) == 2
        assert log_file.parent.exists()

        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_setup_logging_twice_does_not_stack_handlers(self):
        settings = Settings(_env_file=None, log_level="INFO")

        setup_logging(settings)
        setup_logging(settings)
        logger = logging.getLogger("prdsmith")

        assert len(logger.handlers) == 1
        logger.handlers.clear()

    def test_colour_applied_to_a_copy(self):
        record = logging.LogRecord("prdsmith", logging.ERROR, __file__, 1, "boom", None, None)

        line = ColoredFormatter(fmt="%(levelname)s %(message)s").format(record)

        assert line.startswith("\033[31mERROR")
        assert record.levelname == "ERROR"

    def test_get_logger_nests_under_package(self):
        assert get_logger("prdsmith.llm.retry").name == "prdsmith.llm.retry"
        assert get_logger("tests").name == "prdsmith.tests"
