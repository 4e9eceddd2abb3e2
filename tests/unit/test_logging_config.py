"""Unit tests for centralized logging configuration."""

from __future__ import annotations

import logging

import pytest

from caption_pipeline.utils import logging_config


@pytest.fixture
def basic_config_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, object]]:
    """Capture ``logging.basicConfig`` keyword arguments instead of applying them."""
    calls: list[dict[str, object]] = []

    def fake_basic_config(**kwargs: object) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(logging, "basicConfig", fake_basic_config)
    return calls


def test_configure_logging_default(
    monkeypatch: pytest.MonkeyPatch, basic_config_calls: list[dict[str, object]]
) -> None:
    """Default logging config should set INFO and force reconfiguration."""
    monkeypatch.setattr(logging_config, "LOG_LEVEL", "INFO")

    logging_config.configure_logging()

    assert basic_config_calls[0]["level"] == logging.INFO
    assert basic_config_calls[0]["force"] is True
    assert logging.getLogger("httpx").level == logging.WARNING


@pytest.mark.parametrize(("env_level", "expected"), [("ERROR", logging.ERROR), ("LOUD", logging.INFO)])
def test_configure_logging_env_level(
    monkeypatch: pytest.MonkeyPatch,
    basic_config_calls: list[dict[str, object]],
    env_level: str,
    expected: int,
) -> None:
    """``LOG_LEVEL`` applies when no flag is given; unknown names fall back to INFO."""
    monkeypatch.setattr(logging_config, "LOG_LEVEL", env_level)

    logging_config.configure_logging()

    assert basic_config_calls[0]["level"] == expected


def test_configure_logging_verbose(basic_config_calls: list[dict[str, object]]) -> None:
    """Verbose mode should set DEBUG but keep client libraries at WARNING."""
    logging_config.configure_logging(verbose=True)

    assert basic_config_calls[0]["level"] == logging.DEBUG
    assert logging.getLogger("pymongo").level == logging.WARNING
    assert logging.getLogger("botocore").level == logging.WARNING


def test_configure_logging_quiet(basic_config_calls: list[dict[str, object]]) -> None:
    logging_config.configure_logging(quiet=True)

    assert basic_config_calls[0]["level"] == logging.CRITICAL
    assert logging.getLogger("httpcore").level == logging.CRITICAL


def test_configure_logging_explicit_level_wins(
    basic_config_calls: list[dict[str, object]],
) -> None:
    logging_config.configure_logging(level="ERROR", verbose=True, format_string="%(message)s")

    assert basic_config_calls[0]["level"] == logging.ERROR
    assert basic_config_calls[0]["format"] == "%(message)s"


def test_get_logger_returns_logger() -> None:
    """get_logger should return a standard library logger."""
    logger = logging_config.get_logger("caption_pipeline.tests")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "caption_pipeline.tests"
