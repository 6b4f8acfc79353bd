"""
Tests for the installer logging setup.
"""

import json
import logging

import pytest

from keylime_provisioner.logging import (
    BOOTSTRAP_LEVEL,
    LOGGER_NAMESPACE,
    bootstrap_logging,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_logging():
    bootstrap_logging()
    yield
    bootstrap_logging()


def test_bootstrap_level_is_warning():
    assert logging.getLogger(LOGGER_NAMESPACE).level == BOOTSTRAP_LEVEL == logging.WARNING


def test_logs_before_setup_go_to_stderr(capsys):
    """Test that module-level loggers write to stderr before any config is loaded."""
    logger = get_logger("Early")
    logger.debug("early debug")
    logger.warning("early warning")

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "early warning" in captured.err
    assert "early debug" not in captured.err


def test_setup_logging_applies_level(capsys):
    setup_logging({"logging": {"level": "WARNING"}})
    logger = get_logger("Test")
    logger.info("hidden message")
    logger.warning("shown message")

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "hidden message" not in captured.err
    assert "shown message" in captured.err


def test_setup_logging_applies_to_existing_loggers(capsys):
    """Test that a logger created at import time follows a later level change."""
    logger = get_logger("Preexisting")
    setup_logging({"logging": {"level": "DEBUG"}})
    logger.debug("now visible")

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "now visible" in captured.err
    assert logging.getLogger(LOGGER_NAMESPACE).level == logging.DEBUG


def test_setup_logging_json_format(capsys):
    setup_logging({"logging": {"level": "INFO", "format": "json"}})
    get_logger("Json").info("structured", unit="keylime_agent.service")

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "structured"
    assert record["unit"] == "keylime_agent.service"
    assert record["level"] == "info"
    assert record["logger"] == f"{LOGGER_NAMESPACE}.Json"


def test_setup_logging_twice_keeps_one_handler():
    setup_logging({"logging": {"level": "INFO"}})
    setup_logging({"logging": {"level": "ERROR"}})
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    assert len(namespace.handlers) == 1
    assert namespace.level == logging.ERROR
    assert namespace.propagate is False
