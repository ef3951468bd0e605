"""
Tests for the application logger in src/utils/logger.py.
"""

import logging
from unittest.mock import patch

import pytest

from src.utils import logger as logger_module


@pytest.fixture(autouse=True)
def fresh_logger():
    """Reset the cached logger so each test configures it again."""
    logger_module._logger_instance = None
    yield
    app_logger = logging.getLogger(logger_module._APP_LOGGER_NAME)
    for handler in list(app_logger.handlers):
        handler.close()
        app_logger.removeHandler(handler)
    logger_module._logger_instance = None


def test_logs_to_console_and_file(tmp_path):
    with patch.object(logger_module, "config", {"paths": {"logs_dir": str(tmp_path / "logs")}}):
        app_logger = logger_module.get_logger()

    assert app_logger.name == "interview"
    handler_types = {type(h) for h in app_logger.handlers}
    assert logging.StreamHandler in handler_types
    assert logging.FileHandler in handler_types

    app_logger.info("outbox event published")
    for handler in app_logger.handlers:
        handler.flush()
    assert "outbox event published" in (tmp_path / "logs" / "interview.log").read_text()


def test_get_logger_is_cached(tmp_path):
    with patch.object(logger_module, "config", {"paths": {"logs_dir": str(tmp_path)}}):
        assert logger_module.get_logger() is logger_module.get_logger()
        assert len(logger_module.get_logger().handlers) == 2


def test_unwritable_log_dir_disables_file_logging(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    with patch.object(logger_module, "config", {"paths": {"logs_dir": str(blocker / "logs")}}):
        app_logger = logger_module.get_logger()

    assert not any(isinstance(h, logging.FileHandler) for h in app_logger.handlers)
