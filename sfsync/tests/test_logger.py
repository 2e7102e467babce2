# sfsync/tests/test_logger.py
import logging
from logging.handlers import RotatingFileHandler

import pytest

from sfsync.core.config import settings
from sfsync.utils.logger import setup_logging


@pytest.fixture
def restore_app_logger():
    logger = logging.getLogger(settings.APP_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


def test_console_only_by_default(monkeypatch, restore_app_logger):
    monkeypatch.setattr(settings, "LOG_FILENAME", "")
    logger = setup_logging()
    assert logger.name == settings.APP_NAME
    assert [type(h) for h in logger.handlers] == [logging.StreamHandler]


def test_repeated_setup_does_not_duplicate_handlers(monkeypatch, restore_app_logger):
    monkeypatch.setattr(settings, "LOG_FILENAME", "")
    setup_logging()
    logger = setup_logging()
    assert len(logger.handlers) == 1


def test_file_logging_uses_rotating_handler(monkeypatch, tmp_path, restore_app_logger):
    log_file = tmp_path / "sync.log"
    monkeypatch.setattr(settings, "LOG_FILENAME", str(log_file))
    logger = setup_logging()
    (file_handler,) = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert file_handler.maxBytes == settings.LOG_MAX_BYTES
    logger.info("bulk job 750X completed")
    file_handler.flush()
    assert "bulk job 750X completed" in log_file.read_text(encoding="utf-8")


def test_unwritable_log_file_falls_back_to_console(monkeypatch, tmp_path, restore_app_logger):
    monkeypatch.setattr(settings, "LOG_FILENAME", str(tmp_path))  # a directory cannot be opened as a file
    logger = setup_logging()
    assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)


def test_level_follows_settings(monkeypatch, restore_app_logger):
    monkeypatch.setattr(settings, "LOG_FILENAME", "")
    monkeypatch.setattr(settings, "LOG_LEVEL", "warning")
    assert setup_logging().level == logging.WARNING
