# sfsync/utils/logger.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from sfsync.core.config import settings


def setup_logging():
    """
    Configures logging for the application.
    Logs to console and optionally to a rotating file.
    """
    log_level_name = settings.LOG_LEVEL.upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    # Every module logs through the application logger.
    logger = logging.getLogger(settings.APP_NAME)
    logger.setLevel(log_level)

    if logger.hasHandlers():
        logger.handlers.clear()

    log_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(process)d - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)
    logger.addHandler(console_handler)

    if settings.LOG_FILENAME:
        try:
            file_handler = RotatingFileHandler(
                settings.LOG_FILENAME,
                maxBytes=settings.LOG_MAX_BYTES,
                backupCount=settings.LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
            file_handler.setFormatter(log_formatter)
            logger.addHandler(file_handler)
            logger.info(f"Logging to file: {settings.LOG_FILENAME}")
        except OSError as e:
            logger.error(f"Failed to configure file logger for {settings.LOG_FILENAME}: {e}", exc_info=True)

    # Request/response lines from httpx are logged by the API client at DEBUG.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger.info(f"Logging setup complete. Application log level set to: {log_level_name}")
    return logger
