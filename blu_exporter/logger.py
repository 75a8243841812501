# ABOUTME: File-only logging setup for the Shelly BLU exporter
# ABOUTME: Daily rotated log file at the configured path and level
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from blu_exporter.config import AppConfig


LOGGER_NAME = 'blu_exporter'
LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
RETAINED_DAYS = 30


def get_logger(app_config: AppConfig) -> logging.Logger:
    """
    Return the exporter logger, writing to ``app_config.log_file``.

    Readings, scan summaries and scanner errors all go to this one file. The
    handler is attached once; later calls return the same logger untouched.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, app_config.log_level, logging.INFO))

    Path(app_config.log_file).parent.mkdir(parents=True, exist_ok=True)

    handler = TimedRotatingFileHandler(
        app_config.log_file,
        when='midnight',
        backupCount=RETAINED_DAYS
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)

    return logger
