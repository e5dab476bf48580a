from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes.

- ラベル統一 (INFO|WARN|ERROR|SUMMARY prefixes)
- Standard logging only
- Module loggers under the ``src`` package share the same stdout handler
"""

__all__ = [
    "SUMMARY_LEVEL",
    "APP_LOGGER_NAME",
    "LabeledFormatter",
    "setup_logging",
    "get_logger",
    "set_debug",
    "log_summary",
    "reset_logging",
]

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25

APP_LOGGER_NAME = "tiremaster_importer"
# logging.getLogger(__name__) で作られるモジュールロガーの親
PACKAGE_LOGGER_NAME = "src"

# Global logger instance
_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formatter rendering ``LABEL message`` (INFO / WARN / ERROR / SUMMARY ...)."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        message = f"{level_label} {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def _configure(logger: logging.Logger, handler: logging.Handler) -> None:
    logger.setLevel(logging.INFO)
    # Clear any existing handlers to avoid duplication
    for existing in logger.handlers[:]:
        logger.removeHandler(existing)
    logger.addHandler(handler)
    # Prevent propagation to root logger to avoid duplicate output
    logger.propagate = False


def setup_logging() -> logging.Logger:
    """Setup logging with labeled prefixes for the application.

    Output goes to stdout for consistency with the CLI contract. Idempotent.

    Returns:
        Configured application logger
    """
    global _logger

    if _logger is not None:
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    handler.setFormatter(LabeledFormatter())

    logger = logging.getLogger(APP_LOGGER_NAME)
    _configure(logger, handler)
    _configure(logging.getLogger(PACKAGE_LOGGER_NAME), handler)

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Get the configured application logger (configures it on first use)."""
    if _logger is None:
        return setup_logging()
    return _logger


def set_debug(enabled: bool = True) -> None:
    """Lower (or restore) handler and logger levels for --debug."""
    level = logging.DEBUG if enabled else logging.INFO
    for name in (APP_LOGGER_NAME, PACKAGE_LOGGER_NAME):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        for h in logger.handlers:
            h.setLevel(level)


def log_summary(message: str) -> None:
    """Log a message at SUMMARY level."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Reset the global logger state. Mainly for testing purposes."""
    global _logger
    _logger = None
    for name in (APP_LOGGER_NAME, PACKAGE_LOGGER_NAME):
        logger = logging.getLogger(name)
        for existing in logger.handlers[:]:
            logger.removeHandler(existing)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
