"""
Centralized logging for Parley.

Errors go to parley_errors.log, pipeline chatter to meeting_debug.log.
Console output is optional (off for background processes).
"""

import logging
import os
from pathlib import Path


def get_parley_home() -> Path:
    """Directory holding config, logs, meetings and enrolled speakers."""
    return Path(os.environ.get("PARLEY_HOME") or Path.home() / ".parley")


class ParleyLogger:
    """Centralized logger for Parley."""

    _instance = None
    _logger = None

    def __init__(self, console: bool = False):
        """Initialize the logger (singleton)."""
        if ParleyLogger._logger is None:
            ParleyLogger._logger = self._setup_logger(console)

    @classmethod
    def get_logger(cls, console: bool = False):
        """Get the singleton logger instance."""
        if cls._instance is None:
            cls._instance = cls(console)
        return cls._logger

    @classmethod
    def reset(cls):
        """Drop handlers so the next get_logger() re-reads PARLEY_HOME."""
        if cls._logger is not None:
            for handler in list(cls._logger.handlers):
                handler.close()
                cls._logger.removeHandler(handler)
        cls._instance = None
        cls._logger = None

    def _setup_logger(self, console: bool):
        """Set up the file loggers, plus a console handler when asked."""
        logs_dir = get_parley_home() / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)

        logger = logging.getLogger('parley')
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        # Remove any existing handlers
        logger.handlers = []

        # Format: [2024-01-15 14:30:25] ERROR - message
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        error_handler = logging.FileHandler(logs_dir / "parley_errors.log", mode='a', encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        logger.addHandler(error_handler)

        debug_handler = logging.FileHandler(logs_dir / "meeting_debug.log", mode='a', encoding='utf-8')
        debug_handler.setLevel(logging.DEBUG)
        debug_handler.setFormatter(formatter)
        logger.addHandler(debug_handler)

        if console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter('[%(name)s] %(message)s'))
            logger.addHandler(console_handler)

        return logger


def get_logger(name: str = "parley") -> logging.Logger:
    """Get a child of the parley logger, setting up handlers on first use."""
    ParleyLogger.get_logger()
    if name == "parley" or name.startswith("parley."):
        return logging.getLogger(name)
    return logging.getLogger(f"parley.{name}")


# Convenience functions for logging
def log_error(message, exception=None):
    """
    Log an error message to file.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = ParleyLogger.get_logger()
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in transcription")
    """
    logger = ParleyLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)
