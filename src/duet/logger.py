"""
Centralized logging for duet.

Logs to file without console output (capture runs on background threads
and the CLI keeps stdout for user-facing progress).
"""

import logging
import os
from pathlib import Path

# Log directory, overridable for tests and packaged installs
LOGS_DIR = Path(os.environ.get("DUET_LOG_DIR", Path.cwd() / "logs"))

# Log file path
LOG_FILE = LOGS_DIR / "duet.log"


class DuetLogger:
    """Centralized logger for the duet pipeline."""

    _instance = None
    _logger = None

    def __init__(self):
        """Initialize the logger (singleton)."""
        if DuetLogger._logger is None:
            DuetLogger._logger = self._setup_logger()

    @classmethod
    def get_logger(cls):
        """Get the singleton logger instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._logger

    def _setup_logger(self):
        """Set up the file logger with no console output."""
        logger = logging.getLogger('duet')
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        # Remove any existing handlers
        logger.handlers = []

        try:
            LOGS_DIR.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(LOG_FILE, mode='a', encoding='utf-8')
        except OSError:
            # Read-only working directory: keep the logger silent
            handler = logging.NullHandler()
        handler.setLevel(logging.DEBUG)

        # Format: [2024-01-15 14:30:25] ERROR - message
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)

        logger.addHandler(handler)

        return logger


def _debug_enabled():
    # Imported lazily: utils imports nothing from here, but config may not be initialized yet
    from .utils import ConfigManager
    try:
        return bool(ConfigManager.get_config_value('misc', 'debug_logging'))
    except Exception:
        return False


# Convenience functions for logging
def log_error(message, exception=None):
    """
    Log an error message to file.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = DuetLogger.get_logger()
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "while writing WAV")
    """
    logger = DuetLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)


def log_warning(message):
    """Log a warning message to file."""
    DuetLogger.get_logger().warning(message)


def log_debug(message):
    """Log a debug message when misc.debug_logging is enabled."""
    if _debug_enabled():
        DuetLogger.get_logger().debug(message)
