"""
Centralized logging module for UniFi Insights
Writes to stdout and, when LOG_FILE is set, to a rotating file with a 10MB size limit
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from config import LOG_LEVEL, LOG_FILE

# Global logger instance
_logger = None

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def get_logger():
    """
    Get or create the application logger.

    Logger behavior:
    - Always logs to stdout (collector and gateway run in containers)
    - Also logs to LOG_FILE when configured, rotating at 10MB with 5 backups
    - Level comes from LOG_LEVEL (debug, info, warn, error)
    - Uses consistent format with timestamp, level, module, and message

    Returns:
        logging.Logger: Configured logger instance
    """
    global _logger

    if _logger is not None:
        return _logger

    _logger = logging.getLogger('unifi_insights')
    _logger.setLevel(_LEVELS.get(LOG_LEVEL, logging.INFO))

    # Remove any existing handlers to avoid duplicates
    _logger.handlers.clear()

    formatter = logging.Formatter(
        fmt='[%(asctime)s] %(levelname)s [%(module)s.%(funcName)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    _logger.addHandler(stream_handler)

    if LOG_FILE:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        _logger.addHandler(file_handler)

    # Prevent propagation to root logger
    _logger.propagate = False

    return _logger


# stacklevel=2 makes %(funcName)s report the caller instead of these wrappers

def debug(message, *args, **kwargs):
    """
    Log a debug message.

    Example:
        debug("Requesting %s (attempt %d)", url, attempt)
    """
    get_logger().debug(message, *args, stacklevel=2, **kwargs)


def info(message, *args, **kwargs):
    """Log an info message."""
    get_logger().info(message, *args, stacklevel=2, **kwargs)


def warning(message, *args, **kwargs):
    """Log a warning message."""
    get_logger().warning(message, *args, stacklevel=2, **kwargs)


def error(message, *args, **kwargs):
    """Log an error message."""
    get_logger().error(message, *args, stacklevel=2, **kwargs)


def exception(message, *args, **kwargs):
    """
    Log an exception with traceback.
    Call this from an except block to log the exception with full traceback.

    Example:
        try:
            risky_operation()
        except Exception as e:
            exception("Error during risky operation: %s", str(e))
    """
    get_logger().exception(message, *args, stacklevel=2, **kwargs)


def safe_error_response(error_obj, default_message="An error occurred"):
    """
    Create a safe error message for client responses.

    SECURITY: This function logs the full error details server-side
    but returns a generic message to the client to prevent information disclosure.

    Args:
        error_obj: The exception or error object
        default_message (str): Generic message to return to client

    Returns:
        str: Safe error message for client response
    """
    get_logger().error("Error details (not sent to client): %s", str(error_obj), stacklevel=2)
    return default_message
