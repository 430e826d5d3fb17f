import logging
import os
import sys
from logging.handlers import RotatingFileHandler

# Transport, dispatcher and input threads all log into the same session file
LOG_FORMAT = "%(asctime)s - %(name)s - [%(threadName)s] - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

def setup_logger(
    name: str,
    log_file: str = "calibration.log",
    level: str = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    Setup a logger with console and rotating file handlers.

    Args:
        name: Name of the logger (usually __name__)
        log_file: Path to the session log; parent directories are created
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        console: Also log to stdout

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Check if handlers already exist to avoid duplicates
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # Sessions are diagnosed from these files after field failures
    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        print(f"Failed to setup file logging to {log_file}: {e}")

    return logger

def configure_package_logging(level: str = "INFO", log_file: str = "calibration.log") -> logging.Logger:
    """
    Attach handlers to the package root logger so that every module logger
    (``fc_calibration.engine``, ``fc_calibration.status_text``, ...) propagates
    into one console stream and one rotating session log.
    """
    root = setup_logger("fc_calibration", log_file=log_file, level=level)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return root
