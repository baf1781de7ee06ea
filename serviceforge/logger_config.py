"""
Logging configuration for ServiceForge
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logger(
    name: str = "serviceforge",
    level: int = logging.INFO,
    log_dir: Optional[str] = "logs"
) -> logging.Logger:
    """
    Set up and configure logger for ServiceForge.

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_dir: Directory for the debug log file, None to log to stdout only

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir:
        try:
            log_path = Path(log_dir)
            log_path.mkdir(exist_ok=True)

            file_handler = logging.FileHandler(log_path / "serviceforge.log")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not open log file in '{log_dir}': {e}")

    return logger


def get_logger(name: str = "serviceforge") -> logging.Logger:
    """Get or create logger instance.

    Module loggers ("serviceforge.<module>") propagate to the root
    "serviceforge" logger, which is configured once.
    """
    root_name = name.split(".", 1)[0]
    root = logging.getLogger(root_name)
    if not root.handlers:
        from .config import get_settings
        settings = get_settings()
        setup_logger(root_name, level=settings.log_level, log_dir=settings.log_dir)
    return logging.getLogger(name)
