# -*- coding: utf-8 -*-
"""
gccrtti/core/logging.py - Logging management

Unified logging configuration for the gccrtti package.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


# Log formats
DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
DETAILED_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s (%(filename)s:%(lineno)d): %(message)s"
SIMPLE_FORMAT = "%(levelname)s: %(message)s"

ROOT_LOGGER_NAME = "gccrtti"


class ColoredFormatter(logging.Formatter):
    """
    Coloured log formatter (terminal only)
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, datefmt=None, use_colors=True) -> None:
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record) -> str:
        if self.use_colors:
            color = self.COLORS.get(record.levelname, '')
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class GccRttiLogger:
    """
    gccrtti logging manager

    Single entry point for configuring the ``gccrtti`` logger tree.
    """

    _configured = False
    _root_logger = None

    @classmethod
    def setup(
        cls,
        level: str = "INFO",
        log_file: Optional[Path] = None,
        detailed: bool = False,
        use_colors: bool = True
    ):
        """
        Configure logging

        Args:
            level: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
            log_file: Optional log file path
            detailed: Use the detailed format
            use_colors: Use coloured console output
        """
        if cls._configured:
            return

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(getattr(logging, level.upper(), logging.INFO))

        fmt = DETAILED_FORMAT if detailed else DEFAULT_FORMAT

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(ColoredFormatter(fmt, use_colors=use_colors))
        root.addHandler(console_handler)

        if log_file:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
            root.addHandler(file_handler)

        cls._root_logger = root
        cls._configured = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a named logger

        Args:
            name: Logger name (``gccrtti.`` is prepended when missing)

        Returns:
            Logger instance
        """
        if not cls._configured:
            cls.setup()

        if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
            name = f"{ROOT_LOGGER_NAME}.{name}"

        return logging.getLogger(name)

    @classmethod
    def set_level(cls, level: str) -> None:
        """Adjust the log level at runtime"""
        if cls._root_logger:
            cls._root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Convenience wrapper around GccRttiLogger.get_logger"""
    return GccRttiLogger.get_logger(name)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    detailed: bool = False
):
    """Convenience wrapper around GccRttiLogger.setup"""
    GccRttiLogger.setup(
        level=level,
        log_file=Path(log_file) if log_file else None,
        detailed=detailed
    )


def setup_logging_from_config(config=None):
    """
    Configure logging from a GccRttiConfig

    Args:
        config: GccRttiConfig instance (default_config when None)
    """
    if config is None:
        from .config import default_config
        config = default_config

    setup_logging(
        level=config.log_level,
        log_file=str(config.log_file) if config.log_file else None,
        detailed=(config.log_level.upper() == "DEBUG")
    )
