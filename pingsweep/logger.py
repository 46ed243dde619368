"""
Console logging for pingsweep.

One ``pingsweep`` logger hierarchy with a colorized console handler. The
verbosity flag only changes the level and the line format, never the scan.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

import colorama
from colorama import Fore, Style

colorama.init()

LOGGER_NAME = "pingsweep"

SIMPLE_FORMAT = "%(message)s"
VERBOSE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ColoredFormatter(logging.Formatter):
    """Formatter adding a color per level for console output"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': '',  # Default terminal color
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        formatted = super().format(record)
        color = self.COLORS.get(record.levelname, '')
        if not color:
            return formatted
        return f"{color}{formatted}{Style.RESET_ALL}"


def setup_logging(verbose: bool = False, stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Configure the ``pingsweep`` logger for console output

    Args:
        verbose: DEBUG level with timestamps when True, INFO and bare messages otherwise
        stream: Output stream (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Remove existing handlers to avoid duplicates when called twice
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    if verbose:
        handler.setFormatter(ColoredFormatter(VERBOSE_FORMAT, datefmt='%H:%M:%S'))
    else:
        handler.setFormatter(ColoredFormatter(SIMPLE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    if verbose:
        logger.warning("Verbose mode ON")
    return logger
