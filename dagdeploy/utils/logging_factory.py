"""Centralized logging factory for consistent logger creation across dagdeploy.

This module provides a singleton-based logging factory that ensures consistent
logger configuration throughout the application. It handles:
- One-time initialization of the logging system
- Optional log file output next to console output
- Consistent formatting across all loggers
- Quieting chatty third-party loggers (google-cloud-storage, urllib3)

Usage:
    LoggingFactory.initialize(level=logging.INFO, log_file=Path("dagdeploy.log"))

    from dagdeploy.utils.logging_factory import get_logger
    logger = get_logger(__name__)
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at INFO level
_NOISY_LOGGERS = ("google", "google.auth", "urllib3", "google.resumable_media")


class LoggingFactory:
    """Factory for creating and configuring loggers consistently.

    Class Attributes:
        _initialized: Flag to ensure single initialization
        _log_file: Path of the optional log file
    """

    _initialized = False
    _log_file: Optional[Path] = None

    @classmethod
    def initialize(
        cls,
        level: int = logging.INFO,
        log_file: Optional[Path] = None,
        format_string: Optional[str] = None,
        console: bool = True,
    ) -> None:
        """Initialize the logging system once for the entire application.

        Subsequent calls are ignored. Use ``reset()`` in tests.

        Args:
            level: Default logging level for the root logger
            log_file: Optional file that receives a copy of every record
            format_string: Custom format string. Defaults to ``DEFAULT_FORMAT``
            console: Whether to attach a plain console handler. The CLI disables
                this when a Rich handler is attached by the console manager.
        """
        if cls._initialized:
            return

        if format_string is None:
            format_string = DEFAULT_FORMAT

        handlers: List[logging.Handler] = []
        if console:
            handlers.append(logging.StreamHandler())
        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
            cls._log_file = log_file
        if not handlers:
            handlers.append(logging.NullHandler())

        logging.basicConfig(level=level, format=format_string, handlers=handlers)

        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger, initializing the logging system with defaults if needed."""
        if not cls._initialized:
            cls.initialize()

        return logging.getLogger(name)

    @classmethod
    def reset(cls) -> None:
        """Forget initialization state (useful for testing)."""
        cls._initialized = False
        cls._log_file = None


def get_logger(name: str) -> logging.Logger:
    """Convenience wrapper around ``LoggingFactory.get_logger``."""
    return LoggingFactory.get_logger(name)
