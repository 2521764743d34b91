"""Shared utilities: retry policies and logging setup."""

from .logging_factory import LoggingFactory, get_logger
from .retry import RetryConfig, RetryExhaustedError, calculate_delay, call_with_retry

__all__ = [
    "LoggingFactory",
    "RetryConfig",
    "RetryExhaustedError",
    "calculate_delay",
    "call_with_retry",
    "get_logger",
]
