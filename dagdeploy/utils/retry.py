"""Retry utilities with fixed delays and symmetric jitter for control plane calls."""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from ..exceptions import CommandError, OperationCancelledError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including initial attempt)
        base_delay: Base delay in seconds between attempts
        max_delay: Maximum delay in seconds between attempts
        jitter: Whether to add random jitter to delays
        jitter_ratio: Symmetric jitter as a fraction of the computed delay
        retriable_exceptions: Tuple of exception types that should trigger retries
    """

    max_attempts: int = 5
    base_delay: float = 5.0
    max_delay: float = 60.0
    jitter: bool = False
    jitter_ratio: float = 0.10
    retriable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (
            CommandError,
            StorageError,
            ConnectionError,
            TimeoutError,
            OSError,  # Includes network errors
        )
    )

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if not 0 <= self.jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")

        if self.max_attempts > 10:
            raise ValueError("max_attempts should not exceed 10 for practical purposes")
        if self.max_delay > 300:  # 5 minutes
            raise ValueError("max_delay should not exceed 300 seconds for practical purposes")

    @classmethod
    def fixed(cls, max_attempts: int, delay: float, **kwargs: Any) -> "RetryConfig":
        """Fixed inter-attempt delay without jitter."""
        return cls(max_attempts=max_attempts, base_delay=delay, max_delay=delay, jitter=False, **kwargs)

    @classmethod
    def jittered(
        cls, max_attempts: int, delay: float, jitter_ratio: float = 0.10, **kwargs: Any
    ) -> "RetryConfig":
        """Fixed base delay perturbed by symmetric jitter of up to ``jitter_ratio``."""
        return cls(
            max_attempts=max_attempts,
            base_delay=delay,
            max_delay=delay * (1 + jitter_ratio),
            jitter=True,
            jitter_ratio=jitter_ratio,
            **kwargs,
        )

    def calculate_backoff_delay(self, attempt: int) -> float:
        """Calculate the delay that follows a failed attempt.

        Args:
            attempt: Number of the attempt that just failed (1-based)

        Returns:
            Calculated delay in seconds
        """
        return calculate_delay(
            attempt,
            self.base_delay,
            self.max_delay,
            self.jitter,
            self.jitter_ratio,
        )


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        attempts: Number of attempts made
        last_exception: The final exception that caused the retry to fail
        total_delay: Total time spent in delays
    """

    def __init__(self, attempts: int, last_exception: Exception, total_delay: float) -> None:
        self.attempts = attempts
        self.last_exception = last_exception
        self.total_delay = total_delay
        super().__init__(
            f"Retry exhausted after {attempts} attempts over {total_delay:.2f}s. "
            f"Last error: {last_exception}"
        )


def calculate_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: bool = False,
    jitter_ratio: float = 0.10,
) -> float:
    """Calculate delay for a given retry attempt with optional jitter.

    Args:
        attempt: Current attempt number (0 means no delay)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Whether to add random jitter
        jitter_ratio: Jitter range as a fraction of the base delay

    Returns:
        Calculated delay in seconds, always between 0 and max_delay
    """
    if attempt == 0:
        return 0.0

    delay = min(base_delay, max_delay)

    if jitter:
        jitter_range = delay * jitter_ratio
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0.0, min(delay, max_delay))


def _wait(delay: float, cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is None:
        time.sleep(delay)
    elif cancel_event.wait(delay):
        raise OperationCancelledError("cancelled while waiting to retry")


def call_with_retry(
    func: Callable[[], T],
    config: RetryConfig,
    description: str,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[T, int]:
    """Call ``func`` until it succeeds or ``config.max_attempts`` is reached.

    Args:
        func: Zero-argument callable to invoke
        config: Retry policy
        description: Label used in log messages
        cancel_event: Optional event; when set, waiting stops and the call is abandoned

    Returns:
        Tuple of (return value, number of attempts made)

    Raises:
        RetryExhaustedError: If every attempt failed with a retriable exception
        OperationCancelledError: If ``cancel_event`` was set
        Exception: Non-retriable exceptions are re-raised unchanged
    """
    last_exception: Optional[Exception] = None
    total_delay = 0.0

    for attempt in range(1, config.max_attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(f"cancelled before attempt {attempt} of {description}")
        if attempt > 1:
            logger.info(f"Retry attempt {attempt}/{config.max_attempts} for {description}")

        try:
            return func(), attempt
        except Exception as e:
            last_exception = e

            if not isinstance(e, config.retriable_exceptions):
                logger.error(f"Non-retriable exception in {description}: {e}")
                raise

            if attempt >= config.max_attempts:
                logger.error(f"All retry attempts exhausted for {description}: {e}")
                break

            delay = config.calculate_backoff_delay(attempt)
            logger.warning(
                f"Attempt {attempt}/{config.max_attempts} failed for {description}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            _wait(delay, cancel_event)
            total_delay += delay

    raise RetryExhaustedError(
        config.max_attempts, last_exception or Exception("Unknown error"), total_delay
    )
