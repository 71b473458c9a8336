"""Bounded retries with exponential backoff for individual backend calls."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retries a single fallible call with exponential backoff.

    The call is attempted up to ``max_retries + 1`` times. Before retry *i*
    (0-based) the calling thread sleeps ``backoff_base * 2 ** i`` seconds.
    Exceptions rejected by ``retry_if`` propagate immediately; once all
    attempts are spent the last exception is re-raised unchanged.

    The policy wraps one network call at a time. A multi-step operation
    (batch delete, paginated listing) may therefore stop half way.
    """

    max_retries: int = 3
    backoff_base: float = 0.1
    retry_if: Optional[Callable[[Exception], bool]] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_base < 0:
            raise ValueError(f"backoff_base must be >= 0, got {self.backoff_base}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number *attempt* (0-based)."""
        return self.backoff_base * (2 ** attempt)

    def call(self, operation: Callable[[], T], description: str = "operation") -> T:
        """
        Execute an operation with retry logic.

        Args:
            operation: Zero-argument callable to execute
            description: Label used in retry log messages

        Returns:
            Result of the operation

        Raises:
            Exception: The last error raised by the operation
        """
        for attempt in range(self.max_retries + 1):
            try:
                return operation()
            except Exception as e:
                if self.retry_if is not None and not self.retry_if(e):
                    raise
                if attempt >= self.max_retries:
                    if self.max_retries:
                        log.error(
                            "%s failed after %d attempts: %s",
                            description,
                            attempt + 1,
                            e,
                        )
                    raise
                log.warning(
                    "Retrying %s (%d/%d) due to error: %s",
                    description,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
                time.sleep(self.delay_for(attempt))


def retry(max_retries: int, backoff_base: float, operation: Callable[[], Any]) -> Any:
    """Run *operation* under a one-off ``RetryPolicy`` that retries every error."""
    return RetryPolicy(max_retries=max_retries, backoff_base=backoff_base).call(operation)
