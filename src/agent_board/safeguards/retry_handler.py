"""Bounded retry with a resolver step between attempts."""

import logging
from typing import Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetriesExhaustedError(Exception):
    """Every attempt failed with a recoverable error."""

    def __init__(self, attempts: int, last_error: Exception, description: str = ""):
        self.attempts = attempts
        self.last_error = last_error
        self.description = description
        what = f"{description} " if description else ""
        super().__init__(f"{what}failed after {attempts} attempts: {last_error}")


class RetryHandler:
    """
    Runs an action up to ``max_attempts`` times.

    Logic:
    - Success returns the action's value immediately
    - A recoverable error with attempts left calls the resolver, then retries
    - A recoverable error on the last attempt raises RetriesExhaustedError
    - Any other error propagates untouched

    The resolver sees the error and the 1-based number of the attempt that
    failed, so it runs at most ``max_attempts - 1`` times.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        recoverable: Tuple[Type[Exception], ...] = (Exception,),
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.recoverable = recoverable

    def run(
        self,
        action: Callable[[], T],
        resolver: Optional[Callable[[Exception, int], None]] = None,
        description: str = "",
    ) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return action()
            except self.recoverable as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                logger.warning(
                    f"{description or 'Action'} failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if resolver is not None:
                    resolver(e, attempt)

        logger.error(f"{description or 'Action'} failed after {self.max_attempts} attempts")
        raise RetriesExhaustedError(self.max_attempts, last_error, description)
