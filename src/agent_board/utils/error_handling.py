"""Error handling helpers for best-effort boundaries."""

import logging
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def log_and_ignore(
    error: Exception,
    message: str,
    *,
    logger_instance: Optional[logging.Logger] = None,
    level: int = logging.WARNING,
) -> None:
    """
    Log an error and ignore it (don't re-raise).

    Use for cleanup, pruning, kill signals and other steps that must never
    change a task's outcome.
    """
    log = logger_instance or logger
    log.log(level, f"{message}: {error}")


def safe_call(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: str = "Error in function call",
    logger_instance: Optional[logging.Logger] = None,
    **kwargs,
) -> Optional[T]:
    """Call func, returning default (and logging a warning) if it raises."""
    try:
        return func(*args, **kwargs)
    except Exception as e:
        log_and_ignore(e, error_message, logger_instance=logger_instance)
        return default


class ErrorContext:
    """
    Context manager for handling errors with consistent logging.

    Usage:
        with ErrorContext("appending progress log", raise_on_error=False):
            write_progress(...)
    """

    def __init__(
        self,
        operation: str,
        *,
        raise_on_error: bool = True,
        default_value: Any = None,
        logger_instance: Optional[logging.Logger] = None,
        log_level: int = logging.ERROR,
    ):
        self.operation = operation
        self.raise_on_error = raise_on_error
        self.default_value = default_value
        self.logger = logger_instance or logger
        self.log_level = log_level
        self.error: Optional[Exception] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            return False
        # Only swallow ordinary exceptions; KeyboardInterrupt etc. always propagate
        if not issubclass(exc_type, Exception):
            return False

        self.error = exc_val
        self.logger.log(self.log_level, f"Error during {self.operation}: {exc_val}")
        return not self.raise_on_error

    def get_result(self, result: Any = None) -> Any:
        """Return result, or default_value if an error was swallowed."""
        if self.error is not None:
            return self.default_value
        return result
