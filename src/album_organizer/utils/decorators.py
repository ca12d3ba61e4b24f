"""
Utility decorators for Album Organizer

Provides common decorators for error handling, retries, and performance tracking.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional, TypeVar, cast

# Type variables for generic decorators
F = TypeVar('F', bound=Callable[..., Any])


def _get_logger(func: Callable, args: tuple) -> logging.Logger:
    """Use the instance logger when decorating a method"""
    if args and hasattr(args[0], 'logger'):
        return args[0].logger
    return logging.getLogger(func.__module__)


def handle_errors(
    log_level: str = "error",
    return_on_error: Optional[Any] = None,
    reraise: bool = False,
    error_types: tuple = (Exception,)
) -> Callable[[F], F]:
    """
    Decorator for consistent error handling across the application.

    Args:
        log_level: Logging level for errors (debug, info, warning, error, critical)
        return_on_error: Value to return when an error occurs
        reraise: Whether to re-raise the exception after logging
        error_types: Tuple of exception types to catch

    Returns:
        Decorated function with error handling

    Example:
        @handle_errors(log_level="warning", return_on_error=None)
        def lookup(self, artist: str, title: str) -> Optional[EnrichmentResult]:
            # Implementation
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except error_types as e:
                logger = _get_logger(func, args)

                # Build error context
                context = []
                if args and hasattr(args[0], '__class__'):
                    context.append(f"Class: {args[0].__class__.__name__}")
                context.append(f"Function: {func.__name__}")

                error_msg = f"{' | '.join(context)} | Error: {str(e)}"
                getattr(logger, log_level)(error_msg, exc_info=log_level in ("error", "critical"))

                if reraise:
                    raise

                return return_on_error

        return cast(F, wrapper)

    return decorator


def track_performance(
    threshold_ms: Optional[float] = None,
    log_slow: bool = True
) -> Callable[[F], F]:
    """
    Decorator to track function execution time.

    Args:
        threshold_ms: Log warning if execution time exceeds this threshold (milliseconds)
        log_slow: Whether to log slow executions

    Returns:
        Decorated function with performance tracking
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                execution_time = (time.time() - start_time) * 1000  # Convert to ms

                if threshold_ms and execution_time > threshold_ms and log_slow:
                    _get_logger(func, args).warning(
                        f"{func.__name__} took {execution_time:.2f}ms "
                        f"(threshold: {threshold_ms}ms)"
                    )

                # Store execution time if object has metrics
                if args and hasattr(args[0], '_performance_metrics'):
                    args[0]._performance_metrics.setdefault(func.__name__, []).append(execution_time)

        return cast(F, wrapper)

    return decorator


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: Optional[float] = None,
    exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_exhausted: Optional[Callable[[Exception, int], Exception]] = None
) -> Callable[[F], F]:
    """
    Decorator to retry function execution with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries (seconds)
        backoff: Multiplier for delay after each retry
        max_delay: Ceiling for the delay between retries
        exceptions: Tuple of exception types to retry on
        should_retry: Optional predicate; exceptions it rejects propagate immediately
        on_exhausted: Optional factory turning the last exception into the one raised

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    last_exception = e

                    if attempt < max_attempts - 1:
                        _get_logger(func, args).warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{max_attempts}), "
                            f"retrying in {current_delay:.2f}s: {str(e)}"
                        )

                        time.sleep(current_delay)
                        current_delay *= backoff
                        if max_delay is not None:
                            current_delay = min(current_delay, max_delay)

            # All retries failed
            if on_exhausted is not None:
                raise on_exhausted(last_exception, max_attempts) from last_exception
            raise last_exception

        return cast(F, wrapper)

    return decorator
