"""Retry decorator for transient failures (image pulls, a database still starting)."""
import functools
import time
from typing import Callable, Optional, Tuple, Type

from panelo.core.logger import get_logger, tail_lines

logger = get_logger(__name__)


def retry(
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep=time.sleep,
    label: Optional[str] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """Retry decorator with exponential backoff.

    The attempt count is capped; the last failure is re-raised. Warnings
    name the operation by ``label`` and quote only the last line of the
    error, which for a CommandError is the tool's own complaint rather than
    the full command line.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay in seconds between attempts
        backoff: Backoff multiplier for each retry
        exceptions: Tuple of exception types to catch and retry
        sleep: Sleep function (injectable for tests)
        label: Operation name used in log messages (default: function name)
        on_retry: Called with (attempt, error) before each pause

    Example:
        @retry(max_attempts=3, delay=5, exceptions=(CommandError,), label="docker pull mysql:8.0")
        def pull():
            ...
    """

    def decorator(func):
        name = label or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    reason = tail_lines(str(e), 1)
                    if attempt == max_attempts:
                        logger.error(f"✗ {name} failed after {max_attempts} attempts: {reason}")
                        raise

                    logger.warning(f"⚠ {name} failed (attempt {attempt}/{max_attempts}): {reason}")
                    if on_retry is not None:
                        on_retry(attempt, e)
                    logger.info(f"Retrying {name} in {current_delay:.1f}s...")
                    sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator
