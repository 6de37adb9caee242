import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger("oddscollector.retry")

T = TypeVar("T")

# bad input or a programming error, another attempt gives the same result
PERMANENT_ERRORS = (ValueError, TypeError, KeyError, PermissionError, NotImplementedError)


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 10.0) -> float:
    # attempt is 1-based
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def is_transient(exc: Exception) -> bool:
    return not isinstance(exc, PERMANENT_ERRORS)


def with_retry(
    operation: Callable[[], T],
    name: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
    error_cls: type = RuntimeError,
    retry_if: Callable[[Exception], bool] = is_transient,
) -> T:
    """
    Run operation, retrying transient exceptions with capped exponential
    backoff. Anything `retry_if` rejects is raised at once as error_cls.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as exc:
            if not retry_if(exc):
                logger.error("%s failed, not retrying: %s", name, exc)
                raise error_cls(f"{name} failed: {exc}") from exc
            last_exc = exc
            if attempt < max_attempts:
                delay = backoff_delay(attempt, base_delay, max_delay)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    name, attempt, max_attempts, delay, exc,
                )
                sleep(delay)
    logger.error("%s failed after %d attempts: %s", name, max_attempts, last_exc)
    raise error_cls(f"{name} failed after {max_attempts} attempts: {last_exc}") from last_exc
