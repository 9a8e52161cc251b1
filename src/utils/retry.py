import logging
import time
from typing import Callable, Optional, TypeVar

from core.exceptions import is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

# max_retries value meaning "retry forever"
UNBOUNDED = -1


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 2,
    max_delay: float = 30,
    description: str = "request",
    should_retry: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds, sleeping with capped exponential backoff.

    Errors rejected by ``should_retry`` are raised immediately. With
    ``max_retries=UNBOUNDED`` retryable errors are retried forever, otherwise
    the last error is raised once the attempts are used up.
    """
    attempt = 0
    last_error: Optional[BaseException] = None

    while max_retries == UNBOUNDED or attempt < max_retries:
        try:
            return fn()
        except Exception as e:
            if not should_retry(e):
                raise
            last_error = e
            attempt += 1

            if max_retries != UNBOUNDED and attempt >= max_retries:
                break

            delay = min(base_delay * 2 ** (attempt - 1), max_delay)
            if max_retries == UNBOUNDED:
                logger.warning(f"{description} attempt {attempt} failed: {e}, retrying in {delay}s")
            else:
                logger.warning(
                    f"{description} attempt {attempt}/{max_retries} failed: {e}, "
                    f"retrying in {delay}s"
                )
            sleep(delay)

    logger.error(f"{description} failed after {attempt} attempts")
    raise last_error
