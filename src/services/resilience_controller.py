"""
Chooses which block source feeds the pipeline.

    bulk --(failures >= threshold)--> direct
    direct --(historical batch, retry interval elapsed)--> bulk

Direct mode on a live-sized batch also triggers the one-off snapshot
reconciliation against chain head.
"""

import enum
import logging
import threading
import time
from typing import Callable, Optional

from core.config import settings
from core.exceptions import FatalError, is_transient_error

logger = logging.getLogger(__name__)


class SourceMode(str, enum.Enum):
    bulk = "bulk"
    direct = "direct"


class ResilienceState:
    def __init__(self):
        self.mode = SourceMode.bulk
        self.failure_count = 0
        self.switched_at: Optional[float] = None
        self.last_bulk_retry_at: Optional[float] = None
        self.last_reconcile_attempt_at: Optional[float] = None
        self.reconciled = False
        self.lock = threading.RLock()


class ResilienceController:
    def __init__(
        self,
        reconcile: Optional[Callable[[], object]] = None,
        failure_threshold: Optional[int] = None,
        retry_delay: Optional[float] = None,
        bulk_retry_interval: Optional[float] = None,
        historical_threshold: Optional[int] = None,
        reconcile_interval: Optional[float] = None,
        reconcile_on_catch_up: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.state = ResilienceState()
        self.reconcile = reconcile
        self.failure_threshold = failure_threshold or settings.ARCHIVE_FAILURE_THRESHOLD
        self.retry_delay = (
            settings.ARCHIVE_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        )
        self.bulk_retry_interval = (
            settings.ARCHIVE_RETRY_INTERVAL_SECONDS
            if bulk_retry_interval is None
            else bulk_retry_interval
        )
        self.historical_threshold = (
            settings.HISTORICAL_BLOCK_THRESHOLD
            if historical_threshold is None
            else historical_threshold
        )
        self.reconcile_interval = (
            settings.RECONCILE_RETRY_INTERVAL_SECONDS
            if reconcile_interval is None
            else reconcile_interval
        )
        self.reconcile_on_catch_up = (
            settings.RECONCILE_ON_CATCH_UP
            if reconcile_on_catch_up is None
            else reconcile_on_catch_up
        )
        self.clock = clock
        self.sleep = sleep

    @property
    def mode(self) -> SourceMode:
        return self.state.mode

    def on_source_error(self, error: BaseException) -> SourceMode:
        """Record a failed fetch and return the mode to continue in.

        Non-connectivity errors are raised as FatalError.
        """
        if not is_transient_error(error):
            raise FatalError(f"Unrecoverable pipeline error: {error}", cause=error) from error

        with self.state.lock:
            if self.state.mode == SourceMode.direct:
                logger.error(f"Direct source error, retrying in {self.retry_delay}s: {error}")
                self.sleep(self.retry_delay)
                return self.state.mode

            self.state.failure_count += 1
            logger.error(
                f"Bulk source error ({self.state.failure_count}/{self.failure_threshold}): {error}"
            )

            if self.state.failure_count >= self.failure_threshold:
                logger.warning(
                    f"Bulk source failed {self.state.failure_count} times, switching to direct mode"
                )
                self.state.mode = SourceMode.direct
                self.state.failure_count = 0
                self.state.switched_at = self.clock()
                self.state.last_bulk_retry_at = self.state.switched_at
                return self.state.mode

            logger.info(
                f"Retrying bulk source in {self.retry_delay}s "
                f"(attempt {self.state.failure_count}/{self.failure_threshold})"
            )
            self.sleep(self.retry_delay)
            return self.state.mode

    def on_batch_success(self):
        with self.state.lock:
            self.state.failure_count = 0

    def should_switch_to_bulk(self, first_block: int, last_block: int) -> bool:
        """In direct mode, go back to bulk for historical ranges, rate limited."""
        with self.state.lock:
            if self.state.mode != SourceMode.direct:
                return False
            if last_block - first_block + 1 <= self.historical_threshold:
                return False

            now = self.clock()
            last_try = self.state.last_bulk_retry_at
            if last_try is not None and now - last_try < self.bulk_retry_interval:
                return False

            logger.info(f"Blocks {first_block}-{last_block} are historical, re-enabling bulk source")
            self.state.mode = SourceMode.bulk
            self.state.failure_count = 0
            self.state.last_bulk_retry_at = now
            return True

    def maybe_reconcile(self, first_block: int, last_block: int) -> bool:
        """Run the snapshot reconciliation once per process when caught up.

        Returns True when a reconciliation ran and succeeded.
        """
        if self.reconcile is None or not self.reconcile_on_catch_up:
            return False

        with self.state.lock:
            if self.state.reconciled or self.state.mode != SourceMode.direct:
                return False
            if last_block - first_block + 1 > self.historical_threshold:
                return False

            now = self.clock()
            last_attempt = self.state.last_reconcile_attempt_at
            if last_attempt is not None and now - last_attempt < self.reconcile_interval:
                return False
            self.state.last_reconcile_attempt_at = now

            logger.info(f"Caught up with chain head at block {last_block}, reconciling")
            try:
                self.reconcile()
            except Exception:
                logger.error("Reconciliation failed, will retry later", exc_info=True)
                return False

            self.state.reconciled = True
            return True
