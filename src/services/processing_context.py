"""
Process-wide state shared across batches.

Lifecycle:
- created once per process by the entrypoint
- the scheduled-unbond pool is seeded lazily, exactly once, the first time an
  EntityCache needs it (see ``ensure_scheduled_pool``)
- mutated per event by the aggregation rules
- snapshotted/restored around each batch so a failed batch leaves no trace
- invalidated after a reconciliation rewrote scheduled figures in the store
"""

import logging
import threading
from typing import Optional

from models import Collator, Staker

logger = logging.getLogger(__name__)


class ProcessingContext:
    def __init__(self, total_supply: int = 0):
        self.total_supply = total_supply
        self.scheduled_unbonds_pool = 0
        self.scheduled_pool_initialized = False
        self.lock = threading.RLock()
        self._batch_checkpoint: Optional[tuple] = None

    def ensure_scheduled_pool(self, cache) -> int:
        """Seed the pool from every known entity the first time it is used.

        Entities already touched in the running batch win over their
        persisted rows; untouched entities are read from the store.
        """
        with self.lock:
            if self.scheduled_pool_initialized:
                return self.scheduled_unbonds_pool

            stakers = {s.id: s for s in cache.store.find(Staker)}
            stakers.update(cache.stakers)
            collators = {c.id: c for c in cache.store.find(Collator)}
            collators.update(cache.collators)

            pool = sum(s.scheduled_unbonds or 0 for s in stakers.values())
            pool += sum(c.scheduled_unbonds or 0 for c in collators.values())

            self.scheduled_unbonds_pool = pool
            self.scheduled_pool_initialized = True
            logger.info(
                f"Scheduled unbond pool initialized: {pool} across {len(stakers)} stakers "
                f"and {len(collators)} collators"
            )
            return pool

    def adjust_scheduled_pool(self, delta: int) -> int:
        with self.lock:
            self.scheduled_unbonds_pool = max(0, self.scheduled_unbonds_pool + delta)
            return self.scheduled_unbonds_pool

    def invalidate_scheduled_pool(self):
        with self.lock:
            self.scheduled_pool_initialized = False
            self.scheduled_unbonds_pool = 0

    def begin_batch(self):
        with self.lock:
            self._batch_checkpoint = (
                self.scheduled_unbonds_pool,
                self.scheduled_pool_initialized,
            )

    def commit_batch(self):
        with self.lock:
            self._batch_checkpoint = None

    def rollback_batch(self):
        with self.lock:
            if self._batch_checkpoint is not None:
                (
                    self.scheduled_unbonds_pool,
                    self.scheduled_pool_initialized,
                ) = self._batch_checkpoint
                self._batch_checkpoint = None
