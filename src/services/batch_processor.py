import logging
from typing import Optional

from sqlmodel import Session

from core import constants
from core.exceptions import InvalidAddress, MalformedEvent
from models import ProcessorStatus
from schemas import BlockBatch
from services.aggregation_rules import apply_action
from services.entity_cache import EntityCache
from services.event_canonicalizer import EventCanonicalizer
from services.processing_context import ProcessingContext
from services.staking_store import StakingStore

logger = logging.getLogger(__name__)


class BatchProcessor:
    """Applies one batch of blocks to the store in a single transaction.

    Events are applied strictly in block order, then in-block order. A fresh
    EntityCache is built per batch and flushed once together with the
    processor status; any failure rolls back both the store transaction and
    the process context.
    """

    def __init__(
        self,
        session: Session,
        context: ProcessingContext,
        canonicalizer: Optional[EventCanonicalizer] = None,
    ):
        self.session = session
        self.store = StakingStore(session)
        self.context = context
        self.canonicalizer = canonicalizer or EventCanonicalizer()

    def last_processed_height(self) -> Optional[int]:
        status = self.store.get(ProcessorStatus, constants.PROCESSOR_STATUS_ID)
        return status.height if status else None

    def process_batch(self, batch: BlockBatch) -> int:
        if not batch.blocks:
            return 0

        self.context.begin_batch()
        cache = EntityCache(self.store, self.context)
        applied = 0

        try:
            for block in batch.blocks:
                for event in block.events:
                    if not self.canonicalizer.is_supported(event.name):
                        continue
                    try:
                        action = self.canonicalizer.decode(event.name, event.args)
                    except MalformedEvent as e:
                        logger.warning(f"Block {block.height}: {e}")
                        continue
                    except InvalidAddress as e:
                        logger.error(f"Block {block.height}: skipping {event.name}, {e}")
                        continue

                    apply_action(cache, action, block.height)
                    applied += 1

            cache.flush()

            last = batch.blocks[-1]
            self.store.upsert(
                ProcessorStatus(
                    id=constants.PROCESSOR_STATUS_ID, height=last.height, hash=last.hash
                )
            )
            self.store.commit()
        except Exception:
            self.store.rollback()
            self.context.rollback_batch()
            raise

        self.context.commit_batch()
        logger.info(
            f"Processed blocks {batch.first_block}-{batch.last_block}: {applied} staking actions"
        )
        return applied
