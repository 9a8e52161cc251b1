import logging
import sys
from typing import Iterator, Optional

import click
from sqlmodel import Session

from core.config import settings
from core.db import engine, init_db
from core.exceptions import FatalError
from log import setup_logging_to_console, setup_logging_to_file
from schemas import BlockBatch
from services.batch_processor import BatchProcessor
from services.block_sources import ArchiveBlockSource, RpcBlockSource
from services.chain_state_service import ChainStateService
from services.processing_context import ProcessingContext
from services.resilience_controller import ResilienceController, SourceMode
from services.snapshot_reconciler import SnapshotReconciler

logger = logging.getLogger(__name__)


class StakingProcessor:
    """Drives blocks from the active source through the batch processor.

    Bulk mode drains the archive and continues on RPC for live blocks,
    direct mode reads RPC only. Source errors go to the resilience
    controller, which decides whether to retry, switch modes or give up.
    """

    def __init__(
        self,
        batch_processor: BatchProcessor,
        controller: ResilienceController,
        archive: Optional[ArchiveBlockSource],
        rpc: RpcBlockSource,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
    ):
        self.batch_processor = batch_processor
        self.controller = controller
        self.archive = archive
        self.rpc = rpc
        self.start_block = settings.START_BLOCK if start_block is None else start_block
        self.end_block = settings.END_BLOCK if end_block is None else end_block

    def next_block(self) -> int:
        height = self.batch_processor.last_processed_height()
        if height is None:
            return self.start_block
        return max(height + 1, self.start_block)

    def _batches(self, from_block: int) -> Iterator[BlockBatch]:
        next_block = from_block
        if (
            self.controller.mode == SourceMode.bulk
            and self.archive is not None
            and self.archive.enabled
        ):
            for batch in self.archive.iter_batches(next_block, self.end_block):
                yield batch
                next_block = batch.last_block + 1

        yield from self.rpc.iter_batches(next_block, self.end_block)

    def _run_from(self, from_block: int) -> bool:
        """Process until the end block; False when a mode switch needs a restart."""
        for batch in self._batches(from_block):
            if self.controller.should_switch_to_bulk(batch.first_block, batch.last_block):
                return False

            self.batch_processor.process_batch(batch)
            self.controller.on_batch_success()

            if self.controller.maybe_reconcile(batch.first_block, batch.last_block):
                self.batch_processor.context.invalidate_scheduled_pool()
        return True

    def run(self):
        while True:
            from_block = self.next_block()
            if self.end_block is not None and from_block > self.end_block:
                logger.info(f"Reached end block {self.end_block}")
                return

            logger.info(f"Processing from block {from_block} in {self.controller.mode.value} mode")
            try:
                if self._run_from(from_block):
                    return
                logger.info("Restarting with bulk source")
            except FatalError:
                raise
            except Exception as e:
                # raises FatalError for anything that is not a source failure
                self.controller.on_source_error(e)


def build_processor(session: Session) -> StakingProcessor:
    context = ProcessingContext(total_supply=settings.TOTAL_SUPPLY)
    batch_processor = BatchProcessor(session, context)
    chain_state = ChainStateService()

    def reconcile():
        result = SnapshotReconciler(session, chain_state).run()
        logger.info(
            f"Reconciled at block {result.block_number}: {result.stakers_inserted} stakers, "
            f"{result.collators_inserted} collators inserted"
        )
        return result

    controller = ResilienceController(reconcile=reconcile)
    return StakingProcessor(
        batch_processor=batch_processor,
        controller=controller,
        archive=ArchiveBlockSource(),
        rpc=RpcBlockSource(),
    )


@click.command()
@click.option("--start-block", type=int, default=None, help="First block when no progress is stored")
@click.option("--end-block", type=int, default=None, help="Stop after this block")
def main(start_block: Optional[int], end_block: Optional[int]):
    setup_logging_to_console()
    setup_logging_to_file(app="staking_processor", level=logging.INFO, logger=logger)

    logger.info(f"Processor started: chain {settings.CHAIN}, rpc {settings.CHAIN_RPC_ENDPOINT}")
    init_db()

    with Session(engine) as session:
        processor = build_processor(session)
        if start_block is not None:
            processor.start_block = start_block
        if end_block is not None:
            processor.end_block = end_block

        try:
            processor.run()
        except FatalError as e:
            logger.error(f"Fatal processor error: {e}", exc_info=True)
            sys.exit(1)


if __name__ == "__main__":
    main()
