"""
Load the current ParachainStaking state from chain and merge it into the
indexer tables:
- stakers/collators the indexer has never seen are inserted
- existing rows only get their scheduled unbonds corrected
- the total_stake row is rebuilt from the snapshot sums
"""

import logging
import sys
from typing import Optional

import click
from sqlmodel import Session

from core.config import settings
from core.db import engine, init_db
from core.exceptions import StakingIndexerError
from log import setup_logging_to_console, setup_logging_to_file
from schemas import ReconciliationResult
from services.chain_state_service import ChainStateService
from services.snapshot_reconciler import SnapshotReconciler
from utils.calculations import to_token_amount

logger = logging.getLogger("load_chain_state")


def log_summary(result: ReconciliationResult):
    symbol = settings.token_symbol
    decimals = settings.TOKEN_DECIMALS

    def tokens(amount: int) -> str:
        return f"{to_token_amount(amount, decimals):.2f} {symbol}"

    logger.info(f"Chain state loaded at block {result.block_number}")
    logger.info(
        f"Stakers: {result.stakers_inserted} inserted, {result.stakers_updated} updated, "
        f"{result.active_staker_count} active"
    )
    logger.info(
        f"Collators: {result.collators_inserted} inserted, {result.collators_updated} updated, "
        f"{result.active_collator_count} active"
    )
    logger.info(
        f"Delegator stake: {tokens(result.total_delegator_stake)}, "
        f"collator bond: {tokens(result.total_collator_bond)}"
    )
    logger.info(
        f"Total staked: {tokens(result.total_staked)} ({result.staked_percentage:.2f}%), "
        f"total bonded: {tokens(result.total_bonded)} ({result.bonded_percentage:.2f}%)"
    )
    if result.selected_collator_count:
        logger.info(
            f"Selected collators: {result.selected_collator_count} "
            f"backed by {tokens(result.selected_backing)}"
        )


def load_chain_state(
    session: Session,
    chain_state: ChainStateService,
    block_number: Optional[int] = None,
    include_selected: bool = True,
) -> ReconciliationResult:
    reconciler = SnapshotReconciler(session, chain_state)
    return reconciler.run(block_number=block_number, include_selected=include_selected)


@click.command()
@click.option("--block", "block_number", type=int, default=None, help="Block to load, chain head when omitted")
@click.option("--rpc", default=None, help="Websocket endpoint for state queries")
def main(block_number: Optional[int], rpc: Optional[str]):
    setup_logging_to_console()
    setup_logging_to_file(app="load_chain_state", level=logging.INFO, logger=logger)
    init_db()

    chain_state = ChainStateService(url=rpc)
    try:
        with Session(engine) as session:
            result = load_chain_state(
                session,
                chain_state,
                block_number=block_number,
                include_selected=block_number is None,
            )
        log_summary(result)
    except StakingIndexerError as e:
        logger.error(f"Error loading chain state: {e}", exc_info=True)
        sys.exit(1)
    finally:
        chain_state.close()


if __name__ == "__main__":
    main()
