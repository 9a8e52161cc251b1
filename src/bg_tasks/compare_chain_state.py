import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

import click
from sqlmodel import Session

from core.config import settings
from core.db import engine
from core.exceptions import StakingIndexerError
from log import setup_logging_to_console, setup_logging_to_file
from models import Collator, Staker
from schemas import StateComparison
from services.chain_state_service import ChainStateService
from services.staking_store import StakingStore
from services.state_comparison import compare_state
from utils.calculations import to_token_amount

logger = logging.getLogger("compare_chain_state")

TOP_N = 5


def _tokens(amount: int) -> str:
    return f"{to_token_amount(amount, settings.TOKEN_DECIMALS):,.2f} {settings.token_symbol}"


def log_comparison(comparison: StateComparison):
    logger.info(f"Comparison at block {comparison.block_number}")

    logger.info(
        f"Delegators: chain {_tokens(comparison.chain_total_delegator_stake)}, "
        f"indexer {_tokens(comparison.indexer_total_delegator_stake)}, "
        f"diff {_tokens(comparison.total_delegator_stake_diff)}"
    )
    logger.info(f"Missing in indexer: {len(comparison.stakers_missing_in_indexer)} accounts")
    logger.info(f"Only in indexer: {len(comparison.stakers_only_in_indexer)} accounts")
    logger.info(f"Amount differences: {len(comparison.staker_amount_differences)} accounts")
    for diff in comparison.staker_amount_differences[:TOP_N]:
        logger.info(f"  {diff.address}: {_tokens(diff.difference)}")

    logger.info(
        f"Collators: chain {_tokens(comparison.chain_total_collator_bond)}, "
        f"indexer {_tokens(comparison.indexer_total_collator_bond)}, "
        f"diff {_tokens(comparison.total_collator_bond_diff)}"
    )
    logger.info(f"Missing in indexer: {len(comparison.collators_missing_in_indexer)} collators")
    logger.info(f"Only in indexer: {len(comparison.collators_only_in_indexer)} collators")
    for diff in comparison.collator_amount_differences:
        logger.info(f"  {diff.address}: {_tokens(diff.difference)}")

    if comparison.in_sync:
        logger.info("Indexer is in sync with chain")


def write_report(comparison: StateComparison, output_dir: str) -> str:
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    filename = os.path.join(output_dir, f"state-comparison-{timestamp}.json")

    report = comparison.model_dump()
    report["total_delegator_stake_diff"] = comparison.total_delegator_stake_diff
    report["total_collator_bond_diff"] = comparison.total_collator_bond_diff
    with open(filename, "w") as f:
        json.dump(report, f, indent=2, default=str)
    return filename


def compare_chain_state(session: Session, chain_state: ChainStateService) -> StateComparison:
    snapshot = chain_state.fetch_snapshot()
    store = StakingStore(session)
    return compare_state(snapshot, store.find(Staker), store.find(Collator))


@click.command()
@click.option("--rpc", default=None, help="Websocket endpoint for state queries")
@click.option("--output-dir", default=".", help="Directory for the JSON report")
def main(rpc: Optional[str], output_dir: str):
    setup_logging_to_console()
    setup_logging_to_file(app="compare_chain_state", level=logging.INFO, logger=logger)

    chain_state = ChainStateService(url=rpc)
    try:
        with Session(engine) as session:
            comparison = compare_chain_state(session, chain_state)
        log_comparison(comparison)
        logger.info(f"Full comparison saved to {write_report(comparison, output_dir)}")
    except StakingIndexerError as e:
        logger.error(f"Error comparing chain state: {e}", exc_info=True)
        sys.exit(1)
    finally:
        chain_state.close()


if __name__ == "__main__":
    main()
