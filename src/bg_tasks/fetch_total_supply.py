import logging
import sys
from typing import Optional

import click
from sqlmodel import Session

from core.config import settings
from core.db import engine, init_db, seed_total_supply
from core.exceptions import StakingIndexerError
from log import setup_logging_to_console, setup_logging_to_file
from services.chain_state_service import ChainStateService
from utils.calculations import to_token_amount

logger = logging.getLogger("fetch_total_supply")


def fetch_total_supply(
    session: Session, chain_state: ChainStateService, block_number: Optional[int] = None
) -> int:
    total_issuance = chain_state.fetch_total_issuance(block_number)
    logger.info(
        f"Total issuance: {total_issuance} "
        f"({to_token_amount(total_issuance, settings.TOKEN_DECIMALS):.2f} {settings.token_symbol})"
    )
    seed_total_supply(session, total_issuance, block_number or 0)
    return total_issuance


@click.command()
@click.option("--block", "block_number", type=int, default=None, help="Block to read, chain head when omitted")
@click.option("--rpc", default=None, help="Websocket endpoint for state queries")
def main(block_number: Optional[int], rpc: Optional[str]):
    setup_logging_to_console()
    setup_logging_to_file(app="fetch_total_supply", level=logging.INFO, logger=logger)
    init_db()

    chain_state = ChainStateService(url=rpc)
    try:
        with Session(engine) as session:
            fetch_total_supply(session, chain_state, block_number)
    except StakingIndexerError as e:
        logger.error(f"Error fetching total supply: {e}", exc_info=True)
        sys.exit(1)
    finally:
        chain_state.close()


if __name__ == "__main__":
    main()
