import logging

from sqlmodel import Session, SQLModel, create_engine

from core import constants
from core.config import settings
from models import TotalStake

logger = logging.getLogger(__name__)

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


# make sure all SQLModel models are imported (models) before initializing DB
def init_db(bind=None) -> None:
    SQLModel.metadata.create_all(bind or engine)


def seed_total_supply(session: Session, total_supply: int, block_number: int = 0) -> TotalStake:
    """Store ``total_supply`` on the global row, creating a zeroed row if needed.

    Only total_supply is touched on an existing row.
    """
    total_stake = session.get(TotalStake, constants.TOTAL_STAKE_ID)
    if total_stake is None:
        total_stake = TotalStake(
            id=constants.TOTAL_STAKE_ID,
            total_supply=total_supply,
            last_updated_block=block_number,
        )
    else:
        total_stake.total_supply = total_supply

    session.add(total_stake)
    session.commit()
    session.refresh(total_stake)
    logger.info(f"Total supply set to {total_supply}")
    return total_stake
