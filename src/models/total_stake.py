from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from models.types import Uint256


# Global singleton, id is always "total"
class TotalStake(SQLModel, table=True):
    __tablename__ = "total_stake"

    id: str = Field(primary_key=True)
    total_delegator_stake: int = Field(
        default=0, sa_column=Column(Uint256, nullable=False)
    )
    total_collator_bond: int = Field(
        default=0, sa_column=Column(Uint256, nullable=False)
    )
    total_staked: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    total_bonded: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    total_supply: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    staked_percentage: float = 0
    bonded_percentage: float = 0
    active_staker_count: int = 0
    active_collator_count: int = 0
    last_updated_block: int = Field(default=0, index=True)
