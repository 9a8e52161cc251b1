from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from models.types import Uint256


class Staker(SQLModel, table=True):
    __tablename__ = "staker"

    id: str = Field(primary_key=True)
    staked_amount: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    scheduled_unbonds: int = Field(
        default=0, sa_column=Column(Uint256, nullable=False)
    )
    total_delegated: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    total_undelegated: int = Field(
        default=0, sa_column=Column(Uint256, nullable=False)
    )
    last_updated_block: int = Field(default=0, index=True)
