from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from models.types import Uint256


class Collator(SQLModel, table=True):
    __tablename__ = "collator"

    id: str = Field(primary_key=True)
    self_bond: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    scheduled_unbonds: int = Field(
        default=0, sa_column=Column(Uint256, nullable=False)
    )
    total_bonded: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    total_unbonded: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    last_updated_block: int = Field(default=0, index=True)
