from typing import Optional

from sqlmodel import Field, SQLModel


# Last block flushed by the processor, used to resume after a restart
class ProcessorStatus(SQLModel, table=True):
    __tablename__ = "processor_status"

    id: str = Field(primary_key=True)
    height: int
    hash: Optional[str] = None
