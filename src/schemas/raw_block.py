from typing import Any, List, Optional

from pydantic import BaseModel


class RawEvent(BaseModel):
    name: str
    # positional tuple or named struct depending on the runtime version
    args: Any = None
    index: Optional[int] = None


class RawBlock(BaseModel):
    height: int
    hash: Optional[str] = None
    events: List[RawEvent] = []


class BlockBatch(BaseModel):
    blocks: List[RawBlock] = []

    @property
    def first_block(self) -> Optional[int]:
        return self.blocks[0].height if self.blocks else None

    @property
    def last_block(self) -> Optional[int]:
        return self.blocks[-1].height if self.blocks else None

    @property
    def block_range(self) -> int:
        if not self.blocks:
            return 0
        return self.last_block - self.first_block + 1
