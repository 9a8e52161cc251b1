from typing import Dict, List, Optional

from pydantic import BaseModel


class ChainSnapshot(BaseModel):
    """Full staking state read from chain storage at one block.

    Stake and bond figures are *active* amounts: committed amount minus any
    pending unbond request, so active + scheduled equals what the chain holds.
    """

    block_number: int
    block_hash: Optional[str] = None
    delegator_stakes: Dict[str, int] = {}
    collator_bonds: Dict[str, int] = {}
    delegator_scheduled_unbonds: Dict[str, int] = {}
    collator_scheduled_unbonds: Dict[str, int] = {}
    selected_collators: List[str] = []
    # collator -> sum of its top delegations, only for selected collators
    top_delegations: Dict[str, int] = {}

    @property
    def total_delegator_stake(self) -> int:
        return sum(self.delegator_stakes.values())

    @property
    def total_collator_bond(self) -> int:
        return sum(self.collator_bonds.values())

    @property
    def total_scheduled_unbonds(self) -> int:
        return sum(self.delegator_scheduled_unbonds.values()) + sum(
            self.collator_scheduled_unbonds.values()
        )


class ReconciliationResult(BaseModel):
    block_number: int
    stakers_inserted: int = 0
    stakers_updated: int = 0
    collators_inserted: int = 0
    collators_updated: int = 0
    total_delegator_stake: int = 0
    total_collator_bond: int = 0
    total_staked: int = 0
    total_bonded: int = 0
    active_staker_count: int = 0
    active_collator_count: int = 0
    staked_percentage: float = 0
    bonded_percentage: float = 0
    selected_collator_count: int = 0
    selected_backing: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.stakers_inserted
            or self.stakers_updated
            or self.collators_inserted
            or self.collators_updated
        )
