from typing import List

from pydantic import BaseModel


class AmountDifference(BaseModel):
    address: str
    chain_amount: int
    indexer_amount: int
    difference: int


class StateComparison(BaseModel):
    block_number: int
    stakers_missing_in_indexer: List[str] = []
    stakers_only_in_indexer: List[str] = []
    staker_amount_differences: List[AmountDifference] = []
    collators_missing_in_indexer: List[str] = []
    collators_only_in_indexer: List[str] = []
    collator_amount_differences: List[AmountDifference] = []
    chain_total_delegator_stake: int = 0
    indexer_total_delegator_stake: int = 0
    chain_total_collator_bond: int = 0
    indexer_total_collator_bond: int = 0

    @property
    def total_delegator_stake_diff(self) -> int:
        return self.chain_total_delegator_stake - self.indexer_total_delegator_stake

    @property
    def total_collator_bond_diff(self) -> int:
        return self.chain_total_collator_bond - self.indexer_total_collator_bond

    @property
    def in_sync(self) -> bool:
        return not (
            self.stakers_missing_in_indexer
            or self.stakers_only_in_indexer
            or self.staker_amount_differences
            or self.collators_missing_in_indexer
            or self.collators_only_in_indexer
            or self.collator_amount_differences
        )
