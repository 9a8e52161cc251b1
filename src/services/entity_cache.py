import logging
from typing import Dict, Optional

from core import constants
from models import Collator, Staker, TotalStake
from services.processing_context import ProcessingContext
from services.staking_store import StakingStore

logger = logging.getLogger(__name__)


class EntityCache:
    """Per-batch read-through / write-back cache over the staking entities.

    Each entity is loaded from the store at most once per batch; every entity
    handed out is written back by a single ``flush`` at batch end.
    """

    def __init__(self, store: StakingStore, context: ProcessingContext):
        self.store = store
        self.context = context
        self.stakers: Dict[str, Staker] = {}
        self.collators: Dict[str, Collator] = {}
        self.total_stake: Optional[TotalStake] = None
        self.flushed = False

    def _check_open(self):
        if self.flushed:
            raise RuntimeError("EntityCache was already flushed, create a new one per batch")

    def get_staker(self, staker_id: str, block_number: int) -> Staker:
        self._check_open()
        staker = self.stakers.get(staker_id)
        if staker is not None:
            return staker

        staker = self.store.get(Staker, staker_id)
        if staker is None:
            staker = Staker(
                id=staker_id,
                staked_amount=0,
                scheduled_unbonds=0,
                total_delegated=0,
                total_undelegated=0,
                last_updated_block=block_number,
            )

        self.stakers[staker_id] = staker
        return staker

    def get_collator(self, collator_id: str, block_number: int) -> Collator:
        self._check_open()
        collator = self.collators.get(collator_id)
        if collator is not None:
            return collator

        collator = self.store.get(Collator, collator_id)
        if collator is None:
            collator = Collator(
                id=collator_id,
                self_bond=0,
                scheduled_unbonds=0,
                total_bonded=0,
                total_unbonded=0,
                last_updated_block=block_number,
            )

        self.collators[collator_id] = collator
        return collator

    def get_total_stake(self, block_number: int) -> TotalStake:
        self._check_open()
        if self.total_stake is not None:
            return self.total_stake

        total_stake = self.store.get(TotalStake, constants.TOTAL_STAKE_ID)
        if total_stake is None:
            total_stake = TotalStake(
                id=constants.TOTAL_STAKE_ID,
                total_delegator_stake=0,
                total_collator_bond=0,
                total_staked=0,
                total_bonded=0,
                total_supply=self.context.total_supply,
                staked_percentage=0,
                bonded_percentage=0,
                active_staker_count=0,
                active_collator_count=0,
                last_updated_block=block_number,
            )
        elif not total_stake.total_supply and self.context.total_supply:
            total_stake.total_supply = self.context.total_supply

        self.total_stake = total_stake
        return total_stake

    def scheduled_unbonds_pool(self) -> int:
        return self.context.ensure_scheduled_pool(self)

    def flush(self):
        """One upsert per entity kind for everything touched in the batch."""
        self._check_open()
        stakers = list(self.stakers.values())
        collators = list(self.collators.values())

        if stakers:
            self.store.upsert(stakers)
        if collators:
            self.store.upsert(collators)
        if self.total_stake is not None:
            self.store.upsert(self.total_stake)

        self.flushed = True
        logger.debug(f"Flushed {len(stakers)} stakers, {len(collators)} collators")
