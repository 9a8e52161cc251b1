import logging
from typing import Dict, Optional, Tuple, Type

from sqlmodel import Session

from core import constants
from core.config import settings
from core.exceptions import ReconciliationError, StakingIndexerError
from models import Collator, Staker, TotalStake
from schemas import ChainSnapshot, ReconciliationResult
from services.chain_state_service import ChainStateService
from services.staking_store import StakingStore
from utils.calculations import calculate_percentage

logger = logging.getLogger(__name__)


class SnapshotReconciler:
    """Merges a chain snapshot into the event-derived tables.

    Missing rows are inserted with lifetime counters seeded from the snapshot.
    Existing rows only get their scheduled_unbonds corrected: active balances
    and lifetime counters are owned by event processing. The global row is
    rebuilt from snapshot sums. Running twice on the same snapshot is a no-op
    the second time.
    """

    def __init__(
        self,
        session: Session,
        chain_state: Optional[ChainStateService] = None,
        total_supply: Optional[int] = None,
    ):
        self.store = StakingStore(session)
        self.chain_state = chain_state
        self.total_supply = settings.TOTAL_SUPPLY if total_supply is None else total_supply

    def run(
        self, block_number: Optional[int] = None, include_selected: bool = False
    ) -> ReconciliationResult:
        if self.chain_state is None:
            self.chain_state = ChainStateService()
        snapshot = self.chain_state.fetch_snapshot(
            block_number=block_number, include_selected=include_selected
        )
        return self.reconcile(snapshot)

    def _merge(
        self,
        model: Type,
        active_amounts: Dict[str, int],
        scheduled_amounts: Dict[str, int],
        active_field: str,
        lifetime_increase_field: str,
        lifetime_decrease_field: str,
        block_number: int,
    ) -> Tuple[int, int]:
        inserted, updated = [], []

        for entity_id in set(active_amounts) | set(scheduled_amounts):
            active = active_amounts.get(entity_id, 0)
            scheduled = scheduled_amounts.get(entity_id, 0)

            entity = self.store.get(model, entity_id)
            if entity is None:
                if active + scheduled <= 0:
                    continue
                entity = model(
                    id=entity_id,
                    scheduled_unbonds=scheduled,
                    last_updated_block=block_number,
                )
                setattr(entity, active_field, active)
                setattr(entity, lifetime_increase_field, active)
                setattr(entity, lifetime_decrease_field, 0)
                inserted.append(entity)
            elif (entity.scheduled_unbonds or 0) != scheduled:
                logger.debug(
                    f"{model.__name__} {entity_id} scheduled unbonds "
                    f"{entity.scheduled_unbonds} -> {scheduled}"
                )
                entity.scheduled_unbonds = scheduled
                entity.last_updated_block = block_number
                updated.append(entity)

        if inserted:
            self.store.upsert(inserted)
        if updated:
            self.store.upsert(updated)
        return len(inserted), len(updated)

    def reconcile(self, snapshot: ChainSnapshot) -> ReconciliationResult:
        block_number = snapshot.block_number
        try:
            stakers_inserted, stakers_updated = self._merge(
                Staker,
                snapshot.delegator_stakes,
                snapshot.delegator_scheduled_unbonds,
                "staked_amount",
                "total_delegated",
                "total_undelegated",
                block_number,
            )
            collators_inserted, collators_updated = self._merge(
                Collator,
                snapshot.collator_bonds,
                snapshot.collator_scheduled_unbonds,
                "self_bond",
                "total_bonded",
                "total_unbonded",
                block_number,
            )
            total_stake = self._rebuild_total_stake(snapshot)
            self.store.commit()
        except StakingIndexerError:
            self.store.rollback()
            raise
        except Exception as e:
            self.store.rollback()
            raise ReconciliationError(f"Could not merge snapshot at block {block_number}: {e}") from e

        result = ReconciliationResult(
            block_number=block_number,
            stakers_inserted=stakers_inserted,
            stakers_updated=stakers_updated,
            collators_inserted=collators_inserted,
            collators_updated=collators_updated,
            total_delegator_stake=total_stake.total_delegator_stake,
            total_collator_bond=total_stake.total_collator_bond,
            total_staked=total_stake.total_staked,
            total_bonded=total_stake.total_bonded,
            active_staker_count=total_stake.active_staker_count,
            active_collator_count=total_stake.active_collator_count,
            staked_percentage=total_stake.staked_percentage,
            bonded_percentage=total_stake.bonded_percentage,
            selected_collator_count=len(snapshot.selected_collators),
            selected_backing=sum(
                snapshot.collator_bonds.get(c, 0) + snapshot.top_delegations.get(c, 0)
                for c in snapshot.selected_collators
            ),
        )
        logger.info(
            f"Reconciled block {block_number}: stakers +{stakers_inserted}/~{stakers_updated}, "
            f"collators +{collators_inserted}/~{collators_updated}"
        )
        return result

    def _rebuild_total_stake(self, snapshot: ChainSnapshot) -> TotalStake:
        total_stake = self.store.get(TotalStake, constants.TOTAL_STAKE_ID)
        if total_stake is None:
            total_stake = TotalStake(id=constants.TOTAL_STAKE_ID, total_supply=self.total_supply)
        elif not total_stake.total_supply:
            total_stake.total_supply = self.total_supply

        total_stake.total_delegator_stake = snapshot.total_delegator_stake
        total_stake.total_collator_bond = snapshot.total_collator_bond
        total_stake.total_staked = (
            total_stake.total_delegator_stake + total_stake.total_collator_bond
        )
        total_stake.total_bonded = total_stake.total_staked + snapshot.total_scheduled_unbonds
        total_stake.staked_percentage = calculate_percentage(
            total_stake.total_staked, total_stake.total_supply
        )
        total_stake.bonded_percentage = calculate_percentage(
            total_stake.total_bonded, total_stake.total_supply
        )
        total_stake.active_staker_count = sum(
            1 for amount in snapshot.delegator_stakes.values() if amount > 0
        )
        total_stake.active_collator_count = sum(
            1 for amount in snapshot.collator_bonds.values() if amount > 0
        )
        total_stake.last_updated_block = snapshot.block_number

        self.store.upsert(total_stake)
        return total_stake
