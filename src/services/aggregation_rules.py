"""
State transitions applied to cached entities for each canonical staking action.

Every Staker/Collator carries an *active* balance (staked_amount/self_bond),
a *scheduled* balance (scheduled_unbonds) and two monotonic lifetime
counters. A 0 -> positive move of the active balance increments the global
active count, a positive -> 0 move decrements it. Balances are clamped at
zero instead of raising: event ordering races are expected.

After every mutation the global row is recomputed:

    total_staked = total_delegator_stake + total_collator_bond
    total_bonded = total_staked + scheduled unbond pool
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict

from models import TotalStake
from schemas import StakingAction, StakingActionKind
from services.entity_cache import EntityCache
from utils.calculations import calculate_percentage, clamp_non_negative

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceFields:
    """Attribute names of one entity kind and of its global aggregates."""

    active: str
    lifetime_increase: str
    lifetime_decrease: str
    global_active_sum: str
    global_active_count: str


STAKER_FIELDS = BalanceFields(
    active="staked_amount",
    lifetime_increase="total_delegated",
    lifetime_decrease="total_undelegated",
    global_active_sum="total_delegator_stake",
    global_active_count="active_staker_count",
)

COLLATOR_FIELDS = BalanceFields(
    active="self_bond",
    lifetime_increase="total_bonded",
    lifetime_decrease="total_unbonded",
    global_active_sum="total_collator_bond",
    global_active_count="active_collator_count",
)


def recompute_totals(total_stake: TotalStake, scheduled_pool: int):
    total_stake.total_staked = (
        total_stake.total_delegator_stake + total_stake.total_collator_bond
    )
    total_stake.total_bonded = total_stake.total_staked + scheduled_pool
    total_stake.staked_percentage = calculate_percentage(
        total_stake.total_staked, total_stake.total_supply
    )
    total_stake.bonded_percentage = calculate_percentage(
        total_stake.total_bonded, total_stake.total_supply
    )


def _apply_active_change(
    cache: EntityCache,
    fields: BalanceFields,
    old_active: int,
    new_active: int,
    block_number: int,
):
    total_stake = cache.get_total_stake(block_number)

    current_sum = getattr(total_stake, fields.global_active_sum)
    setattr(
        total_stake,
        fields.global_active_sum,
        clamp_non_negative(current_sum + new_active - old_active),
    )

    count = getattr(total_stake, fields.global_active_count)
    if old_active == 0 and new_active > 0:
        setattr(total_stake, fields.global_active_count, count + 1)
    elif old_active > 0 and new_active == 0:
        setattr(total_stake, fields.global_active_count, max(0, count - 1))

    recompute_totals(total_stake, cache.context.scheduled_unbonds_pool)
    total_stake.last_updated_block = block_number


def increase_active(cache, entity, fields: BalanceFields, amount: int, block_number: int):
    old_active = getattr(entity, fields.active)
    new_active = old_active + amount

    setattr(entity, fields.active, new_active)
    setattr(
        entity,
        fields.lifetime_increase,
        getattr(entity, fields.lifetime_increase) + amount,
    )
    entity.last_updated_block = block_number

    _apply_active_change(cache, fields, old_active, new_active, block_number)


def decrease_active(cache, entity, fields: BalanceFields, amount: int, block_number: int):
    old_active = getattr(entity, fields.active)
    new_active = clamp_non_negative(old_active - amount)
    if old_active < amount:
        logger.debug(
            f"Clamping {fields.active} of {entity.id} at block {block_number}: "
            f"balance {old_active}, decrease {amount}"
        )

    setattr(entity, fields.active, new_active)
    setattr(
        entity,
        fields.lifetime_decrease,
        getattr(entity, fields.lifetime_decrease) + amount,
    )
    entity.last_updated_block = block_number

    _apply_active_change(cache, fields, old_active, new_active, block_number)


def consume_schedule_or_decrease(
    cache, entity, fields: BalanceFields, amount: int, block_number: int
):
    """Execute a previously scheduled unbond, falling back to a plain decrease.

    The stake already left the active balance when the request was
    scheduled, so only the scheduled balance and the pool move here.
    """
    scheduled = entity.scheduled_unbonds or 0
    if amount == 0 or scheduled < amount:
        decrease_active(cache, entity, fields, amount, block_number)
        return

    entity.scheduled_unbonds = scheduled - amount
    setattr(
        entity,
        fields.lifetime_decrease,
        getattr(entity, fields.lifetime_decrease) + amount,
    )
    entity.last_updated_block = block_number

    pool = cache.context.adjust_scheduled_pool(-amount)
    total_stake = cache.get_total_stake(block_number)
    recompute_totals(total_stake, pool)
    total_stake.last_updated_block = block_number


def schedule_unbond(cache, entity, fields: BalanceFields, amount: int, block_number: int):
    old_active = getattr(entity, fields.active)
    new_active = clamp_non_negative(old_active - amount)

    entity.scheduled_unbonds = (entity.scheduled_unbonds or 0) + amount
    setattr(entity, fields.active, new_active)
    entity.last_updated_block = block_number

    cache.context.adjust_scheduled_pool(amount)
    _apply_active_change(cache, fields, old_active, new_active, block_number)


def cancel_scheduled_unbond(
    cache, entity, fields: BalanceFields, amount: int, block_number: int
):
    old_scheduled = entity.scheduled_unbonds or 0
    new_scheduled = clamp_non_negative(old_scheduled - amount)
    # only what this entity actually had scheduled goes back to active
    released = old_scheduled - new_scheduled

    old_active = getattr(entity, fields.active)
    new_active = old_active + released

    entity.scheduled_unbonds = new_scheduled
    setattr(entity, fields.active, new_active)
    entity.last_updated_block = block_number

    cache.context.adjust_scheduled_pool(-released)
    _apply_active_change(cache, fields, old_active, new_active, block_number)


Rule = Callable[[EntityCache, object, BalanceFields, int, int], None]

DELEGATOR_RULES: Dict[StakingActionKind, Rule] = {
    StakingActionKind.delegation_open: increase_active,
    StakingActionKind.delegation_increase: increase_active,
    StakingActionKind.compounded: increase_active,
    StakingActionKind.delegation_decrease: consume_schedule_or_decrease,
    StakingActionKind.delegation_revoke: consume_schedule_or_decrease,
    StakingActionKind.delegation_kicked: decrease_active,
    StakingActionKind.delegator_left: decrease_active,
    StakingActionKind.delegator_left_one_candidate: decrease_active,
    StakingActionKind.delegation_revoke_scheduled: schedule_unbond,
    StakingActionKind.delegation_decrease_scheduled: schedule_unbond,
    StakingActionKind.delegation_revoke_cancelled: cancel_scheduled_unbond,
}

COLLATOR_RULES: Dict[StakingActionKind, Rule] = {
    StakingActionKind.collator_join: increase_active,
    StakingActionKind.collator_bond_more: increase_active,
    StakingActionKind.collator_bond_less: consume_schedule_or_decrease,
    StakingActionKind.collator_left: decrease_active,
    StakingActionKind.collator_bond_less_scheduled: schedule_unbond,
    StakingActionKind.collator_bond_less_cancelled: cancel_scheduled_unbond,
}


def apply_action(cache: EntityCache, action: StakingAction, block_number: int):
    # seeds the process-wide pool before the first mutation touches it
    cache.scheduled_unbonds_pool()

    if action.is_collator_action:
        rule = COLLATOR_RULES[action.kind]
        entity = cache.get_collator(action.actor, block_number)
        fields = COLLATOR_FIELDS
    else:
        rule = DELEGATOR_RULES[action.kind]
        entity = cache.get_staker(action.actor, block_number)
        fields = STAKER_FIELDS

    rule(cache, entity, fields, action.amount, block_number)
