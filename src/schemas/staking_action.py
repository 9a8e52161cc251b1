import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StakingActionKind(str, enum.Enum):
    delegation_open = "delegation-open"
    delegation_increase = "delegation-increase"
    delegation_decrease = "delegation-decrease"
    delegation_revoke = "delegation-revoke"
    delegation_revoke_scheduled = "delegation-revoke-scheduled"
    delegation_decrease_scheduled = "delegation-decrease-scheduled"
    delegation_revoke_cancelled = "delegation-revoke-cancelled"
    delegation_kicked = "delegation-kicked"
    delegator_left = "delegator-left"
    delegator_left_one_candidate = "delegator-left-one-candidate"
    compounded = "compounded"
    collator_join = "collator-join"
    collator_bond_more = "collator-bond-more"
    collator_bond_less = "collator-bond-less"
    collator_bond_less_scheduled = "collator-bond-less-scheduled"
    collator_bond_less_cancelled = "collator-bond-less-cancelled"
    collator_left = "collator-left"


COLLATOR_ACTION_KINDS = frozenset(
    {
        StakingActionKind.collator_join,
        StakingActionKind.collator_bond_more,
        StakingActionKind.collator_bond_less,
        StakingActionKind.collator_bond_less_scheduled,
        StakingActionKind.collator_bond_less_cancelled,
        StakingActionKind.collator_left,
    }
)


class StakingAction(BaseModel):
    """Canonical, schema-independent form of one staking ledger event."""

    model_config = ConfigDict(frozen=True)

    kind: StakingActionKind
    actor: str
    counterparty: Optional[str] = None
    amount: int = Field(ge=0)

    @property
    def is_collator_action(self) -> bool:
        return self.kind in COLLATOR_ACTION_KINDS
