"""
Turns raw ParachainStaking events into canonical StakingAction records.

The same logical event has been emitted under different layouts across
runtime upgrades: positional tuples in early runtimes, named structs later,
with some fields renamed along the way. Each event is described by an
EventSchema listing, per field, the names and positions to try in priority
order (named first, then positional). Upgrades only need a schema change here.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from core import constants
from core.exceptions import InvalidAddress, MalformedEvent
from schemas import RawEvent, StakingAction, StakingActionKind
from utils.address import normalize_address

logger = logging.getLogger(__name__)

_MISSING = object()


class ArgsView:
    """Uniform read access over named or positional event arguments."""

    def __init__(self, args: Any):
        # scale-codec objects expose the decoded python value on .value
        if hasattr(args, "value") and not isinstance(args, (dict, list, tuple)):
            args = args.value
        self.args = args

    def named(self, name: str):
        if isinstance(self.args, dict):
            value = self.args.get(name, _MISSING)
            return _MISSING if value is None else value
        return _MISSING

    def positional(self, position: int):
        if isinstance(self.args, (list, tuple)) and 0 <= position < len(self.args):
            value = self.args[position]
            return _MISSING if value is None else value
        return _MISSING

    def lookup(self, names: Sequence[str], positions: Sequence[int]):
        for name in names:
            value = self.named(name)
            if value is not _MISSING:
                return _unwrap(value)
        for position in positions:
            value = self.positional(position)
            if value is not _MISSING:
                return _unwrap(value)
        return _MISSING


# substrate-interface hands older events as a list of {"type", "value"} dicts
def _unwrap(value):
    if isinstance(value, dict) and set(value.keys()) >= {"type", "value"}:
        return value["value"]
    if hasattr(value, "value") and not isinstance(
        value, (dict, list, tuple, str, bytes, int)
    ):
        return value.value
    return value


def parse_amount(value: Any) -> int:
    """Parse an unsigned integer amount; raises ValueError if malformed."""
    if isinstance(value, bool):
        raise ValueError(f"boolean is not an amount: {value!r}")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError(f"fractional amount: {value}")
        amount = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            amount = int(text, 16)
        else:
            amount = int(text)
    else:
        raise ValueError(f"unsupported amount type {type(value).__name__}")

    if amount < 0:
        raise ValueError(f"negative amount: {amount}")
    return amount


def parse_request_amount(value: Any) -> int:
    """Amount of a (cancelled) scheduled delegation request.

    Accepts a bare amount, ``{"amount": n}`` (older DelegationRequest),
    ``{"action": {"Revoke": n}}`` / ``{"action": {"Decrease": n}}`` and the
    ``{"__kind": "Revoke", "value": n}`` enum form.
    """
    if not isinstance(value, dict):
        return parse_amount(value)

    if value.get("amount") is not None:
        return parse_amount(value["amount"])

    action = value.get("action", value)
    if isinstance(action, dict):
        if "value" in action and "__kind" in action:
            return parse_amount(action["value"])
        for key in ("Revoke", "revoke", "Decrease", "decrease"):
            if action.get(key) is not None:
                return parse_amount(action[key])
    raise ValueError(f"request carries no amount: {value!r}")


@dataclass(frozen=True)
class FieldSpec:
    names: Tuple[str, ...] = ()
    positions: Tuple[int, ...] = ()


@dataclass(frozen=True)
class EventSchema:
    kind: StakingActionKind
    actor: FieldSpec
    amount: FieldSpec
    counterparty: Optional[FieldSpec] = None
    amount_parser: Callable[[Any], int] = field(default=parse_amount)


DELEGATOR = FieldSpec(("delegator",), (0,))
CANDIDATE_AT_1 = FieldSpec(("candidate",), (1,))
CANDIDATE_AT_2 = FieldSpec(("candidate",), (2,))
UNSTAKED_AT_2 = FieldSpec(("unstakedAmount", "unstaked_amount", "amount"), (2,))

EVENT_SCHEMAS: Dict[str, EventSchema] = {
    # v1001 (delegator, amount, candidate, position), v1300+ struct
    constants.DELEGATION: EventSchema(
        kind=StakingActionKind.delegation_open,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_2,
        amount=FieldSpec(("lockedAmount", "locked_amount", "amount"), (1,)),
    ),
    # (delegator, candidate, amount, in_top)
    constants.DELEGATION_INCREASED: EventSchema(
        kind=StakingActionKind.delegation_increase,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_1,
        amount=FieldSpec(("amount",), (2,)),
    ),
    constants.DELEGATION_DECREASED: EventSchema(
        kind=StakingActionKind.delegation_decrease,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_1,
        amount=FieldSpec(("amount",), (2,)),
    ),
    # (delegator, candidate, unstaked_amount)
    constants.DELEGATION_REVOKED: EventSchema(
        kind=StakingActionKind.delegation_revoke,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_1,
        amount=UNSTAKED_AT_2,
    ),
    constants.DELEGATION_KICKED: EventSchema(
        kind=StakingActionKind.delegation_kicked,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_1,
        amount=UNSTAKED_AT_2,
    ),
    # (delegator, candidate, unstaked_amount, total_candidate_staked)
    constants.DELEGATOR_LEFT_CANDIDATE: EventSchema(
        kind=StakingActionKind.delegator_left_one_candidate,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_1,
        amount=UNSTAKED_AT_2,
    ),
    # (delegator, unstaked_amount)
    constants.DELEGATOR_LEFT: EventSchema(
        kind=StakingActionKind.delegator_left,
        actor=DELEGATOR,
        amount=FieldSpec(("unstakedAmount", "unstaked_amount", "amount"), (1,)),
    ),
    # struct only: {candidate, delegator, amount}
    constants.COMPOUNDED: EventSchema(
        kind=StakingActionKind.compounded,
        actor=FieldSpec(("delegator",), (1,)),
        counterparty=FieldSpec(("candidate",), (0,)),
        amount=FieldSpec(("amount",), (2,)),
    ),
    # (round, delegator, candidate, scheduled_exit), amount only on named layouts
    constants.DELEGATION_REVOCATION_SCHEDULED: EventSchema(
        kind=StakingActionKind.delegation_revoke_scheduled,
        actor=FieldSpec(("delegator",), (1,)),
        counterparty=CANDIDATE_AT_2,
        amount=FieldSpec(("amount", "unstakedAmount", "unstaked_amount")),
    ),
    # (delegator, candidate, amount_to_decrease, execute_round)
    constants.DELEGATION_DECREASE_SCHEDULED: EventSchema(
        kind=StakingActionKind.delegation_decrease_scheduled,
        actor=DELEGATOR,
        counterparty=CANDIDATE_AT_1,
        amount=FieldSpec(("amountToDecrease", "amount_to_decrease", "amount"), (2,)),
    ),
    # (delegator, cancelled_request, collator)
    constants.CANCELLED_DELEGATION_REQUEST: EventSchema(
        kind=StakingActionKind.delegation_revoke_cancelled,
        actor=DELEGATOR,
        counterparty=FieldSpec(("collator", "candidate"), (2,)),
        amount=FieldSpec(
            ("amount", "cancelledRequest", "cancelled_request"), (1,)
        ),
        amount_parser=parse_request_amount,
    ),
    # (account, amount_locked, new_total_amt_locked)
    constants.JOINED_COLLATOR_CANDIDATES: EventSchema(
        kind=StakingActionKind.collator_join,
        actor=FieldSpec(("account", "candidate"), (0,)),
        amount=FieldSpec(("amountLocked", "amount_locked", "amount"), (1,)),
    ),
    # (candidate, amount, new_bond)
    constants.CANDIDATE_BONDED_MORE: EventSchema(
        kind=StakingActionKind.collator_bond_more,
        actor=FieldSpec(("candidate",), (0,)),
        amount=FieldSpec(("amount",), (1,)),
    ),
    constants.CANDIDATE_BONDED_LESS: EventSchema(
        kind=StakingActionKind.collator_bond_less,
        actor=FieldSpec(("candidate",), (0,)),
        amount=FieldSpec(("amount",), (1,)),
    ),
    # (candidate, amount_to_decrease, execute_round)
    constants.CANDIDATE_BOND_LESS_REQUESTED: EventSchema(
        kind=StakingActionKind.collator_bond_less_scheduled,
        actor=FieldSpec(("candidate",), (0,)),
        amount=FieldSpec(("amountToDecrease", "amount_to_decrease", "amount"), (1,)),
    ),
    # (candidate, amount, execute_round)
    constants.CANCELLED_CANDIDATE_BOND_LESS: EventSchema(
        kind=StakingActionKind.collator_bond_less_cancelled,
        actor=FieldSpec(("candidate",), (0,)),
        amount=FieldSpec(("amount",), (1,)),
    ),
    # (ex_candidate, unlocked_amount, new_total_amt_locked)
    constants.CANDIDATE_LEFT: EventSchema(
        kind=StakingActionKind.collator_left,
        actor=FieldSpec(("exCandidate", "ex_candidate", "candidate"), (0,)),
        amount=FieldSpec(("unlockedAmount", "unlocked_amount", "amount"), (1,)),
    ),
}
EVENT_SCHEMAS[constants.CANDIDATE_BOND_LESS_SCHEDULED] = EVENT_SCHEMAS[
    constants.CANDIDATE_BOND_LESS_REQUESTED
]


class EventCanonicalizer:
    def __init__(self, schemas: Dict[str, EventSchema] = None, ss58_prefix: int = None):
        self.schemas = EVENT_SCHEMAS if schemas is None else schemas
        self.ss58_prefix = ss58_prefix

    def is_supported(self, event_name: str) -> bool:
        return event_name in self.schemas

    def decode(self, event_name: str, args: Any) -> Optional[StakingAction]:
        """Strict decoding.

        Returns None for events this indexer does not track, raises
        MalformedEvent when a required field is absent or unparsable and
        InvalidAddress when an address is present but not a valid key.
        """
        schema = self.schemas.get(event_name)
        if schema is None:
            return None
        if args is None:
            raise MalformedEvent(event_name, "event has no arguments")

        view = ArgsView(args)

        raw_actor = view.lookup(schema.actor.names, schema.actor.positions)
        if raw_actor is _MISSING:
            raise MalformedEvent(event_name, "actor address is missing")

        raw_amount = view.lookup(schema.amount.names, schema.amount.positions)
        if raw_amount is _MISSING:
            raise MalformedEvent(event_name, "amount is missing")
        try:
            amount = schema.amount_parser(raw_amount)
        except (TypeError, ValueError) as e:
            raise MalformedEvent(event_name, f"amount is malformed: {e}")

        actor = normalize_address(raw_actor, self.ss58_prefix)

        counterparty = None
        if schema.counterparty is not None:
            raw_counterparty = view.lookup(
                schema.counterparty.names, schema.counterparty.positions
            )
            if raw_counterparty is not _MISSING:
                counterparty = normalize_address(raw_counterparty, self.ss58_prefix)

        return StakingAction(
            kind=schema.kind, actor=actor, counterparty=counterparty, amount=amount
        )

    def canonicalize(self, event: RawEvent) -> Optional[StakingAction]:
        """Lenient decoding: None for unknown, malformed or badly addressed events."""
        try:
            return self.decode(event.name, event.args)
        except (MalformedEvent, InvalidAddress) as e:
            logger.warning(f"Dropping event {event.name}: {e}")
            return None
