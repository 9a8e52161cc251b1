from .raw_block import BlockBatch, RawBlock, RawEvent
from .staking_action import StakingAction, StakingActionKind
from .chain_snapshot import ChainSnapshot, ReconciliationResult
from .state_comparison import AmountDifference, StateComparison
