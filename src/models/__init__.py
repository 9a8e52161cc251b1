from sqlmodel import SQLModel
from .staker import Staker
from .collator import Collator
from .total_stake import TotalStake
from .processor_status import ProcessorStatus
