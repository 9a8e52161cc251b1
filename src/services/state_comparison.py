import logging
from typing import Dict, Iterable, List, Tuple

import pandas as pd

from models import Collator, Staker
from schemas import AmountDifference, ChainSnapshot, StateComparison

logger = logging.getLogger(__name__)


def _amounts_frame(amounts: Dict[str, int], column: str) -> pd.DataFrame:
    # object dtype keeps 256-bit amounts as python ints
    return pd.DataFrame(
        {
            "address": pd.Series(list(amounts.keys()), dtype=object),
            column: pd.Series(list(amounts.values()), dtype=object),
        }
    )


def diff_amounts(
    chain_amounts: Dict[str, int], indexer_amounts: Dict[str, int]
) -> Tuple[List[str], List[str], List[AmountDifference]]:
    """Outer-join chain and indexer balances.

    Returns addresses missing in the indexer, addresses only in the indexer
    and per-address differences sorted by absolute size, largest first.
    """
    df = pd.merge(
        _amounts_frame(chain_amounts, "chain_amount"),
        _amounts_frame(indexer_amounts, "indexer_amount"),
        on="address",
        how="outer",
        indicator=True,
    )

    missing = sorted(df.loc[df["_merge"] == "left_only", "address"].tolist())
    only_in_indexer = sorted(df.loc[df["_merge"] == "right_only", "address"].tolist())

    both = df[df["_merge"] == "both"]
    differences = []
    for row in both.itertuples(index=False):
        chain_amount = int(row.chain_amount)
        indexer_amount = int(row.indexer_amount)
        if chain_amount != indexer_amount:
            differences.append(
                AmountDifference(
                    address=row.address,
                    chain_amount=chain_amount,
                    indexer_amount=indexer_amount,
                    difference=chain_amount - indexer_amount,
                )
            )
    differences.sort(key=lambda d: abs(d.difference), reverse=True)
    return missing, only_in_indexer, differences


def compare_state(
    snapshot: ChainSnapshot, stakers: Iterable[Staker], collators: Iterable[Collator]
) -> StateComparison:
    indexer_stakes = {s.id: s.staked_amount for s in stakers if s.staked_amount > 0}
    indexer_bonds = {c.id: c.self_bond for c in collators if c.self_bond > 0}
    chain_stakes = {k: v for k, v in snapshot.delegator_stakes.items() if v > 0}
    chain_bonds = {k: v for k, v in snapshot.collator_bonds.items() if v > 0}

    stakers_missing, stakers_only, staker_diffs = diff_amounts(chain_stakes, indexer_stakes)
    collators_missing, collators_only, collator_diffs = diff_amounts(chain_bonds, indexer_bonds)

    comparison = StateComparison(
        block_number=snapshot.block_number,
        stakers_missing_in_indexer=stakers_missing,
        stakers_only_in_indexer=stakers_only,
        staker_amount_differences=staker_diffs,
        collators_missing_in_indexer=collators_missing,
        collators_only_in_indexer=collators_only,
        collator_amount_differences=collator_diffs,
        chain_total_delegator_stake=sum(chain_stakes.values()),
        indexer_total_delegator_stake=sum(indexer_stakes.values()),
        chain_total_collator_bond=sum(chain_bonds.values()),
        indexer_total_collator_bond=sum(indexer_bonds.values()),
    )
    logger.info(
        f"Compared block {snapshot.block_number}: {len(stakers_missing)} stakers missing, "
        f"{len(stakers_only)} only in indexer, {len(staker_diffs)} differ"
    )
    return comparison
