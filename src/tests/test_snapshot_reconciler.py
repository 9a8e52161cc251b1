from unittest.mock import Mock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core import constants
from core.exceptions import ReconciliationError
from models import Collator, Staker, TotalStake
from schemas import ChainSnapshot
from services.snapshot_reconciler import SnapshotReconciler
from services.staking_store import StakingStore

STAKER = "0x" + "01" * 20
OTHER_STAKER = "0x" + "02" * 20
COLLATOR = "0x" + "0c" * 20


@pytest.fixture(scope="module")
def db_session():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    session = Session(engine)
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_tables(db_session: Session):
    db_session.rollback()
    db_session.query(Staker).delete()
    db_session.query(Collator).delete()
    db_session.query(TotalStake).delete()
    db_session.commit()


@pytest.fixture
def store(db_session):
    return StakingStore(db_session)


def make_snapshot(**kwargs) -> ChainSnapshot:
    values = {
        "block_number": 100,
        "block_hash": "0xabc",
        "delegator_stakes": {STAKER: 800},
        "collator_bonds": {COLLATOR: 5000},
    }
    values.update(kwargs)
    return ChainSnapshot(**values)


def row_values(staker: Staker):
    return (
        staker.staked_amount,
        staker.scheduled_unbonds,
        staker.total_delegated,
        staker.total_undelegated,
        staker.last_updated_block,
    )


def test_inserts_missing_staker_with_seeded_counters(db_session, store):
    result = SnapshotReconciler(db_session, total_supply=100_000).reconcile(make_snapshot())

    staker = store.get(Staker, STAKER)
    assert staker.staked_amount == 800
    assert staker.total_delegated == 800
    assert staker.total_undelegated == 0
    assert staker.scheduled_unbonds == 0
    assert staker.last_updated_block == 100

    collator = store.get(Collator, COLLATOR)
    assert collator.self_bond == 5000
    assert collator.total_bonded == 5000
    assert collator.total_unbonded == 0

    assert result.stakers_inserted == 1
    assert result.collators_inserted == 1
    assert result.changed


def test_second_run_with_same_snapshot_is_a_noop(db_session, store):
    snapshot = make_snapshot(delegator_scheduled_unbonds={STAKER: 200})
    reconciler = SnapshotReconciler(db_session, total_supply=100_000)
    reconciler.reconcile(snapshot)
    before = row_values(store.get(Staker, STAKER))

    result = reconciler.reconcile(snapshot)

    assert row_values(store.get(Staker, STAKER)) == before
    assert not result.changed


def test_existing_row_only_gets_scheduled_unbonds(db_session, store):
    store.upsert(
        Staker(
            id=STAKER,
            staked_amount=750,
            scheduled_unbonds=0,
            total_delegated=2000,
            total_undelegated=1250,
            last_updated_block=90,
        )
    )
    store.commit()

    result = SnapshotReconciler(db_session).reconcile(
        make_snapshot(delegator_stakes={STAKER: 600}, delegator_scheduled_unbonds={STAKER: 200})
    )

    staker = store.get(Staker, STAKER)
    assert staker.staked_amount == 750
    assert staker.total_delegated == 2000
    assert staker.total_undelegated == 1250
    assert staker.scheduled_unbonds == 200
    assert staker.last_updated_block == 100
    assert result.stakers_updated == 1
    assert result.stakers_inserted == 0


def test_existing_row_with_matching_schedule_is_untouched(db_session, store):
    store.upsert(Staker(id=STAKER, staked_amount=10, scheduled_unbonds=0, last_updated_block=90))
    store.commit()

    result = SnapshotReconciler(db_session).reconcile(make_snapshot())

    assert store.get(Staker, STAKER).last_updated_block == 90
    assert result.stakers_updated == 0


def test_rows_missing_from_snapshot_are_left_alone(db_session, store):
    store.upsert(Staker(id=OTHER_STAKER, staked_amount=42, scheduled_unbonds=7))
    store.commit()

    SnapshotReconciler(db_session).reconcile(make_snapshot())

    other = store.get(Staker, OTHER_STAKER)
    assert other.staked_amount == 42
    assert other.scheduled_unbonds == 7


def test_fully_scheduled_account_is_inserted(db_session, store):
    SnapshotReconciler(db_session).reconcile(
        make_snapshot(
            delegator_stakes={OTHER_STAKER: 0},
            delegator_scheduled_unbonds={OTHER_STAKER: 300},
        )
    )

    staker = store.get(Staker, OTHER_STAKER)
    assert staker.staked_amount == 0
    assert staker.scheduled_unbonds == 300


def test_total_stake_rebuilt_from_snapshot_sums(db_session, store):
    store.upsert(
        TotalStake(
            id=constants.TOTAL_STAKE_ID,
            total_supply=1_000_000,
            total_delegator_stake=1,
            active_staker_count=99,
        )
    )
    store.commit()

    result = SnapshotReconciler(db_session, total_supply=5).reconcile(
        make_snapshot(
            delegator_stakes={STAKER: 200_000, OTHER_STAKER: 0},
            collator_bonds={COLLATOR: 50_000},
            delegator_scheduled_unbonds={OTHER_STAKER: 100_000},
            collator_scheduled_unbonds={COLLATOR: 50_000},
        )
    )

    total = store.get(TotalStake, constants.TOTAL_STAKE_ID)
    assert total.total_supply == 1_000_000
    assert total.total_delegator_stake == 200_000
    assert total.total_collator_bond == 50_000
    assert total.total_staked == 250_000
    assert total.total_bonded == 400_000
    assert total.staked_percentage == 25.0
    assert total.bonded_percentage == 40.0
    assert total.active_staker_count == 1
    assert total.active_collator_count == 1
    assert total.last_updated_block == 100
    assert result.total_bonded == 400_000


def test_total_stake_created_with_configured_supply(db_session, store):
    SnapshotReconciler(db_session, total_supply=10_000).reconcile(make_snapshot())

    total = store.get(TotalStake, constants.TOTAL_STAKE_ID)
    assert total.total_supply == 10_000
    assert total.staked_percentage == 58.0


def test_selected_collator_backing(db_session):
    result = SnapshotReconciler(db_session).reconcile(
        make_snapshot(selected_collators=[COLLATOR], top_delegations={COLLATOR: 700})
    )
    assert result.selected_collator_count == 1
    assert result.selected_backing == 5700


def test_run_fetches_snapshot_from_chain(db_session, store):
    chain_state = Mock()
    chain_state.fetch_snapshot.return_value = make_snapshot()

    SnapshotReconciler(db_session, chain_state).run(block_number=100)

    chain_state.fetch_snapshot.assert_called_once_with(block_number=100, include_selected=False)
    assert store.get(Staker, STAKER).staked_amount == 800


def test_store_failure_rolls_back(db_session, store):
    reconciler = SnapshotReconciler(db_session)
    reconciler.store = Mock(wraps=store)
    reconciler.store.commit.side_effect = RuntimeError("disk full")

    with pytest.raises(ReconciliationError):
        reconciler.reconcile(make_snapshot())

    assert store.get(Staker, STAKER) is None
