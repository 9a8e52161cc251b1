from unittest.mock import Mock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core import constants
from models import Collator, Staker, TotalStake
from schemas import StakingAction, StakingActionKind
from services.aggregation_rules import apply_action
from services.entity_cache import EntityCache
from services.processing_context import ProcessingContext
from services.staking_store import StakingStore

STAKER = "0x" + "01" * 20
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


def test_missing_entities_are_created_zeroed(store):
    cache = EntityCache(store, ProcessingContext(total_supply=500))

    staker = cache.get_staker(STAKER, 7)
    collator = cache.get_collator(COLLATOR, 7)
    total = cache.get_total_stake(7)

    assert (staker.staked_amount, staker.scheduled_unbonds, staker.last_updated_block) == (0, 0, 7)
    assert (collator.self_bond, collator.scheduled_unbonds) == (0, 0)
    assert total.id == constants.TOTAL_STAKE_ID
    assert total.total_supply == 500
    assert total.active_staker_count == 0


def test_each_entity_is_loaded_once_per_batch(store):
    spy = Mock(wraps=store)
    cache = EntityCache(spy, ProcessingContext())

    first = cache.get_staker(STAKER, 1)
    first.staked_amount = 10
    second = cache.get_staker(STAKER, 2)

    assert second is first
    assert second.staked_amount == 10
    assert spy.get.call_count == 1

    cache.get_total_stake(1)
    cache.get_total_stake(2)
    assert spy.get.call_count == 2


def test_flush_upserts_once_per_kind(store):
    spy = Mock(wraps=store)
    cache = EntityCache(spy, ProcessingContext())

    cache.get_staker(STAKER, 1)
    cache.get_staker("0x" + "02" * 20, 1)
    cache.get_collator(COLLATOR, 1)
    cache.get_total_stake(1)
    cache.flush()

    assert spy.upsert.call_count == 3
    upserted_stakers = spy.upsert.call_args_list[0].args[0]
    assert {s.id for s in upserted_stakers} == {STAKER, "0x" + "02" * 20}


def test_flush_skips_untouched_kinds(store):
    spy = Mock(wraps=store)
    cache = EntityCache(spy, ProcessingContext())
    cache.get_staker(STAKER, 1)
    cache.flush()

    assert spy.upsert.call_count == 1


def test_cache_cannot_be_used_after_flush(store):
    cache = EntityCache(store, ProcessingContext())
    cache.flush()

    with pytest.raises(RuntimeError):
        cache.get_staker(STAKER, 1)
    with pytest.raises(RuntimeError):
        cache.flush()


def test_flushed_entities_are_read_back_by_next_batch(store):
    context = ProcessingContext(total_supply=1000)
    cache = EntityCache(store, context)
    apply_action(
        cache, StakingAction(kind=StakingActionKind.delegation_open, actor=STAKER, amount=300), 3
    )
    cache.flush()
    store.commit()

    next_cache = EntityCache(store, context)
    staker = next_cache.get_staker(STAKER, 4)
    assert staker.staked_amount == 300
    assert staker.total_delegated == 300
    assert next_cache.get_total_stake(4).active_staker_count == 1


def test_loaded_total_stake_adopts_configured_supply(store):
    store.upsert(TotalStake(id=constants.TOTAL_STAKE_ID, total_supply=0))
    store.commit()

    total = EntityCache(store, ProcessingContext(total_supply=900)).get_total_stake(1)
    assert total.total_supply == 900


def test_scheduled_pool_seeded_from_store_and_batch(store):
    store.upsert(
        [
            Staker(id=STAKER, staked_amount=100, scheduled_unbonds=40),
            Staker(id="0x" + "02" * 20, staked_amount=0, scheduled_unbonds=60),
            Collator(id=COLLATOR, self_bond=500, scheduled_unbonds=100),
        ]
    )
    store.commit()

    context = ProcessingContext()
    cache = EntityCache(store, context)
    assert cache.scheduled_unbonds_pool() == 200
    assert context.scheduled_pool_initialized


def test_scheduled_pool_prefers_batch_copies(store):
    store.upsert(Staker(id=STAKER, staked_amount=100, scheduled_unbonds=40))
    store.commit()

    cache = EntityCache(store, ProcessingContext())
    # a new entity only known to the batch
    cache.get_collator(COLLATOR, 1).scheduled_unbonds = 5
    assert cache.scheduled_unbonds_pool() == 45


def test_scheduled_pool_is_seeded_once_per_process(store):
    store.upsert(Staker(id=STAKER, staked_amount=100, scheduled_unbonds=40))
    store.commit()

    context = ProcessingContext()
    spy = Mock(wraps=store)
    EntityCache(spy, context).scheduled_unbonds_pool()
    EntityCache(spy, context).scheduled_unbonds_pool()

    assert spy.find.call_count == 2  # stakers and collators, first batch only

    context.adjust_scheduled_pool(10)
    assert EntityCache(spy, context).scheduled_unbonds_pool() == 50


def test_invalidated_pool_is_reseeded(store):
    context = ProcessingContext()
    EntityCache(store, context).scheduled_unbonds_pool()
    context.adjust_scheduled_pool(999)

    store.upsert(Staker(id=STAKER, staked_amount=0, scheduled_unbonds=25))
    store.commit()
    context.invalidate_scheduled_pool()

    assert EntityCache(store, context).scheduled_unbonds_pool() == 25


def test_rollback_restores_pool():
    context = ProcessingContext()
    context.scheduled_unbonds_pool = 100
    context.scheduled_pool_initialized = True

    context.begin_batch()
    context.adjust_scheduled_pool(50)
    context.rollback_batch()
    assert context.scheduled_unbonds_pool == 100

    context.begin_batch()
    context.adjust_scheduled_pool(-30)
    context.commit_batch()
    context.rollback_batch()
    assert context.scheduled_unbonds_pool == 70
