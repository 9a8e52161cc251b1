from unittest.mock import patch

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core import constants
from models import Collator, ProcessorStatus, Staker, TotalStake
from schemas import BlockBatch, RawBlock, RawEvent
from services.batch_processor import BatchProcessor
from services.processing_context import ProcessingContext

DELEGATOR = "0x" + "aa" * 20
CANDIDATE = "0x" + "bb" * 20


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
    db_session.query(ProcessorStatus).delete()
    db_session.commit()


@pytest.fixture
def processor(db_session):
    return BatchProcessor(db_session, ProcessingContext(total_supply=1_000_000))


def block(height, *events):
    return RawBlock(
        height=height,
        hash=f"0x{height:064x}",
        events=[RawEvent(name=name, args=args, index=i) for i, (name, args) in enumerate(events)],
    )


def test_batch_is_applied_in_order_and_persisted(db_session, processor):
    batch = BlockBatch(
        blocks=[
            block(10, (constants.DELEGATION, [DELEGATOR, 1000, CANDIDATE, 0])),
            block(
                11,
                (
                    constants.DELEGATION_REVOCATION_SCHEDULED,
                    {"round": 1, "delegator": DELEGATOR, "candidate": CANDIDATE, "scheduledExit": 3, "amount": 400},
                ),
                (constants.DELEGATION_REVOKED, [DELEGATOR, CANDIDATE, 400]),
            ),
            block(12, (constants.JOINED_COLLATOR_CANDIDATES, [CANDIDATE, 5000, 5000])),
        ]
    )

    assert processor.process_batch(batch) == 4

    staker = db_session.get(Staker, DELEGATOR)
    assert staker.staked_amount == 600
    assert staker.scheduled_unbonds == 0
    assert staker.last_updated_block == 11

    total = db_session.get(TotalStake, constants.TOTAL_STAKE_ID)
    assert total.total_staked == 5600
    assert total.active_staker_count == 1
    assert total.active_collator_count == 1

    status = db_session.get(ProcessorStatus, constants.PROCESSOR_STATUS_ID)
    assert status.height == 12
    assert processor.last_processed_height() == 12


def test_bad_events_are_skipped(db_session, processor):
    batch = BlockBatch(
        blocks=[
            block(
                20,
                (constants.DELEGATION, [DELEGATOR, "not-a-number", CANDIDATE]),
                (constants.DELEGATION, ["0x12", 10, CANDIDATE]),
                ("Balances.Transfer", [DELEGATOR, CANDIDATE, 1]),
                (constants.DELEGATION, [DELEGATOR, 10, CANDIDATE]),
            )
        ]
    )

    assert processor.process_batch(batch) == 1
    assert db_session.get(Staker, DELEGATOR).staked_amount == 10


def test_empty_batch_is_a_noop(processor):
    assert processor.process_batch(BlockBatch()) == 0
    assert processor.last_processed_height() is None


def test_failed_batch_rolls_back_store_and_context(db_session, processor):
    processor.process_batch(
        BlockBatch(blocks=[block(1, (constants.DELEGATION_DECREASE_SCHEDULED, [DELEGATOR, CANDIDATE, 0, 5]))])
    )
    pool_before = processor.context.scheduled_unbonds_pool

    batch = BlockBatch(
        blocks=[
            block(2, (constants.DELEGATION, [DELEGATOR, 1000, CANDIDATE])),
            block(3, (constants.DELEGATION_DECREASE_SCHEDULED, [DELEGATOR, CANDIDATE, 300, 5])),
        ]
    )
    with patch.object(processor.store, "commit", side_effect=RuntimeError("connection lost")):
        with pytest.raises(RuntimeError):
            processor.process_batch(batch)

    assert db_session.get(Staker, DELEGATOR).staked_amount == 0
    assert processor.context.scheduled_unbonds_pool == pool_before
    assert processor.last_processed_height() == 1


def test_scheduled_pool_survives_across_batches(db_session, processor):
    processor.process_batch(
        BlockBatch(
            blocks=[
                block(1, (constants.DELEGATION, [DELEGATOR, 1000, CANDIDATE])),
                block(2, (constants.DELEGATION_DECREASE_SCHEDULED, [DELEGATOR, CANDIDATE, 300, 5])),
            ]
        )
    )
    processor.process_batch(
        BlockBatch(blocks=[block(3, (constants.DELEGATION, [DELEGATOR, 1, CANDIDATE]))])
    )

    total = db_session.get(TotalStake, constants.TOTAL_STAKE_ID)
    assert processor.context.scheduled_unbonds_pool == 300
    assert total.total_staked == 701
    assert total.total_bonded == 1001


def test_cancelled_revoke_without_observed_schedule_keeps_stake(db_session, processor):
    batch = BlockBatch(
        blocks=[
            block(30, (constants.DELEGATION, [DELEGATOR, 1000, CANDIDATE, 0])),
            block(
                31,
                # positional layout carries no amount, so the schedule is not tracked
                (constants.DELEGATION_REVOCATION_SCHEDULED, [10, DELEGATOR, CANDIDATE, 12]),
                (constants.CANCELLED_DELEGATION_REQUEST, [DELEGATOR, {"action": {"Revoke": 1000}}, CANDIDATE]),
            ),
        ]
    )

    assert processor.process_batch(batch) == 2

    staker = db_session.get(Staker, DELEGATOR)
    assert staker.staked_amount == 1000
    assert staker.total_delegated == 1000
    assert staker.scheduled_unbonds == 0

    total = db_session.get(TotalStake, constants.TOTAL_STAKE_ID)
    assert total.total_staked == 1000
    assert total.total_bonded == 1000
