from unittest.mock import Mock

import pytest
import requests
from substrateinterface.exceptions import SubstrateRequestException

from core import constants
from core.exceptions import TransientSourceError
from services.block_sources import ArchiveBlockSource, RpcBlockSource, parse_archive_blocks

GATEWAY = "https://archive.example/network/moonbeam-substrate"
WORKER = "https://worker.example/query"
DELEGATOR = "0x" + "aa" * 20
CANDIDATE = "0x" + "bb" * 20


def response(text=None, json_data=None, status_code=200):
    mock_response = Mock()
    mock_response.text = text
    mock_response.json.return_value = json_data
    mock_response.status_code = status_code
    if status_code >= 400:
        mock_response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return mock_response


def archive_block(number, events=()):
    return {
        "header": {"number": number, "hash": f"0x{number:064x}"},
        "events": list(events),
    }


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


def test_archive_protocol(http):
    payload = [
        archive_block(
            5,
            [
                {"index": 3, "name": constants.DELEGATION_REVOKED, "args": [DELEGATOR, CANDIDATE, "10"]},
                {"index": 1, "name": constants.DELEGATION, "args": {"delegator": DELEGATOR, "lockedAmount": "10", "candidate": CANDIDATE}},
            ],
        ),
        archive_block(9),
    ]
    http.request.side_effect = [
        response(text="9\n"),
        response(text=WORKER + "\n"),
        response(json_data=payload),
    ]
    source = ArchiveBlockSource(gateway_url=GATEWAY + "/", session=http, timeout=30)

    batches = list(source.iter_batches(1))

    assert len(batches) == 1
    batch = batches[0]
    assert [b.height for b in batch.blocks] == [5, 9]
    assert [e.name for e in batch.blocks[0].events] == [
        constants.DELEGATION,
        constants.DELEGATION_REVOKED,
    ]

    calls = http.request.call_args_list
    assert calls[0].args == ("GET", f"{GATEWAY}/height")
    assert calls[1].args == ("GET", f"{GATEWAY}/1/worker")
    assert calls[2].args == ("POST", WORKER)
    query = calls[2].kwargs["json"]
    assert query["fromBlock"] == 1
    assert query["toBlock"] == 9
    assert query["events"] == [{"name": constants.STAKING_EVENT_NAMES}]
    assert calls[2].kwargs["timeout"] == 30


def test_archive_pages_until_end_block(http):
    http.request.side_effect = [
        response(text="1000"),
        response(text=WORKER),
        response(json_data=[archive_block(100), archive_block(150)]),
        response(text=WORKER),
        response(json_data=[archive_block(200)]),
    ]
    source = ArchiveBlockSource(gateway_url=GATEWAY, session=http)

    batches = list(source.iter_batches(100, to_block=200))

    assert [b.block_range for b in batches] == [51, 1]
    assert http.request.call_args_list[3].args == ("GET", f"{GATEWAY}/151/worker")


def test_archive_http_errors_are_transient(http):
    http.request.side_effect = [response(text="oops", status_code=503)]
    source = ArchiveBlockSource(gateway_url=GATEWAY, session=http)

    with pytest.raises(TransientSourceError) as e:
        list(source.iter_batches(1))
    assert "[archive]" in str(e.value)


def test_archive_connection_errors_are_transient(http):
    http.request.side_effect = requests.ConnectionError("connection reset")
    source = ArchiveBlockSource(gateway_url=GATEWAY, session=http)

    with pytest.raises(TransientSourceError):
        source.get_height()


def test_parse_archive_blocks_handles_missing_events():
    batch = parse_archive_blocks([{"header": {"number": 7}}])
    assert batch.blocks[0].height == 7
    assert batch.blocks[0].events == []


def event_record(module_id, event_id, attributes):
    record = Mock()
    record.value = {
        "module_id": module_id,
        "event_id": event_id,
        "attributes": attributes,
        "event_index": "0c00",
    }
    return record


@pytest.fixture
def substrate():
    substrate = Mock()
    substrate.get_chain_finalised_head.return_value = "0xhead"
    substrate.get_block_number.return_value = 12
    substrate.get_block_hash.side_effect = lambda height: f"0x{height:064x}"
    substrate.get_events.return_value = [
        event_record("System", "ExtrinsicSuccess", {}),
        event_record("ParachainStaking", "Delegation", [DELEGATOR, 5, CANDIDATE, "Top"]),
    ]
    return substrate


def test_rpc_source_reads_staking_events(substrate):
    source = RpcBlockSource(substrate=substrate, batch_size=5, sleep=Mock())

    block = source.get_block(10)

    assert block.hash == f"0x{10:064x}"
    assert len(block.events) == 1
    assert block.events[0].name == constants.DELEGATION
    assert block.events[0].args == [DELEGATOR, 5, CANDIDATE, "Top"]
    assert block.events[0].index == 1


def test_rpc_source_batches_up_to_finalized_head(substrate):
    sleep = Mock()
    source = RpcBlockSource(substrate=substrate, batch_size=5, sleep=sleep)

    batches = list(source.iter_batches(1, to_block=12))

    assert [(b.first_block, b.last_block) for b in batches] == [(1, 5), (6, 10), (11, 12)]
    sleep.assert_not_called()


def test_rpc_source_polls_when_caught_up(substrate):
    sleep = Mock()
    substrate.get_block_number.side_effect = [12, 13]
    source = RpcBlockSource(substrate=substrate, batch_size=5, poll_interval=6, sleep=sleep)

    batches = list(source.iter_batches(13, to_block=13))

    sleep.assert_called_once_with(6)
    assert [(b.first_block, b.last_block) for b in batches] == [(13, 13)]


def test_rpc_connection_errors_are_transient(substrate):
    substrate.get_block_hash.side_effect = SubstrateRequestException("connection closed")
    source = RpcBlockSource(substrate=substrate, sleep=Mock())

    with pytest.raises(TransientSourceError) as e:
        source.get_block(1)
    assert "[rpc]" in str(e.value)
