"""
Block sources feeding the staking pipeline.

ArchiveBlockSource reads wide block ranges from a Subsquid archive gateway
over HTTP, RpcBlockSource walks blocks one by one through a substrate node.
Both yield BlockBatch objects and raise TransientSourceError for every
connectivity failure so the resilience controller can react.
"""

import logging
import time
from typing import Callable, Iterator, List, Optional

import requests
from substrateinterface import SubstrateInterface

from core import constants
from core.config import settings
from core.exceptions import TransientSourceError, is_transient_error
from schemas import BlockBatch, RawBlock, RawEvent

logger = logging.getLogger(__name__)


class ArchiveBlockSource:
    name = "archive"

    def __init__(
        self,
        gateway_url: Optional[str] = None,
        event_names: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.gateway_url = (gateway_url or constants.archive_gateway_url() or "").rstrip("/")
        self.event_names = event_names or constants.STAKING_EVENT_NAMES
        self.timeout = timeout or settings.RPC_REQUEST_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.gateway_url)

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            raise TransientSourceError(self.name, f"{method} {url} failed: {e}") from e

    def get_height(self) -> int:
        response = self._request("GET", f"{self.gateway_url}/height")
        return int(response.text.strip())

    def get_worker(self, from_block: int) -> str:
        response = self._request("GET", f"{self.gateway_url}/{from_block}/worker")
        return response.text.strip()

    def build_query(self, from_block: int, to_block: Optional[int] = None) -> dict:
        query = {
            "type": "substrate",
            "fromBlock": from_block,
            "fields": {
                "block": {"number": True, "hash": True},
                "event": {"name": True, "args": True},
            },
            "events": [{"name": self.event_names}],
        }
        if to_block is not None:
            query["toBlock"] = to_block
        return query

    def fetch_range(self, from_block: int, to_block: Optional[int] = None) -> BlockBatch:
        worker_url = self.get_worker(from_block)
        response = self._request("POST", worker_url, json=self.build_query(from_block, to_block))
        return parse_archive_blocks(response.json())

    def iter_batches(self, from_block: int, to_block: Optional[int] = None) -> Iterator[BlockBatch]:
        """Yield batches until the gateway height (or ``to_block``) is reached."""
        height = self.get_height()
        end = height if to_block is None else min(height, to_block)
        logger.info(f"Archive height {height}, reading blocks {from_block}-{end}")

        next_block = from_block
        while next_block <= end:
            batch = self.fetch_range(next_block, end)
            if not batch.blocks:
                break
            yield batch
            next_block = batch.last_block + 1


def parse_archive_blocks(payload: list) -> BlockBatch:
    blocks = []
    for item in payload or []:
        header = item.get("header") or {}
        events = [
            RawEvent(name=event["name"], args=event.get("args"), index=event.get("index"))
            for event in item.get("events") or []
        ]
        events.sort(key=lambda e: e.index if e.index is not None else 0)
        blocks.append(RawBlock(height=header["number"], hash=header.get("hash"), events=events))
    return BlockBatch(blocks=blocks)


class RpcBlockSource:
    name = "rpc"

    def __init__(
        self,
        url: Optional[str] = None,
        substrate: Optional[SubstrateInterface] = None,
        batch_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        pallet: str = constants.STAKING_PALLET,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url or settings.CHAIN_RPC_ENDPOINT
        self._substrate = substrate
        self.batch_size = batch_size or settings.RPC_BATCH_SIZE
        self.poll_interval = (
            settings.RPC_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.pallet = pallet
        self.sleep = sleep

    @property
    def substrate(self) -> SubstrateInterface:
        if self._substrate is None:
            try:
                self._substrate = SubstrateInterface(url=self.url, auto_reconnect=True)
            except Exception as e:
                raise TransientSourceError(self.name, f"connect to {self.url} failed: {e}") from e
        return self._substrate

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if is_transient_error(e):
                # drop the connection so the next call reconnects
                self._substrate = None
                raise TransientSourceError(self.name, str(e)) from e
            raise

    def get_finalized_height(self) -> int:
        head = self._call(self.substrate.get_chain_finalised_head)
        return self._call(self.substrate.get_block_number, head)

    def get_block(self, height: int) -> RawBlock:
        block_hash = self._call(self.substrate.get_block_hash, height)
        records = self._call(self.substrate.get_events, block_hash=block_hash)

        events = []
        for index, record in enumerate(records or []):
            value = record.value if hasattr(record, "value") else record
            if value.get("module_id") != self.pallet:
                continue
            events.append(
                RawEvent(
                    name=f"{value['module_id']}.{value['event_id']}",
                    args=value.get("attributes"),
                    index=index,
                )
            )
        return RawBlock(height=height, hash=block_hash, events=events)

    def fetch_range(self, from_block: int, to_block: int) -> BlockBatch:
        return BlockBatch(blocks=[self.get_block(h) for h in range(from_block, to_block + 1)])

    def iter_batches(self, from_block: int, to_block: Optional[int] = None) -> Iterator[BlockBatch]:
        """Yield consecutive batches, polling the finalized head once caught up."""
        next_block = from_block
        while to_block is None or next_block <= to_block:
            head = self.get_finalized_height()
            if to_block is not None:
                head = min(head, to_block)

            if next_block > head:
                self.sleep(self.poll_interval)
                continue

            last = min(head, next_block + self.batch_size - 1)
            yield self.fetch_range(next_block, last)
            next_block = last + 1
