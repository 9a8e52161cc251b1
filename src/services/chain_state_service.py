"""
Point-in-time reads of ParachainStaking storage.

All queries of one snapshot are anchored to the same block hash so the maps
are mutually consistent. Required maps are retried without bound on
transient failures; optional maps get a few attempts and are skipped.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from substrateinterface import SubstrateInterface

from core import constants
from core.config import settings
from core.exceptions import ReconciliationError, StakingIndexerError
from schemas import ChainSnapshot
from services.event_canonicalizer import parse_amount, parse_request_amount
from utils.address import normalize_address
from utils.retry import UNBOUNDED, retry_with_backoff

logger = logging.getLogger(__name__)


def _value(obj):
    return obj.value if hasattr(obj, "value") else obj


class ChainStateService:
    def __init__(
        self,
        url: Optional[str] = None,
        substrate: Optional[SubstrateInterface] = None,
        ss58_prefix: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url or constants.chain_state_rpc_url()
        self._substrate = substrate
        self.ss58_prefix = ss58_prefix
        self.sleep = sleep

    @property
    def substrate(self) -> SubstrateInterface:
        if self._substrate is None:
            logger.info(f"Connecting to {self.url}")
            self._substrate = self._required(
                lambda: SubstrateInterface(url=self.url, auto_reconnect=True),
                "connect",
            )
        return self._substrate

    def close(self):
        if self._substrate is not None:
            self._substrate.close()
            self._substrate = None

    def _required(self, fn, description: str):
        return retry_with_backoff(
            fn,
            max_retries=UNBOUNDED,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            description=description,
            sleep=self.sleep,
        )

    def _optional(self, fn, description: str):
        try:
            return retry_with_backoff(
                fn,
                max_retries=settings.OPTIONAL_FETCH_MAX_RETRIES,
                base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                max_delay=settings.RETRY_MAX_DELAY_SECONDS,
                description=description,
                sleep=self.sleep,
            )
        except Exception as e:
            logger.warning(f"Skipping {description}: {e}")
            return None

    def _query_map(self, storage: str, block_hash: str) -> List[Tuple]:
        result = self.substrate.query_map(
            constants.STAKING_PALLET, storage, [], block_hash=block_hash
        )
        return [(_value(key), _value(value)) for key, value in result]

    def _address(self, raw) -> str:
        return normalize_address(raw, self.ss58_prefix)

    def resolve_block(self, block_number: Optional[int] = None) -> Tuple[int, str]:
        if block_number is None:
            block_hash = self._required(self.substrate.get_chain_head, "chain head")
            block_number = self._required(
                lambda: self.substrate.get_block_number(block_hash), "block number"
            )
        else:
            block_hash = self._required(
                lambda: self.substrate.get_block_hash(block_number), "block hash"
            )
        return block_number, block_hash

    def fetch_delegator_stakes(self, block_hash: str) -> Dict[str, int]:
        """Committed stake per delegator: the sum of its delegations."""
        entries = self._required(
            lambda: self._query_map("DelegatorState", block_hash), "DelegatorState"
        )
        logger.info(f"Fetched {len(entries)} delegators")

        stakes = {}
        for key, state in entries:
            if not state:
                continue
            delegations = state.get("delegations") or []
            if delegations:
                committed = sum(parse_amount(d["amount"]) for d in delegations)
            else:
                committed = parse_amount(state.get("total") or 0)
            if committed > 0:
                stakes[self._address(key)] = committed
        return stakes

    def fetch_candidate_infos(self, block_hash: str) -> Tuple[Dict[str, int], Dict[str, int]]:
        """Committed self bond per candidate and any bond-less request embedded in CandidateInfo."""
        entries = self._required(
            lambda: self._query_map("CandidateInfo", block_hash), "CandidateInfo"
        )
        logger.info(f"Fetched {len(entries)} collator candidates")

        bonds, requests = {}, {}
        for key, info in entries:
            if not info or not info.get("bond"):
                continue
            bond = parse_amount(info["bond"])
            if bond <= 0:
                continue
            collator_id = self._address(key)
            bonds[collator_id] = bond

            request = info.get("request")
            if request and request.get("amount"):
                requests[collator_id] = parse_amount(request["amount"])
        return bonds, requests

    def fetch_delegation_requests(self, block_hash: str) -> Dict[str, int]:
        """Pending revoke/decrease amounts summed per delegator."""
        entries = self._required(
            lambda: self._query_map("DelegationScheduledRequests", block_hash),
            "DelegationScheduledRequests",
        )
        logger.info(f"Fetched scheduled requests for {len(entries)} collators")

        scheduled: Dict[str, int] = {}
        for _, requests in entries:
            for request in requests or []:
                if not request or not request.get("delegator"):
                    continue
                try:
                    amount = parse_request_amount(request)
                except ValueError:
                    logger.warning(f"Unreadable delegation request {request}")
                    continue
                if amount > 0:
                    delegator = self._address(request["delegator"])
                    scheduled[delegator] = scheduled.get(delegator, 0) + amount
        return scheduled

    def fetch_candidate_bond_less_requests(self, block_hash: str) -> Optional[Dict[str, int]]:
        """Older runtimes keep collator requests in a separate map; None when unavailable."""
        entries = self._optional(
            lambda: self._query_map("CandidateBondLessScheduledRequests", block_hash),
            "CandidateBondLessScheduledRequests",
        )
        if entries is None:
            return None

        requests = {}
        for key, request in entries:
            if request and request.get("amount"):
                requests[self._address(key)] = parse_amount(request["amount"])
        return requests

    def fetch_selected_collators(self, block_hash: str) -> List[str]:
        selected = self._required(
            lambda: _value(
                self.substrate.query(
                    constants.STAKING_PALLET, "SelectedCandidates", block_hash=block_hash
                )
            ),
            "SelectedCandidates",
        )
        return [self._address(account) for account in selected or []]

    def fetch_top_delegations(self, collators: List[str], block_hash: str) -> Dict[str, int]:
        entries = self._required(
            lambda: self._query_map("TopDelegations", block_hash), "TopDelegations"
        )
        wanted = set(collators)
        top = {}
        for key, delegations in entries:
            collator_id = self._address(key)
            if collator_id not in wanted or not delegations:
                continue
            if delegations.get("total") is not None:
                top[collator_id] = parse_amount(delegations["total"])
            else:
                top[collator_id] = sum(
                    parse_amount(d["amount"]) for d in delegations.get("delegations") or []
                )
        return top

    def fetch_snapshot(
        self, block_number: Optional[int] = None, include_selected: bool = False
    ) -> ChainSnapshot:
        """Full staking state at ``block_number`` (chain head when None).

        Stake figures are active amounts, committed minus pending requests.
        """
        try:
            block_number, block_hash = self.resolve_block(block_number)
            logger.info(f"Fetching staking state at block {block_number} ({block_hash})")

            committed_stakes = self.fetch_delegator_stakes(block_hash)
            committed_bonds, collator_requests = self.fetch_candidate_infos(block_hash)
            delegator_scheduled = self.fetch_delegation_requests(block_hash)

            if not collator_requests:
                collator_requests = self.fetch_candidate_bond_less_requests(block_hash) or {}

            selected, top_delegations = [], {}
            if include_selected:
                selected = self.fetch_selected_collators(block_hash)
                top_delegations = self.fetch_top_delegations(selected, block_hash)
        except StakingIndexerError:
            raise
        except Exception as e:
            raise ReconciliationError(f"Could not fetch chain state: {e}") from e

        delegator_scheduled = {
            k: min(v, committed_stakes[k])
            for k, v in delegator_scheduled.items()
            if k in committed_stakes and v > 0
        }
        collator_scheduled = {
            k: min(v, committed_bonds[k])
            for k, v in collator_requests.items()
            if k in committed_bonds and v > 0
        }

        return ChainSnapshot(
            block_number=block_number,
            block_hash=block_hash,
            delegator_stakes={
                k: v - delegator_scheduled.get(k, 0) for k, v in committed_stakes.items()
            },
            collator_bonds={
                k: v - collator_scheduled.get(k, 0) for k, v in committed_bonds.items()
            },
            delegator_scheduled_unbonds=delegator_scheduled,
            collator_scheduled_unbonds=collator_scheduled,
            selected_collators=selected,
            top_delegations=top_delegations,
        )

    def fetch_total_issuance(self, block_number: Optional[int] = None) -> int:
        block_hash = None
        if block_number is not None:
            _, block_hash = self.resolve_block(block_number)
        issuance = self._required(
            lambda: _value(
                self.substrate.query("Balances", "TotalIssuance", block_hash=block_hash)
            ),
            "TotalIssuance",
        )
        return parse_amount(issuance)
