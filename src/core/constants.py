from core.config import settings

TOTAL_STAKE_ID = "total"
PROCESSOR_STATUS_ID = "staking-indexer"

STAKING_PALLET = "ParachainStaking"

CHAIN_MOONBEAM = "moonbeam"
CHAIN_MOONRIVER = "moonriver"

ARCHIVE_GATEWAYS = {
    CHAIN_MOONBEAM: "https://v2.archive.subsquid.io/network/moonbeam-substrate",
    CHAIN_MOONRIVER: "https://v2.archive.subsquid.io/network/moonriver-substrate",
}

# NOTE: the rpc for checking chain state on moonbeam is different from the rpc used for indexing
CHAIN_STATE_RPC_URLS = {
    CHAIN_MOONBEAM: "wss://wss.api.moonbeam.network",
}


def archive_gateway_url(chain: str = None):
    if settings.ARCHIVE_GATEWAY:
        return settings.ARCHIVE_GATEWAY
    return ARCHIVE_GATEWAYS.get((chain or settings.CHAIN).lower())


def chain_state_rpc_url(chain: str = None) -> str:
    if settings.CHAIN_STATE_RPC_ENDPOINT:
        return settings.CHAIN_STATE_RPC_ENDPOINT
    return CHAIN_STATE_RPC_URLS.get(
        (chain or settings.CHAIN).lower(), settings.CHAIN_RPC_ENDPOINT
    )


# Event names as they appear on chain, "<Pallet>.<Event>"
DELEGATION = f"{STAKING_PALLET}.Delegation"
DELEGATION_INCREASED = f"{STAKING_PALLET}.DelegationIncreased"
DELEGATION_DECREASED = f"{STAKING_PALLET}.DelegationDecreased"
DELEGATION_REVOKED = f"{STAKING_PALLET}.DelegationRevoked"
DELEGATION_REVOCATION_SCHEDULED = f"{STAKING_PALLET}.DelegationRevocationScheduled"
DELEGATION_DECREASE_SCHEDULED = f"{STAKING_PALLET}.DelegationDecreaseScheduled"
CANCELLED_DELEGATION_REQUEST = f"{STAKING_PALLET}.CancelledDelegationRequest"
DELEGATION_KICKED = f"{STAKING_PALLET}.DelegationKicked"
DELEGATOR_LEFT = f"{STAKING_PALLET}.DelegatorLeft"
DELEGATOR_LEFT_CANDIDATE = f"{STAKING_PALLET}.DelegatorLeftCandidate"
COMPOUNDED = f"{STAKING_PALLET}.Compounded"
JOINED_COLLATOR_CANDIDATES = f"{STAKING_PALLET}.JoinedCollatorCandidates"
CANDIDATE_BONDED_MORE = f"{STAKING_PALLET}.CandidateBondedMore"
CANDIDATE_BONDED_LESS = f"{STAKING_PALLET}.CandidateBondedLess"
CANDIDATE_BOND_LESS_REQUESTED = f"{STAKING_PALLET}.CandidateBondLessRequested"
CANDIDATE_BOND_LESS_SCHEDULED = f"{STAKING_PALLET}.CandidateBondLessScheduled"
CANCELLED_CANDIDATE_BOND_LESS = f"{STAKING_PALLET}.CancelledCandidateBondLess"
CANDIDATE_LEFT = f"{STAKING_PALLET}.CandidateLeft"

STAKING_EVENT_NAMES = [
    DELEGATION,
    DELEGATION_INCREASED,
    DELEGATION_DECREASED,
    DELEGATION_REVOKED,
    DELEGATION_REVOCATION_SCHEDULED,
    DELEGATION_DECREASE_SCHEDULED,
    CANCELLED_DELEGATION_REQUEST,
    DELEGATION_KICKED,
    DELEGATOR_LEFT,
    DELEGATOR_LEFT_CANDIDATE,
    COMPOUNDED,
    JOINED_COLLATOR_CANDIDATES,
    CANDIDATE_BONDED_MORE,
    CANDIDATE_BONDED_LESS,
    CANDIDATE_BOND_LESS_REQUESTED,
    CANDIDATE_BOND_LESS_SCHEDULED,
    CANCELLED_CANDIDATE_BOND_LESS,
    CANDIDATE_LEFT,
]
