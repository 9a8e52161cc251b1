"""
Error taxonomy of the staking indexer.

StakingIndexerError (base)
├── InvalidAddress        malformed account identifier, aborts one event
├── MalformedEvent        missing/invalid event fields, event dropped
├── TransientSourceError  connectivity/timeouts, retried, may switch source
├── ReconciliationError   snapshot could not be fetched or merged
└── FatalError            anything else surfaced by the pipeline
"""

from typing import Any, Optional

import requests
import websocket
from substrateinterface.exceptions import SubstrateRequestException


class StakingIndexerError(Exception):
    pass


class InvalidAddress(StakingIndexerError):
    def __init__(self, value: Any, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid address {value!r}: {reason}")


class MalformedEvent(StakingIndexerError):
    def __init__(self, event_name: str, reason: str):
        self.event_name = event_name
        self.reason = reason
        super().__init__(f"Malformed event {event_name}: {reason}")


class TransientSourceError(StakingIndexerError):
    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"[{source}] {message}")


class ReconciliationError(StakingIndexerError):
    pass


class FatalError(StakingIndexerError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


# substrings of connectivity-class failures raised by http/ws clients
TRANSIENT_MESSAGE_MARKERS = ("archive", "timeout", "timed out", "econnreset", "fetch")


def is_transient_error(error: BaseException) -> bool:
    """Connectivity/timeout failures are transient, everything else is fatal."""
    if isinstance(error, TransientSourceError):
        return True
    if isinstance(error, (InvalidAddress, MalformedEvent, FatalError)):
        return False
    if isinstance(
        error,
        (
            ConnectionError,
            TimeoutError,
            requests.ConnectionError,
            requests.Timeout,
            websocket.WebSocketException,
            SubstrateRequestException,
        ),
    ):
        return True

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)
