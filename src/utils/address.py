import logging
from typing import Optional, Union

from hexbytes import HexBytes
from substrateinterface.utils.ss58 import ss58_encode

from core.config import settings
from core.exceptions import InvalidAddress

logger = logging.getLogger(__name__)

ETHEREUM_ACCOUNT_LENGTH = 20
SUBSTRATE_ACCOUNT_LENGTH = 32

AddressLike = Union[str, bytes, bytearray, memoryview, list, tuple]


def _to_bytes(address) -> bytes:
    if isinstance(address, (bytes, bytearray, memoryview)):
        return bytes(address)
    # scale codecs sometimes hand back byte arrays as lists of ints
    if isinstance(address, (list, tuple)):
        try:
            return bytes(address)
        except (TypeError, ValueError) as e:
            raise InvalidAddress(address, f"not a byte sequence: {e}")
    raise InvalidAddress(address, f"unsupported type {type(address).__name__}")


def encode_account_bytes(raw: bytes, ss58_prefix: Optional[int] = None) -> str:
    if len(raw) == ETHEREUM_ACCOUNT_LENGTH:
        return "0x" + raw.hex()
    if len(raw) == SUBSTRATE_ACCOUNT_LENGTH:
        prefix = settings.SS58_PREFIX if ss58_prefix is None else ss58_prefix
        return ss58_encode(raw, ss58_format=prefix)
    raise InvalidAddress(
        raw,
        f"expected {ETHEREUM_ACCOUNT_LENGTH} or {SUBSTRATE_ACCOUNT_LENGTH} bytes, got {len(raw)}",
    )


def normalize_address(address: AddressLike, ss58_prefix: Optional[int] = None) -> str:
    """Map a raw account identifier to its canonical string key.

    20-byte keys become lowercase 0x-prefixed hex, 32-byte keys become SS58
    strings with the configured network prefix. Hex strings are decoded and
    treated as raw bytes; any other string is assumed to be SS58 already.
    Raises InvalidAddress for empty input or an unsupported length.
    """
    if address is None:
        raise InvalidAddress(address, "address is missing")

    if isinstance(address, str):
        address = address.strip()
        if not address:
            raise InvalidAddress(address, "address is empty")
        if not address.lower().startswith("0x"):
            return address
        try:
            raw = bytes(HexBytes(address))
        except ValueError as e:
            raise InvalidAddress(address, f"not valid hex: {e}")
        return encode_account_bytes(raw, ss58_prefix)

    raw = _to_bytes(address)
    if not raw:
        raise InvalidAddress(address, "address is empty")
    return encode_account_bytes(raw, ss58_prefix)
