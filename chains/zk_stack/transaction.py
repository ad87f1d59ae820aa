from typing import Any, Dict, Mapping

import rlp
from eth_account.typed_transactions import TypedTransaction
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from rlp.exceptions import DecodingError
from web3 import Web3

from utils.config import EIP712_TX_TYPE
from .codec import decode_transaction, hash_transaction, is_signed
from .custom_errors import CodecError
from .types import ParsedTransaction, TransactionKind

LEGACY_TX_FIELDS = ("nonce", "gasPrice", "gas", "to", "value", "data", "v", "r", "s")

# first byte of an RLP list, anything below is an EIP-2718 type
RLP_LIST_PREFIX = 0xC0


def is_custom_transaction(tx: Mapping[str, Any]) -> bool:
    """A request goes through the EIP-712 path only when it asks to."""
    return bool(tx.get("customData")) or tx.get("type") == EIP712_TX_TYPE


def _parse_legacy(raw: bytes) -> Dict[str, Any]:
    try:
        fields = rlp.decode(raw)
    except DecodingError as e:
        raise CodecError(f"Invalid legacy transaction payload: {e}", e)

    if not isinstance(fields, list) or len(fields) != len(LEGACY_TX_FIELDS):
        raise CodecError("Invalid legacy transaction, expected 9 fields")

    tx: Dict[str, Any] = {}
    for name, value in zip(LEGACY_TX_FIELDS, fields):
        if not isinstance(value, bytes):
            raise CodecError(f"Invalid legacy transaction `{name}` field")

        if name == "to":
            tx[name] = to_checksum_address(value) if value else None
        elif name == "data":
            tx[name] = HexBytes(value)
        else:
            tx[name] = int.from_bytes(value, "big")

    return tx


def parse_transaction(payload: bytes | str | Mapping[str, Any]) -> ParsedTransaction:
    """
    Tagged-union parse step: structured requests are kept as they are, `0x71`
    payloads go through the EIP-712 codec, other typed payloads through
    eth-account, and plain RLP lists are read as legacy transactions.

    Parameters
    ----------
    `payload` : bytes | str | Mapping
        Raw signed bytes (or their hex form), or an already structured request.

    Returns
    -------
    ParsedTransaction
        (kind, transaction, hash). `hash` is `None` for unsigned envelopes and
        structured requests.
    """
    if isinstance(payload, Mapping):
        return ParsedTransaction(TransactionKind.REQUEST, dict(payload), None)

    raw = bytes(HexBytes(payload))

    if len(raw) == 0:
        raise CodecError("Empty transaction payload")

    if raw[0] == EIP712_TX_TYPE:
        envelope = decode_transaction(raw)
        tx_hash = hash_transaction(envelope) if is_signed(envelope) else None

        return ParsedTransaction(TransactionKind.EIP712, dict(envelope), tx_hash)

    if raw[0] < RLP_LIST_PREFIX:
        try:
            typed = TypedTransaction.from_bytes(HexBytes(raw))
        except (ValueError, TypeError, DecodingError) as e:
            raise CodecError(f"Unsupported typed transaction payload: {e}", e)

        return ParsedTransaction(
            TransactionKind.TYPED, typed.as_dict(), HexBytes(Web3.keccak(raw))
        )

    return ParsedTransaction(
        TransactionKind.LEGACY, _parse_legacy(raw), HexBytes(Web3.keccak(raw))
    )
