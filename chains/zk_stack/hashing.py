"""
Pure hashing and addressing helpers of the ZK stack: bytecode hashes, L1 -> L2
address aliasing, priority operation hashes and deterministic deployment
addresses. Nothing here touches the network.
"""

import hashlib
from typing import Any, Mapping

from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

from utils.config import (
    ADDRESS_MODULO,
    ETH_ADDRESS_IN_CONTRACTS,
    L1_MESSENGER_ADDRESS,
    L1_TO_L2_ALIAS_OFFSET,
    L2_BASE_TOKEN_ADDRESS,
    LEGACY_ETH_ADDRESS,
    MAX_BYTECODE_LEN_BYTES,
)
from .custom_errors import CodecError, EventParseError

NEW_PRIORITY_REQUEST_SIGNATURE = (
    "NewPriorityRequest(uint256,bytes32,uint64,"
    "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,"
    "uint256[4],bytes,bytes,uint256[],bytes,bytes),bytes[])"
)
NEW_PRIORITY_REQUEST_TOPIC = HexBytes(Web3.keccak(text=NEW_PRIORITY_REQUEST_SIGNATURE))

L1_MESSAGE_SENT_TOPIC = HexBytes(Web3.keccak(text="L1MessageSent(address,bytes32,bytes)"))

CREATE2_PREFIX = HexBytes(Web3.keccak(text="zksyncCreate2"))
CREATE_PREFIX = HexBytes(Web3.keccak(text="zksyncCreate"))


def is_address_eq(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False

    return HexBytes(a) == HexBytes(b)


def is_eth(token: str) -> bool:
    return (
        is_address_eq(token, LEGACY_ETH_ADDRESS)
        or is_address_eq(token, L2_BASE_TOKEN_ADDRESS)
        or is_address_eq(token, ETH_ADDRESS_IN_CONTRACTS)
    )


def hash_bytecode(bytecode: bytes | str) -> HexBytes:
    """
    Returns the versioned hash the network uses to identify a contract bytecode.

    Layout: byte 0 is the version (1), byte 1 is zero, bytes 2-3 are the length
    of the bytecode in 32-byte words and the remaining 28 bytes come from the
    sha256 of the bytecode.

    Parameters
    ----------
    `bytecode` : bytes | str

    Returns
    -------
    HexBytes
    """
    code = bytes(HexBytes(bytecode))

    if len(code) % 32 != 0:
        raise CodecError("The bytecode length in bytes must be divisible by 32!")

    if len(code) > MAX_BYTECODE_LEN_BYTES:
        raise CodecError(
            f"Bytecode can not be longer than {MAX_BYTECODE_LEN_BYTES} bytes!"
        )

    length_in_words = len(code) // 32

    if length_in_words % 2 == 0:
        raise CodecError("Bytecode length in 32-byte words must be odd!")

    digest = bytearray(hashlib.sha256(code).digest())
    digest[0] = 1
    digest[1] = 0
    digest[2:4] = length_in_words.to_bytes(2, "big")

    return HexBytes(bytes(digest))


def apply_l1_to_l2_alias(address: str) -> ChecksumAddress:
    """Address that an L1 contract has when it calls L2 via a priority operation."""
    aliased = (int(HexBytes(address).hex(), 16) + L1_TO_L2_ALIAS_OFFSET) % ADDRESS_MODULO

    return to_checksum_address(aliased.to_bytes(20, "big"))


def undo_l1_to_l2_alias(address: str) -> ChecksumAddress:
    original = (int(HexBytes(address).hex(), 16) - L1_TO_L2_ALIAS_OFFSET) % ADDRESS_MODULO

    return to_checksum_address(original.to_bytes(20, "big"))


def get_l2_hash_from_priority_op(
    receipt: Mapping[str, Any], main_contract: str
) -> HexBytes:
    """
    Derive the canonical L2 transaction hash of a priority operation from the
    `NewPriorityRequest` log of its L1 receipt.

    None of the event arguments are indexed, the data starts with
    `txId (uint256) | txHash (bytes32)`.

    Parameters
    ----------
    `receipt` : TxReceipt
        L1 receipt of the `requestL2Transaction*` call.
    `main_contract` : str
        Diamond proxy of the chain (`zks_getMainContract`).

    Returns
    -------
    HexBytes
    """
    tx_hash = None

    for log in receipt.get("logs", []):
        if not is_address_eq(log.get("address"), main_contract):
            continue

        topics = log.get("topics", [])
        if not topics or HexBytes(topics[0]) != NEW_PRIORITY_REQUEST_TOPIC:
            continue

        data = HexBytes(log.get("data", b""))
        if len(data) < 64:
            continue

        tx_hash = HexBytes(data[32:64])

    if tx_hash is None:
        raise EventParseError("Failed to parse tx logs!")

    return tx_hash


def get_hashed_l2_to_l1_msg(
    sender: str, msg: bytes, tx_number_in_block: int
) -> HexBytes:
    encoded = (
        b"\x00"  # log type
        + b"\x01"  # flag
        + tx_number_in_block.to_bytes(2, "big")
        + bytes(HexBytes(L1_MESSENGER_ADDRESS))
        + bytes(HexBytes(sender)).rjust(32, b"\x00")
        + bytes(Web3.keccak(HexBytes(msg)))
    )

    return HexBytes(Web3.keccak(encoded))


def create2_address(
    sender: str, bytecode_hash: bytes, salt: bytes, input: bytes = b""
) -> ChecksumAddress:
    address_bytes = Web3.keccak(
        bytes(CREATE2_PREFIX)
        + bytes(HexBytes(sender)).rjust(32, b"\x00")
        + bytes(HexBytes(salt))
        + bytes(HexBytes(bytecode_hash))
        + bytes(Web3.keccak(HexBytes(input)))
    )[12:]

    return to_checksum_address(address_bytes)


def create_address(sender: str, sender_nonce: int) -> ChecksumAddress:
    address_bytes = Web3.keccak(
        bytes(CREATE_PREFIX)
        + bytes(HexBytes(sender)).rjust(32, b"\x00")
        + sender_nonce.to_bytes(32, "big")
    )[12:]

    return to_checksum_address(address_bytes)
