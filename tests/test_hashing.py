import hashlib

import pytest
from hexbytes import HexBytes
from web3 import Web3

from chains.zk_stack.custom_errors import CodecError, EventParseError
from chains.zk_stack.hashing import (
    NEW_PRIORITY_REQUEST_TOPIC,
    apply_l1_to_l2_alias,
    create2_address,
    create_address,
    get_hashed_l2_to_l1_msg,
    get_l2_hash_from_priority_op,
    hash_bytecode,
    is_eth,
    undo_l1_to_l2_alias,
)
from utils.config import (
    ETH_ADDRESS_IN_CONTRACTS,
    L2_BASE_TOKEN_ADDRESS,
    LEGACY_ETH_ADDRESS,
    MAX_BYTECODE_LEN_BYTES,
)

from conftest import ADDRESS, DAI_L1, MAIN_CONTRACT, RECEIVER


def _priority_log(tx_hash: bytes, address: str = MAIN_CONTRACT, topic=None):
    return {
        "address": address,
        "topics": [topic or NEW_PRIORITY_REQUEST_TOPIC],
        "data": HexBytes((5).to_bytes(32, "big") + tx_hash + b"\x00" * 64),
    }


class TestHashBytecode:
    def test_layout(self):
        code = b"\xab" * 32 * 3

        bytecode_hash = hash_bytecode(code)

        assert len(bytecode_hash) == 32
        assert bytecode_hash[0] == 1
        assert bytecode_hash[1] == 0
        assert bytecode_hash[2:4] == (3).to_bytes(2, "big")
        assert bytecode_hash[4:] == hashlib.sha256(code).digest()[4:]

    def test_accepts_hex(self):
        assert hash_bytecode("0x" + "00" * 32) == hash_bytecode(b"\x00" * 32)

    def test_length_not_multiple_of_32(self):
        with pytest.raises(CodecError, match="divisible by 32"):
            hash_bytecode(b"\x00" * 33)

    def test_even_number_of_words(self):
        with pytest.raises(CodecError, match="must be odd"):
            hash_bytecode(b"\x00" * 64)

    def test_too_long(self):
        with pytest.raises(CodecError, match="can not be longer"):
            hash_bytecode(b"\x00" * (MAX_BYTECODE_LEN_BYTES + 32))


class TestAlias:
    def test_apply_adds_offset(self):
        assert apply_l1_to_l2_alias("0x0000000000000000000000000000000000000000") == (
            Web3.to_checksum_address("0x1111000000000000000000000000000000001111")
        )

    def test_apply_wraps_around(self):
        assert apply_l1_to_l2_alias("0xffffffffffffffffffffffffffffffffffffffff") == (
            Web3.to_checksum_address("0x1111000000000000000000000000000000001110")
        )

    def test_undo_wraps_around(self):
        assert undo_l1_to_l2_alias("0x0000000000000000000000000000000000000000") == (
            Web3.to_checksum_address("0xeeeeffffffffffffffffffffffffffffffffeeef")
        )

    @pytest.mark.parametrize("address", [ADDRESS, RECEIVER, DAI_L1])
    def test_undo_reverses_apply(self, address):
        assert undo_l1_to_l2_alias(apply_l1_to_l2_alias(address)) == address


class TestPriorityOpHash:
    def test_reads_tx_hash_from_log_data(self):
        l2_hash = b"\x11" * 32
        receipt = {"logs": [_priority_log(l2_hash)]}

        assert get_l2_hash_from_priority_op(receipt, MAIN_CONTRACT) == HexBytes(l2_hash)

    def test_last_match_wins(self):
        receipt = {"logs": [_priority_log(b"\x11" * 32), _priority_log(b"\x22" * 32)]}

        assert get_l2_hash_from_priority_op(receipt, MAIN_CONTRACT) == HexBytes(
            b"\x22" * 32
        )

    def test_ignores_other_emitters_and_topics(self):
        receipt = {
            "logs": [
                _priority_log(b"\x11" * 32),
                _priority_log(b"\x22" * 32, address=RECEIVER),
                _priority_log(b"\x33" * 32, topic=HexBytes(b"\x01" * 32)),
            ]
        }

        assert get_l2_hash_from_priority_op(receipt, MAIN_CONTRACT) == HexBytes(
            b"\x11" * 32
        )

    def test_main_contract_is_compared_case_insensitively(self):
        receipt = {"logs": [_priority_log(b"\x11" * 32)]}

        assert get_l2_hash_from_priority_op(receipt, MAIN_CONTRACT.lower()) == HexBytes(
            b"\x11" * 32
        )

    def test_no_matching_log(self):
        receipt = {"logs": [_priority_log(b"\x11" * 32, address=RECEIVER)]}

        with pytest.raises(EventParseError, match="Failed to parse tx logs!"):
            get_l2_hash_from_priority_op(receipt, MAIN_CONTRACT)


def test_hashed_l2_to_l1_msg_depends_on_every_input():
    base = get_hashed_l2_to_l1_msg(ADDRESS, b"hello", 0)

    assert len(base) == 32
    assert base == get_hashed_l2_to_l1_msg(ADDRESS, b"hello", 0)
    assert base != get_hashed_l2_to_l1_msg(RECEIVER, b"hello", 0)
    assert base != get_hashed_l2_to_l1_msg(ADDRESS, b"hello!", 0)
    assert base != get_hashed_l2_to_l1_msg(ADDRESS, b"hello", 1)


def test_create2_address_depends_on_salt_and_input():
    bytecode_hash = hash_bytecode(b"\x01" * 32)
    salt = b"\x00" * 32

    address = create2_address(ADDRESS, bytecode_hash, salt)

    assert Web3.is_checksum_address(address)
    assert address == create2_address(ADDRESS, bytecode_hash, salt, b"")
    assert address != create2_address(ADDRESS, bytecode_hash, b"\x01" * 32)
    assert address != create2_address(ADDRESS, bytecode_hash, salt, b"\x01")


def test_create_address_depends_on_nonce():
    first = create_address(ADDRESS, 0)

    assert Web3.is_checksum_address(first)
    assert first != create_address(ADDRESS, 1)
    assert first != create_address(RECEIVER, 0)


@pytest.mark.parametrize(
    "token, expected",
    [
        (LEGACY_ETH_ADDRESS, True),
        (L2_BASE_TOKEN_ADDRESS, True),
        (ETH_ADDRESS_IN_CONTRACTS, True),
        (DAI_L1, False),
    ],
)
def test_is_eth(token, expected):
    assert is_eth(token) is expected
