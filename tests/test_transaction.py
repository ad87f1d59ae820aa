import pytest
import rlp
from hexbytes import HexBytes
from web3 import Web3

from chains.zk_stack.codec import decode_transaction, hash_transaction
from chains.zk_stack.custom_errors import CodecError
from chains.zk_stack.transaction import is_custom_transaction, parse_transaction
from chains.zk_stack.types import TransactionKind
from utils.config import EIP712_TX_TYPE

from conftest import RECEIVER
from test_codec import CUSTOM_SIGNED, UNSIGNED_MINIMAL

EIP1559_SIGNED = HexBytes(
    "0x02f87082010e01843b9aca008447868c008302719494a61464658afeaf65cccaafd3a512b69a83b77618"
    "830f424080c080a028a5a399b859e0dcc2aae91b20e5554cbffbd6767cbaceeb11f6df9f5cb74dc1a01c"
    "9034c1dce62f775e5f88c005850d36c32834cd0e105d5230d2b9785ec2bc90"
)


@pytest.mark.parametrize(
    "tx, expected",
    [
        ({"to": RECEIVER, "value": 1}, False),
        ({"to": RECEIVER, "type": 2}, False),
        ({"to": RECEIVER, "type": EIP712_TX_TYPE}, True),
        ({"to": RECEIVER, "customData": {"gasPerPubdata": 1}}, True),
        ({"to": RECEIVER, "customData": {}}, False),
    ],
)
def test_is_custom_transaction(tx, expected):
    assert is_custom_transaction(tx) is expected


def test_parse_signed_eip712_payload():
    parsed = parse_transaction(CUSTOM_SIGNED)

    assert parsed.kind == TransactionKind.EIP712
    assert parsed.transaction["to"] == RECEIVER
    assert parsed.hash == hash_transaction(decode_transaction(CUSTOM_SIGNED))


def test_parse_unsigned_eip712_payload_has_no_hash():
    parsed = parse_transaction(UNSIGNED_MINIMAL.to_0x_hex())

    assert parsed.kind == TransactionKind.EIP712
    assert parsed.hash is None


def test_parse_typed_payload():
    parsed = parse_transaction(EIP1559_SIGNED)

    assert parsed.kind == TransactionKind.TYPED
    assert parsed.transaction["nonce"] == 1
    assert parsed.transaction["value"] == 1_000_000
    assert parsed.hash == HexBytes(Web3.keccak(EIP1559_SIGNED))


def test_parse_legacy_payload(account):
    signed = account.sign_transaction(
        {
            "nonce": 7,
            "gasPrice": 1_000_000_000,
            "gas": 21_000,
            "to": RECEIVER,
            "value": 5,
            "data": b"",
            "chainId": 270,
        }
    )

    parsed = parse_transaction(signed.raw_transaction)

    assert parsed.kind == TransactionKind.LEGACY
    assert parsed.transaction["nonce"] == 7
    assert parsed.transaction["to"] == RECEIVER
    assert parsed.transaction["value"] == 5
    assert parsed.hash == HexBytes(signed.hash)


def test_parse_structured_request_is_kept_as_is():
    request = {"to": RECEIVER, "value": 3}

    parsed = parse_transaction(request)

    assert parsed.kind == TransactionKind.REQUEST
    assert parsed.transaction == request
    assert parsed.hash is None


def test_parse_rejects_empty_payload():
    with pytest.raises(CodecError):
        parse_transaction(b"")


def test_parse_rejects_unknown_typed_payload():
    with pytest.raises(CodecError, match="Unsupported typed transaction"):
        parse_transaction(HexBytes("0x05") + EIP1559_SIGNED[1:])


def test_parse_rejects_nested_legacy_field():
    fields = [b"\x07", [b"\x01"], b"", b"", b"", b"", b"", b"", b""]

    with pytest.raises(CodecError, match="`gasPrice`"):
        parse_transaction(rlp.encode(fields))
