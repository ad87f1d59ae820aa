import pytest
import rlp
from hexbytes import HexBytes

from chains.zk_stack.codec import (
    TX_FIELDS_COUNT,
    decode_transaction,
    encode_transaction,
    hash_transaction,
    is_signed,
)
from chains.zk_stack.custom_errors import CodecError, NotSignedError
from utils.config import DEFAULT_GAS_PER_PUBDATA_LIMIT, EIP712_TX_TYPE

from conftest import ADDRESS, RECEIVER

UNSIGNED_MINIMAL = HexBytes(
    "0x71ea8080808080808082010e808082010e9436615cf349d7f6344891b1e7ca7c72883f5dc04982c350c080c0"
)

ECDSA_SIGNED = HexBytes(
    "0x71f87f8080808094a61464658afeaf65cccaafd3a512b69a83b77618830f42408001"
    "a073a20167b8d23b610b058c05368174495adf7da3a4ed4a57eb6dbdeb1fafc24a"
    "a02f87530d663a0d061f69bb564d2c6fb46ae5ae776bbd4bd2a2a4478b9cd1b42a"
    "82010e9436615cf349d7f6344891b1e7ca7c72883f5dc04982c350c080c0"
)

CUSTOM_SIGNED = HexBytes(
    "0x71f890018405f5e1008405f5e1008302662294a61464658afeaf65cccaafd3a512b69a83b77618"
    "830f42408082010e808082010e9436615cf349d7f6344891b1e7ca7c72883f5dc04984ffffffffc0"
    "b841c23a07fb6aa2f3f9fd1aa284b455799e37c5e70cdfc41c138ebf68ab005c1796242512709c548e"
    "9636fab11237cea25df965aaa81879f018023c7a41438887f91bc0"
)

R = 0x73A20167B8D23B610B058C05368174495ADF7DA3A4ED4A57EB6DBDEB1FAFC24A
S = 0x2F87530D663A0D061F69BB564D2C6FB46AE5AE776BBD4BD2A2A4478B9CD1B42A

PAYMASTER = "0x594E77D36eB367b3AbAb98775c99eB383079F966"
RECEIVER_BYTES = bytes(HexBytes(RECEIVER))


def test_encode_minimal_unsigned_envelope():
    encoded = encode_transaction({"chainId": 270, "from": ADDRESS})

    assert encoded == UNSIGNED_MINIMAL


def test_encode_ecdsa_signed_envelope():
    encoded = encode_transaction(
        {
            "chainId": 270,
            "from": ADDRESS,
            "to": RECEIVER,
            "value": 1_000_000,
            "v": 1,
            "r": R,
            "s": S,
        }
    )

    assert encoded == ECDSA_SIGNED


def test_encode_requires_chain_id():
    with pytest.raises(CodecError, match="chainId"):
        encode_transaction({"from": ADDRESS})


def test_encode_requires_from():
    with pytest.raises(CodecError, match="`from`"):
        encode_transaction({"chainId": 270})


def test_encode_rejects_empty_custom_signature():
    with pytest.raises(CodecError, match="Empty signatures are not supported!"):
        encode_transaction(
            {
                "chainId": 270,
                "from": ADDRESS,
                "customData": {"customSignature": HexBytes(b"")},
            }
        )


def test_encode_falls_back_to_gas_price_for_both_fees():
    encoded = encode_transaction(
        {"chainId": 270, "from": ADDRESS, "gasPrice": 250_000_000}
    )
    decoded = decode_transaction(encoded)

    assert decoded["maxFeePerGas"] == 250_000_000
    assert decoded["maxPriorityFeePerGas"] == 250_000_000


def test_decode_custom_signed_envelope():
    tx = decode_transaction(CUSTOM_SIGNED)

    assert tx["type"] == EIP712_TX_TYPE
    assert tx["chainId"] == 270
    assert tx["nonce"] == 1
    assert tx["maxFeePerGas"] == 100_000_000
    assert tx["maxPriorityFeePerGas"] == 100_000_000
    assert tx["gas"] == 0x026622
    assert tx["to"] == RECEIVER
    assert tx["from"] == ADDRESS
    assert tx["value"] == 1_000_000
    assert tx["data"] == HexBytes(b"")
    assert tx["customData"]["gasPerPubdata"] == 0xFFFFFFFF
    assert tx["customData"]["factoryDeps"] == []
    assert len(tx["customData"]["customSignature"]) == 65
    assert "paymasterParams" not in tx["customData"]
    # no ECDSA signature on the outer envelope
    assert "r" not in tx and "s" not in tx


def test_decode_then_encode_preserves_bytes():
    assert encode_transaction(decode_transaction(CUSTOM_SIGNED)) == CUSTOM_SIGNED
    assert encode_transaction(decode_transaction(ECDSA_SIGNED)) == ECDSA_SIGNED


def test_decode_defaults_of_minimal_envelope():
    tx = decode_transaction(UNSIGNED_MINIMAL)

    assert "to" not in tx
    assert tx["customData"] == {
        "gasPerPubdata": DEFAULT_GAS_PER_PUBDATA_LIMIT,
        "factoryDeps": [],
    }
    assert not is_signed(tx)


def test_paymaster_params_survive_encoding():
    envelope = {
        "chainId": 270,
        "from": ADDRESS,
        "to": RECEIVER,
        "customData": {
            "paymasterParams": {
                "paymaster": PAYMASTER,
                "paymasterInput": HexBytes("0x8c5a3445"),
            },
            "factoryDeps": [HexBytes(b"\x01" * 32)],
        },
    }

    tx = decode_transaction(encode_transaction(envelope))

    assert tx["customData"]["paymasterParams"]["paymaster"] == PAYMASTER
    assert tx["customData"]["paymasterParams"]["paymasterInput"] == HexBytes("0x8c5a3445")
    assert tx["customData"]["factoryDeps"] == [HexBytes(b"\x01" * 32)]


def test_decode_rejects_other_transaction_types():
    with pytest.raises(CodecError):
        decode_transaction(HexBytes("0x02") + UNSIGNED_MINIMAL[1:])


def test_decode_rejects_wrong_field_count():
    fields = rlp.decode(bytes(UNSIGNED_MINIMAL[1:]))
    payload = bytes([EIP712_TX_TYPE]) + rlp.encode(fields[: TX_FIELDS_COUNT - 1])

    with pytest.raises(CodecError, match="expected 16 fields"):
        decode_transaction(payload)


def test_decode_rejects_malformed_paymaster_params():
    fields = rlp.decode(bytes(UNSIGNED_MINIMAL[1:]))
    fields[15] = [b"\x01" * 20]
    payload = bytes([EIP712_TX_TYPE]) + rlp.encode(fields)

    with pytest.raises(CodecError, match="found 1"):
        decode_transaction(payload)


def test_decode_rejects_invalid_signature_parity():
    fields = rlp.decode(bytes(ECDSA_SIGNED[1:]))
    fields[7] = b"\x1c"
    payload = bytes([EIP712_TX_TYPE]) + rlp.encode(fields)

    with pytest.raises(CodecError, match="Failed to parse signature!"):
        decode_transaction(payload)


def test_hash_requires_custom_signature():
    with pytest.raises(NotSignedError):
        hash_transaction(decode_transaction(ECDSA_SIGNED))


def test_hash_binds_the_signature():
    tx = decode_transaction(CUSTOM_SIGNED)
    tampered = decode_transaction(CUSTOM_SIGNED)
    tampered["customData"]["customSignature"] = HexBytes(b"\x01" * 65)

    tx_hash = hash_transaction(tx)

    assert len(tx_hash) == 32
    assert tx_hash == hash_transaction(decode_transaction(CUSTOM_SIGNED))
    assert tx_hash != hash_transaction(tampered)


def _mutated(payload: HexBytes, slot: int, value) -> bytes:
    fields = rlp.decode(bytes(payload[1:]))
    fields[slot] = value

    return bytes([EIP712_TX_TYPE]) + rlp.encode(fields)


@pytest.mark.parametrize(
    "slot, value, message",
    [
        (0, [b"\x01"], "`nonce`"),
        (4, [RECEIVER_BYTES], "`to`"),
        (11, b"", "`from` is empty"),
        (11, b"\x01" * 19, "Invalid address bytes"),
        (13, b"\x01\x02", "`factoryDeps`"),
        (13, [[b"\x01"]], "`factoryDeps`"),
        (14, [b"\x01"], "`customSignature`"),
        (15, b"\x01", "`paymasterParams`"),
        (15, [[b"\x01"], b"\x8c"], "`paymaster`"),
        (15, [b"", b"\x8c"], "paymaster address is empty"),
    ],
)
def test_decode_rejects_malformed_slots(slot, value, message):
    with pytest.raises(CodecError, match=message):
        decode_transaction(_mutated(UNSIGNED_MINIMAL, slot, value))


def test_fully_populated_envelope_round_trips():
    envelope = {
        "type": EIP712_TX_TYPE,
        "chainId": 270,
        "nonce": 3,
        "from": ADDRESS,
        "to": RECEIVER,
        "gas": 300_000,
        "maxFeePerGas": 250_000_000,
        "maxPriorityFeePerGas": 1_000_000,
        "value": 7,
        "data": HexBytes("0xa9059cbb" + "00" * 64),
        "customData": {
            "gasPerPubdata": 50_000,
            "factoryDeps": [HexBytes(b"\x01" * 32), HexBytes(b"\x02" * 96)],
            "customSignature": HexBytes(b"\x0b" * 65),
            "paymasterParams": {
                "paymaster": PAYMASTER,
                "paymasterInput": HexBytes("0x8c5a3445" + "00" * 32),
            },
        },
    }

    assert decode_transaction(encode_transaction(envelope)) == envelope


def test_hash_ignores_how_unsigned_fields_are_written():
    signature = HexBytes(b"\x0b" * 65)
    with_gas_price = {
        "chainId": 270,
        "nonce": 1,
        "from": ADDRESS.lower(),
        "to": RECEIVER.lower(),
        "gas": 21_000,
        "gasPrice": 250_000_000,
        "value": 1_000_000,
        "data": "0x",
        "customData": {"customSignature": signature.to_0x_hex()},
    }
    with_fee_fields = {
        "type": EIP712_TX_TYPE,
        "chainId": 270,
        "nonce": 1,
        "from": ADDRESS,
        "to": RECEIVER,
        "gas": 21_000,
        "maxFeePerGas": 250_000_000,
        "maxPriorityFeePerGas": 250_000_000,
        "value": 1_000_000,
        "data": HexBytes(b""),
        "customData": {
            "gasPerPubdata": DEFAULT_GAS_PER_PUBDATA_LIMIT,
            "factoryDeps": [],
            "customSignature": signature,
        },
    }

    tx_hash = hash_transaction(with_gas_price)

    assert tx_hash == hash_transaction(with_fee_fields)
    assert tx_hash == hash_transaction(decode_transaction(encode_transaction(with_gas_price)))
