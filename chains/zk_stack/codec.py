"""
Wire codec of the ZK stack `0x71` (EIP-712) transaction envelope.

Payload: `0x71 || rlp([nonce, maxPriorityFeePerGas, maxFeePerGas, gasLimit, to,
value, data, v | chainId, r, s, chainId, from, gasPerPubdata, [factoryDeps],
customSignature, [paymaster, paymasterInput]])`
"""

from typing import Any, List, Mapping, Optional

import rlp
from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from rlp.exceptions import DecodingError
from web3 import Web3

from utils.config import DEFAULT_GAS_PER_PUBDATA_LIMIT, EIP712_TX_TYPE
from .custom_errors import CodecError, NotSignedError
from .signer import Eip712Signer
from .types import Eip712Meta, PaymasterParams, TransactionEnvelope

TX_FIELDS_COUNT = 16

# byte-string slots ahead of `factoryDeps`
ENVELOPE_SCALARS = (
    "nonce",
    "maxPriorityFeePerGas",
    "maxFeePerGas",
    "gasLimit",
    "to",
    "value",
    "data",
    "v",
    "r",
    "s",
    "chainId",
    "from",
    "gasPerPubdata",
)


def _int_to_bytes(value: int) -> bytes:
    if value < 0:
        raise CodecError(f"Negative integer `{value}` can't be encoded")

    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def _as_bytes(value: Any, field: str) -> bytes:
    if not isinstance(value, bytes):
        raise CodecError(f"Invalid `{field}` field, expected a byte string")

    return value


def _as_list(value: Any, field: str) -> List[Any]:
    if not isinstance(value, list):
        raise CodecError(f"Invalid `{field}` field, expected a list")

    return value


def _bytes_to_int(value: bytes) -> int:
    return int.from_bytes(value, "big")


def _address_to_bytes(address: str) -> bytes:
    raw = bytes(HexBytes(address))

    if len(raw) != 20:
        raise CodecError(f"Invalid address `{address}`")

    return raw


def _bytes_to_address(value: bytes) -> Optional[ChecksumAddress]:
    if len(value) == 0:
        return None

    if len(value) != 20:
        raise CodecError(f"Invalid address bytes `{HexBytes(value).to_0x_hex()}`")

    return to_checksum_address(value)


def encode_transaction(envelope: TransactionEnvelope) -> HexBytes:
    """
    Serialize an envelope into its typed-transaction bytes.

    Parameters
    ----------
    `envelope` : TransactionEnvelope
        `chainId` and `from` are required. Fees fall back to `gasPrice` and
        `customData.gasPerPubdata` to `DEFAULT_GAS_PER_PUBDATA_LIMIT`.

    Returns
    -------
    HexBytes
    """
    chain_id = envelope.get("chainId")
    from_ = envelope.get("from")

    if not chain_id:
        raise CodecError("Transaction chainId isn't set!")

    if not from_:
        raise CodecError("Explicitly providing `from` field is required for EIP712 transactions!")

    meta: Mapping[str, Any] = envelope.get("customData") or {}

    max_fee_per_gas = envelope.get("maxFeePerGas") or envelope.get("gasPrice") or 0
    max_priority_fee_per_gas = envelope.get("maxPriorityFeePerGas") or max_fee_per_gas

    to = envelope.get("to")

    fields: List[Any] = [
        _int_to_bytes(envelope.get("nonce") or 0),
        _int_to_bytes(max_priority_fee_per_gas),
        _int_to_bytes(max_fee_per_gas),
        _int_to_bytes(envelope.get("gas") or 0),
        _address_to_bytes(to) if to else b"",
        _int_to_bytes(envelope.get("value") or 0),
        bytes(HexBytes(envelope.get("data") or b"")),
    ]

    r = envelope.get("r")
    s = envelope.get("s")

    if r and s:
        fields.append(_int_to_bytes(envelope.get("v") or 0))
        fields.append(_int_to_bytes(r))
        fields.append(_int_to_bytes(s))
    else:
        fields.append(_int_to_bytes(chain_id))
        fields.append(b"")
        fields.append(b"")

    fields.append(_int_to_bytes(chain_id))
    fields.append(_address_to_bytes(from_))
    fields.append(_int_to_bytes(meta.get("gasPerPubdata") or DEFAULT_GAS_PER_PUBDATA_LIMIT))
    # raw bytes, never hex strings
    fields.append([bytes(HexBytes(dep)) for dep in meta.get("factoryDeps") or []])

    custom_signature = meta.get("customSignature")
    if custom_signature is not None and len(HexBytes(custom_signature)) == 0:
        raise CodecError("Empty signatures are not supported!")

    fields.append(bytes(HexBytes(custom_signature)) if custom_signature else b"")

    paymaster_params = meta.get("paymasterParams")
    if paymaster_params:
        fields.append(
            [
                _address_to_bytes(paymaster_params["paymaster"]),
                bytes(HexBytes(paymaster_params["paymasterInput"])),
            ]
        )
    else:
        fields.append([])

    return HexBytes(bytes([EIP712_TX_TYPE]) + rlp.encode(fields))


def decode_transaction(payload: bytes | str) -> TransactionEnvelope:
    """
    Inverse of `encode_transaction`. Only accepts the `0x71` discriminant, other
    payloads are routed by `transaction.parse_transaction`.
    """
    raw = bytes(HexBytes(payload))

    if len(raw) == 0 or raw[0] != EIP712_TX_TYPE:
        raise CodecError("Not an EIP712 transaction payload")

    try:
        fields = rlp.decode(raw[1:])
    except DecodingError as e:
        raise CodecError(f"Invalid RLP payload: {e}", e)

    if not isinstance(fields, list) or len(fields) != TX_FIELDS_COUNT:
        raise CodecError(
            f"Invalid EIP712 transaction, expected {TX_FIELDS_COUNT} fields"
        )

    (
        nonce,
        max_priority_fee_per_gas,
        max_fee_per_gas,
        gas,
        to,
        value,
        data,
        v_raw,
        r,
        s,
        chain_id,
        from_,
        gas_per_pubdata,
    ) = [_as_bytes(field, name) for field, name in zip(fields, ENVELOPE_SCALARS)]

    factory_deps = _as_list(fields[13], "factoryDeps")
    custom_signature = _as_bytes(fields[14], "customSignature")
    paymaster = _as_list(fields[15], "paymasterParams")

    meta: Eip712Meta = {
        "gasPerPubdata": _bytes_to_int(gas_per_pubdata),
        "factoryDeps": [HexBytes(_as_bytes(dep, "factoryDeps")) for dep in factory_deps],
    }

    if len(custom_signature) > 0:
        meta["customSignature"] = HexBytes(custom_signature)

    if len(paymaster) == 2:
        paymaster_address = _bytes_to_address(_as_bytes(paymaster[0], "paymaster"))
        if paymaster_address is None:
            raise CodecError("Invalid paymaster parameters, paymaster address is empty!")

        paymaster_params: PaymasterParams = {
            "paymaster": paymaster_address,
            "paymasterInput": HexBytes(_as_bytes(paymaster[1], "paymasterInput")),
        }
        meta["paymasterParams"] = paymaster_params
    elif len(paymaster) != 0:
        raise CodecError(
            "Invalid paymaster parameters, expected to have length of 2, "
            f"found {len(paymaster)}!"
        )

    sender = _bytes_to_address(from_)
    if sender is None:
        raise CodecError("Invalid EIP712 transaction, `from` is empty!")

    envelope: TransactionEnvelope = {
        "type": EIP712_TX_TYPE,
        "chainId": _bytes_to_int(chain_id),
        "nonce": _bytes_to_int(nonce),
        "from": sender,
        "gas": _bytes_to_int(gas),
        "maxFeePerGas": _bytes_to_int(max_fee_per_gas),
        "maxPriorityFeePerGas": _bytes_to_int(max_priority_fee_per_gas),
        "value": _bytes_to_int(value),
        "data": HexBytes(data),
        "customData": meta,
    }

    recipient = _bytes_to_address(to)
    if recipient:
        envelope["to"] = recipient

    if len(r) == 0 or len(s) == 0:
        return envelope

    v = _bytes_to_int(v_raw)
    if v not in (0, 1) and "customSignature" not in meta:
        raise CodecError("Failed to parse signature!")

    envelope["v"] = v
    envelope["r"] = _bytes_to_int(r)
    envelope["s"] = _bytes_to_int(s)

    return envelope


def is_signed(envelope: TransactionEnvelope) -> bool:
    meta = envelope.get("customData") or {}

    return bool(meta.get("customSignature"))


def hash_transaction(envelope: TransactionEnvelope) -> HexBytes:
    """
    `keccak(eip712Digest || keccak(customSignature))`, the hash the network
    assigns to the envelope once submitted.
    """
    if not is_signed(envelope):
        raise NotSignedError("Transaction hash is only defined for signed transactions!")

    custom_signature = HexBytes(envelope["customData"]["customSignature"])
    signed_digest = Eip712Signer.get_signed_digest(envelope)

    return HexBytes(Web3.keccak(bytes(signed_digest) + bytes(Web3.keccak(custom_signature))))
