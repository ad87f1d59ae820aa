from typing import Any, Dict, List, Mapping, Optional, Tuple

from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3

from utils.config import (
    ADDRESS_ZERO,
    DEFAULT_GAS_PER_PUBDATA_LIMIT,
    EIP712_DOMAIN_NAME,
    EIP712_DOMAIN_VERSION,
    EIP712_TX_TYPE,
)
from .hashing import hash_bytecode
from .types import Eip712SignInput, TransactionEnvelope


def _address_to_int(address: Optional[str]) -> int:
    return int.from_bytes(HexBytes(address or ADDRESS_ZERO), "big")


class Eip712Signer:
    """
    Builds and signs the EIP-712 `Transaction` struct of a `0x71` envelope.

    The member order of `EIP712_TYPES` is part of the protocol and follows the
    layout the operator uses to recover the signer.

    Parameters
    ----------
    `chain_id` : int
        Chain the signature is bound to through the EIP-712 domain.
    """

    EIP712_TYPES: Dict[str, List[Dict[str, str]]] = {
        "Transaction": [
            {"name": "txType", "type": "uint256"},
            {"name": "from", "type": "uint256"},
            {"name": "to", "type": "uint256"},
            {"name": "gasLimit", "type": "uint256"},
            {"name": "gasPerPubdataByteLimit", "type": "uint256"},
            {"name": "maxFeePerGas", "type": "uint256"},
            {"name": "maxPriorityFeePerGas", "type": "uint256"},
            {"name": "paymaster", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "factoryDeps", "type": "bytes32[]"},
            {"name": "paymasterInput", "type": "bytes"},
        ]
    }

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id

    @staticmethod
    def get_domain(chain_id: int) -> Dict[str, Any]:
        return {
            "name": EIP712_DOMAIN_NAME,
            "version": EIP712_DOMAIN_VERSION,
            "chainId": chain_id,
        }

    @staticmethod
    def get_sign_input(envelope: Mapping[str, Any]) -> Eip712SignInput:
        custom_data = envelope.get("customData") or {}
        paymaster_params = custom_data.get("paymasterParams") or {}

        max_fee_per_gas = envelope.get("maxFeePerGas") or envelope.get("gasPrice") or 0
        max_priority_fee_per_gas = envelope.get("maxPriorityFeePerGas") or max_fee_per_gas

        sign_input: Eip712SignInput = {
            "txType": envelope.get("type") or EIP712_TX_TYPE,
            "from": _address_to_int(envelope.get("from")),
            "to": _address_to_int(envelope.get("to")),
            "gasLimit": envelope.get("gas") or 0,
            "gasPerPubdataByteLimit": custom_data.get("gasPerPubdata")
            or DEFAULT_GAS_PER_PUBDATA_LIMIT,
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": max_priority_fee_per_gas,
            "paymaster": _address_to_int(paymaster_params.get("paymaster")),
            "nonce": envelope.get("nonce") or 0,
            "value": envelope.get("value") or 0,
            "data": bytes(HexBytes(envelope.get("data") or b"")),
            "factoryDeps": [
                bytes(hash_bytecode(dep)) for dep in custom_data.get("factoryDeps") or []
            ],
            "paymasterInput": bytes(
                HexBytes(paymaster_params.get("paymasterInput") or b"")
            ),
        }

        return sign_input

    def build_typed_data(
        self, envelope: TransactionEnvelope, chain_id: Optional[int] = None
    ) -> Tuple[Dict[str, Any], Dict[str, List[Dict[str, str]]], Eip712SignInput]:
        """
        Returns
        -------
        Tuple[domain, types, message]
        """
        domain = self.get_domain(chain_id or envelope.get("chainId") or self.chain_id)

        return domain, self.EIP712_TYPES, self.get_sign_input(envelope)

    def sign(self, envelope: TransactionEnvelope, account: LocalAccount) -> HexBytes:
        domain, types, message = self.build_typed_data(envelope)

        signed_message = account.sign_typed_data(
            domain_data=domain,
            message_types=types,
            message_data=dict(message),
        )

        return HexBytes(signed_message.signature)

    @classmethod
    def get_signed_digest(
        cls, envelope: Mapping[str, Any], chain_id: Optional[int] = None
    ) -> HexBytes:
        chain_id = chain_id or envelope.get("chainId")
        if not chain_id:
            raise ValueError("Transaction `chainId` isn't set!")

        signable = encode_typed_data(
            domain_data=cls.get_domain(chain_id),
            message_types=cls.EIP712_TYPES,
            message_data=dict(cls.get_sign_input(envelope)),
        )

        return HexBytes(
            Web3.keccak(b"\x19" + signable.version + signable.header + signable.body)
        )
