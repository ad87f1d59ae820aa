from typing import Optional

from eth_utils.address import to_checksum_address
from hexbytes import HexBytes

from utils.chain import encode_function_call
from utils.config import ABI_PAYMASTER_FLOW
from .types import PaymasterInput, PaymasterParams


def get_approval_based_paymaster_input(
    token: str, minimal_allowance: int, inner_input: Optional[bytes] = None
) -> HexBytes:
    return encode_function_call(
        ABI_PAYMASTER_FLOW,
        "approvalBased",
        [to_checksum_address(token), minimal_allowance, HexBytes(inner_input or b"")],
    )


def get_general_paymaster_input(inner_input: Optional[bytes] = None) -> HexBytes:
    return encode_function_call(
        ABI_PAYMASTER_FLOW, "general", [HexBytes(inner_input or b"")]
    )


def get_paymaster_params(
    paymaster_address: str, paymaster_input: PaymasterInput
) -> PaymasterParams:
    """
    Build the `customData.paymasterParams` of a transaction.

    Parameters
    ----------
    `paymaster_address` : str
    `paymaster_input` : PaymasterInput
        `{"type": "General", "innerInput"}` or
        `{"type": "ApprovalBased", "token", "minimalAllowance", "innerInput"}`

    Returns
    -------
    PaymasterParams
    """
    flow = paymaster_input.get("type")

    if flow == "General":
        encoded = get_general_paymaster_input(paymaster_input.get("innerInput"))
    elif flow == "ApprovalBased":
        encoded = get_approval_based_paymaster_input(
            paymaster_input["token"],
            paymaster_input["minimalAllowance"],
            paymaster_input.get("innerInput"),
        )
    else:
        raise ValueError(f"Unknown paymaster flow `{flow}`")

    return {
        "paymaster": to_checksum_address(paymaster_address),
        "paymasterInput": encoded,
    }
