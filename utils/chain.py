import os
import json
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple
from dotenv import load_dotenv
from eth_account.signers.local import LocalAccount
from eth_typing import ABIComponent
from hexbytes import HexBytes
from loguru import logger
from web3 import Account, Web3
from web3.eth import Contract
from web3.exceptions import ContractCustomError

from .config import BUFFER, ENV, MULTIPLIER


def add_gas_buffer(
    gas_estimate: int, multiplier: Optional[float] = None, buffer: Optional[int] = None
) -> int:
    if multiplier is not None:
        if multiplier < 1.0:
            raise ValueError("`multiplier` should be >= 1.0 to ensure sufficient gas")
        effective_multiplier = multiplier
    else:
        effective_multiplier = MULTIPLIER

    # Use provided buffer, fallback to global BUFFER if not provided
    if buffer is not None:
        if buffer < 0:
            raise ValueError("`buffer` must be non-negative")
        effective_buffer = buffer
    else:
        effective_buffer = BUFFER

    return int(gas_estimate * effective_multiplier) + effective_buffer


def get_account() -> LocalAccount:
    load_dotenv()

    pvt_key = os.getenv(ENV.PRIVATE_KEY)

    if type(pvt_key) is not str:
        raise TypeError(f"Store private key in .env as it is of type `{type(pvt_key)}")

    account: LocalAccount = Account.from_key(pvt_key)

    return account


def get_abi(path: str) -> Any:
    if os.path.isfile(path):
        with open(path, "r") as file:
            abi = json.load(file)

        return abi
    else:
        raise FileNotFoundError(f"File path not found: {path}")


def to_int(value: Any) -> int:
    """
    Normalize an RPC quantity to `int`.

    zkSync specific receipt fields (`l1BatchNumber`, `l1BatchTxIndex`, ...) are
    not touched by web3 result formatters and arrive as hex strings.
    """
    if value is None:
        raise ValueError("Expected a quantity, received `None`")

    if isinstance(value, int):
        return value

    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")

    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)

    raise TypeError(f"Cannot convert `{type(value)}` to int")


def _offline_contract(abi_path: str) -> Contract:
    return Web3().eth.contract(abi=get_abi(abi_path))


def encode_function_call(
    abi_path: str, fn_name: str, args: Sequence[Any]
) -> HexBytes:
    """
    ABI encode a call (selector + arguments) without a node connection.

    Parameters
    ----------
    `abi_path` : str
    `fn_name` : str
    `args` : Sequence

    Returns
    -------
    HexBytes
    """
    contract = _offline_contract(abi_path)

    return HexBytes(contract.encode_abi(fn_name, args=list(args)))


def decode_function_call(abi_path: str, data: bytes) -> Tuple[str, Dict[str, Any]]:
    contract = _offline_contract(abi_path)
    fn, params = contract.decode_function_input(HexBytes(data))

    return fn.fn_name, dict(params)


class ContractErrorInfo(NamedTuple):
    """Custom error of an L1 bridge matched from its 4-byte selector."""

    name: str
    signature: str
    inputs: Sequence[ABIComponent]
    selector: str


def _error_signature(item: Dict[str, Any]) -> str:
    types = ",".join(inp["type"] for inp in item.get("inputs", []) if "type" in inp)

    return f"{item['name']}({types})"


def get_contract_error_info(
    contract: Contract, error: Exception
) -> Optional[ContractErrorInfo]:
    """
    Resolve a `ContractCustomError` raised by `contract` to the error entry of
    its ABI, e.g. `WithdrawalAlreadyFinalized()` on the shared bridge.

    Parameters
    ----------
    `contract` : Contract
        Contract whose ABI declares the error.
    `error` : Exception
        What `estimate_gas` / `call` raised.

    Returns
    -------
    Optional[ContractErrorInfo]
        `None` for anything but a custom error, or a selector the ABI doesn't
        declare.
    """
    if not isinstance(error, ContractCustomError):
        return None

    error_selector = HexBytes(error.args[0])[:4].to_0x_hex()
    logger.debug(f"Matching custom error selector {error_selector}")

    for item in contract.abi:
        if item.get("type") != "error" or not item.get("name"):
            continue

        signature = _error_signature(item)
        selector = HexBytes(Web3.keccak(text=signature)[:4]).to_0x_hex()

        if selector == error_selector:
            return ContractErrorInfo(
                name=item["name"],
                signature=signature,
                inputs=item.get("inputs", []),
                selector=selector,
            )

    return None
