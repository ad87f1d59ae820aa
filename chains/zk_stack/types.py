from enum import Enum, StrEnum
from typing import Any, Dict, List, Literal, NamedTuple, Optional, TypedDict

from eth_typing import ChecksumAddress
from hexbytes import HexBytes


class PaymasterParams(TypedDict):
    paymaster: ChecksumAddress
    paymasterInput: HexBytes


class PaymasterInput(TypedDict, total=False):
    type: Literal["General", "ApprovalBased"]
    token: ChecksumAddress
    minimalAllowance: int
    innerInput: HexBytes


class Eip712Meta(TypedDict, total=False):
    gasPerPubdata: int
    factoryDeps: List[HexBytes]
    customSignature: HexBytes
    paymasterParams: PaymasterParams


# web3 style keys; `from` is a keyword hence the functional syntax
TransactionEnvelope = TypedDict(
    "TransactionEnvelope",
    {
        "type": int,
        "chainId": int,
        "nonce": int,
        "from": ChecksumAddress,
        "to": ChecksumAddress,
        "gas": int,
        "gasPrice": int,
        "maxFeePerGas": int,
        "maxPriorityFeePerGas": int,
        "value": int,
        "data": HexBytes,
        "customData": Eip712Meta,
        "v": int,
        "r": int,
        "s": int,
    },
    total=False,
)


# EIP-712 `Transaction` struct, addresses are encoded as uint256
Eip712SignInput = TypedDict(
    "Eip712SignInput",
    {
        "txType": int,
        "from": int,
        "to": int,
        "gasLimit": int,
        "gasPerPubdataByteLimit": int,
        "maxFeePerGas": int,
        "maxPriorityFeePerGas": int,
        "paymaster": int,
        "nonce": int,
        "value": int,
        "data": bytes,
        "factoryDeps": List[bytes],
        "paymasterInput": bytes,
    },
)


class TransactionKind(Enum):
    EIP712 = "EIP712"
    TYPED = "TYPED"
    LEGACY = "LEGACY"
    REQUEST = "REQUEST"


class ParsedTransaction(NamedTuple):
    kind: TransactionKind
    transaction: Dict[str, Any]
    hash: Optional[HexBytes]


class BridgeAddresses(TypedDict):
    erc20L1: ChecksumAddress
    erc20L2: ChecksumAddress
    wethL1: ChecksumAddress
    wethL2: ChecksumAddress
    sharedL1: ChecksumAddress
    sharedL2: ChecksumAddress


class MessageProof(TypedDict):
    id: int
    proof: List[HexBytes]
    root: HexBytes


class L2FeeEstimate(TypedDict):
    gasLimit: int
    gasPerPubdataLimit: int
    maxPriorityFeePerGas: int
    maxFeePerGas: int


class FullDepositFee(TypedDict, total=False):
    baseCost: int
    l1GasLimit: int
    l2GasLimit: int
    gasPrice: int
    maxFeePerGas: int
    maxPriorityFeePerGas: int


class AllowanceRequirement(TypedDict):
    token: ChecksumAddress
    allowance: int


class WithdrawalRecord(TypedDict):
    """
    - `l2TransactionHash`: hash of the withdrawal initiating L2 transaction.
    - `l2ToL1LogIndex`: position of the L2 -> L1 log in the receipt, used as
    the key for the proof lookup.
    - `l1BatchTxIndex`: position of the transaction in its L1 batch.
    - `l1BatchNumber`: batch that carries the message.
    - `sender`: L2 contract that sent the message (base token or bridge).
    - `message`: raw message forwarded to the L1 bridge.
    """

    l2TransactionHash: HexBytes
    l2ToL1LogIndex: int
    l1BatchTxIndex: int
    l1BatchNumber: int
    sender: ChecksumAddress
    message: HexBytes


class FinalizeWithdrawalParams(TypedDict):
    l1BatchNumber: int
    l2MessageIndex: int
    l2TxNumberInBlock: int
    message: HexBytes
    sender: ChecksumAddress
    proof: List[HexBytes]


class PriorityOpConfirmation(TypedDict):
    l1BatchNumber: int
    l2MessageIndex: int
    l2TxNumberInBlock: int
    proof: List[HexBytes]


class TransactionStatus(StrEnum):
    NOT_FOUND = "not-found"
    PROCESSING = "processing"
    COMMITTED = "committed"
    FINALIZED = "finalized"


class PriorityOpState(Enum):
    SUBMITTED = 1
    L1_INCLUDED = 2
    L2_OBSERVED = 3
    L2_FINALIZED = 4


class DepositRoute(Enum):
    ETH_TO_ETH_BASED = "ETH_TO_ETH_BASED"
    TOKEN_TO_ETH_BASED = "TOKEN_TO_ETH_BASED"
    ETH_TO_NON_ETH_BASED = "ETH_TO_NON_ETH_BASED"
    BASE_TOKEN_TO_NON_ETH_BASED = "BASE_TOKEN_TO_NON_ETH_BASED"
    NON_BASE_TOKEN_TO_NON_ETH_BASED = "NON_BASE_TOKEN_TO_NON_ETH_BASED"


class L2TransactionRequestDirect(TypedDict):
    chainId: int
    mintValue: int
    l2Contract: ChecksumAddress
    l2Value: int
    l2Calldata: HexBytes
    l2GasLimit: int
    l2GasPerPubdataByteLimit: int
    factoryDeps: List[HexBytes]
    refundRecipient: ChecksumAddress


class L2TransactionRequestTwoBridges(TypedDict):
    chainId: int
    mintValue: int
    l2Value: int
    l2GasLimit: int
    l2GasPerPubdataByteLimit: int
    refundRecipient: ChecksumAddress
    secondBridgeAddress: ChecksumAddress
    secondBridgeValue: int
    secondBridgeCalldata: HexBytes


class DepositTransaction(NamedTuple):
    """
    Bridgehub call selected for a deposit, before it is estimated and signed.

    `value` is the `msg.value` attached on L1, `mint_value` the amount of base
    token minted on L2 to pay for the priority operation.
    """

    route: DepositRoute
    request: L2TransactionRequestDirect | L2TransactionRequestTwoBridges
    value: int
    mint_value: int
    base_cost: int
    token: ChecksumAddress
    amount: int
    bridge_address: ChecksumAddress
    overrides: Dict[str, Any]

    @property
    def is_direct(self) -> bool:
        return self.route in (
            DepositRoute.ETH_TO_ETH_BASED,
            DepositRoute.BASE_TOKEN_TO_NON_ETH_BASED,
        )


class RequestExecuteTransaction(NamedTuple):
    request: L2TransactionRequestDirect
    value: int
    base_cost: int
    overrides: Dict[str, Any]


class DepositOverrides(TypedDict, total=False):
    gasPrice: int
    maxFeePerGas: int
    maxPriorityFeePerGas: int
    value: int
    gas: int
    nonce: int
