import os
from enum import Enum, StrEnum
from typing import Dict, Final, Literal, TypedDict

from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address


class ENV(StrEnum):
    ALCHEMY_API_KEY = "ALCHEMY_API_KEY"
    PRIVATE_KEY = "PRIVATE_KEY"
    LOG_LEVEL = "LOG_LEVEL"
    LOG_FILE = "LOG_FILE"
    ETH_MAINNET_RPC_URL = "ETH_MAINNET_RPC_URL"
    ETH_SEPOLIA_RPC_URL = "ETH_SEPOLIA_RPC_URL"
    ETH_LOCAL_RPC_URL = "ETH_LOCAL_RPC_URL"
    ZKSYNC_MAINNET_RPC_URL = "ZKSYNC_MAINNET_RPC_URL"
    ZKSYNC_SEPOLIA_RPC_URL = "ZKSYNC_SEPOLIA_RPC_URL"
    ZKSYNC_LOCAL_RPC_URL = "ZKSYNC_LOCAL_RPC_URL"


class ChainName(StrEnum):
    ETH_MAINNET = "ETH_MAINNET"
    ETH_SEPOLIA = "ETH_SEPOLIA"
    ETH_LOCAL = "ETH_LOCAL"
    ZKSYNC_MAINNET = "ZKSYNC_MAINNET"
    ZKSYNC_SEPOLIA = "ZKSYNC_SEPOLIA"
    ZKSYNC_LOCAL = "ZKSYNC_LOCAL"


class ContractType(TypedDict):
    address: ChecksumAddress
    ABI: str


def _contract(address: str, abi_path: str) -> ContractType:
    return {
        "address": to_checksum_address(address),
        "ABI": abi_path,
    }


ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _abi(name: str) -> str:
    return os.path.join(ROOT_DIR, "chains", "zk_stack", "ABI", name)


# GAS ESTIMATE

MULTIPLIER = 1.3
BUFFER = 20_000

# L1 gas limits are scaled by 12/10 before submission
L1_FEE_ESTIMATION_COEF_NUMERATOR = 12
L1_FEE_ESTIMATION_COEF_DENOMINATOR = 10

L1_RECOMMENDED_MIN_ETH_DEPOSIT_GAS_LIMIT = 200_000
L1_RECOMMENDED_MIN_ERC20_DEPOSIT_GAS_LIMIT = 1_000_000

# seconds
POLLING_INTERVAL = 0.5

LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")


# ZK STACK CONFIG

EIP712_TX_TYPE: Final = 0x71
PRIORITY_OPERATION_L2_TX_TYPE: Final = 0xFF

DEFAULT_GAS_PER_PUBDATA_LIMIT: Final = 50_000
REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT: Final = 800

MAX_BYTECODE_LEN_BYTES: Final = ((1 << 16) - 1) * 32

EIP712_DOMAIN_NAME: Final = "zkSync"
EIP712_DOMAIN_VERSION: Final = "2"

ADDRESS_ZERO = to_checksum_address("0x0000000000000000000000000000000000000000")
HASH_ZERO = b"\x00" * 32

ETH_ADDRESS = ADDRESS_ZERO
LEGACY_ETH_ADDRESS = ADDRESS_ZERO
ETH_ADDRESS_IN_CONTRACTS = to_checksum_address(
    "0x0000000000000000000000000000000000000001"
)

BOOTLOADER_FORMAL_ADDRESS = to_checksum_address(
    "0x0000000000000000000000000000000000008001"
)
NONCE_HOLDER_ADDRESS = to_checksum_address(
    "0x0000000000000000000000000000000000008003"
)
CONTRACT_DEPLOYER_ADDRESS = to_checksum_address(
    "0x0000000000000000000000000000000000008006"
)
L1_MESSENGER_ADDRESS = to_checksum_address(
    "0x0000000000000000000000000000000000008008"
)
L2_BASE_TOKEN_ADDRESS = to_checksum_address(
    "0x000000000000000000000000000000000000800a"
)

L1_TO_L2_ALIAS_OFFSET = 0x1111000000000000000000000000000000001111
ADDRESS_MODULO = 2**160

ABI_BRIDGEHUB = _abi("IBridgehub.json")
ABI_L1_SHARED_BRIDGE = _abi("IL1SharedBridge.json")
ABI_L1_BRIDGE = _abi("IL1Bridge.json")
ABI_L2_SHARED_BRIDGE = _abi("IL2SharedBridge.json")
ABI_L2_BRIDGE = _abi("IL2Bridge.json")
ABI_ERC20 = _abi("IERC20.json")
ABI_ETH_TOKEN = _abi("IEthToken.json")
ABI_NONCE_HOLDER = _abi("INonceHolder.json")
ABI_L1_MESSENGER = _abi("IL1Messenger.json")
ABI_PAYMASTER_FLOW = _abi("IPaymasterFlow.json")

ZkStackChainName = Literal[
    ChainName.ZKSYNC_MAINNET, ChainName.ZKSYNC_SEPOLIA, ChainName.ZKSYNC_LOCAL
]

L1_CHAIN_FOR: Final[Dict[ZkStackChainName, ChainName]] = {
    ChainName.ZKSYNC_MAINNET: ChainName.ETH_MAINNET,
    ChainName.ZKSYNC_SEPOLIA: ChainName.ETH_SEPOLIA,
    ChainName.ZKSYNC_LOCAL: ChainName.ETH_LOCAL,
}


class ZK_STACK_ETHEREUM(Enum):
    """L1 contracts. Addresses are discovered through `zks_*` RPC calls."""

    BRIDGEHUB = "BRIDGEHUB"
    L1_SHARED_BRIDGE = "L1_SHARED_BRIDGE"
    L1_BRIDGE = "L1_BRIDGE"
    ERC20 = "ERC20"


class ZK_STACK_L2(Enum):
    L2_SHARED_BRIDGE = "L2_SHARED_BRIDGE"
    L2_BRIDGE = "L2_BRIDGE"
    ERC20 = "ERC20"
    L2_BASE_TOKEN = "L2_BASE_TOKEN"
    NONCE_HOLDER = "NONCE_HOLDER"
    L1_MESSENGER = "L1_MESSENGER"


ZK_STACK_ABI: Final[Dict[ZK_STACK_ETHEREUM | ZK_STACK_L2, str]] = {
    ZK_STACK_ETHEREUM.BRIDGEHUB: ABI_BRIDGEHUB,
    ZK_STACK_ETHEREUM.L1_SHARED_BRIDGE: ABI_L1_SHARED_BRIDGE,
    ZK_STACK_ETHEREUM.L1_BRIDGE: ABI_L1_BRIDGE,
    ZK_STACK_ETHEREUM.ERC20: ABI_ERC20,
    ZK_STACK_L2.L2_SHARED_BRIDGE: ABI_L2_SHARED_BRIDGE,
    ZK_STACK_L2.L2_BRIDGE: ABI_L2_BRIDGE,
    ZK_STACK_L2.ERC20: ABI_ERC20,
    ZK_STACK_L2.L2_BASE_TOKEN: ABI_ETH_TOKEN,
    ZK_STACK_L2.NONCE_HOLDER: ABI_NONCE_HOLDER,
    ZK_STACK_L2.L1_MESSENGER: ABI_L1_MESSENGER,
}

# system contracts share the same address on every ZK stack chain
ZK_STACK_L2_CONTRACTS: Final[Dict[ZK_STACK_L2, ContractType]] = {
    ZK_STACK_L2.L2_BASE_TOKEN: _contract(L2_BASE_TOKEN_ADDRESS, ABI_ETH_TOKEN),
    ZK_STACK_L2.NONCE_HOLDER: _contract(NONCE_HOLDER_ADDRESS, ABI_NONCE_HOLDER),
    ZK_STACK_L2.L1_MESSENGER: _contract(L1_MESSENGER_ADDRESS, ABI_L1_MESSENGER),
}
