"""
Pytest fixtures for the ZK stack tests. Nothing here talks to a node: the
L1 and L2 `Web3` objects are mocks and `zks_*` calls are answered by an
`RpcRouter`.
"""

import time
from typing import Any, Callable, Dict, List, Tuple
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes

from chains.zk_stack.provider import ZkProvider

# rich wallet of the local ZK stack dev node
PRIVATE_KEY = "0x7726827caac94a7f9e1b160f7ea819f172f7b6f9d2a97f992c38edeab82d4110"
ADDRESS = to_checksum_address("0x36615cf349d7f6344891b1e7ca7c72883f5dc049")
RECEIVER = to_checksum_address("0xa61464658afeaf65cccaafd3a512b69a83b77618")

L2_CHAIN_ID = 270
MAIN_CONTRACT = to_checksum_address("0x1908e2bf4a88f91e4ef0dc72f02b8ea36bea2319")
BRIDGEHUB = to_checksum_address("0x35a54c8c757806eb6820629bc82d90e056394c92")
SHARED_L1 = to_checksum_address("0x6f03861d12e6401623854e494beacd66bc46e6f0")
SHARED_L2 = to_checksum_address("0x681a1afdc2e06776816386500d2d461a6c96cb45")
ERC20_L1 = to_checksum_address("0x4e2f8b1c4b0c9a3f5b7a2fc9a8f2d1e3c4b5a697")
ERC20_L2 = to_checksum_address("0x7ad5c8b2e9f4f3a1d6c0b8e2a5f9d3c7b1e4a602")
WETH_L1 = to_checksum_address("0x0000000000000000000000000000000000000000")
WETH_L2 = to_checksum_address("0x0000000000000000000000000000000000000000")
ETH_IN_CONTRACTS = to_checksum_address("0x0000000000000000000000000000000000000001")
BASE_TOKEN = to_checksum_address("0x0c0e7bbd4a5ed4b1f3e1a8f5e2bd5a0e7c6d9f31")
DAI_L1 = to_checksum_address("0x70a0f165d6f8054d0d0cf8dfd4dd2005f0af6b55")

BRIDGE_CONTRACTS = {
    "l1Erc20DefaultBridge": ERC20_L1,
    "l2Erc20DefaultBridge": ERC20_L2,
    "l1WethBridge": WETH_L1,
    "l2WethBridge": WETH_L2,
    "l1SharedDefaultBridge": SHARED_L1,
    "l2SharedDefaultBridge": SHARED_L2,
}


class RpcRouter:
    """Answers `request_blocking` calls from a method -> response table."""

    def __init__(self) -> None:
        self.responses: Dict[str, Any] = {}
        self.calls: List[Tuple[str, List[Any]]] = []

    def __call__(self, method: str, params: List[Any]) -> Any:
        self.calls.append((str(method), list(params)))

        if str(method) not in self.responses:
            raise KeyError(f"Unexpected RPC call `{method}`")

        response = self.responses[str(method)]

        if isinstance(response, Exception):
            raise response

        if callable(response):
            return response(*params)

        return response

    def count(self, method: str) -> int:
        return sum(1 for called, _ in self.calls if called == method)

    def params_of(self, method: str) -> List[List[Any]]:
        return [params for called, params in self.calls if called == method]


@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture
def account() -> LocalAccount:
    return Account.from_key(PRIVATE_KEY)


@pytest.fixture
def rpc() -> RpcRouter:
    router = RpcRouter()
    router.responses.update(
        {
            "zks_getMainContract": MAIN_CONTRACT,
            "zks_getBridgehubContract": BRIDGEHUB,
            "zks_getBaseTokenL1Address": ETH_IN_CONTRACTS,
            "zks_getBridgeContracts": BRIDGE_CONTRACTS,
        }
    )

    return router


@pytest.fixture
def l2_w3(rpc: RpcRouter) -> MagicMock:
    w3 = MagicMock()
    w3.provider.endpoint_uri = "https://sepolia.era.zksync.dev"
    w3.manager.request_blocking.side_effect = rpc
    w3.eth.chain_id = L2_CHAIN_ID

    return w3


@pytest.fixture
def l1_w3() -> MagicMock:
    w3 = MagicMock()
    w3.provider.endpoint_uri = "https://eth-sepolia.g.alchemy.com/v2/"
    w3.eth.chain_id = 11155111

    return w3


@pytest.fixture
def provider(l2_w3: MagicMock) -> ZkProvider:
    return ZkProvider(l2_w3)


def contract_router(
    handlers: Dict[str, Callable[[], MagicMock]],
) -> Callable[..., MagicMock]:
    """
    `side_effect` for `w3.eth.contract` that returns the same mock per
    (checksummed) address, creating it through `handlers` when given.
    """
    contracts: Dict[str, MagicMock] = {}

    def _contract(address: str = "", abi: Any = None, **_kw: Any) -> MagicMock:
        if address not in contracts:
            factory = handlers.get(address)
            contract = factory() if factory else MagicMock()
            contract.address = address
            contracts[address] = contract

        return contracts[address]

    return _contract


L1_CHAIN_ID = 11155111
L1_TX_HASH = HexBytes(b"\x0a" * 32)


def signable_function(contract_address: str, gas: int = 100_000) -> MagicMock:
    """
    Contract function mock whose `build_transaction` output can be signed by
    eth-account, like the one web3 fills in from the node.
    """

    def _build(params: Dict[str, Any]) -> Dict[str, Any]:
        tx = {
            "to": contract_address,
            "data": "0x",
            "value": 0,
            "chainId": L1_CHAIN_ID,
            **params,
        }
        if "gasPrice" not in tx:
            tx.setdefault("maxFeePerGas", 2_000_000_000)
            tx.setdefault("maxPriorityFeePerGas", 1_000_000_000)

        return tx

    fn = MagicMock()
    fn.estimate_gas.return_value = gas
    fn.build_transaction.side_effect = _build

    return fn


def erc20_contract(
    address: str, balance: int = 10**24, allowance: int = 10**24
) -> Callable[[], MagicMock]:
    def _factory() -> MagicMock:
        token = MagicMock()
        token.functions.name.return_value.call.return_value = "Dai Stablecoin"
        token.functions.symbol.return_value.call.return_value = "DAI"
        token.functions.decimals.return_value.call.return_value = 18
        token.functions.balanceOf.return_value.call.return_value = balance
        token.functions.allowance.return_value.call.return_value = allowance
        token.functions.approve.return_value = signable_function(address, gas=50_000)

        return token

    return _factory


@pytest.fixture
def l1_node(l1_w3: MagicMock) -> MagicMock:
    """L1 mock able to sign and send: nonce, fees, balance and receipts."""
    l1_w3.eth.get_transaction_count.return_value = 0
    l1_w3.eth.get_block.return_value = {"number": 100, "baseFeePerGas": 1_000_000_000}
    l1_w3.eth.max_priority_fee = 1_000_000_000
    l1_w3.eth.gas_price = 1_500_000_000
    l1_w3.eth.get_balance.return_value = 10**24
    l1_w3.eth.send_raw_transaction.return_value = L1_TX_HASH
    l1_w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 1,
        "blockNumber": 101,
        "logs": [],
    }

    return l1_w3
