import pytest

from chains.zk_stack.adapters import L1Adapter, L2Adapter
from chains.zk_stack.custom_errors import InvalidChainError
from chains.zk_stack.provider import ZkProvider
from chains.zk_stack.zk_stack import ZkStack
from utils.config import ChainName

from conftest import ADDRESS, PRIVATE_KEY


@pytest.fixture
def zk(account, l1_node, l2_w3):
    return ZkStack(
        ChainName.ZKSYNC_SEPOLIA, account=account, l1_provider=l1_node, l2_provider=l2_w3
    )


def test_layers_share_one_provider(zk, l2_w3):
    assert isinstance(zk.provider, ZkProvider)
    assert isinstance(zk.l1, L1Adapter)
    assert isinstance(zk.l2, L2Adapter)
    assert zk.provider.w3 is l2_w3
    assert zk.l1.provider is zk.provider
    assert zk.l2.provider is zk.provider
    assert zk.l2.address == ADDRESS


def test_rejects_non_zk_stack_chain(account, l1_w3, l2_w3):
    with pytest.raises(InvalidChainError):
        ZkStack(ChainName.ETH_SEPOLIA, account=account, l1_provider=l1_w3, l2_provider=l2_w3)  # type: ignore[arg-type]


def test_account_defaults_to_env(monkeypatch, l1_node, l2_w3):
    monkeypatch.setenv("PRIVATE_KEY", PRIVATE_KEY)

    zk = ZkStack(ChainName.ZKSYNC_SEPOLIA, l1_provider=l1_node, l2_provider=l2_w3)

    assert zk.account.address == ADDRESS


def test_balances_on_both_layers(zk, l1_node, rpc):
    l1_node.eth.get_balance.return_value = 3
    rpc.responses["eth_getBalance"] = "0x4"

    assert zk.get_balances() == {"l1": 3, "l2": 4}
