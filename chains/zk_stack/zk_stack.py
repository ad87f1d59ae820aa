"""
ZK Stack python implementation to move funds and messages between Ethereum
and ZK stack rollups (zkSync Era and its hyperchains).
"""

from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxReceipt

from utils.chain import get_account
from utils.config import L1_CHAIN_FOR, ZkStackChainName
from utils.providers import get_web3
from .adapters import L1Adapter, L2Adapter
from .custom_errors import InvalidChainError
from .provider import ZkProvider
from .responses import PriorityOpResponse, TransactionResponse
from .types import (
    FullDepositFee,
    PaymasterParams,
    PriorityOpConfirmation,
    TransactionEnvelope,
)


class ZkStack:
    """
    This class is to interact with ZK stack chains like zkSync Era and
    zkSync Sepolia (Testnet).

    Parameters
    ----------
    `chain_name` : ZkStackChainName

    `account` : LocalAccount, optional
        Local private-key account used for signing transactions on both
        layers. If omitted, it is instantiated from `PRIVATE_KEY` in `.env`.

    `l1_provider` : Web3, optional
        Defaults to the Ethereum network the chain settles on.

    `l2_provider` : Web3, optional

    MORE INFO
    ---------
    Deposits (L1 -> L2) are priority operations: the user calls the bridgehub
    on Ethereum which enqueues the request, and the sequencer has to execute
    it on L2. The L2 hash of a deposit is known as soon as the L1 transaction
    is mined, see `PriorityOpResponse`.

    Withdrawals (L2 -> L1) are L2 transactions sending a message to L1. Once
    the batch carrying the message is executed on Ethereum, the withdrawal is
    finalized by proving the message to the L1 bridge via
    `finalize_withdrawal()`.
    """

    def __init__(
        self,
        chain_name: ZkStackChainName,
        account: Optional[LocalAccount] = None,
        l1_provider: Optional[Web3] = None,
        l2_provider: Optional[Web3] = None,
    ) -> None:
        if chain_name not in L1_CHAIN_FOR:
            raise InvalidChainError(f"Invalid chain intitialized: {chain_name}")

        self.chain_name = chain_name
        self.l1_provider = l1_provider or get_web3(L1_CHAIN_FOR[chain_name])
        self.l2_provider = l2_provider or get_web3(chain_name)
        self.account = account or get_account()

        self.provider = ZkProvider(self.l2_provider)
        self.l1 = L1Adapter(chain_name, self.provider, self.l1_provider, self.account)
        self.l2 = L2Adapter(self.provider, self.account)

    def deposit(self, token: str, amount: int, **kwargs: Any) -> PriorityOpResponse:
        """
        Deposit `amount` of the L1 `token` to L2. See `L1Adapter.deposit`.

        Examples
        --------
        >>> op = zk.deposit(ETH_ADDRESS, Web3.to_wei(0.01, "ether"))
        >>> receipt = op.wait()
        """
        return self.l1.deposit(token, amount, **kwargs)

    def get_full_required_deposit_fee(
        self, token: str, to: Optional[str] = None
    ) -> FullDepositFee:
        return self.l1.get_full_required_deposit_fee(token, to)

    def request_execute(
        self, contract_address: str, calldata: bytes, **kwargs: Any
    ) -> PriorityOpResponse:
        return self.l1.request_execute(contract_address, calldata, **kwargs)

    def withdraw(
        self,
        token: Optional[str],
        amount: int,
        to: Optional[str] = None,
        paymaster_params: Optional[PaymasterParams] = None,
    ) -> TransactionResponse:
        return self.l2.withdraw(
            token, amount, to=to, paymaster_params=paymaster_params
        )

    def transfer(
        self,
        to: str,
        amount: int,
        token: Optional[str] = None,
        paymaster_params: Optional[PaymasterParams] = None,
    ) -> TransactionResponse:
        return self.l2.transfer(to, amount, token, paymaster_params)

    def send_transaction(self, tx: TransactionEnvelope) -> TransactionResponse:
        return self.l2.send_transaction(tx)

    def is_withdrawal_finalized(self, l2_tx_hash: HexBytes, index: int = 0) -> bool:
        return self.l1.is_withdrawal_finalized(l2_tx_hash, index)

    def finalize_withdrawal(
        self, l2_tx_hash: HexBytes, index: int = 0, check_finalized: bool = False
    ) -> TxReceipt:
        """
        Finalize on L1 the withdrawal initiated by `l2_tx_hash`. Only possible
        once the L1 batch carrying it has been executed on Ethereum, before
        that the proof lookup raises `LogProofNotFoundError`.
        """
        return self.l1.finalize_withdrawal(l2_tx_hash, index, check_finalized)

    def claim_failed_deposit(self, deposit_hash: HexBytes) -> TxReceipt:
        return self.l1.claim_failed_deposit(deposit_hash)

    def get_priority_op_confirmation(
        self, l2_tx_hash: HexBytes, index: int = 0
    ) -> PriorityOpConfirmation:
        return self.provider.get_priority_op_confirmation(l2_tx_hash, index)

    def get_balances(self) -> Dict[str, int]:
        """Base token balance of the account on both layers."""
        return {
            "l1": self.l1.get_balance_l1(),
            "l2": self.l2.get_balance(),
        }
