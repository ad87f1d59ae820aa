"""
Account bound operations of a ZK stack chain.

`L2Adapter` signs and submits L2 transactions (EIP-712 ones included) and
initiates withdrawals. `L1Adapter` talks to the bridgehub and the L1 bridges:
deposits, arbitrary L1 -> L2 requests, withdrawal finalization and failed
deposit claims. Both share one `ZkProvider`.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple, cast

from eth_abi.abi import decode, encode
from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from loguru import logger
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.exceptions import BadFunctionCallOutput, ContractLogicError
from web3.types import TxParams, TxReceipt

from utils.chain import add_gas_buffer, decode_function_call, get_abi, to_int
from utils.config import (
    ABI_L2_SHARED_BRIDGE,
    ADDRESS_ZERO,
    BOOTLOADER_FORMAL_ADDRESS,
    DEFAULT_GAS_PER_PUBDATA_LIMIT,
    EIP712_TX_TYPE,
    ETH_ADDRESS_IN_CONTRACTS,
    HASH_ZERO,
    L1_MESSENGER_ADDRESS,
    L1_RECOMMENDED_MIN_ERC20_DEPOSIT_GAS_LIMIT,
    L1_RECOMMENDED_MIN_ETH_DEPOSIT_GAS_LIMIT,
    L2_BASE_TOKEN_ADDRESS,
    LEGACY_ETH_ADDRESS,
    REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT,
    ZK_STACK_ABI,
    ZK_STACK_ETHEREUM,
    ZK_STACK_L2,
    ZkStackChainName,
)
from .codec import encode_transaction
from .custom_errors import (
    CannotClaimSuccessfulDepositError,
    EventParseError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InvalidChainError,
    LogProofNotFoundError,
    PreconditionError,
    TransactionNotMinedError,
    WithdrawalAlreadyFinalizedError,
    ZkStackError,
)
from .gas_estimator import GasEstimator
from .hashing import L1_MESSAGE_SENT_TOPIC, is_address_eq, is_eth, undo_l1_to_l2_alias
from .provider import ZkProvider
from .responses import PriorityOpResponse, TransactionResponse
from .signer import Eip712Signer
from .transaction import is_custom_transaction
from .types import (
    AllowanceRequirement,
    DepositRoute,
    DepositTransaction,
    FinalizeWithdrawalParams,
    FullDepositFee,
    L2TransactionRequestDirect,
    L2TransactionRequestTwoBridges,
    PaymasterParams,
    RequestExecuteTransaction,
    TransactionEnvelope,
    WithdrawalRecord,
)

FEE_KEYS = ("gasPrice", "maxFeePerGas", "maxPriorityFeePerGas")


class L2Capable(Protocol):
    account: LocalAccount
    provider: ZkProvider

    def sign_transaction(self, tx: TransactionEnvelope) -> HexBytes: ...

    def send_transaction(self, tx: TransactionEnvelope) -> TransactionResponse: ...

    def withdraw(
        self, token: Optional[str], amount: int, to: Optional[str] = None
    ) -> TransactionResponse: ...

    def transfer(
        self, to: str, amount: int, token: Optional[str] = None
    ) -> TransactionResponse: ...


class L1Capable(Protocol):
    account: LocalAccount
    provider: ZkProvider
    l1_provider: Web3

    def deposit(self, token: str, amount: int) -> PriorityOpResponse: ...

    def is_withdrawal_finalized(self, l2_tx_hash: bytes | str, index: int = 0) -> bool: ...

    def finalize_withdrawal(
        self, l2_tx_hash: bytes | str, index: int = 0, check_finalized: bool = False
    ) -> TxReceipt: ...


class L2Adapter:
    """
    Parameters
    ----------
    `provider` : ZkProvider
    `account` : LocalAccount
    """

    def __init__(self, provider: ZkProvider, account: LocalAccount) -> None:
        self.provider = provider
        self.account = account
        self._signer: Optional[Eip712Signer] = None

    @property
    def address(self) -> ChecksumAddress:
        return self.account.address

    def _get_signer(self) -> Eip712Signer:
        if self._signer is None:
            self._signer = Eip712Signer(self.provider.chain_id)

        return self._signer

    def populate_transaction(self, tx: TransactionEnvelope) -> TransactionEnvelope:
        """
        Fill in the fields a request needs before it can be signed.

        A request with neither `customData` nor type `0x71` is left a
        standard Ethereum transaction. Otherwise it becomes a `0x71` envelope
        with `customData.gasPerPubdata` and `customData.factoryDeps` defaulted.

        Parameters
        ----------
        `tx` : TransactionEnvelope

        Returns
        -------
        TransactionEnvelope
            A new envelope, `tx` is left untouched.
        """
        populated: Dict[str, Any] = dict(tx)

        from_ = populated.get("from")
        if from_ and not is_address_eq(from_, self.account.address):
            raise PreconditionError(
                f"Transaction `from` {from_} doesn't match the account {self.account.address}!"
            )

        populated["from"] = self.account.address

        if populated.get("nonce") is None:
            populated["nonce"] = self.provider.w3.eth.get_transaction_count(
                self.account.address, "pending"
            )

        if not populated.get("chainId"):
            populated["chainId"] = self.provider.chain_id

        if is_custom_transaction(populated):
            populated["type"] = EIP712_TX_TYPE
            populated["value"] = populated.get("value") or 0
            populated["data"] = HexBytes(populated.get("data") or b"")

            meta = dict(populated.get("customData") or {})
            meta["gasPerPubdata"] = (
                meta.get("gasPerPubdata") or DEFAULT_GAS_PER_PUBDATA_LIMIT
            )
            meta["factoryDeps"] = meta.get("factoryDeps") or []
            populated["customData"] = meta

        if populated.get("gas") is None:
            populated["gas"] = self.provider.estimate_gas(
                cast(TransactionEnvelope, populated)
            )

        if not populated.get("maxFeePerGas") and not populated.get("gasPrice"):
            populated["gasPrice"] = self.provider.w3.eth.gas_price

        return cast(TransactionEnvelope, populated)

    def sign_transaction(self, tx: TransactionEnvelope) -> HexBytes:
        populated = self.populate_transaction(tx)

        if not is_custom_transaction(populated):
            signed_txn = self.account.sign_transaction(cast(dict, populated))

            return HexBytes(signed_txn.raw_transaction)

        populated["customData"]["customSignature"] = self._get_signer().sign(
            populated, self.account
        )

        return encode_transaction(populated)

    def send_transaction(self, tx: TransactionEnvelope) -> TransactionResponse:
        signed_txn = self.sign_transaction(tx)

        try:
            return self.provider.send_raw_transaction(signed_txn)
        except Exception as e:
            raise ZkStackError(f"L2 transaction submission failed: {e}", e)

    def withdraw(
        self,
        token: Optional[str],
        amount: int,
        to: Optional[str] = None,
        bridge_address: Optional[str] = None,
        paymaster_params: Optional[PaymasterParams] = None,
        overrides: Optional[TransactionEnvelope] = None,
    ) -> TransactionResponse:
        """
        Initiate a withdrawal to L1. Once the batch carrying it is executed on
        L1 the withdrawal still has to be finalized with
        `L1Adapter.finalize_withdrawal`.

        Parameters
        ----------
        `token` : str, optional
            L2 token address, `None` for the base token.
        `amount` : int
        `to` : str, optional
            L1 receiver, defaults to the account.
        `bridge_address` : str, optional
        `paymaster_params` : PaymasterParams, optional
        `overrides` : TransactionEnvelope, optional

        Returns
        -------
        TransactionResponse
        """
        tx = self.provider.get_withdraw_tx(
            token=token,
            amount=amount,
            from_=self.account.address,
            to=to,
            bridge_address=bridge_address,
            paymaster_params=paymaster_params,
            overrides=overrides,
        )

        logger.info(f"Withdrawing {amount} of {token or L2_BASE_TOKEN_ADDRESS} to L1")

        return self.send_transaction(tx)

    def transfer(
        self,
        to: str,
        amount: int,
        token: Optional[str] = None,
        paymaster_params: Optional[PaymasterParams] = None,
        overrides: Optional[TransactionEnvelope] = None,
    ) -> TransactionResponse:
        tx = self.provider.get_transfer_tx(
            to=to,
            amount=amount,
            from_=self.account.address,
            token=token,
            paymaster_params=paymaster_params,
            overrides=overrides,
        )

        return self.send_transaction(tx)

    def get_balance(
        self, token: Optional[str] = None, block_tag: str = "committed"
    ) -> int:
        return self.provider.get_balance(self.account.address, block_tag, token)

    def get_all_balances(self) -> Dict[ChecksumAddress, int]:
        return self.provider.get_all_account_balances(self.account.address)

    def get_deployment_nonce(self) -> int:
        nonce_holder = self.provider.get_l2_contract(ZK_STACK_L2.NONCE_HOLDER)

        return nonce_holder.functions.getDeploymentNonce(self.account.address).call()

    def get_l2_bridge_contracts(self) -> Dict[str, Contract]:
        addresses = self.provider.get_default_bridge_addresses()

        return {
            "erc20": self.provider.get_l2_contract(
                ZK_STACK_L2.L2_BRIDGE, addresses["erc20L2"]
            ),
            "weth": self.provider.get_l2_contract(
                ZK_STACK_L2.L2_BRIDGE, addresses["wethL2"]
            ),
            "shared": self.provider.get_l2_contract(
                ZK_STACK_L2.L2_SHARED_BRIDGE, addresses["sharedL2"]
            ),
        }


class L1Adapter:
    """
    L1 side of the account: bridgehub deposits and requests, withdrawal
    finalization and failed deposit claims.

    Every state changing call checks its preconditions (base cost, balances,
    allowances) before anything is signed.

    Parameters
    ----------
    `chain_name` : ZkStackChainName
    `provider` : ZkProvider
        L2 provider, source of the L1 contract addresses.
    `l1_provider` : Web3
    `account` : LocalAccount
    """

    def __init__(
        self,
        chain_name: ZkStackChainName,
        provider: ZkProvider,
        l1_provider: Web3,
        account: LocalAccount,
    ) -> None:
        self.chain_name = chain_name
        self.provider = provider
        self.l1_provider = l1_provider
        self.account = account
        self.gas_estimator = GasEstimator(chain_name, l1_provider, provider)

    def _get_l1_contract(self, contract: ZK_STACK_ETHEREUM, address: str) -> Contract:
        """
        Retrieve an instantiated L1 contract at `address`.

        Parameters
        ----------
        contract : ZK_STACK_ETHEREUM
        address : str

        Returns
        -------
        web3.contract.Contract
        """
        abi_path = ZK_STACK_ABI.get(contract)

        if not abi_path:
            raise InvalidChainError("Invalid contract name provided.")

        return self.l1_provider.eth.contract(
            address=to_checksum_address(address), abi=get_abi(abi_path)
        )

    def _sign_and_send(
        self, fn: ContractFunction, params: Dict[str, Any], scale: bool = False
    ) -> HexBytes:
        txn_params: Dict[str, Any] = {
            "from": self.account.address,
            "nonce": self.l1_provider.eth.get_transaction_count(self.account.address),
            **params,
        }

        if txn_params.get("gas") is None:
            estimated_gas = fn.estimate_gas(
                cast(
                    TxParams,
                    {k: v for k, v in txn_params.items() if k not in FEE_KEYS},
                )
            )
            txn_params["gas"] = (
                self.gas_estimator.scale_gas_limit(estimated_gas)
                if scale
                else add_gas_buffer(estimated_gas)
            )

        txn_payload: TxParams = fn.build_transaction(cast(TxParams, txn_params))

        signed_txn = self.account.sign_transaction(cast(dict, txn_payload))
        txn_hash = self.l1_provider.eth.send_raw_transaction(signed_txn.raw_transaction)

        return HexBytes(txn_hash)

    # CONTRACTS AND READS

    def get_bridgehub_contract(self) -> Contract:
        return self._get_l1_contract(
            ZK_STACK_ETHEREUM.BRIDGEHUB,
            self.provider.get_bridgehub_contract_address(),
        )

    def get_l1_bridge_contracts(self) -> Dict[str, Contract]:
        addresses = self.provider.get_default_bridge_addresses()

        return {
            "erc20": self._get_l1_contract(
                ZK_STACK_ETHEREUM.L1_BRIDGE, addresses["erc20L1"]
            ),
            "weth": self._get_l1_contract(
                ZK_STACK_ETHEREUM.L1_BRIDGE, addresses["wethL1"]
            ),
            "shared": self._get_l1_contract(
                ZK_STACK_ETHEREUM.L1_SHARED_BRIDGE, addresses["sharedL1"]
            ),
        }

    def get_base_cost(
        self,
        l2_gas_limit: int,
        gas_per_pubdata_byte: int = REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT,
        gas_price: Optional[int] = None,
    ) -> int:
        """
        Base token amount the bridgehub charges to execute a priority operation
        with `l2_gas_limit` on L2, at the L1 `gas_price`.
        """
        bridgehub = self.get_bridgehub_contract()

        if gas_price is None:
            gas_price = self.l1_provider.eth.gas_price

        return bridgehub.functions.l2TransactionBaseCost(
            self.provider.chain_id, gas_price, l2_gas_limit, gas_per_pubdata_byte
        ).call()

    def get_balance_l1(
        self, token: Optional[str] = None, address: Optional[str] = None
    ) -> int:
        owner = to_checksum_address(address or self.account.address)

        if token is None or is_eth(token):
            return self.l1_provider.eth.get_balance(owner)

        erc20 = self._get_l1_contract(ZK_STACK_ETHEREUM.ERC20, token)

        return erc20.functions.balanceOf(owner).call()

    def get_allowance_l1(self, token: str, bridge_address: Optional[str] = None) -> int:
        if bridge_address is None:
            bridge_address = self.provider.get_default_bridge_addresses()["sharedL1"]

        erc20 = self._get_l1_contract(ZK_STACK_ETHEREUM.ERC20, token)

        return erc20.functions.allowance(
            self.account.address, to_checksum_address(bridge_address)
        ).call()

    def approve_erc20(
        self, token: str, amount: int, bridge_address: Optional[str] = None
    ) -> TxReceipt:
        """
        Approve `bridge_address` (the shared L1 bridge by default) to pull
        `amount` of `token`. Waits for the receipt so that a following deposit
        sees the allowance.
        """
        if is_eth(token):
            raise PreconditionError(
                "ETH token can't be approved! The address of the token does not exist on L1."
            )

        if bridge_address is None:
            bridge_address = self.provider.get_default_bridge_addresses()["sharedL1"]

        erc20 = self._get_l1_contract(ZK_STACK_ETHEREUM.ERC20, token)
        approve_txn = erc20.functions.approve(to_checksum_address(bridge_address), amount)

        try:
            txn_hash = self._sign_and_send(approve_txn, {})
            receipt = self.l1_provider.eth.wait_for_transaction_receipt(txn_hash)
        except Exception as e:
            raise ZkStackError(f"`approve` transaction failed: {e}", e)

        logger.info(f"Approved {amount} of {token} for {bridge_address}")

        return receipt

    # DEPOSITS

    def _select_route(self, token: str) -> DepositRoute:
        is_eth_token = is_address_eq(token, ETH_ADDRESS_IN_CONTRACTS)

        if self.provider.is_eth_based_chain():
            if is_eth_token:
                return DepositRoute.ETH_TO_ETH_BASED
            return DepositRoute.TOKEN_TO_ETH_BASED

        if is_eth_token:
            return DepositRoute.ETH_TO_NON_ETH_BASED

        if is_address_eq(token, self.provider.get_base_token_contract_address()):
            return DepositRoute.BASE_TOKEN_TO_NON_ETH_BASED

        return DepositRoute.NON_BASE_TOKEN_TO_NON_ETH_BASED

    def _estimate_deposit_l2_gas(
        self,
        token: str,
        amount: int,
        to: str,
        gas_per_pubdata_byte: int,
        bridge_address: Optional[str] = None,
        custom_bridge_data: Optional[bytes] = None,
    ) -> int:
        if bridge_address is None:
            return self.gas_estimator.estimate_default_bridge_deposit_l2_gas(
                token, amount, to, self.account.address, gas_per_pubdata_byte
            )

        bridge = self._get_l1_contract(
            ZK_STACK_ETHEREUM.L1_SHARED_BRIDGE, bridge_address
        )
        l2_bridge_address = bridge.functions.l2BridgeAddress(
            self.provider.chain_id
        ).call()

        if custom_bridge_data is None:
            custom_bridge_data = self.gas_estimator.get_erc20_default_bridge_data(token)

        return self.gas_estimator.estimate_custom_bridge_deposit_l2_gas(
            l1_bridge_address=bridge_address,
            l2_bridge_address=l2_bridge_address,
            token=token,
            amount=amount,
            to=to,
            bridge_data=custom_bridge_data,
            from_=self.account.address,
            gas_per_pubdata_byte=gas_per_pubdata_byte,
        )

    def get_deposit_tx(
        self,
        token: str,
        amount: int,
        to: Optional[str] = None,
        operator_tip: int = 0,
        bridge_address: Optional[str] = None,
        l2_gas_limit: Optional[int] = None,
        gas_per_pubdata_byte: Optional[int] = None,
        refund_recipient: Optional[str] = None,
        custom_bridge_data: Optional[bytes] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> DepositTransaction:
        """
        Select the deposit route and build the bridgehub request for it.

        | route | call | mintValue | msg.value |
        |---|---|---|---|
        | ETH_TO_ETH_BASED | direct | base + tip + amount | base + tip + amount |
        | TOKEN_TO_ETH_BASED | two bridges | base + tip | base + tip |
        | ETH_TO_NON_ETH_BASED | two bridges | base + tip | amount |
        | BASE_TOKEN_TO_NON_ETH_BASED | direct | base + tip + amount | 0 |
        | NON_BASE_TOKEN_TO_NON_ETH_BASED | two bridges | base + tip | 0 |

        Parameters
        ----------
        `token` : str
            L1 token address. The zero address is read as ETH.
        `amount` : int
        `to` : str, optional
            L2 receiver, defaults to the account.
        `operator_tip` : int
        `bridge_address` : str, optional
            Custom L1 bridge used for the token leg.
        `l2_gas_limit` : int, optional
            Estimated through the node when omitted.
        `gas_per_pubdata_byte` : int, optional
        `refund_recipient` : str, optional
            Defaults to the account for direct requests and to the zero
            address (resolved by the bridgehub) for two-bridge requests.
        `custom_bridge_data` : bytes, optional
        `overrides` : Dict, optional
            L1 transaction overrides; fee fields are filled in when missing.

        Returns
        -------
        DepositTransaction
        """
        if is_address_eq(token, LEGACY_ETH_ADDRESS):
            token = ETH_ADDRESS_IN_CONTRACTS

        token = to_checksum_address(token)
        receiver = to_checksum_address(to or self.account.address)
        gas_per_pubdata_byte = (
            gas_per_pubdata_byte or REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT
        )

        txn_overrides = self.gas_estimator.insert_gas_price(dict(overrides or {}))
        gas_price = txn_overrides.get("maxFeePerGas") or txn_overrides.get("gasPrice")

        route = self._select_route(token)
        logger.info(f"Deposit of {token} routed as {route.name}")

        if l2_gas_limit is None:
            l2_gas_limit = self._estimate_deposit_l2_gas(
                token,
                amount,
                receiver,
                gas_per_pubdata_byte,
                bridge_address,
                custom_bridge_data,
            )

        base_cost = self.get_base_cost(l2_gas_limit, gas_per_pubdata_byte, gas_price)
        chain_id = self.provider.chain_id
        shared_bridge = self.provider.get_default_bridge_addresses()["sharedL1"]

        request: L2TransactionRequestDirect | L2TransactionRequestTwoBridges

        if route in (
            DepositRoute.ETH_TO_ETH_BASED,
            DepositRoute.BASE_TOKEN_TO_NON_ETH_BASED,
        ):
            mint_value = base_cost + operator_tip + amount
            value = mint_value if route == DepositRoute.ETH_TO_ETH_BASED else 0

            request = {
                "chainId": chain_id,
                "mintValue": mint_value,
                "l2Contract": receiver,
                "l2Value": amount,
                "l2Calldata": HexBytes(b""),
                "l2GasLimit": l2_gas_limit,
                "l2GasPerPubdataByteLimit": gas_per_pubdata_byte,
                "factoryDeps": [],
                "refundRecipient": to_checksum_address(
                    refund_recipient or self.account.address
                ),
            }
            token_bridge = shared_bridge
        else:
            mint_value = base_cost + operator_tip
            token_bridge = to_checksum_address(bridge_address or shared_bridge)

            if route == DepositRoute.ETH_TO_NON_ETH_BASED:
                second_bridge_calldata = encode(
                    ["address", "uint256", "address"],
                    [ETH_ADDRESS_IN_CONTRACTS, 0, receiver],
                )
                second_bridge_value = amount
                value = amount
            else:
                second_bridge_calldata = encode(
                    ["address", "uint256", "address"], [token, amount, receiver]
                )
                second_bridge_value = 0
                value = mint_value if route == DepositRoute.TOKEN_TO_ETH_BASED else 0

            request = {
                "chainId": chain_id,
                "mintValue": mint_value,
                "l2Value": 0,
                "l2GasLimit": l2_gas_limit,
                "l2GasPerPubdataByteLimit": gas_per_pubdata_byte,
                "refundRecipient": to_checksum_address(
                    refund_recipient or ADDRESS_ZERO
                ),
                "secondBridgeAddress": token_bridge,
                "secondBridgeValue": second_bridge_value,
                "secondBridgeCalldata": HexBytes(second_bridge_calldata),
            }

        if self.provider.is_eth_based_chain() and txn_overrides.get("value") is not None:
            value = txn_overrides["value"]

        txn_overrides.pop("value", None)

        return DepositTransaction(
            route=route,
            request=request,
            value=value,
            mint_value=mint_value,
            base_cost=base_cost,
            token=token,
            amount=amount,
            bridge_address=token_bridge,
            overrides=txn_overrides,
        )

    def _deposit_allowance_requirements(
        self, tx: DepositTransaction
    ) -> List[Tuple[AllowanceRequirement, ChecksumAddress]]:
        base_token = self.provider.get_base_token_contract_address()
        shared_bridge = self.provider.get_default_bridge_addresses()["sharedL1"]

        if tx.route == DepositRoute.ETH_TO_ETH_BASED:
            return []

        if tx.route == DepositRoute.TOKEN_TO_ETH_BASED:
            return [({"token": tx.token, "allowance": tx.amount}, tx.bridge_address)]

        base_requirement: AllowanceRequirement = {
            "token": base_token,
            "allowance": tx.mint_value,
        }

        if tx.route in (
            DepositRoute.ETH_TO_NON_ETH_BASED,
            DepositRoute.BASE_TOKEN_TO_NON_ETH_BASED,
        ):
            return [(base_requirement, shared_bridge)]

        return [
            (base_requirement, shared_bridge),
            ({"token": tx.token, "allowance": tx.amount}, tx.bridge_address),
        ]

    def get_deposit_allowance_params(
        self, token: str, amount: int, **kwargs: Any
    ) -> List[AllowanceRequirement]:
        """
        Allowances a deposit of `amount` of `token` needs, in approval order.

        Parameters
        ----------
        `token` : str
        `amount` : int
        `**kwargs`
            Forwarded to `get_deposit_tx`.

        Returns
        -------
        List[AllowanceRequirement]
        """
        if is_address_eq(token, LEGACY_ETH_ADDRESS):
            token = ETH_ADDRESS_IN_CONTRACTS

        if self.provider.is_eth_based_chain() and is_address_eq(
            token, ETH_ADDRESS_IN_CONTRACTS
        ):
            raise PreconditionError(
                "ETH token can't be approved! The address of the token does not exist on L1."
            )

        tx = self.get_deposit_tx(token, amount, **kwargs)

        return [
            requirement
            for requirement, _ in self._deposit_allowance_requirements(tx)
        ]

    def _check_deposit_balances(self, tx: DepositTransaction) -> None:
        eth_balance = self.l1_provider.eth.get_balance(self.account.address)

        if eth_balance < tx.value:
            raise InsufficientBalanceError(
                f"Not enough ETH balance for deposit! Required {tx.value}, available {eth_balance}."
            )

        required: Dict[ChecksumAddress, int] = {}

        if not self.provider.is_eth_based_chain():
            base_token = self.provider.get_base_token_contract_address()
            required[base_token] = tx.mint_value

        if tx.route in (
            DepositRoute.TOKEN_TO_ETH_BASED,
            DepositRoute.NON_BASE_TOKEN_TO_NON_ETH_BASED,
        ):
            required[tx.token] = required.get(tx.token, 0) + tx.amount

        for token, amount in required.items():
            balance = self.get_balance_l1(token)

            if balance < amount:
                raise InsufficientBalanceError(
                    f"Not enough balance of {token} for deposit! Required {amount}, available {balance}."
                )

    def _deposit_call(self, tx: DepositTransaction) -> Tuple[ContractFunction, Dict[str, Any]]:
        bridgehub = self.get_bridgehub_contract()

        if tx.is_direct:
            fn = bridgehub.functions.requestL2TransactionDirect(tx.request)
        else:
            fn = bridgehub.functions.requestL2TransactionTwoBridges(tx.request)

        return fn, {**tx.overrides, "value": tx.value}

    def deposit(
        self,
        token: str,
        amount: int,
        to: Optional[str] = None,
        operator_tip: int = 0,
        bridge_address: Optional[str] = None,
        approve_erc20: bool = False,
        approve_base_erc20: bool = False,
        l2_gas_limit: Optional[int] = None,
        gas_per_pubdata_byte: Optional[int] = None,
        refund_recipient: Optional[str] = None,
        custom_bridge_data: Optional[bytes] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> PriorityOpResponse:
        """
        Deposit `amount` of `token` to L2 through the bridgehub.

        Nothing is signed before the base cost, the balances and the
        allowances have been checked. Missing allowances are approved only when
        `approve_erc20` (deposited token) or `approve_base_erc20` (base token
        of a non-ETH chain) is set.

        Returns
        -------
        PriorityOpResponse
            Tracks the operation from the L1 transaction to its L2 execution.
        """
        tx = self.get_deposit_tx(
            token,
            amount,
            to=to,
            operator_tip=operator_tip,
            bridge_address=bridge_address,
            l2_gas_limit=l2_gas_limit,
            gas_per_pubdata_byte=gas_per_pubdata_byte,
            refund_recipient=refund_recipient,
            custom_bridge_data=custom_bridge_data,
            overrides=overrides,
        )

        provided_value = (
            tx.value if self.provider.is_eth_based_chain() else tx.mint_value
        )
        self.gas_estimator.check_base_cost(tx.base_cost, provided_value)

        self._check_deposit_balances(tx)

        base_token = self.provider.get_base_token_contract_address()

        for requirement, spender in self._deposit_allowance_requirements(tx):
            allowance = self.get_allowance_l1(requirement["token"], spender)

            if allowance >= requirement["allowance"]:
                continue

            is_base = is_address_eq(requirement["token"], base_token)

            if (is_base and approve_base_erc20) or (not is_base and approve_erc20):
                self.approve_erc20(requirement["token"], requirement["allowance"], spender)
                continue

            raise InsufficientAllowanceError(
                f"Not enough allowance of {requirement['token']} for deposit! "
                f"Required {requirement['allowance']}, approved {allowance}."
            )

        fn, params = self._deposit_call(tx)

        try:
            txn_hash = self._sign_and_send(fn, params, scale=True)
        except Exception as e:
            raise ZkStackError(f"Deposit transaction failed: {e}", e)

        logger.info(
            f"Deposit of {amount} {tx.token} submitted on L1 as {txn_hash.to_0x_hex()}"
        )

        return self.provider.get_priority_op_response(self.l1_provider, txn_hash)

    def estimate_gas_deposit(self, token: str, amount: int, **kwargs: Any) -> int:
        tx = self.get_deposit_tx(token, amount, **kwargs)
        fn, params = self._deposit_call(tx)

        estimated_gas = fn.estimate_gas(
            cast(
                TxParams,
                {
                    "from": self.account.address,
                    **{k: v for k, v in params.items() if k not in FEE_KEYS},
                },
            )
        )

        return self.gas_estimator.scale_gas_limit(estimated_gas)

    def get_full_required_deposit_fee(
        self, token: str, to: Optional[str] = None
    ) -> FullDepositFee:
        """
        Fees of a deposit of `token`: the L1 gas limit, the L2 gas limit and
        the base cost, priced at the current L1 fees.

        The L2 fee does not depend on the deposited amount, a dummy amount of
        1 is used throughout.

        Parameters
        ----------
        `token` : str
        `to` : str, optional

        Returns
        -------
        FullDepositFee
        """
        dummy_amount = 1

        if is_address_eq(token, LEGACY_ETH_ADDRESS):
            token = ETH_ADDRESS_IN_CONTRACTS

        receiver = to_checksum_address(to or self.account.address)
        gas_per_pubdata_byte = REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT

        fee_overrides = self.gas_estimator.insert_gas_price({})
        gas_price = fee_overrides.get("maxFeePerGas") or fee_overrides["gasPrice"]

        l2_gas_limit = self.gas_estimator.estimate_default_bridge_deposit_l2_gas(
            token, dummy_amount, receiver, self.account.address, gas_per_pubdata_byte
        )
        base_cost = self.get_base_cost(l2_gas_limit, gas_per_pubdata_byte, gas_price)

        is_eth_token = is_address_eq(token, ETH_ADDRESS_IN_CONTRACTS)

        if self.provider.is_eth_based_chain():
            self_balance = self.get_balance_l1()

            if base_cost >= self_balance + dummy_amount:
                recommended_l1_gas_limit = (
                    L1_RECOMMENDED_MIN_ETH_DEPOSIT_GAS_LIMIT
                    if is_eth_token
                    else L1_RECOMMENDED_MIN_ERC20_DEPOSIT_GAS_LIMIT
                )
                recommended_eth_balance = (
                    recommended_l1_gas_limit * gas_price + base_cost
                )

                raise InsufficientBalanceError(
                    "Not enough balance for deposit! Under the provided gas price, "
                    "the recommended balance to perform a deposit is "
                    f"{Web3.from_wei(recommended_eth_balance, 'ether')} ETH"
                )

            if not is_eth_token and self.get_allowance_l1(token) < dummy_amount:
                raise InsufficientAllowanceError(
                    "Not enough allowance to cover the deposit!"
                )
        else:
            base_token = self.provider.get_base_token_contract_address()
            mint_value = base_cost

            if is_address_eq(token, base_token):
                mint_value += dummy_amount

            if self.get_allowance_l1(base_token) < mint_value:
                raise InsufficientAllowanceError(
                    "Not enough base token allowance to cover the deposit!"
                )

            if (
                not is_eth_token
                and not is_address_eq(token, base_token)
                and self.get_allowance_l1(token) < dummy_amount
            ):
                raise InsufficientAllowanceError(
                    "Not enough token allowance to cover the deposit!"
                )

        l1_gas_limit = self.estimate_gas_deposit(
            token,
            dummy_amount,
            to=receiver,
            l2_gas_limit=l2_gas_limit,
            gas_per_pubdata_byte=gas_per_pubdata_byte,
            overrides=fee_overrides,
        )

        full_cost: FullDepositFee = {
            "baseCost": base_cost,
            "l1GasLimit": l1_gas_limit,
            "l2GasLimit": l2_gas_limit,
        }

        if fee_overrides.get("gasPrice"):
            full_cost["gasPrice"] = fee_overrides["gasPrice"]
        else:
            full_cost["maxFeePerGas"] = fee_overrides["maxFeePerGas"]
            full_cost["maxPriorityFeePerGas"] = fee_overrides["maxPriorityFeePerGas"]

        return full_cost

    # ARBITRARY L1 -> L2 REQUESTS

    def get_request_execute_tx(
        self,
        contract_address: str,
        calldata: bytes,
        l2_gas_limit: Optional[int] = None,
        mint_value: int = 0,
        l2_value: int = 0,
        factory_deps: Optional[List[bytes]] = None,
        operator_tip: int = 0,
        gas_per_pubdata_byte: Optional[int] = None,
        refund_recipient: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> RequestExecuteTransaction:
        """
        Build a `requestL2TransactionDirect` executing `calldata` on
        `contract_address` from the account (aliased if it is a contract).

        On ETH based chains the provided value is `overrides["value"]`, on the
        others it is `mint_value`. Either defaults to
        `baseCost + operator_tip + l2_value`.
        """
        gas_per_pubdata_byte = (
            gas_per_pubdata_byte or REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT
        )
        factory_deps = factory_deps or []

        if l2_gas_limit is None:
            l2_gas_limit = self.provider.estimate_l1_to_l2_execute(
                contract_address=contract_address,
                calldata=calldata,
                caller=self.account.address,
                l2_value=l2_value,
                factory_deps=factory_deps,
                gas_per_pubdata_byte=gas_per_pubdata_byte,
            )

        txn_overrides = self.gas_estimator.insert_gas_price(dict(overrides or {}))
        gas_price = txn_overrides.get("maxFeePerGas") or txn_overrides.get("gasPrice")

        base_cost = self.get_base_cost(l2_gas_limit, gas_per_pubdata_byte, gas_price)
        is_eth_based = self.provider.is_eth_based_chain()

        if is_eth_based:
            provided_value = txn_overrides.pop("value", None) or 0
        else:
            provided_value = mint_value

        if not provided_value:
            provided_value = base_cost + operator_tip + l2_value

        self.gas_estimator.check_base_cost(base_cost, provided_value)

        request: L2TransactionRequestDirect = {
            "chainId": self.provider.chain_id,
            "mintValue": provided_value,
            "l2Contract": to_checksum_address(contract_address),
            "l2Value": l2_value,
            "l2Calldata": HexBytes(calldata),
            "l2GasLimit": l2_gas_limit,
            "l2GasPerPubdataByteLimit": gas_per_pubdata_byte,
            "factoryDeps": [HexBytes(dep) for dep in factory_deps],
            "refundRecipient": to_checksum_address(
                refund_recipient or self.account.address
            ),
        }

        txn_overrides.pop("value", None)

        return RequestExecuteTransaction(
            request=request,
            value=provided_value if is_eth_based else 0,
            base_cost=base_cost,
            overrides=txn_overrides,
        )

    def get_request_execute_allowance_params(
        self, contract_address: str, calldata: bytes, **kwargs: Any
    ) -> AllowanceRequirement:
        if self.provider.is_eth_based_chain():
            raise PreconditionError(
                "ETH token can't be approved! The address of the token does not exist on L1."
            )

        tx = self.get_request_execute_tx(contract_address, calldata, **kwargs)

        return {
            "token": self.provider.get_base_token_contract_address(),
            "allowance": tx.request["mintValue"],
        }

    def request_execute(
        self,
        contract_address: str,
        calldata: bytes,
        approve_base_erc20: bool = False,
        **kwargs: Any,
    ) -> PriorityOpResponse:
        """
        Request the execution of an arbitrary L2 call from L1.

        Parameters
        ----------
        `contract_address` : str
            L2 contract to call.
        `calldata` : bytes
        `approve_base_erc20` : bool
            Approve the base token of a non-ETH chain if the allowance is short.
        `**kwargs`
            Forwarded to `get_request_execute_tx`.

        Returns
        -------
        PriorityOpResponse
        """
        tx = self.get_request_execute_tx(contract_address, calldata, **kwargs)

        if not self.provider.is_eth_based_chain():
            base_token = self.provider.get_base_token_contract_address()
            mint_value = tx.request["mintValue"]
            allowance = self.get_allowance_l1(base_token)

            if allowance < mint_value:
                if not approve_base_erc20:
                    raise InsufficientAllowanceError(
                        f"Not enough base token allowance! Required {mint_value}, approved {allowance}."
                    )

                self.approve_erc20(base_token, mint_value)

        bridgehub = self.get_bridgehub_contract()
        request_txn = bridgehub.functions.requestL2TransactionDirect(tx.request)

        try:
            txn_hash = self._sign_and_send(
                request_txn, {**tx.overrides, "value": tx.value}, scale=True
            )
        except Exception as e:
            raise ZkStackError(f"`requestL2TransactionDirect` transaction failed: {e}", e)

        return self.provider.get_priority_op_response(self.l1_provider, txn_hash)

    def estimate_gas_request_execute(
        self, contract_address: str, calldata: bytes, **kwargs: Any
    ) -> int:
        tx = self.get_request_execute_tx(contract_address, calldata, **kwargs)
        bridgehub = self.get_bridgehub_contract()

        estimated_gas = bridgehub.functions.requestL2TransactionDirect(
            tx.request
        ).estimate_gas({"from": self.account.address, "value": tx.value})

        return self.gas_estimator.scale_gas_limit(estimated_gas)

    # WITHDRAWALS

    def get_withdrawal_record(
        self, l2_tx_hash: bytes | str, index: int = 0
    ) -> WithdrawalRecord:
        """
        Locate the `index`-th withdrawal message of an L2 transaction. The
        proof is not fetched here, see `finalize_withdrawal_params`.

        Parameters
        ----------
        `l2_tx_hash` : bytes | str
        `index` : int
            Position among the messages sent to L1 by the transaction, for
            transactions that withdraw more than once.

        Returns
        -------
        WithdrawalRecord
        """
        receipt = self.provider.get_transaction_receipt(l2_tx_hash)

        if receipt is None:
            raise TransactionNotMinedError("Transaction is not mined!")

        message_logs = [
            log
            for log in receipt.get("logs", [])
            if is_address_eq(log.get("address"), L1_MESSENGER_ADDRESS)
            and log.get("topics")
            and HexBytes(log["topics"][0]) == L1_MESSAGE_SENT_TOPIC
        ]

        if index >= len(message_logs):
            raise EventParseError(
                f"`L1MessageSent` log at index {index} not found in the receipt"
            )

        log = message_logs[index]

        messenger_logs = [
            i
            for i, l2_to_l1_log in enumerate(receipt.get("l2ToL1Logs") or [])
            if is_address_eq(l2_to_l1_log["sender"], L1_MESSENGER_ADDRESS)
        ]

        if index >= len(messenger_logs):
            raise EventParseError(
                f"L2 -> L1 log at index {index} not found in the receipt"
            )

        (message,) = decode(["bytes"], HexBytes(log["data"]))
        l1_batch_number = log.get("l1BatchNumber", receipt.get("l1BatchNumber"))

        return {
            "l2TransactionHash": HexBytes(l2_tx_hash),
            "l2ToL1LogIndex": messenger_logs[index],
            "l1BatchTxIndex": to_int(receipt["l1BatchTxIndex"]),
            "l1BatchNumber": to_int(l1_batch_number),
            "sender": to_checksum_address(HexBytes(log["topics"][1])[12:]),
            "message": HexBytes(message),
        }

    def finalize_withdrawal_params(
        self, l2_tx_hash: bytes | str, index: int = 0
    ) -> FinalizeWithdrawalParams:
        record = self.get_withdrawal_record(l2_tx_hash, index)
        proof = self.provider.get_log_proof(l2_tx_hash, record["l2ToL1LogIndex"])

        if proof is None:
            raise LogProofNotFoundError("Log proof not found!")

        return {
            "l1BatchNumber": record["l1BatchNumber"],
            "l2MessageIndex": proof["id"],
            "l2TxNumberInBlock": record["l1BatchTxIndex"],
            "message": record["message"],
            "sender": record["sender"],
            "proof": proof["proof"],
        }

    def _get_finalize_bridge(self, sender: str) -> Tuple[Contract, bool]:
        """
        L1 bridge that finalizes messages of the L2 `sender`, and whether it is
        a shared bridge (chain id aware) or a legacy one.
        """
        if is_address_eq(sender, L2_BASE_TOKEN_ADDRESS):
            shared_l1 = self.provider.get_default_bridge_addresses()["sharedL1"]

            return self._get_l1_contract(ZK_STACK_ETHEREUM.L1_SHARED_BRIDGE, shared_l1), True

        l2_bridge = self.provider.get_l2_contract(ZK_STACK_L2.L2_SHARED_BRIDGE, sender)

        try:
            l1_bridge_address = l2_bridge.functions.l1SharedBridge().call()

            return (
                self._get_l1_contract(
                    ZK_STACK_ETHEREUM.L1_SHARED_BRIDGE, l1_bridge_address
                ),
                True,
            )
        except (ContractLogicError, BadFunctionCallOutput):
            logger.debug(f"L2 bridge {sender} has no shared counterpart, using legacy bridge")

        l1_bridge_address = l2_bridge.functions.l1Bridge().call()

        return self._get_l1_contract(ZK_STACK_ETHEREUM.L1_BRIDGE, l1_bridge_address), False

    def _is_finalized(
        self, params: FinalizeWithdrawalParams, bridge: Contract, is_shared: bool
    ) -> bool:
        if is_shared:
            return bridge.functions.isWithdrawalFinalized(
                self.provider.chain_id, params["l1BatchNumber"], params["l2MessageIndex"]
            ).call()

        return bridge.functions.isWithdrawalFinalized(
            params["l1BatchNumber"], params["l2MessageIndex"]
        ).call()

    def is_withdrawal_finalized(self, l2_tx_hash: bytes | str, index: int = 0) -> bool:
        params = self.finalize_withdrawal_params(l2_tx_hash, index)

        return self._is_finalized(params, *self._get_finalize_bridge(params["sender"]))

    def finalize_withdrawal(
        self,
        l2_tx_hash: bytes | str,
        index: int = 0,
        check_finalized: bool = False,
    ) -> TxReceipt:
        """
        Complete a withdrawal on L1 by proving the L2 message to the bridge.

        Finalizing twice reverts on L1, that revert surfaces as
        `WithdrawalAlreadyFinalizedError`. `check_finalized` adds a read of the
        bridge state beforehand; it is advisory only, the state can change
        between the read and the inclusion of the transaction.

        Parameters
        ----------
        `l2_tx_hash` : bytes | str
            Hash of the L2 transaction that initiated the withdrawal.
        `index` : int
        `check_finalized` : bool

        Returns
        -------
        TxReceipt
        """
        params = self.finalize_withdrawal_params(l2_tx_hash, index)
        bridge, is_shared = self._get_finalize_bridge(params["sender"])

        if check_finalized and self._is_finalized(params, bridge, is_shared):
            raise WithdrawalAlreadyFinalizedError("Withdrawal is already finalized!")

        if is_shared:
            finalize_txn = bridge.functions.finalizeWithdrawal(
                self.provider.chain_id,
                params["l1BatchNumber"],
                params["l2MessageIndex"],
                params["l2TxNumberInBlock"],
                params["message"],
                params["proof"],
            )
        else:
            finalize_txn = bridge.functions.finalizeWithdrawal(
                params["l1BatchNumber"],
                params["l2MessageIndex"],
                params["l2TxNumberInBlock"],
                params["message"],
                params["proof"],
            )

        try:
            txn_hash = self._sign_and_send(finalize_txn, {})
            receipt = self.l1_provider.eth.wait_for_transaction_receipt(txn_hash)
        except Exception as e:
            raise WithdrawalAlreadyFinalizedError.from_contract_error(bridge, e)

        logger.info(
            f"Withdrawal {HexBytes(l2_tx_hash).to_0x_hex()} finalized on L1 "
            f"in block {receipt['blockNumber']}"
        )

        return receipt

    def claim_failed_deposit(self, deposit_hash: bytes | str) -> TxReceipt:
        """
        Recover the funds of a deposit whose L2 execution failed.

        Parameters
        ----------
        `deposit_hash` : bytes | str
            L2 hash of the priority operation.

        Returns
        -------
        TxReceipt
        """
        receipt = self.provider.get_transaction_receipt(deposit_hash)

        if receipt is None:
            raise TransactionNotMinedError("Transaction is not mined!")

        status_logs = [
            (i, log)
            for i, log in enumerate(receipt.get("l2ToL1Logs") or [])
            if is_address_eq(log["sender"], BOOTLOADER_FORMAL_ADDRESS)
            and HexBytes(log["key"]) == HexBytes(deposit_hash)
        ]

        if not status_logs:
            raise EventParseError("Deposit status log not found in the receipt!")

        l2_to_l1_log_index, status_log = status_logs[0]

        if HexBytes(status_log["value"]) != HexBytes(HASH_ZERO):
            raise CannotClaimSuccessfulDepositError("Cannot claim successful deposit!")

        tx = self.provider.get_transaction(deposit_hash)

        if tx is None:
            raise TransactionNotMinedError("Transaction is not mined!")

        fn_name, args = decode_function_call(ABI_L2_SHARED_BRIDGE, tx["input"])

        if fn_name != "finalizeDeposit":
            raise EventParseError(f"Unexpected deposit calldata `{fn_name}`")

        proof = self.provider.get_log_proof(deposit_hash, l2_to_l1_log_index)

        if proof is None:
            raise LogProofNotFoundError("Log proof not found!")

        l1_bridge_address = undo_l1_to_l2_alias(receipt["from"])
        bridge = self._get_l1_contract(
            ZK_STACK_ETHEREUM.L1_SHARED_BRIDGE, l1_bridge_address
        )

        claim_txn = bridge.functions.claimFailedDeposit(
            self.provider.chain_id,
            to_checksum_address(args["_l1Sender"]),
            to_checksum_address(args["_l1Token"]),
            args["_amount"],
            HexBytes(deposit_hash),
            to_int(receipt["l1BatchNumber"]),
            proof["id"],
            to_int(receipt["l1BatchTxIndex"]),
            proof["proof"],
        )

        try:
            txn_hash = self._sign_and_send(claim_txn, {})
            claim_receipt = self.l1_provider.eth.wait_for_transaction_receipt(txn_hash)
        except Exception as e:
            raise ZkStackError(f"`claimFailedDeposit` transaction failed: {e}", e)

        return claim_receipt
