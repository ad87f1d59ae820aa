from typing import Any, Callable, Dict, List, Optional, Sequence, cast

from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from loguru import logger
from web3 import Account, Web3
from web3.contract import Contract
from web3.exceptions import TransactionNotFound
from web3.types import RPCEndpoint, TxData, TxReceipt

from utils.chain import encode_function_call, get_abi, to_int
from utils.config import (
    ABI_ERC20,
    ABI_ETH_TOKEN,
    ABI_L2_SHARED_BRIDGE,
    ADDRESS_ZERO,
    BOOTLOADER_FORMAL_ADDRESS,
    DEFAULT_GAS_PER_PUBDATA_LIMIT,
    EIP712_TX_TYPE,
    ETH_ADDRESS_IN_CONTRACTS,
    L2_BASE_TOKEN_ADDRESS,
    LEGACY_ETH_ADDRESS,
    POLLING_INTERVAL,
    REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT,
    ZK_STACK_ABI,
    ZK_STACK_L2,
    ZK_STACK_L2_CONTRACTS,
)
from utils.providers import get_endpoint_uri, is_local_endpoint
from .custom_errors import (
    EventParseError,
    InvalidChainError,
    LogProofNotFoundError,
    PreconditionError,
    RpcError,
    TransactionNotMinedError,
)
from .hashing import is_address_eq
from .responses import PriorityOpResponse, TransactionResponse
from .transaction import is_custom_transaction
from .types import (
    BridgeAddresses,
    Eip712Meta,
    L2FeeEstimate,
    MessageProof,
    PaymasterParams,
    PriorityOpConfirmation,
    TransactionEnvelope,
    TransactionStatus,
)

QUANTITY_KEYS = ("gas", "gasPrice", "maxFeePerGas", "maxPriorityFeePerGas", "value", "nonce")


def _checksum_or_zero(address: Optional[str]) -> ChecksumAddress:
    return to_checksum_address(address) if address else ADDRESS_ZERO


class ZkProvider:
    """
    L2 side of a ZK stack chain: the standard `eth_*` namespace of the wrapped
    `Web3` plus the network specific `zks_*` methods.

    Contract addresses (main contract, bridgehub, base token and default
    bridges) are memoized per instance the first time they are fetched and
    never invalidated. Memoization is disabled for local endpoints, which get
    redeployed often.

    Parameters
    ----------
    `w3` : Web3
        L2 connection.
    `cache_addresses` : bool, optional
        Force the address memo on or off. Defaults to on unless the endpoint
        points to `localhost`, `127.0.0.1` or `0.0.0.0`.
    `polling_interval` : float
        Seconds between polls in the `wait*` helpers.
    """

    def __init__(
        self,
        w3: Web3,
        cache_addresses: Optional[bool] = None,
        polling_interval: float = POLLING_INTERVAL,
    ) -> None:
        self.w3 = w3
        self.polling_interval = polling_interval

        if cache_addresses is None:
            cache_addresses = not is_local_endpoint(get_endpoint_uri(w3))

            if not cache_addresses:
                logger.warning(
                    "Local endpoint detected, contract address caching is disabled"
                )

        self._cache_enabled = cache_addresses
        self._contract_addresses: Dict[str, Any] = {}

    # TRANSPORT

    def _rpc(self, method: str, params: Sequence[Any] = ()) -> Any:
        logger.debug(f"RPC `{method}` params={list(params)}")

        try:
            return self.w3.manager.request_blocking(RPCEndpoint(method), list(params))
        except Exception as e:
            raise RpcError(method, params, e)

    def _cached(self, key: str, fetch: Callable[[], Any]) -> Any:
        if self._cache_enabled and key in self._contract_addresses:
            logger.debug(f"Address cache hit for `{key}`")
            return self._contract_addresses[key]

        value = fetch()

        if self._cache_enabled:
            self._contract_addresses[key] = value

        return value

    @staticmethod
    def format_transaction(tx: TransactionEnvelope) -> Dict[str, Any]:
        """
        JSON-RPC form of a transaction request. EIP-712 metadata goes under
        `eip712Meta` with `factoryDeps` and `paymasterInput` as arrays of ints.
        """
        result: Dict[str, Any] = {}

        for key in ("from", "to"):
            if tx.get(key):
                result[key] = to_checksum_address(tx[key])  # type: ignore[literal-required]

        for key in QUANTITY_KEYS:
            if tx.get(key) is not None:
                result[key] = hex(tx[key])  # type: ignore[literal-required]

        if tx.get("data") is not None:
            result["data"] = HexBytes(tx["data"]).to_0x_hex()

        if tx.get("type") is not None:
            result["type"] = hex(tx["type"])

        if is_custom_transaction(tx):
            meta: Eip712Meta = tx.get("customData") or {}
            eip712_meta: Dict[str, Any] = {
                "gasPerPubdata": hex(meta.get("gasPerPubdata") or DEFAULT_GAS_PER_PUBDATA_LIMIT)
            }

            if meta.get("factoryDeps"):
                eip712_meta["factoryDeps"] = [
                    list(bytes(HexBytes(dep))) for dep in meta["factoryDeps"]
                ]

            if meta.get("customSignature"):
                eip712_meta["customSignature"] = HexBytes(
                    meta["customSignature"]
                ).to_0x_hex()

            paymaster_params = meta.get("paymasterParams")
            if paymaster_params:
                eip712_meta["paymasterParams"] = {
                    "paymaster": to_checksum_address(paymaster_params["paymaster"]),
                    "paymasterInput": list(
                        bytes(HexBytes(paymaster_params["paymasterInput"]))
                    ),
                }

            result["type"] = hex(EIP712_TX_TYPE)
            result["eip712Meta"] = eip712_meta

        return result

    # CONTRACTS

    @property
    def chain_id(self) -> int:
        return self.w3.eth.chain_id

    def get_l2_contract(
        self, contract: ZK_STACK_L2, address: Optional[str] = None
    ) -> Contract:
        """
        Retrieve an instantiated L2 contract. System contracts resolve their
        address from config, bridges and tokens need an explicit `address`.

        Parameters
        ----------
        contract : ZK_STACK_L2
        address : str, optional

        Returns
        -------
        web3.contract.Contract
        """
        if address is None:
            info = ZK_STACK_L2_CONTRACTS.get(contract)

            if not info:
                raise InvalidChainError(f"No address known for {contract}.")

            address = info["address"]

        abi_path = ZK_STACK_ABI.get(contract)
        if not abi_path:
            raise InvalidChainError("Invalid contract name provided.")

        return self.w3.eth.contract(
            address=to_checksum_address(address), abi=get_abi(abi_path)
        )

    def get_main_contract_address(self) -> ChecksumAddress:
        return self._cached(
            "mainContract",
            lambda: to_checksum_address(self._rpc("zks_getMainContract")),
        )

    def get_bridgehub_contract_address(self) -> ChecksumAddress:
        return self._cached(
            "bridgehubContract",
            lambda: to_checksum_address(self._rpc("zks_getBridgehubContract")),
        )

    def get_base_token_contract_address(self) -> ChecksumAddress:
        return self._cached(
            "baseToken",
            lambda: to_checksum_address(self._rpc("zks_getBaseTokenL1Address")),
        )

    def get_default_bridge_addresses(self) -> BridgeAddresses:
        def fetch() -> BridgeAddresses:
            result = self._rpc("zks_getBridgeContracts")

            return {
                "erc20L1": _checksum_or_zero(result.get("l1Erc20DefaultBridge")),
                "erc20L2": _checksum_or_zero(result.get("l2Erc20DefaultBridge")),
                "wethL1": _checksum_or_zero(result.get("l1WethBridge")),
                "wethL2": _checksum_or_zero(result.get("l2WethBridge")),
                "sharedL1": _checksum_or_zero(result.get("l1SharedDefaultBridge")),
                "sharedL2": _checksum_or_zero(result.get("l2SharedDefaultBridge")),
            }

        return self._cached("bridgeAddresses", fetch)

    def get_testnet_paymaster_address(self) -> Optional[ChecksumAddress]:
        address = self._rpc("zks_getTestnetPaymaster")

        return to_checksum_address(address) if address else None

    def is_eth_based_chain(self) -> bool:
        return is_address_eq(
            self.get_base_token_contract_address(), ETH_ADDRESS_IN_CONTRACTS
        )

    def is_base_token(self, token: str) -> bool:
        return is_address_eq(
            token, self.get_base_token_contract_address()
        ) or is_address_eq(token, L2_BASE_TOKEN_ADDRESS)

    def l2_token_address(self, token: str) -> ChecksumAddress:
        """L2 address of a token bridged through the shared bridge."""
        if is_address_eq(token, LEGACY_ETH_ADDRESS):
            token = ETH_ADDRESS_IN_CONTRACTS

        if is_address_eq(token, self.get_base_token_contract_address()):
            return L2_BASE_TOKEN_ADDRESS

        bridge = self.get_l2_contract(
            ZK_STACK_L2.L2_SHARED_BRIDGE,
            self.get_default_bridge_addresses()["sharedL2"],
        )

        return to_checksum_address(
            bridge.functions.l2TokenAddress(to_checksum_address(token)).call()
        )

    def l1_token_address(self, token: str) -> ChecksumAddress:
        if is_address_eq(token, LEGACY_ETH_ADDRESS):
            return LEGACY_ETH_ADDRESS

        if is_address_eq(token, L2_BASE_TOKEN_ADDRESS):
            return self.get_base_token_contract_address()

        bridge = self.get_l2_contract(
            ZK_STACK_L2.L2_SHARED_BRIDGE,
            self.get_default_bridge_addresses()["sharedL2"],
        )

        return to_checksum_address(
            bridge.functions.l1TokenAddress(to_checksum_address(token)).call()
        )

    # ZKS NAMESPACE

    def l1_chain_id(self) -> int:
        return to_int(self._rpc("zks_L1ChainId"))

    def l1_batch_number(self) -> int:
        return to_int(self._rpc("zks_L1BatchNumber"))

    def get_l1_batch_details(self, number: int) -> Optional[Dict[str, Any]]:
        return self._rpc("zks_getL1BatchDetails", [number])

    def get_l1_batch_block_range(self, number: int) -> Optional[List[int]]:
        result = self._rpc("zks_getL1BatchBlockRange", [number])

        return [to_int(block) for block in result] if result else None

    def get_block_details(self, number: int) -> Optional[Dict[str, Any]]:
        return self._rpc("zks_getBlockDetails", [number])

    def get_transaction_details(self, tx_hash: bytes | str) -> Optional[Dict[str, Any]]:
        return self._rpc("zks_getTransactionDetails", [HexBytes(tx_hash).to_0x_hex()])

    def get_raw_block_transactions(self, number: int) -> List[Dict[str, Any]]:
        return self._rpc("zks_getRawBlockTransactions", [number])

    def get_confirmed_tokens(self, start: int = 0, limit: int = 255) -> List[Dict[str, Any]]:
        return self._rpc("zks_getConfirmedTokens", [start, limit])

    def get_bytecode_by_hash(self, bytecode_hash: bytes | str) -> Optional[HexBytes]:
        result = self._rpc(
            "zks_getBytecodeByHash", [HexBytes(bytecode_hash).to_0x_hex()]
        )

        return HexBytes(bytes(result)) if result else None

    def get_all_account_balances(self, address: str) -> Dict[ChecksumAddress, int]:
        result = self._rpc("zks_getAllAccountBalances", [to_checksum_address(address)])

        return {
            to_checksum_address(token): to_int(balance)
            for token, balance in (result or {}).items()
        }

    def get_fee_params(self) -> Dict[str, Any]:
        return self._rpc("zks_getFeeParams")

    def get_protocol_version(self, protocol_id: Optional[int] = None) -> Dict[str, Any]:
        params = [protocol_id] if protocol_id is not None else []

        return self._rpc("zks_getProtocolVersion", params)

    def get_proof(
        self, address: str, keys: Sequence[bytes | str], l1_batch_number: int
    ) -> Dict[str, Any]:
        return self._rpc(
            "zks_getProof",
            [
                to_checksum_address(address),
                [HexBytes(key).to_0x_hex() for key in keys],
                l1_batch_number,
            ],
        )

    def get_log_proof(
        self, tx_hash: bytes | str, index: Optional[int] = None
    ) -> Optional[MessageProof]:
        """
        Merkle proof of an L2 -> L1 log. `None` while the batch is not sealed.

        Parameters
        ----------
        `tx_hash` : bytes | str
        `index` : int, optional
            Position of the log among the receipt `l2ToL1Logs`.

        Returns
        -------
        MessageProof | None
        """
        params: List[Any] = [HexBytes(tx_hash).to_0x_hex()]
        if index is not None:
            params.append(index)

        result = self._rpc("zks_getL2ToL1LogProof", params)

        if not result:
            return None

        return {
            "id": to_int(result["id"]),
            "proof": [HexBytes(p) for p in result["proof"]],
            "root": HexBytes(result["root"]),
        }

    def estimate_fee(self, tx: TransactionEnvelope) -> L2FeeEstimate:
        result = self._rpc("zks_estimateFee", [self.format_transaction(tx)])

        return {
            "gasLimit": to_int(result["gas_limit"]),
            "gasPerPubdataLimit": to_int(result["gas_per_pubdata_limit"]),
            "maxPriorityFeePerGas": to_int(result["max_priority_fee_per_gas"]),
            "maxFeePerGas": to_int(result["max_fee_per_gas"]),
        }

    def estimate_gas_l1(self, tx: TransactionEnvelope) -> int:
        return to_int(self._rpc("zks_estimateGasL1ToL2", [self.format_transaction(tx)]))

    def estimate_gas(self, tx: TransactionEnvelope) -> int:
        return to_int(self._rpc("eth_estimateGas", [self.format_transaction(tx)]))

    def estimate_l1_to_l2_execute(
        self,
        contract_address: str,
        calldata: bytes,
        caller: Optional[str] = None,
        l2_value: int = 0,
        factory_deps: Optional[List[bytes]] = None,
        gas_per_pubdata_byte: Optional[int] = None,
    ) -> int:
        """
        L2 gas limit of a priority operation executing `calldata` on
        `contract_address`.

        Parameters
        ----------
        `contract_address` : str
        `calldata` : bytes
        `caller` : str, optional
            L1 sender (aliased when a contract). A random address is used when
            omitted, the zero address would under-estimate storage costs.
        `l2_value` : int
        `factory_deps` : List[bytes], optional
        `gas_per_pubdata_byte` : int, optional
            Defaults to `REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT`.

        Returns
        -------
        int
        """
        custom_data: Eip712Meta = {
            "gasPerPubdata": gas_per_pubdata_byte
            or REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT
        }
        if factory_deps:
            custom_data["factoryDeps"] = [HexBytes(dep) for dep in factory_deps]

        tx: TransactionEnvelope = {
            "from": to_checksum_address(caller or Account.create().address),
            "to": to_checksum_address(contract_address),
            "data": HexBytes(calldata),
            "value": l2_value,
            "customData": custom_data,
        }

        return self.estimate_gas_l1(tx)

    # TRANSACTIONS

    def get_transaction(self, tx_hash: bytes | str) -> Optional[TxData]:
        try:
            return self.w3.eth.get_transaction(HexBytes(tx_hash))
        except TransactionNotFound:
            return None

    def get_transaction_receipt(self, tx_hash: bytes | str) -> Optional[TxReceipt]:
        try:
            return self.w3.eth.get_transaction_receipt(HexBytes(tx_hash))
        except TransactionNotFound:
            return None

    def get_transaction_status(self, tx_hash: bytes | str) -> TransactionStatus:
        tx = self.get_transaction(tx_hash)

        if tx is None:
            return TransactionStatus.NOT_FOUND

        if tx.get("blockNumber") is None:
            return TransactionStatus.PROCESSING

        finalized = self.w3.eth.get_block("finalized")

        if tx["blockNumber"] <= finalized["number"]:
            return TransactionStatus.FINALIZED

        return TransactionStatus.COMMITTED

    def get_balance(
        self,
        address: str,
        block_tag: str = "committed",
        token: Optional[str] = None,
    ) -> int:
        if token is None or is_address_eq(token, L2_BASE_TOKEN_ADDRESS):
            return to_int(
                self._rpc("eth_getBalance", [to_checksum_address(address), block_tag])
            )

        erc20 = self.get_l2_contract(ZK_STACK_L2.ERC20, token)

        return erc20.functions.balanceOf(to_checksum_address(address)).call()

    def send_raw_transaction(self, signed: bytes) -> TransactionResponse:
        tx_hash = self.w3.eth.send_raw_transaction(signed)
        logger.info(f"Sent L2 transaction {HexBytes(tx_hash).to_0x_hex()}")

        return TransactionResponse(self, HexBytes(tx_hash))

    def send_raw_transaction_with_detailed_output(self, signed: bytes) -> Dict[str, Any]:
        return self._rpc(
            "zks_sendRawTransactionWithDetailedOutput", [HexBytes(signed).to_0x_hex()]
        )

    # BRIDGING

    def get_withdraw_tx(
        self,
        token: Optional[str],
        amount: int,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        bridge_address: Optional[str] = None,
        paymaster_params: Optional[PaymasterParams] = None,
        overrides: Optional[TransactionEnvelope] = None,
    ) -> TransactionEnvelope:
        """
        Build (but don't sign) the L2 transaction initiating a withdrawal.

        The base token is withdrawn by sending `amount` as value to the
        `L2BaseToken` system contract. Every other token goes through the
        bridge `withdraw(l1Receiver, l2Token, amount)` with a zero value.

        Parameters
        ----------
        `token` : str, optional
            L2 token address, defaults to the base token. Legacy ETH and
            ETH-in-contracts are resolved to their L2 address.
        `amount` : int
        `from_` : str, optional
        `to` : str, optional
            L1 receiver, defaults to `from_`.
        `bridge_address` : str, optional
            Defaults to the shared L2 bridge.
        `paymaster_params` : PaymasterParams, optional
        `overrides` : TransactionEnvelope, optional

        Returns
        -------
        TransactionEnvelope
        """
        tx: Dict[str, Any] = dict(overrides or {})

        if token is None:
            token = L2_BASE_TOKEN_ADDRESS
        elif is_address_eq(token, LEGACY_ETH_ADDRESS) or is_address_eq(
            token, ETH_ADDRESS_IN_CONTRACTS
        ):
            token = self.l2_token_address(ETH_ADDRESS_IN_CONTRACTS)

        if not to and not from_:
            raise PreconditionError("Withdrawal target address is undefined!")

        receiver = to_checksum_address(cast(str, to or from_))

        if from_:
            tx.setdefault("from", to_checksum_address(from_))

        if is_address_eq(token, L2_BASE_TOKEN_ADDRESS):
            value = tx.get("value") or amount

            if value != amount:
                raise PreconditionError(
                    "The tx.value is not equal to the value withdrawn!"
                )

            tx["to"] = L2_BASE_TOKEN_ADDRESS
            tx["value"] = amount
            tx["data"] = encode_function_call(ABI_ETH_TOKEN, "withdraw", [receiver])
        else:
            if bridge_address is None:
                bridge_address = self.get_default_bridge_addresses()["sharedL2"]

            tx["to"] = to_checksum_address(bridge_address)
            tx["value"] = 0
            tx["data"] = encode_function_call(
                ABI_L2_SHARED_BRIDGE,
                "withdraw",
                [receiver, to_checksum_address(token), amount],
            )

        if paymaster_params:
            tx["customData"] = {"paymasterParams": paymaster_params}

        return cast(TransactionEnvelope, tx)

    def get_transfer_tx(
        self,
        to: str,
        amount: int,
        from_: Optional[str] = None,
        token: Optional[str] = None,
        paymaster_params: Optional[PaymasterParams] = None,
        overrides: Optional[TransactionEnvelope] = None,
    ) -> TransactionEnvelope:
        tx: Dict[str, Any] = dict(overrides or {})

        if token is None or is_address_eq(token, L2_BASE_TOKEN_ADDRESS):
            token = L2_BASE_TOKEN_ADDRESS
        elif is_address_eq(token, LEGACY_ETH_ADDRESS) or is_address_eq(
            token, ETH_ADDRESS_IN_CONTRACTS
        ):
            token = self.l2_token_address(token)

        if from_:
            tx.setdefault("from", to_checksum_address(from_))

        receiver = to_checksum_address(to)

        if is_address_eq(token, L2_BASE_TOKEN_ADDRESS):
            tx["to"] = receiver
            tx["value"] = amount

            if paymaster_params:
                tx["type"] = EIP712_TX_TYPE
        else:
            tx["to"] = to_checksum_address(token)
            tx["value"] = 0
            tx["data"] = encode_function_call(ABI_ERC20, "transfer", [receiver, amount])

        if paymaster_params:
            tx["customData"] = {"paymasterParams": paymaster_params}

        return cast(TransactionEnvelope, tx)

    def estimate_gas_withdraw(self, **kwargs: Any) -> int:
        return self.estimate_gas(self.get_withdraw_tx(**kwargs))

    def estimate_gas_transfer(self, **kwargs: Any) -> int:
        return self.estimate_gas(self.get_transfer_tx(**kwargs))

    # PRIORITY OPERATIONS

    def get_priority_op_response(
        self, l1_provider: Web3, l1_tx_hash: bytes | str
    ) -> PriorityOpResponse:
        return PriorityOpResponse(self, l1_provider, HexBytes(l1_tx_hash))

    def get_priority_op_confirmation(
        self, tx_hash: bytes | str, index: int = 0
    ) -> PriorityOpConfirmation:
        """
        Data needed to prove on L1 that a priority operation was executed on L2,
        taken from the bootloader L2 -> L1 log at position `index`.
        """
        receipt = self.get_transaction_receipt(tx_hash)

        if receipt is None:
            raise TransactionNotMinedError("Transaction is not mined!")

        messages = [
            (i, log)
            for i, log in enumerate(receipt.get("l2ToL1Logs") or [])
            if is_address_eq(log["sender"], BOOTLOADER_FORMAL_ADDRESS)
        ]

        if index >= len(messages):
            raise EventParseError(
                f"No bootloader L2 -> L1 log at index {index} for {HexBytes(tx_hash).to_0x_hex()}"
            )

        l2_to_l1_log_index, l2_to_l1_log = messages[index]

        proof = self.get_log_proof(tx_hash, l2_to_l1_log_index)

        if proof is None:
            raise LogProofNotFoundError("Log proof not found!")

        return {
            "l1BatchNumber": to_int(l2_to_l1_log["l1BatchNumber"]),
            "l2MessageIndex": proof["id"],
            "l2TxNumberInBlock": to_int(receipt["l1BatchTxIndex"]),
            "proof": proof["proof"],
        }
