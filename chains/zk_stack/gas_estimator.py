from typing import Any, Dict, Optional, cast

from eth_abi.abi import encode
from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from loguru import logger
from web3 import Web3
from web3.types import BlockData

from utils.chain import encode_function_call, get_abi
from utils.config import (
    ABI_ERC20,
    ABI_L2_SHARED_BRIDGE,
    ETH_ADDRESS_IN_CONTRACTS,
    L1_FEE_ESTIMATION_COEF_DENOMINATOR,
    L1_FEE_ESTIMATION_COEF_NUMERATOR,
    LEGACY_ETH_ADDRESS,
    REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT,
    ZkStackChainName,
)
from .custom_errors import InsufficientBaseCostError, ZkStackError
from .hashing import apply_l1_to_l2_alias, is_address_eq
from .provider import ZkProvider


class GasEstimator:
    """
    Gas and fee helpers for priority operations. A deposit pays twice: the L1
    transaction gas, and a base cost (in base token, minted on L2) covering
    the L2 execution of the request.

    Under-estimating the L2 gas limit fails the operation on L2 and leaves the
    funds to be claimed back through `claimFailedDeposit`, while a base cost
    above the provided value reverts on L1 right away.

    Parameters
    ----------
    `chain_name` : ZkStackChainName
    `l1_provider` : Web3
    `l2_provider` : ZkProvider
    """

    # 150% of the current base fee
    BASE_FEE_MULTIPLIER_NUMERATOR = 3
    BASE_FEE_MULTIPLIER_DENOMINATOR = 2

    ETHER_NAME = "Ether"
    ETHER_SYMBOL = "ETH"
    ETHER_DECIMALS = 18

    def __init__(
        self,
        chain_name: ZkStackChainName,
        l1_provider: Web3,
        l2_provider: ZkProvider,
    ) -> None:
        self.chain_name = chain_name
        self.l1_provider = l1_provider
        self.l2_provider = l2_provider

    @staticmethod
    def scale_gas_limit(gas_limit: int) -> int:
        """
        L1 gas estimates for bridgehub calls are scaled by 12/10, the execution
        path depends on storage that may change before inclusion.
        """
        return (
            gas_limit
            * L1_FEE_ESTIMATION_COEF_NUMERATOR
            // L1_FEE_ESTIMATION_COEF_DENOMINATOR
        )

    def insert_gas_price(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        """
        Returns a copy of `overrides` with L1 fee fields filled in, unless the
        caller already set `gasPrice` or `maxFeePerGas`.

        EIP-1559 chains get `maxFeePerGas = baseFee * 3 / 2 + maxPriorityFeePerGas`,
        others get the node `gasPrice`.

        Parameters
        ----------
        `overrides` : Dict

        Returns
        -------
        Dict
        """
        result = dict(overrides)

        if result.get("gasPrice") or result.get("maxFeePerGas"):
            return result

        latest_block: BlockData = self.l1_provider.eth.get_block("latest")
        base_fee = latest_block.get("baseFeePerGas")

        if base_fee is None:
            gas_price = self.l1_provider.eth.gas_price

            if not gas_price:
                raise ZkStackError("Failed to calculate base fee!")

            result["gasPrice"] = gas_price
            return result

        max_priority_fee = self.l1_provider.eth.max_priority_fee

        result["maxFeePerGas"] = (
            base_fee
            * self.BASE_FEE_MULTIPLIER_NUMERATOR
            // self.BASE_FEE_MULTIPLIER_DENOMINATOR
            + max_priority_fee
        )
        result["maxPriorityFeePerGas"] = max_priority_fee

        logger.debug(
            f"L1 fees: maxFeePerGas={result['maxFeePerGas']} "
            f"maxPriorityFeePerGas={max_priority_fee}"
        )

        return result

    @staticmethod
    def check_base_cost(base_cost: int, value: int) -> None:
        if base_cost > value:
            raise InsufficientBaseCostError(
                "The base cost of performing the priority operation is higher than "
                "the provided value parameter for the transaction: "
                f"baseCost: {base_cost}, provided value: {value}!"
            )

    def get_erc20_default_bridge_data(self, l1_token: str) -> HexBytes:
        """
        Token metadata forwarded to the L2 bridge on the first deposit of a
        token, used to deploy its L2 counterpart.

        Returns
        -------
        HexBytes
            `abi.encode(bytes name, bytes symbol, bytes decimals)` where each
            member is itself ABI encoded.
        """
        if is_address_eq(l1_token, LEGACY_ETH_ADDRESS):
            l1_token = ETH_ADDRESS_IN_CONTRACTS

        if is_address_eq(l1_token, ETH_ADDRESS_IN_CONTRACTS):
            name = self.ETHER_NAME
            symbol = self.ETHER_SYMBOL
            decimals = self.ETHER_DECIMALS
        else:
            token = self.l1_provider.eth.contract(
                address=to_checksum_address(l1_token), abi=get_abi(ABI_ERC20)
            )
            name = token.functions.name().call()
            symbol = token.functions.symbol().call()
            decimals = token.functions.decimals().call()

        return HexBytes(
            encode(
                ["bytes", "bytes", "bytes"],
                [
                    encode(["string"], [name]),
                    encode(["string"], [symbol]),
                    encode(["uint256"], [decimals]),
                ],
            )
        )

    @staticmethod
    def get_erc20_bridge_calldata(
        l1_token: str,
        l1_sender: str,
        l2_receiver: str,
        amount: int,
        bridge_data: bytes,
    ) -> HexBytes:
        return encode_function_call(
            ABI_L2_SHARED_BRIDGE,
            "finalizeDeposit",
            [
                to_checksum_address(l1_sender),
                to_checksum_address(l2_receiver),
                to_checksum_address(l1_token),
                amount,
                HexBytes(bridge_data),
            ],
        )

    def estimate_custom_bridge_deposit_l2_gas(
        self,
        l1_bridge_address: str,
        l2_bridge_address: str,
        token: str,
        amount: int,
        to: str,
        bridge_data: bytes,
        from_: str,
        gas_per_pubdata_byte: Optional[int] = None,
        l2_value: int = 0,
    ) -> int:
        """
        L2 gas limit of the `finalizeDeposit` call the L1 bridge triggers on
        its L2 counterpart. The L1 bridge is the caller, seen on L2 under its
        aliased address.

        Parameters
        ----------
        `l1_bridge_address` : str
        `l2_bridge_address` : str
        `token` : str
            L1 token address.
        `amount` : int
        `to` : str
            L2 receiver.
        `bridge_data` : bytes
        `from_` : str
            L1 sender.
        `gas_per_pubdata_byte` : int, optional
        `l2_value` : int

        Returns
        -------
        int
        """
        calldata = self.get_erc20_bridge_calldata(
            token, from_, to, amount, bridge_data
        )

        return self.l2_provider.estimate_l1_to_l2_execute(
            contract_address=l2_bridge_address,
            calldata=calldata,
            caller=apply_l1_to_l2_alias(l1_bridge_address),
            l2_value=l2_value,
            gas_per_pubdata_byte=gas_per_pubdata_byte
            or REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT,
        )

    def estimate_default_bridge_deposit_l2_gas(
        self,
        token: str,
        amount: int,
        to: str,
        from_: Optional[str] = None,
        gas_per_pubdata_byte: Optional[int] = None,
    ) -> int:
        """
        L2 gas limit of a deposit through the default (shared) bridge. Base
        token deposits are a plain value transfer to `to`.
        """
        gas_per_pubdata_byte = (
            gas_per_pubdata_byte or REQUIRED_L1_TO_L2_GAS_PER_PUBDATA_LIMIT
        )

        if is_address_eq(token, LEGACY_ETH_ADDRESS):
            token = ETH_ADDRESS_IN_CONTRACTS

        if self.l2_provider.is_base_token(token):
            return self.l2_provider.estimate_l1_to_l2_execute(
                contract_address=to,
                calldata=HexBytes(b""),
                caller=from_,
                l2_value=amount,
                gas_per_pubdata_byte=gas_per_pubdata_byte,
            )

        bridge_addresses = self.l2_provider.get_default_bridge_addresses()
        bridge_data = self.get_erc20_default_bridge_data(token)

        return self.estimate_custom_bridge_deposit_l2_gas(
            l1_bridge_address=bridge_addresses["sharedL1"],
            l2_bridge_address=bridge_addresses["sharedL2"],
            token=token,
            amount=amount,
            to=to,
            bridge_data=bridge_data,
            from_=cast(ChecksumAddress, from_ or to),
            gas_per_pubdata_byte=gas_per_pubdata_byte,
        )
