"""
Handles returned by submissions. Both poll the network at the provider's
polling interval with no timeout; a caller that needs a bound must enforce it
externally.
"""

import time
from typing import TYPE_CHECKING, Optional

from hexbytes import HexBytes
from loguru import logger
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.types import TxData, TxReceipt

from .hashing import get_l2_hash_from_priority_op
from .types import PriorityOpState, TransactionStatus

if TYPE_CHECKING:
    from .provider import ZkProvider


TXN_SUCCESSFUL = 1


class TransactionResponse:
    """
    Handle of a transaction accepted by the L2 node.

    Parameters
    ----------
    `provider` : ZkProvider
    `tx_hash` : HexBytes
    """

    def __init__(self, provider: "ZkProvider", tx_hash: HexBytes) -> None:
        self.provider = provider
        self.hash = HexBytes(tx_hash)

    def __repr__(self) -> str:
        return f"TransactionResponse({self.hash.to_0x_hex()})"

    def wait(self, confirmations: int = 1) -> TxReceipt:
        """
        Blocks until the transaction is included in a block. A receipt without
        a `blockNumber` (accepted into the mempool only) is never returned.

        Parameters
        ----------
        `confirmations` : int
            Number of blocks (including the one carrying the tx) to wait for.

        Returns
        -------
        TxReceipt
        """
        while True:
            receipt = self.provider.get_transaction_receipt(self.hash)

            if receipt is not None and receipt.get("blockNumber") is not None:
                if confirmations <= 1:
                    return receipt

                current_block = self.provider.w3.eth.block_number
                if current_block - receipt["blockNumber"] + 1 >= confirmations:
                    return receipt

            time.sleep(self.provider.polling_interval)

    def wait_finalize(self) -> TxReceipt:
        receipt = self.wait()

        while True:
            finalized = self.provider.w3.eth.get_block("finalized")

            if receipt["blockNumber"] <= finalized["number"]:
                logger.info(f"L2 transaction {self.hash.to_0x_hex()} finalized")
                return receipt

            time.sleep(self.provider.polling_interval)

    def status(self) -> TransactionStatus:
        return self.provider.get_transaction_status(self.hash)


class PriorityOpResponse:
    """
    Handle of an L1 transaction that enqueued a priority operation.

    Walks `SUBMITTED -> L1_INCLUDED -> L2_OBSERVED -> L2_FINALIZED`. The L2 hash
    is derived from the L1 receipt alone, so correlation needs no extra lookup
    beyond the (cached) main contract address.

    If the L1 transaction reverts or is dropped the operation never leaves
    `SUBMITTED`; check `wait_l1_commit()["status"]` for that.

    Parameters
    ----------
    `provider` : ZkProvider
        L2 provider.
    `l1_provider` : Web3
    `l1_tx_hash` : HexBytes
    """

    def __init__(
        self, provider: "ZkProvider", l1_provider: Web3, l1_tx_hash: HexBytes
    ) -> None:
        self.provider = provider
        self.l1_provider = l1_provider
        self.hash = HexBytes(l1_tx_hash)
        self._l1_receipt: Optional[TxReceipt] = None
        self._l2_tx_hash: Optional[HexBytes] = None

    def __repr__(self) -> str:
        return f"PriorityOpResponse({self.hash.to_0x_hex()})"

    def _get_l1_receipt(self) -> Optional[TxReceipt]:
        try:
            return self.l1_provider.eth.get_transaction_receipt(self.hash)
        except TransactionNotFound:
            return None

    def wait_l1_commit(self) -> TxReceipt:
        while self._l1_receipt is None:
            receipt = self._get_l1_receipt()

            if receipt is not None and receipt.get("blockNumber") is not None:
                self._l1_receipt = receipt
                logger.info(
                    f"Priority operation {self.hash.to_0x_hex()} included on L1 "
                    f"in block {receipt['blockNumber']}"
                )
            else:
                time.sleep(self.provider.polling_interval)

        return self._l1_receipt

    def l2_tx_hash(self) -> HexBytes:
        """Canonical L2 hash of the operation, from the `NewPriorityRequest` log."""
        if self._l2_tx_hash is None:
            receipt = self.wait_l1_commit()
            main_contract = self.provider.get_main_contract_address()
            self._l2_tx_hash = get_l2_hash_from_priority_op(receipt, main_contract)

        return self._l2_tx_hash

    def wait_l2_observed(self) -> TxData:
        l2_hash = self.l2_tx_hash()

        while True:
            tx = self.provider.get_transaction(l2_hash)

            if tx is not None:
                logger.info(f"Priority operation observed on L2 as {l2_hash.to_0x_hex()}")
                return tx

            time.sleep(self.provider.polling_interval)

    def wait(self, confirmations: int = 1) -> TxReceipt:
        self.wait_l2_observed()

        return TransactionResponse(self.provider, self.l2_tx_hash()).wait(confirmations)

    def wait_finalize(self) -> TxReceipt:
        self.wait_l2_observed()

        return TransactionResponse(self.provider, self.l2_tx_hash()).wait_finalize()

    def status(self) -> PriorityOpState:
        receipt = self._get_l1_receipt()

        if receipt is None or receipt.get("status") != TXN_SUCCESSFUL:
            return PriorityOpState.SUBMITTED

        self._l1_receipt = receipt
        l2_status = self.provider.get_transaction_status(self.l2_tx_hash())

        if l2_status == TransactionStatus.NOT_FOUND:
            return PriorityOpState.L1_INCLUDED

        if l2_status == TransactionStatus.FINALIZED:
            return PriorityOpState.L2_FINALIZED

        return PriorityOpState.L2_OBSERVED
