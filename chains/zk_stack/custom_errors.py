from typing import Any, Optional, Sequence
from web3.eth import Contract
from web3.exceptions import ContractLogicError

from utils.chain import get_contract_error_info


class ZkStackError(Exception):
    """Base Exception for ZK Stack operations."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class InvalidChainError(ZkStackError):
    """Raised when an invalid chain or contract is specified"""

    pass


class RpcError(ZkStackError):
    """Raised when a `zks_*` (or raw eth) RPC request fails. Keeps the request payload."""

    def __init__(
        self,
        method: str,
        params: Sequence[Any],
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            f"RPC `{method}` failed with params {list(params)}: {original_error}",
            original_error,
        )
        self.method = method
        self.params = params


class CodecError(ZkStackError):
    """Raised when an EIP-712 envelope (or a bytecode) cannot be encoded or decoded."""

    pass


class NotSignedError(CodecError):
    """Raised when hashing an envelope that carries no `customSignature`."""

    pass


class PreconditionError(ZkStackError):
    """Raised before submission when the request itself is invalid."""

    pass


class InsufficientAllowanceError(PreconditionError):
    """Raised when the bridge allowance doesn't cover the deposit."""

    pass


class InsufficientBalanceError(PreconditionError):
    """Raised when the L1 balance doesn't cover the deposit."""

    pass


class InsufficientBaseCostError(PreconditionError):
    """Raised when the provided value is lower than the priority operation base cost."""

    pass


class TransactionNotMinedError(ZkStackError):
    """Raised when the given transaction hash has no receipt yet."""

    pass


class LogProofNotFoundError(ZkStackError):
    """Raised when the node doesn't serve a proof for the L2 -> L1 log (batch not sealed yet)."""

    pass


class EventParseError(ZkStackError):
    """Exception in case transaction doesn't emit the event"""

    pass


class CannotClaimSuccessfulDepositError(ZkStackError):
    """Raised when claiming back a deposit that was executed successfully on L2."""

    pass


class WithdrawalAlreadyFinalizedError(ZkStackError):
    """Raised when finalizing a withdrawal that has already been finalized on L1."""

    ALREADY_FINALIZED_ERRORS = ("WithdrawalAlreadyFinalized",)
    ALREADY_FINALIZED_REASON = "already finalized"

    @classmethod
    def from_contract_error(cls, contract: Contract, error: Exception) -> ZkStackError:
        error_info = get_contract_error_info(contract, error)

        if error_info and error_info.name in cls.ALREADY_FINALIZED_ERRORS:
            return cls(
                f"`{error_info.signature}` from L1 bridge! Withdrawal is already finalized.",
                original_error=error,
            )

        if (
            isinstance(error, ContractLogicError)
            and cls.ALREADY_FINALIZED_REASON in str(error).lower()
        ):
            return cls(str(error), original_error=error)

        return ZkStackError(str(error), original_error=error)
