"""
Error taxonomy for the swap-and-deposit engine.

Composition-time failures are raised as exceptions so the flow aborts before
a signature is ever requested. Post-signature results are reported through
TransactionOutcome with one of the ErrorKind values below.
"""
from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    """Named failure outcomes."""
    MALFORMED_INSTRUCTION = "malformed_instruction"
    RESOLUTION_UNAVAILABLE = "resolution_unavailable"
    COMPOSER_INVARIANT_VIOLATED = "composer_invariant_violated"
    TRANSACTION_TOO_LARGE = "transaction_too_large"
    COMPILATION_FAILED = "compilation_failed"
    SIMULATION_FAILED = "simulation_failed"
    USER_REJECTED = "user_rejected"
    SIGNING_UNAVAILABLE = "signing_unavailable"
    BLOCKHASH_EXPIRED = "blockhash_expired"
    EXECUTION_FAILED = "execution_failed"
    TIMEOUT = "timeout"
    INVALID_AMOUNT_ENCODING = "invalid_amount_encoding"
    SERVICE_UNAVAILABLE = "service_unavailable"
    BROADCAST_FAILED = "broadcast_failed"
    FLOW_IN_PROGRESS = "flow_in_progress"


class SwapDepositError(Exception):
    """Base class for all engine errors."""
    kind: ErrorKind = ErrorKind.EXECUTION_FAILED

    def __init__(self, message: str = "", detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail if detail is not None else message


class MalformedInstruction(SwapDepositError):
    kind = ErrorKind.MALFORMED_INSTRUCTION


class ResolutionUnavailable(SwapDepositError):
    kind = ErrorKind.RESOLUTION_UNAVAILABLE


class ComposerInvariantViolated(SwapDepositError):
    """An upstream service returned an incomplete instruction set. Not retried."""
    kind = ErrorKind.COMPOSER_INVARIANT_VIOLATED


class TransactionTooLarge(SwapDepositError):
    """Serialized transaction exceeds the wire limits; recompose with a tighter budget."""
    kind = ErrorKind.TRANSACTION_TOO_LARGE

    def __init__(
        self,
        message: str,
        raw_size: int,
        encoded_size: int,
        max_raw_size: int,
        max_encoded_size: int
    ):
        super().__init__(message)
        self.raw_size = raw_size
        self.encoded_size = encoded_size
        self.max_raw_size = max_raw_size
        self.max_encoded_size = max_encoded_size


class CompilationFailed(SwapDepositError):
    kind = ErrorKind.COMPILATION_FAILED


class SimulationFailed(SwapDepositError):
    kind = ErrorKind.SIMULATION_FAILED

    def __init__(self, detail: str, logs: Optional[List[str]] = None):
        super().__init__(f"Simulation failed: {detail}", detail=detail)
        self.logs = logs or []


class UserRejected(SwapDepositError):
    kind = ErrorKind.USER_REJECTED


class SigningUnavailable(SwapDepositError):
    kind = ErrorKind.SIGNING_UNAVAILABLE


class BlockhashExpired(SwapDepositError):
    kind = ErrorKind.BLOCKHASH_EXPIRED


class ExecutionFailed(SwapDepositError):
    kind = ErrorKind.EXECUTION_FAILED


class Timeout(SwapDepositError):
    """Outcome unknown to the client; the transaction may still land."""
    kind = ErrorKind.TIMEOUT


class InvalidAmountEncoding(SwapDepositError):
    kind = ErrorKind.INVALID_AMOUNT_ENCODING


class ServiceUnavailable(SwapDepositError):
    """Routing, lending or ledger service could not produce a usable response."""
    kind = ErrorKind.SERVICE_UNAVAILABLE


class BroadcastFailed(SwapDepositError):
    kind = ErrorKind.BROADCAST_FAILED


class FlowInProgress(SwapDepositError):
    kind = ErrorKind.FLOW_IN_PROGRESS


BLOCKHASH_EXPIRED_MARKERS = (
    "blockhash not found",
    "block height exceeded",
    "blockheight exceeded",
    "transaction expired",
    "has expired",
)

USER_REJECTED_MARKERS = (
    "user rejected",
    "rejected the request",
    "cancelled by user",
    "canceled by user",
)


def classify_rpc_error(message: str) -> ErrorKind:
    """
    Map ledger / wallet error text onto an ErrorKind.

    Anything that is not recognisably an expired blockhash or a user
    rejection is treated as the ledger refusing the transaction.
    """
    text = (message or "").lower()
    if any(marker in text for marker in BLOCKHASH_EXPIRED_MARKERS):
        return ErrorKind.BLOCKHASH_EXPIRED
    if any(marker in text for marker in USER_REJECTED_MARKERS):
        return ErrorKind.USER_REJECTED
    return ErrorKind.EXECUTION_FAILED
