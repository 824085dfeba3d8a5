"""
Simulation, signing, broadcast and confirmation of one candidate transaction.

Each attempt walks an explicit state machine:

    COMPOSED -> SIMULATED -> AWAITING_SIGNATURE -> BROADCAST -> CONFIRMING
             -> CONFIRMED | FAILED

Every transition is a single suspending call with one success path and a fixed
set of named failures. The attempt ends in a TransactionOutcome; retrying with
a new blockhash is the orchestrator's decision.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.transaction import VersionedTransaction

from .config import ExecutionConfig
from .errors import (
    BlockhashExpired,
    BroadcastFailed,
    ErrorKind,
    ExecutionFailed,
    SigningUnavailable,
    SimulationFailed,
    UserRejected,
    classify_rpc_error,
)
from .signer import WalletSigner
from .solana_client import SimulationResult, SolanaClient
from .transaction_builder import CandidateTransaction, TransactionBuilder
from .utils import get_terminal_colors, short_address

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (httpx.TransportError, SolanaRpcException, OSError, asyncio.TimeoutError)


class ExecutionState(str, Enum):
    COMPOSED = "composed"
    SIMULATED = "simulated"
    AWAITING_SIGNATURE = "awaiting_signature"
    BROADCAST = "broadcast"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransactionOutcome:
    """
    Result of one submission attempt. A retry produces a new outcome.

    A TIMEOUT outcome is not a failure: the transaction may still land and the
    caller must say so rather than report it as failed.
    """
    signature: Optional[str]
    confirmed: bool
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None
    attempt: int = 1

    @property
    def may_still_land(self) -> bool:
        return self.error is ErrorKind.TIMEOUT

    @property
    def is_user_rejection(self) -> bool:
        return self.error is ErrorKind.USER_REJECTED


class TransactionExecutor:
    """Drives a candidate transaction from simulation to a terminal state."""

    def __init__(
        self,
        solana: SolanaClient,
        builder: TransactionBuilder,
        signer: WalletSigner,
        config: Optional[ExecutionConfig] = None
    ):
        self.solana = solana
        self.builder = builder
        self.signer = signer
        self.config = config or ExecutionConfig()
        self.state = ExecutionState.COMPOSED

    def _transition(self, state: ExecutionState, note: str = "") -> None:
        logger.debug(f"{colors['DIM']}{self.state.value} -> {state.value}{colors['RESET']} {note}".rstrip())
        self.state = state

    def _fail(self, kind: ErrorKind, detail: str, signature: Optional[str], attempt: int) -> TransactionOutcome:
        self._transition(ExecutionState.FAILED, kind.value)
        return TransactionOutcome(signature=signature, confirmed=False, error=kind, detail=detail, attempt=attempt)

    async def simulate(self, tx: VersionedTransaction) -> SimulationResult:
        """
        Dry-run the unsigned transaction.

        Results before all signatures are present can be unreliable, so under
        the default "warn" policy a failure is logged and the flow continues.

        Raises:
            SimulationFailed: only under the "block" policy
        """
        try:
            result = await self.solana.simulate_versioned_transaction(tx)
        except Exception as e:
            result = SimulationResult(err=f"simulation request failed: {e}")

        if not result.ok:
            failure = SimulationFailed(result.err, logs=result.logs)
            tail = "\n".join(result.logs[-20:])
            if self.config.simulation_policy == "block":
                logger.error(f"{colors['RED']}{failure}{colors['RESET']}\n{tail}".rstrip())
                raise failure
            logger.warning(f"{failure} (continuing to signature, policy=warn)")
            if tail:
                logger.debug(f"Simulation logs (last 20):\n{tail}")
        else:
            logger.debug(f"Simulation ok, units consumed: {result.units_consumed}")
        return result

    async def broadcast(self, tx: VersionedTransaction) -> str:
        """
        Send a signed transaction, retrying network faults with exponential backoff.

        Raises:
            BlockhashExpired: the ledger no longer accepts the blockhash
            ExecutionFailed: the ledger rejected the transaction (preflight)
            BroadcastFailed: network faults exhausted the retry bound
        """
        retries = max(1, self.config.broadcast_retries)
        last_error: Optional[Exception] = None
        for attempt in range(retries):
            try:
                return await self.solana.send_versioned_transaction(
                    tx,
                    skip_preflight=self.config.skip_preflight
                )
            except RPCException as e:
                kind = classify_rpc_error(str(e))
                if kind is ErrorKind.BLOCKHASH_EXPIRED:
                    raise BlockhashExpired(str(e)) from e
                raise ExecutionFailed(f"Ledger rejected transaction: {e}") from e
            except NETWORK_ERRORS as e:
                last_error = e
                if attempt < retries - 1:
                    delay = self.config.broadcast_backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"Broadcast attempt {attempt + 1}/{retries} failed: {e}, retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
        raise BroadcastFailed(f"Broadcast failed after {retries} attempts: {last_error}") from last_error

    async def _poll(
        self,
        signature: str,
        window_seconds: float,
        last_valid_block_height: Optional[int]
    ) -> Optional[TransactionOutcome]:
        """
        Poll until a terminal status or the wall-clock window closes.

        BLOCKHASH_EXPIRED is returned only when the ledger never saw the
        signature. A signature seen in a block is polled until the window
        closes, however far the block height has moved.

        Returns:
            Terminal outcome (attempt left at 1), or None when the window closed
        """
        deadline = time.monotonic() + window_seconds
        seen = False
        while True:
            status = await self.solana.get_signature_status(signature)
            if status is not None:
                seen = True
                if status.err is not None:
                    return TransactionOutcome(
                        signature=signature, confirmed=False,
                        error=ErrorKind.EXECUTION_FAILED, detail=status.err
                    )
                if status.confirmed:
                    return TransactionOutcome(signature=signature, confirmed=True)

            if last_valid_block_height is not None and not seen:
                height = await self.solana.get_current_block_height()
                if height is not None and height > last_valid_block_height:
                    # Re-check once: it may have landed in the last valid block
                    status = await self.solana.get_signature_status(signature)
                    if status is None:
                        return TransactionOutcome(
                            signature=signature, confirmed=False,
                            error=ErrorKind.BLOCKHASH_EXPIRED,
                            detail=f"block height {height} exceeded last valid block height {last_valid_block_height}"
                        )
                    if status.err is not None:
                        return TransactionOutcome(
                            signature=signature, confirmed=False,
                            error=ErrorKind.EXECUTION_FAILED, detail=status.err
                        )
                    if status.confirmed:
                        return TransactionOutcome(signature=signature, confirmed=True)
                    seen = True
                    logger.debug(
                        f"{short_address(signature)} seen ({status.confirmation_status}) past block height "
                        f"{last_valid_block_height}, polling until timeout"
                    )

            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(self.config.confirm_poll_interval_seconds)

    async def confirm(self, signature: str, last_valid_block_height: int, attempt: int = 1) -> TransactionOutcome:
        """
        Poll a broadcast signature to a terminal state.

        The wall-clock timeout is independent from blockhash expiry. With
        timeout_repoll_seconds > 0 a timeout buys one more status-only window.
        """
        self._transition(ExecutionState.CONFIRMING, short_address(signature))
        outcome = await self._poll(signature, self.config.confirm_timeout_seconds, last_valid_block_height)

        if outcome is None and self.config.timeout_repoll_seconds > 0:
            logger.warning(
                f"No confirmation for {short_address(signature)} after {self.config.confirm_timeout_seconds}s, "
                f"re-polling for {self.config.timeout_repoll_seconds}s"
            )
            outcome = await self._poll(signature, self.config.timeout_repoll_seconds, None)

        if outcome is None:
            self._transition(ExecutionState.FAILED, ErrorKind.TIMEOUT.value)
            logger.warning(
                f"{colors['YELLOW']}Confirmation timed out for {signature}; "
                f"the transaction may still land{colors['RESET']}"
            )
            return TransactionOutcome(
                signature=signature, confirmed=False, error=ErrorKind.TIMEOUT,
                detail=f"not confirmed within {self.config.confirm_timeout_seconds}s", attempt=attempt
            )

        if outcome.confirmed:
            self._transition(ExecutionState.CONFIRMED)
            logger.info(f"{colors['GREEN']}Transaction confirmed:{colors['RESET']} {colors['CYAN']}{signature}{colors['RESET']}")
        else:
            self._transition(ExecutionState.FAILED, outcome.error.value)
            logger.error(f"{colors['RED']}Transaction {signature} failed: {outcome.detail}{colors['RESET']}")
        return TransactionOutcome(
            signature=outcome.signature, confirmed=outcome.confirmed,
            error=outcome.error, detail=outcome.detail, attempt=attempt
        )

    async def execute(self, candidate: CandidateTransaction, attempt: int = 1) -> TransactionOutcome:
        """
        Run one attempt from COMPOSED to a terminal state.

        Cancellation before BROADCAST discards the attempt with no network
        effect. After BROADCAST the confirmation poll is shielded: a cancelled
        caller still waits for the terminal outcome, which is logged, and the
        cancellation is then re-raised.

        Raises:
            CompilationFailed: candidate does not compile
            SimulationFailed: simulation failed under the "block" policy
        """
        self.state = ExecutionState.COMPOSED
        unsigned = self.builder.compile(candidate)

        await self.simulate(unsigned)
        self._transition(ExecutionState.SIMULATED)

        self._transition(ExecutionState.AWAITING_SIGNATURE)
        try:
            signed = await self.signer.sign(unsigned)
        except UserRejected as e:
            logger.info(f"Signature request rejected by user: {e}")
            return self._fail(ErrorKind.USER_REJECTED, str(e) or "rejected by user", None, attempt)
        except SigningUnavailable as e:
            logger.error(f"{colors['RED']}Signing unavailable: {e}{colors['RESET']}")
            return self._fail(ErrorKind.SIGNING_UNAVAILABLE, str(e), None, attempt)

        try:
            signature = await self.broadcast(signed)
        except BlockhashExpired as e:
            logger.warning(f"Blockhash expired before broadcast: {e}")
            return self._fail(ErrorKind.BLOCKHASH_EXPIRED, str(e), None, attempt)
        except (ExecutionFailed, BroadcastFailed) as e:
            logger.error(f"{colors['RED']}{e}{colors['RESET']}")
            return self._fail(e.kind, str(e), None, attempt)
        self._transition(ExecutionState.BROADCAST, short_address(signature))
        logger.info(f"Transaction sent: {colors['CYAN']}{signature}{colors['RESET']}")

        confirmation = asyncio.ensure_future(
            self.confirm(signature, candidate.last_valid_block_height, attempt)
        )
        try:
            return await asyncio.shield(confirmation)
        except asyncio.CancelledError:
            logger.warning(
                f"Flow cancelled after broadcast; polling {short_address(signature)} to a terminal state"
            )
            outcome = await confirmation
            logger.info(f"Outcome after cancellation: confirmed={outcome.confirmed} error={outcome.error}")
            raise
