"""
Tests for executor.py
"""
import asyncio
import logging
import time

import pytest
from unittest.mock import AsyncMock, MagicMock
import httpx
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.signature import Signature

from swapdeposit.composer import InstructionComposer
from swapdeposit.config import ExecutionConfig
from swapdeposit.errors import ErrorKind, SigningUnavailable, SimulationFailed, UserRejected
from swapdeposit.executor import ExecutionState, TransactionExecutor, TransactionOutcome
from swapdeposit.signer import KeypairSigner
from swapdeposit.solana_client import SignatureStatus, SimulationResult
from swapdeposit.transaction_builder import CandidateTransaction, TransactionBuilder


SIGNATURE = str(Signature.new_unique())


@pytest.fixture
def candidate(fee_payer, swap_groups, deposit_groups):
    composed = InstructionComposer(lambda ixs: 0, 10_000).compose(swap_groups, deposit_groups)
    return CandidateTransaction(
        fee_payer=fee_payer,
        recent_blockhash=Hash.new_unique(),
        last_valid_block_height=1_000,
        instructions=composed,
        lookup_tables=[]
    )


@pytest.fixture
def solana(mock_solana_client):
    mock_solana_client.simulate_versioned_transaction.return_value = SimulationResult(err=None, units_consumed=12_345)
    mock_solana_client.send_versioned_transaction.return_value = SIGNATURE
    mock_solana_client.get_signature_status.return_value = SignatureStatus(confirmed=True, confirmation_status="confirmed")
    return mock_solana_client


def _executor(solana, keypair, config, signer=None):
    return TransactionExecutor(solana, TransactionBuilder(solana), signer or KeypairSigner(keypair), config)


class TestHappyPath:
    """Tests for a confirmed attempt."""

    @pytest.mark.asyncio
    async def test_confirmed(self, solana, keypair, candidate, fast_execution_config):
        executor = _executor(solana, keypair, fast_execution_config)

        outcome = await executor.execute(candidate)

        assert outcome == TransactionOutcome(signature=SIGNATURE, confirmed=True)
        assert executor.state is ExecutionState.CONFIRMED
        solana.simulate_versioned_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broadcasts_signed_transaction(self, solana, keypair, candidate, fast_execution_config):
        executor = _executor(solana, keypair, fast_execution_config)

        await executor.execute(candidate)

        sent_tx = solana.send_versioned_transaction.await_args.args[0]
        assert sent_tx.signatures[0] != Signature.default()
        assert sent_tx.message.recent_blockhash == candidate.recent_blockhash

    @pytest.mark.asyncio
    async def test_simulates_unsigned_transaction(self, solana, keypair, candidate, fast_execution_config):
        executor = _executor(solana, keypair, fast_execution_config)

        await executor.execute(candidate)

        simulated_tx = solana.simulate_versioned_transaction.await_args.args[0]
        assert list(simulated_tx.signatures) == [Signature.default()]

    @pytest.mark.asyncio
    async def test_attempt_number_recorded(self, solana, keypair, candidate, fast_execution_config):
        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate, attempt=2)
        assert outcome.attempt == 2


class TestSimulationPolicy:
    """Tests for the warn / block simulation policies."""

    @pytest.mark.asyncio
    async def test_warn_policy_continues_to_signature(self, solana, keypair, candidate, fast_execution_config):
        solana.simulate_versioned_transaction.return_value = SimulationResult(
            err="InstructionError(3, Custom(6001))", logs=["Program log: slippage"]
        )
        signer = KeypairSigner(keypair)
        signer.sign = AsyncMock(wraps=signer.sign)
        executor = _executor(solana, keypair, fast_execution_config, signer=signer)

        outcome = await executor.execute(candidate)

        signer.sign.assert_awaited_once()
        assert outcome.confirmed

    @pytest.mark.asyncio
    async def test_simulation_request_error_is_advisory(self, solana, keypair, candidate, fast_execution_config):
        solana.simulate_versioned_transaction.side_effect = httpx.ReadTimeout("timed out")

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.confirmed

    @pytest.mark.asyncio
    async def test_block_policy_aborts_before_signature(self, solana, keypair, candidate):
        solana.simulate_versioned_transaction.return_value = SimulationResult(err="InsufficientFundsForRent")
        signer = MagicMock()
        signer.sign = AsyncMock()
        executor = _executor(solana, keypair, ExecutionConfig(simulation_policy="block"), signer=signer)

        with pytest.raises(SimulationFailed, match="InsufficientFundsForRent"):
            await executor.execute(candidate)

        signer.sign.assert_not_awaited()
        solana.send_versioned_transaction.assert_not_awaited()


class TestSigning:
    """Tests for the AwaitingSignature transition."""

    @pytest.mark.asyncio
    async def test_user_rejection_is_an_outcome(self, solana, keypair, candidate, fast_execution_config):
        signer = MagicMock()
        signer.sign = AsyncMock(side_effect=UserRejected("User rejected the request."))
        executor = _executor(solana, keypair, fast_execution_config, signer=signer)

        outcome = await executor.execute(candidate)

        assert outcome.error is ErrorKind.USER_REJECTED
        assert outcome.is_user_rejection
        assert outcome.signature is None
        assert executor.state is ExecutionState.FAILED
        solana.send_versioned_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signing_unavailable(self, solana, keypair, candidate, fast_execution_config):
        signer = MagicMock()
        signer.sign = AsyncMock(side_effect=SigningUnavailable("wallet disconnected"))

        outcome = await _executor(solana, keypair, fast_execution_config, signer=signer).execute(candidate)

        assert outcome.error is ErrorKind.SIGNING_UNAVAILABLE
        solana.send_versioned_transaction.assert_not_awaited()


class TestBroadcast:
    """Tests for the Broadcast transition."""

    @pytest.mark.asyncio
    async def test_network_fault_retried(self, solana, keypair, candidate, fast_execution_config):
        solana.send_versioned_transaction.side_effect = [httpx.ConnectError("refused"), SIGNATURE]

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.confirmed
        assert solana.send_versioned_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_network_faults_exhaust_bound(self, solana, keypair, candidate, fast_execution_config):
        solana.send_versioned_transaction.side_effect = httpx.ConnectError("refused")

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.error is ErrorKind.BROADCAST_FAILED
        assert solana.send_versioned_transaction.await_count == fast_execution_config.broadcast_retries
        solana.get_signature_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_blockhash_not_resent(self, solana, keypair, candidate, fast_execution_config):
        solana.send_versioned_transaction.side_effect = RPCException("Transaction simulation failed: Blockhash not found")

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.error is ErrorKind.BLOCKHASH_EXPIRED
        assert solana.send_versioned_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_preflight_rejection(self, solana, keypair, candidate, fast_execution_config):
        solana.send_versioned_transaction.side_effect = RPCException("custom program error: 0x1771")

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.error is ErrorKind.EXECUTION_FAILED
        assert "0x1771" in outcome.detail


class TestConfirmation:
    """Tests for the Confirming transition."""

    @pytest.mark.asyncio
    async def test_execution_error(self, solana, keypair, candidate, fast_execution_config):
        solana.get_signature_status.return_value = SignatureStatus(confirmed=False, err="InstructionError(4, Custom(1))")

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.error is ErrorKind.EXECUTION_FAILED
        assert outcome.signature == SIGNATURE
        assert not outcome.may_still_land

    @pytest.mark.asyncio
    async def test_waits_through_processed(self, solana, keypair, candidate, fast_execution_config):
        solana.get_signature_status.side_effect = [
            None,
            SignatureStatus(confirmed=False, confirmation_status="processed"),
            SignatureStatus(confirmed=True, confirmation_status="confirmed"),
        ]

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.confirmed
        assert solana.get_signature_status.await_count == 3

    @pytest.mark.asyncio
    async def test_block_height_exceeded(self, solana, keypair, candidate, fast_execution_config):
        solana.get_signature_status.return_value = None
        solana.get_current_block_height.return_value = candidate.last_valid_block_height + 1

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.error is ErrorKind.BLOCKHASH_EXPIRED
        assert outcome.signature == SIGNATURE

    @pytest.mark.asyncio
    async def test_seen_signature_is_not_expired(self, solana, keypair, candidate, fast_execution_config):
        """A processed but unconfirmed signature past expiry times out instead of being retried."""
        solana.get_signature_status.return_value = SignatureStatus(
            confirmed=False, err=None, confirmation_status="processed"
        )
        solana.get_current_block_height.return_value = candidate.last_valid_block_height + 10_000

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.error is ErrorKind.TIMEOUT
        assert outcome.may_still_land
        assert outcome.signature == SIGNATURE

    @pytest.mark.asyncio
    async def test_seen_on_expiry_recheck_keeps_polling(self, solana, keypair, candidate, fast_execution_config):
        processed = SignatureStatus(confirmed=False, confirmation_status="processed")
        solana.get_signature_status.side_effect = [None, processed, processed, SignatureStatus(confirmed=True)]
        solana.get_current_block_height.return_value = candidate.last_valid_block_height + 1

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.confirmed
        solana.get_current_block_height.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_landed_in_last_valid_block(self, solana, keypair, candidate, fast_execution_config):
        solana.get_signature_status.side_effect = [None, SignatureStatus(confirmed=True)]
        solana.get_current_block_height.return_value = candidate.last_valid_block_height + 1

        outcome = await _executor(solana, keypair, fast_execution_config).execute(candidate)

        assert outcome.confirmed

    @pytest.mark.asyncio
    async def test_timeout_may_still_land(self, solana, keypair, candidate, fast_execution_config):
        solana.get_signature_status.return_value = None

        executor = _executor(solana, keypair, fast_execution_config)
        outcome = await executor.execute(candidate)

        assert outcome.error is ErrorKind.TIMEOUT
        assert outcome.may_still_land
        assert outcome.signature == SIGNATURE
        assert executor.state is ExecutionState.FAILED

    @pytest.mark.asyncio
    async def test_timeout_repoll_finds_confirmation(self, solana, keypair, candidate, caplog):
        config = ExecutionConfig(
            confirm_timeout_seconds=0.01,
            confirm_poll_interval_seconds=0.005,
            timeout_repoll_seconds=5.0
        )
        first_call = []

        async def status(signature):
            now = time.monotonic()
            first_call.append(now)
            # Unknown until well after the first window has closed
            return SignatureStatus(confirmed=True) if now - first_call[0] > 0.05 else None

        solana.get_signature_status.side_effect = status

        with caplog.at_level(logging.WARNING):
            outcome = await _executor(solana, keypair, config).execute(candidate)

        assert outcome.confirmed
        assert "re-polling" in caplog.text

class TestCancellation:
    """Cancellation semantics around Broadcast."""

    @pytest.mark.asyncio
    async def test_cancel_before_broadcast_has_no_network_effect(self, solana, keypair, candidate):
        signing_started = asyncio.Event()

        async def slow_sign(tx):
            signing_started.set()
            await asyncio.sleep(3600)

        signer = MagicMock()
        signer.sign = AsyncMock(side_effect=slow_sign)
        executor = _executor(solana, keypair, ExecutionConfig(), signer=signer)

        task = asyncio.create_task(executor.execute(candidate))
        await signing_started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        solana.send_versioned_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_after_broadcast_polls_to_terminal(self, solana, keypair, candidate):
        config = ExecutionConfig(confirm_timeout_seconds=5.0, confirm_poll_interval_seconds=0.0)
        sent = asyncio.Event()
        landed = {"value": None}

        async def send(tx, skip_preflight=False):
            sent.set()
            return SIGNATURE

        async def status(signature):
            await asyncio.sleep(0)
            return landed["value"]

        solana.send_versioned_transaction.side_effect = send
        solana.get_signature_status.side_effect = status
        executor = _executor(solana, keypair, config)

        task = asyncio.create_task(executor.execute(candidate))
        await sent.wait()
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.sleep(0)
        landed["value"] = SignatureStatus(confirmed=True)

        with pytest.raises(asyncio.CancelledError):
            await task
        assert executor.state is ExecutionState.CONFIRMED
