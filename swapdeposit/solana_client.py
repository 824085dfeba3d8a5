"""
Solana RPC adapter: blockhash, lookup table accounts, simulation, broadcast and
signature status polling.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.types import TxOpts

from .utils import short_address

logger = logging.getLogger(__name__)

_CONFIRMED_LEVELS = {
    "processed": (
        TransactionConfirmationStatus.Processed,
        TransactionConfirmationStatus.Confirmed,
        TransactionConfirmationStatus.Finalized,
    ),
    "confirmed": (
        TransactionConfirmationStatus.Confirmed,
        TransactionConfirmationStatus.Finalized,
    ),
    "finalized": (
        TransactionConfirmationStatus.Finalized,
    ),
}


@dataclass
class SimulationResult:
    """Dry-run result of simulateTransaction."""
    err: Optional[str]
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.err is None


@dataclass
class SignatureStatus:
    """Ledger view of a broadcast signature."""
    confirmed: bool
    err: Optional[str] = None
    confirmation_status: Optional[str] = None


class SolanaClient:
    """Async Solana RPC client with a single primary -> fallback failover."""

    def __init__(self, rpc_url: str, fallback_rpc_url: Optional[str] = None, commitment: str = "confirmed"):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self.commitment = commitment
        self._active_rpc_url = rpc_url
        self._failover_used = False
        self.client = AsyncClient(rpc_url, commitment=Commitment(commitment))

    async def _switch_to_fallback(self, reason: str) -> bool:
        """
        Switch to the fallback RPC if one is configured and not already active.

        Returns:
            True if the client now points at the fallback
        """
        if self.rpc_url_fallback and self._active_rpc_url == self.rpc_url_primary:
            if not self._failover_used:
                # Log host only, URLs may carry API keys
                primary_host = self.rpc_url_primary.split('//')[-1].split('/')[0]
                fallback_host = self.rpc_url_fallback.split('//')[-1].split('/')[0]
                logger.warning(f"RPC failover: {primary_host} -> {fallback_host}, reason: {reason}")
                self._failover_used = True

            try:
                await self.client.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing primary RPC client: {e}")

            self._active_rpc_url = self.rpc_url_fallback
            self.client = AsyncClient(self.rpc_url_fallback, commitment=Commitment(self.commitment))
            return True
        return False

    def _is_failover_error(self, error: Exception) -> bool:
        """Rate limits, timeouts and transport errors trigger failover."""
        error_str = str(error).lower()
        error_type = type(error).__name__

        if '429' in error_str or 'rate limit' in error_str or 'too many requests' in error_str:
            return True
        if 'timeout' in error_str or 'timed out' in error_str:
            return True
        if error_type in ('ConnectError', 'ConnectTimeout', 'ReadTimeout', 'NetworkError',
                          'TimeoutError', 'SolanaRpcException'):
            return True
        if 'connection' in error_str or 'network' in error_str:
            return True
        return False

    async def _with_failover(self, coro_func, *args, **kwargs):
        """
        Run coro_func, retrying once on the fallback RPC for transport-level errors.

        Raises:
            The primary error when it is not a failover error or no fallback exists,
            otherwise the fallback error chained to the primary one.
        """
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            if self._is_failover_error(e) and await self._switch_to_fallback(str(e)):
                try:
                    return await coro_func(*args, **kwargs)
                except Exception as e2:
                    logger.error(f"Both primary and fallback RPC failed. Last error: {e2}")
                    raise e2 from e
            raise

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """
        Fetch a fresh blockhash.

        Returns:
            (blockhash, last_valid_block_height)
        """
        async def _fetch():
            result = await self.client.get_latest_blockhash(commitment=Commitment(self.commitment))
            return result.value.blockhash, result.value.last_valid_block_height

        blockhash, last_valid_block_height = await self._with_failover(_fetch)
        logger.debug(f"Latest blockhash {short_address(blockhash)}, last valid block height {last_valid_block_height}")
        return blockhash, last_valid_block_height

    async def get_current_block_height(self) -> Optional[int]:
        """
        Current block height, compared against a blockhash's lastValidBlockHeight.

        Returns:
            Block height, or None if the RPC call failed
        """
        try:
            result = await self.client.get_block_height(commitment=Confirmed)
            if result.value is not None:
                return result.value
            logger.warning("get_block_height returned None")
            return None
        except Exception as e:
            logger.error(f"Error getting block height: {e}")
            return None

    async def get_multiple_accounts_data(self, pubkeys: Sequence[Pubkey]) -> List[Optional[bytes]]:
        """
        Fetch raw account data for several accounts in one getMultipleAccounts call.

        Returns:
            One entry per requested key, None where no account exists

        Raises:
            Exception: transport failure after failover
        """
        if not pubkeys:
            return []

        async def _fetch():
            result = await self.client.get_multiple_accounts(
                list(pubkeys),
                commitment=Confirmed,
                encoding="base64"
            )
            return [None if account is None else bytes(account.data) for account in result.value]

        return await self._with_failover(_fetch)

    async def simulate_versioned_transaction(self, tx: VersionedTransaction) -> SimulationResult:
        """
        Dry-run a transaction without signature verification.

        Raises:
            Exception: transport failure after failover
        """
        async def _simulate():
            result = await self.client.simulate_transaction(
                tx,
                sig_verify=False,
                commitment=Commitment(self.commitment)
            )
            value = result.value
            return SimulationResult(
                err=None if value.err is None else str(value.err),
                logs=list(value.logs or []),
                units_consumed=value.units_consumed
            )

        return await self._with_failover(_simulate)

    async def send_versioned_transaction(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = False
    ) -> str:
        """
        Broadcast a signed transaction once. Retries belong to the caller.

        Returns:
            Transaction signature (base58)

        Raises:
            solana.rpc.core.RPCException: the ledger rejected the transaction
            Exception: transport failure after failover
        """
        async def _send():
            opts = TxOpts(
                skip_preflight=skip_preflight,
                preflight_commitment=Commitment(self.commitment),
                max_retries=0
            )
            result = await self.client.send_transaction(tx, opts=opts)
            return str(result.value)

        signature = await self._with_failover(_send)
        logger.debug(f"Transaction sent: {signature}")
        return signature

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """
        Look up the status of a broadcast signature.

        Returns:
            SignatureStatus, or None if the ledger has not seen it yet or the
            RPC call failed
        """
        try:
            result = await self.client.get_signature_statuses([Signature.from_string(signature)])
        except Exception as e:
            logger.warning(f"Error getting signature status for {short_address(signature)}: {e}")
            return None

        statuses: List[Any] = list(result.value or [])
        status = statuses[0] if statuses else None
        if status is None:
            return None

        err = None if status.err is None else str(status.err)
        level = status.confirmation_status
        confirmed = err is None and level in _CONFIRMED_LEVELS.get(self.commitment, _CONFIRMED_LEVELS["confirmed"])
        return SignatureStatus(
            confirmed=confirmed,
            err=err,
            confirmation_status=None if level is None else str(level)
        )

    async def close(self):
        """Close RPC client."""
        await self.client.close()
