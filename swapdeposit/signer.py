"""
Wallet signing capability.

The orchestration only needs `await signer.sign(tx)`; a browser wallet, a
remote signer or a local keypair can sit behind it. Implementations raise
UserRejected when a human declines and SigningUnavailable for everything else.
"""
import logging
from typing import Protocol

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import SigningUnavailable

logger = logging.getLogger(__name__)


class WalletSigner(Protocol):
    """External signing capability; may wait on human interaction indefinitely."""

    def pubkey(self) -> Pubkey:
        ...

    async def sign(self, tx: VersionedTransaction) -> VersionedTransaction:
        ...


class KeypairSigner:
    """Signs with a local keypair (bots, scripts, tests)."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    async def sign(self, tx: VersionedTransaction) -> VersionedTransaction:
        try:
            return VersionedTransaction(tx.message, [self.keypair])
        except Exception as e:
            logger.error(f"Local keypair could not sign transaction: {e}")
            raise SigningUnavailable(f"Local keypair could not sign transaction: {e}") from e
