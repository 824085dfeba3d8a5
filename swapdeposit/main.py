"""
Entry point: one swap-and-deposit flow signed with a local keypair.
"""
import logging
import os
import sys
from typing import Optional

import base58
from solders.keypair import Keypair

from .config import load_settings
from .executor import TransactionOutcome
from .jupiter_client import JupiterClient
from .lend_client import LendClient
from .orchestrator import SwapAndDepositOrchestrator
from .signer import KeypairSigner
from .solana_client import SolanaClient
from .utils import get_terminal_colors, short_address

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('swap_deposit.log')
    ]
)
logger = logging.getLogger(__name__)

colors = get_terminal_colors()


def load_wallet(private_key_str: Optional[str] = None) -> Optional[Keypair]:
    """Load wallet from a base58 private key (WALLET_PRIVATE_KEY by default)."""
    if not private_key_str:
        private_key_str = os.getenv('WALLET_PRIVATE_KEY')

    if not private_key_str:
        logger.warning("No wallet private key provided")
        return None

    try:
        key_bytes = base58.b58decode(private_key_str)
        return Keypair.from_bytes(key_bytes)
    except Exception as e:
        logger.error(f"Error loading wallet: {e}")
        return None


async def log_balance_refresh(outcome: TransactionOutcome) -> None:
    # Balances live outside the engine; a real frontend refetches here
    logger.info(f"Balances stale after {short_address(outcome.signature)}, refresh requested")


async def main(
    input_mint: str,
    output_mint: str,
    amount: str,
    deposit_asset: Optional[str] = None,
    slippage_bps: Optional[int] = None,
    output_decimals: int = 0
) -> Optional[TransactionOutcome]:
    """
    Run one swap-and-deposit flow.

    Returns:
        The final outcome, or None when no wallet is configured
    """
    logger.info("Starting swap-and-deposit")

    settings = load_settings()
    if slippage_bps is not None:
        settings.swap.slippage_bps = min(slippage_bps, settings.swap.max_slippage_bps)

    wallet = load_wallet()
    if wallet is None:
        logger.error("WALLET_PRIVATE_KEY is required to sign the transaction")
        return None
    logger.info(f"Wallet: {colors['CYAN']}{wallet.pubkey()}{colors['RESET']}")

    solana = SolanaClient(
        settings.rpc_url,
        fallback_rpc_url=settings.fallback_rpc_url,
        commitment=settings.execution.commitment
    )
    jupiter = JupiterClient(
        api_url=settings.jupiter_api_url,
        api_key=settings.jupiter_api_key,
        timeout=settings.http_timeout_seconds,
        requests_per_second=settings.requests_per_second
    )
    lend = LendClient(
        api_url=settings.lend_api_url,
        timeout=settings.http_timeout_seconds,
        api_key=settings.jupiter_api_key
    )

    orchestrator = SwapAndDepositOrchestrator(
        jupiter=jupiter,
        lend=lend,
        solana=solana,
        signer=KeypairSigner(wallet),
        swap_config=settings.swap,
        execution_config=settings.execution,
        on_confirmed=log_balance_refresh
    )

    try:
        outcome = await orchestrator.execute(
            input_mint,
            output_mint,
            amount,
            deposit_asset=deposit_asset,
            output_decimals=output_decimals
        )
    finally:
        await jupiter.close()
        await lend.close()
        await solana.close()

    if outcome.confirmed:
        logger.info(f"{colors['GREEN']}Swap and deposit confirmed:{colors['RESET']} {outcome.signature}")
    elif outcome.may_still_land:
        logger.warning(
            f"{colors['YELLOW']}Swap and deposit not confirmed in time, it may still land:{colors['RESET']} "
            f"{outcome.signature}"
        )
    elif outcome.is_user_rejection:
        logger.info("Signature request rejected, nothing was sent")
    else:
        logger.error(
            f"{colors['RED']}Swap and deposit failed ({outcome.error.value}) "
            f"after {outcome.attempt} attempt(s): {outcome.detail}{colors['RESET']}"
        )
    return outcome
