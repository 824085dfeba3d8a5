"""
Swap-and-deposit orchestration.

    quote -> swap instructions -> deposit instructions -> lookup tables
    -> compose -> size check -> simulate -> sign -> broadcast -> confirm
    -> balance refresh
"""
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Set, Tuple, Union

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.pubkey import Pubkey

from .amounts import AmountUnit, to_base_units
from .composer import ComposedInstructionSet, InstructionComposer, InstructionGroups
from .config import ExecutionConfig, SwapConfig
from .errors import ErrorKind, FlowInProgress, TransactionTooLarge
from .executor import TransactionExecutor, TransactionOutcome
from .jupiter_client import JupiterClient
from .lend_client import LendClient
from .lookup_tables import LookupTableResolver
from .signer import WalletSigner
from .size_budget import MAX_BASE64_TX_SIZE, MAX_RAW_TX_SIZE, TransactionSizeEstimator, validate_candidate
from .solana_client import SolanaClient
from .transaction_builder import TransactionBuilder
from .utils import get_terminal_colors, short_address

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

BalanceRefresh = Callable[[TransactionOutcome], Union[None, Awaitable[None]]]


class SwapAndDepositOrchestrator:
    """
    Runs one swap-and-deposit flow at a time.

    A second call while a flow is pending is rejected with FlowInProgress.
    """

    def __init__(
        self,
        jupiter: JupiterClient,
        lend: LendClient,
        solana: SolanaClient,
        signer: WalletSigner,
        swap_config: Optional[SwapConfig] = None,
        execution_config: Optional[ExecutionConfig] = None,
        on_confirmed: Optional[BalanceRefresh] = None,
        max_raw_size: int = MAX_RAW_TX_SIZE,
        max_encoded_size: int = MAX_BASE64_TX_SIZE
    ):
        self.jupiter = jupiter
        self.lend = lend
        self.solana = solana
        self.signer = signer
        self.swap_config = swap_config or SwapConfig()
        self.execution_config = execution_config or ExecutionConfig()
        self.on_confirmed = on_confirmed
        self.max_raw_size = max_raw_size
        self.max_encoded_size = max_encoded_size

        self.resolver = LookupTableResolver(solana)
        self.builder = TransactionBuilder(solana)
        self.executor = TransactionExecutor(solana, self.builder, signer, self.execution_config)

        self.flow_in_progress = False
        self._background_tasks: Set[asyncio.Task] = set()

    async def execute(
        self,
        input_mint: str,
        output_mint: str,
        amount: str,
        deposit_asset: Optional[str] = None,
        output_decimals: int = 0
    ) -> TransactionOutcome:
        """
        Swap `amount` of input_mint into output_mint and deposit the proceeds.

        Args:
            input_mint: Asset sold
            output_mint: Asset bought
            amount: Input amount in base units (integer string)
            deposit_asset: Asset deposited, defaults to output_mint
            output_decimals: Decimals of output_mint (display only)

        Returns:
            Outcome of the last submission attempt

        Raises:
            FlowInProgress: another flow is pending
            Composition-time errors (MalformedInstruction, ResolutionUnavailable,
            ComposerInvariantViolated, TransactionTooLarge, CompilationFailed,
            InvalidAmountEncoding, ServiceUnavailable, SimulationFailed under
            the block policy), always before a signature is requested
        """
        if self.flow_in_progress:
            raise FlowInProgress("Another swap-and-deposit flow is already in progress")

        self.flow_in_progress = True
        try:
            return await self._run(input_mint, output_mint, amount, deposit_asset or output_mint, output_decimals)
        finally:
            self.flow_in_progress = False

    async def _run(
        self,
        input_mint: str,
        output_mint: str,
        amount: str,
        deposit_asset: str,
        output_decimals: int
    ) -> TransactionOutcome:
        fee_payer = self.signer.pubkey()
        ladder: List[Optional[int]] = [None] + list(self.swap_config.requote_max_accounts)

        for rung, max_accounts in enumerate(ladder):
            try:
                composed, tables = await self._compose(
                    fee_payer, input_mint, output_mint, amount, deposit_asset, output_decimals, max_accounts
                )
                return await self._submit(fee_payer, composed, tables)
            except TransactionTooLarge as e:
                if rung == len(ladder) - 1:
                    logger.error(f"{colors['RED']}{e}; no stricter route left to try{colors['RESET']}")
                    raise
                logger.warning(f"{e}; re-quoting with maxAccounts={ladder[rung + 1]}")

    async def _compose(
        self,
        fee_payer: Pubkey,
        input_mint: str,
        output_mint: str,
        amount: str,
        deposit_asset: str,
        output_decimals: int,
        max_accounts: Optional[int]
    ) -> Tuple[ComposedInstructionSet, List[AddressLookupTableAccount]]:
        config = self.swap_config

        # Quote and swap instructions belong to one request chain
        async with self.jupiter.rate_limiter.burst():
            quote = await self.jupiter.get_quote(
                input_mint, output_mint, amount,
                slippage_bps=config.slippage_bps,
                max_accounts=max_accounts
            )
            deposit_amount = to_base_units(quote.out_amount, output_decimals)
            logger.info(
                f"Quote: {colors['YELLOW']}{amount}{colors['RESET']} {short_address(input_mint)} -> "
                f"{colors['YELLOW']}{AmountUnit.from_base_units(deposit_amount, output_decimals).to_ui_string()}"
                f"{colors['RESET']} {short_address(output_mint)} (price impact {quote.price_impact_pct}%)"
            )

            swap = await self.jupiter.get_swap_instructions(
                quote,
                str(fee_payer),
                wrap_and_unwrap_sol=config.wrap_and_unwrap_sol,
                use_shared_accounts=config.use_shared_accounts,
                dynamic_compute_unit_limit=config.dynamic_compute_unit_limit,
                prioritization_fee_lamports=config.prioritization_fee_lamports
            )

        deposit_instructions = await self.lend.get_deposit_instructions(deposit_asset, str(fee_payer), deposit_amount)
        deposit = InstructionGroups.from_flat(deposit_instructions)

        tables = await self.resolver.resolve(swap.address_lookup_table_addresses)

        composer = InstructionComposer(
            size_estimator=TransactionSizeEstimator(fee_payer, tables),
            size_budget=self.max_raw_size
        )
        return composer.compose(swap.groups, deposit), tables

    async def _submit(
        self,
        fee_payer: Pubkey,
        composed: ComposedInstructionSet,
        tables: List[AddressLookupTableAccount]
    ) -> TransactionOutcome:
        max_attempts = self.execution_config.max_attempts
        outcome = None
        for attempt in range(1, max_attempts + 1):
            candidate = await self.builder.build_candidate(fee_payer, composed, tables)
            validate_candidate(candidate, self.max_raw_size, self.max_encoded_size)

            outcome = await self.executor.execute(candidate, attempt)
            if outcome.error is not ErrorKind.BLOCKHASH_EXPIRED:
                break
            if attempt < max_attempts:
                logger.warning(
                    f"{colors['DIM']}Blockhash expired on attempt {attempt}/{max_attempts}, "
                    f"rebuilding with a fresh blockhash{colors['RESET']}"
                )
            else:
                logger.error(f"{colors['RED']}Blockhash expired on all {max_attempts} attempts{colors['RESET']}")

        if outcome.confirmed:
            self._schedule_balance_refresh(outcome)
        elif outcome.may_still_land:
            logger.warning(
                f"{colors['YELLOW']}Outcome unknown for {outcome.signature}: "
                f"check the explorer before retrying{colors['RESET']}"
            )
        return outcome

    def _schedule_balance_refresh(self, outcome: TransactionOutcome) -> None:
        if self.on_confirmed is None:
            return
        task = asyncio.create_task(self._refresh_balances(outcome))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _refresh_balances(self, outcome: TransactionOutcome) -> None:
        try:
            result = self.on_confirmed(outcome)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Balance refresh failed after {outcome.signature}: {e}", exc_info=True)
