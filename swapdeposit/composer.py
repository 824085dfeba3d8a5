"""
Merges swap and deposit instruction groups into one ordered instruction list.

Resulting order:

    compute budget -> swap setup -> swap primary -> [swap cleanup] -> [swap other]
    -> deposit instructions

The deposit always runs last because it spends the swap's output.
Cleanup and other groups are optional filler, kept only while the estimated
transaction size stays within budget.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .errors import CompilationFailed, ComposerInvariantViolated
from .instruction_codec import instruction_fingerprint
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

SizeEstimator = Callable[[Sequence[Instruction]], int]


def is_compute_budget(instruction: Instruction) -> bool:
    return instruction.program_id == COMPUTE_BUDGET_PROGRAM_ID


@dataclass(frozen=True)
class InstructionGroups:
    """Named instruction buckets as produced by one external service."""
    compute_budget: Tuple[Instruction, ...] = ()
    setup: Tuple[Instruction, ...] = ()
    primary: Optional[Instruction] = None
    cleanup: Tuple[Instruction, ...] = ()
    other: Tuple[Instruction, ...] = ()

    @classmethod
    def from_flat(cls, instructions: Sequence[Instruction]) -> "InstructionGroups":
        """
        Group a flat instruction list (deposit service format).

        Compute budget instructions are split out; the last remaining
        instruction is the primary and everything before it is setup.
        """
        compute_budget = tuple(ix for ix in instructions if is_compute_budget(ix))
        rest = [ix for ix in instructions if not is_compute_budget(ix)]
        if not rest:
            return cls(compute_budget=compute_budget)
        return cls(compute_budget=compute_budget, setup=tuple(rest[:-1]), primary=rest[-1])

    def body(self) -> List[Instruction]:
        """Setup followed by the primary."""
        body = list(self.setup)
        if self.primary is not None:
            body.append(self.primary)
        return body


@dataclass(frozen=True)
class ComposedInstructionSet:
    """Ordered instructions for one transaction plus a record of what was elided."""
    instructions: Tuple[Instruction, ...]
    swap_primary_index: int
    deposit_primary_index: int
    included_groups: Tuple[str, ...] = ()
    dropped_groups: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.instructions)


@dataclass
class InstructionComposer:
    """
    Composes a swap and a deposit into one instruction list.

    Args:
        size_estimator: Serialized size in bytes of a transaction carrying the
            given instructions
        size_budget: Target upper bound for the estimated size
    """
    size_estimator: SizeEstimator
    size_budget: int

    def _fits(self, instructions: Sequence[Instruction]) -> bool:
        try:
            estimate = self.size_estimator(instructions)
        except CompilationFailed as e:
            logger.debug(f"Size estimate failed, treating as over budget: {e}")
            return False
        return estimate <= self.size_budget

    def compose(self, swap: InstructionGroups, deposit: InstructionGroups) -> ComposedInstructionSet:
        """
        Merge the two instruction sets.

        Raises:
            ComposerInvariantViolated: either primary is missing
        """
        if swap.primary is None:
            raise ComposerInvariantViolated("Swap instruction set has no primary swap instruction")
        if deposit.primary is None:
            raise ComposerInvariantViolated("Deposit instruction set has no primary deposit instruction")

        included = []

        # Compute budget at most once; the swap runs first and needs the larger allocation
        if swap.compute_budget:
            compute_budget = list(swap.compute_budget)
            included.append("swap.computeBudget")
            if deposit.compute_budget:
                logger.debug(f"Discarding {len(deposit.compute_budget)} deposit compute budget instruction(s)")
        else:
            compute_budget = list(deposit.compute_budget)
            if compute_budget:
                included.append("deposit.computeBudget")

        swap_setup = list(swap.setup)
        if swap_setup:
            included.append("swap.setup")

        # Deposit setup that repeats a swap setup instruction (idempotent ATA creation) is emitted once
        swap_setup_fingerprints = {instruction_fingerprint(ix) for ix in swap_setup}
        deposit_setup = [ix for ix in deposit.setup if instruction_fingerprint(ix) not in swap_setup_fingerprints]
        if len(deposit_setup) != len(deposit.setup):
            logger.debug(f"Removed {len(deposit.setup) - len(deposit_setup)} duplicated deposit setup instruction(s)")

        prefix = compute_budget + swap_setup + [swap.primary]
        swap_primary_index = len(prefix) - 1
        included.append("swap.primary")
        deposit_block = deposit_setup + [deposit.primary]

        # Optional swap groups sit between the swap primary and the deposit, which always runs last
        dropped = []
        for name, group in (("swap.cleanup", swap.cleanup), ("swap.other", swap.other)):
            if not group:
                continue
            trial = prefix + list(group)
            if self._fits(trial + deposit_block):
                prefix = trial
                included.append(name)
            else:
                dropped.append(name)
                logger.warning(
                    f"Dropping optional group {colors['CYAN']}{name}{colors['RESET']} "
                    f"({len(group)} instruction(s)) to stay within {colors['YELLOW']}{self.size_budget}{colors['RESET']} bytes"
                )

        instructions = prefix + deposit_block
        deposit_primary_index = len(instructions) - 1
        included.append("deposit")

        logger.debug(
            f"Composed {colors['GREEN']}{len(instructions)}{colors['RESET']} instructions: "
            f"{', '.join(included)}"
        )
        return ComposedInstructionSet(
            instructions=tuple(instructions),
            swap_primary_index=swap_primary_index,
            deposit_primary_index=deposit_primary_index,
            included_groups=tuple(included),
            dropped_groups=tuple(dropped)
        )
