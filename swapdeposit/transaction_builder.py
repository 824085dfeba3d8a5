"""
Versioned (v0) transaction compilation.
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .composer import ComposedInstructionSet
from .errors import CompilationFailed, ServiceUnavailable
from .solana_client import SolanaClient
from .utils import get_terminal_colors, short_address

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateTransaction:
    """
    Everything needed to compile one transaction.

    Owned by the flow that built it; never shared across submission attempts.
    """
    fee_payer: Pubkey
    recent_blockhash: Hash
    last_valid_block_height: int
    instructions: ComposedInstructionSet
    lookup_tables: List[AddressLookupTableAccount]


def compile_message(
    fee_payer: Pubkey,
    instructions: Sequence[Instruction],
    lookup_tables: Sequence[AddressLookupTableAccount],
    recent_blockhash: Hash
) -> MessageV0:
    """
    Compile a v0 message, compacting accounts through the supplied tables.

    Raises:
        CompilationFailed: the compiler rejected the input, or the message needs
            a signature from someone other than the fee payer
    """
    if not instructions:
        raise CompilationFailed("No instructions to compile")

    try:
        message = MessageV0.try_compile(
            payer=fee_payer,
            instructions=list(instructions),
            address_lookup_table_accounts=list(lookup_tables),
            recent_blockhash=recent_blockhash
        )
    except Exception as e:
        raise CompilationFailed(f"Failed to compile v0 message: {e}") from e

    # The wallet capability only signs as fee payer
    required = message.header.num_required_signatures
    signers = list(message.account_keys[:required])
    foreign = [key for key in signers if key != fee_payer]
    if foreign:
        raise CompilationFailed(
            f"Message requires signatures from accounts other than the fee payer: "
            f"{', '.join(short_address(key) for key in foreign)}"
        )
    return message


def unsigned_transaction(message: MessageV0) -> VersionedTransaction:
    """Wrap a message with placeholder signatures (for sizing and simulation)."""
    placeholders = [Signature.default()] * message.header.num_required_signatures
    return VersionedTransaction.populate(message, placeholders)


class TransactionBuilder:
    """Binds a composed instruction set to a fresh blockhash and compiles it."""

    def __init__(self, solana: SolanaClient):
        self.solana = solana

    async def build_candidate(
        self,
        fee_payer: Pubkey,
        instructions: ComposedInstructionSet,
        lookup_tables: Sequence[AddressLookupTableAccount]
    ) -> CandidateTransaction:
        """
        Fetch a blockhash right before compiling; blockhashes expire quickly.

        Raises:
            ServiceUnavailable: the ledger did not return a blockhash
        """
        try:
            blockhash, last_valid_block_height = await self.solana.get_latest_blockhash()
        except Exception as e:
            raise ServiceUnavailable(f"Failed to fetch recent blockhash: {e}") from e

        return CandidateTransaction(
            fee_payer=fee_payer,
            recent_blockhash=blockhash,
            last_valid_block_height=last_valid_block_height,
            instructions=instructions,
            lookup_tables=list(lookup_tables)
        )

    def compile(self, candidate: CandidateTransaction) -> VersionedTransaction:
        """
        Compile a candidate into an unsigned versioned transaction.

        Raises:
            CompilationFailed: see compile_message
        """
        message = compile_message(
            candidate.fee_payer,
            candidate.instructions.instructions,
            candidate.lookup_tables,
            candidate.recent_blockhash
        )
        logger.info(
            f"{colors['GREEN']}Compiled v0 transaction:{colors['RESET']} "
            f"{colors['GREEN']}{len(candidate.instructions.instructions)}{colors['RESET']} instructions, "
            f"{colors['GREEN']}{len(message.address_table_lookups)}{colors['RESET']} table lookups, "
            f"last_valid_block_height: {colors['YELLOW']}{candidate.last_valid_block_height}{colors['RESET']}"
        )
        return unsigned_transaction(message)
