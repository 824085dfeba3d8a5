"""
Wire-size limits for versioned transactions.

Checked before simulation and before signing; an oversized transaction is
abandoned, never sent.
"""
import base64
import logging
from dataclasses import dataclass
from typing import Sequence

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .errors import TransactionTooLarge
from .transaction_builder import CandidateTransaction, compile_message, unsigned_transaction
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

# Packet data size (1280) minus IPv6 and fragment headers
MAX_RAW_TX_SIZE = 1232
# base64 length of a MAX_RAW_TX_SIZE payload
MAX_BASE64_TX_SIZE = 1644


@dataclass(frozen=True)
class TransactionSize:
    raw: int
    encoded: int

    def within(self, max_raw: int = MAX_RAW_TX_SIZE, max_encoded: int = MAX_BASE64_TX_SIZE) -> bool:
        return self.raw <= max_raw and self.encoded <= max_encoded


def measure(tx_bytes: bytes) -> TransactionSize:
    return TransactionSize(raw=len(tx_bytes), encoded=len(base64.b64encode(tx_bytes)))


def check_wire_size(
    tx_bytes: bytes,
    max_raw: int = MAX_RAW_TX_SIZE,
    max_encoded: int = MAX_BASE64_TX_SIZE
) -> TransactionSize:
    """
    Reject serialized transactions over either limit.

    Raises:
        TransactionTooLarge
    """
    size = measure(tx_bytes)
    if not size.within(max_raw, max_encoded):
        logger.warning(
            f"Transaction too large: raw={colors['YELLOW']}{size.raw}{colors['RESET']} bytes (max {max_raw}), "
            f"base64={colors['YELLOW']}{size.encoded}{colors['RESET']} bytes (max {max_encoded})"
        )
        raise TransactionTooLarge(
            f"Transaction too large: raw {size.raw}/{max_raw} bytes, base64 {size.encoded}/{max_encoded} bytes",
            raw_size=size.raw,
            encoded_size=size.encoded,
            max_raw_size=max_raw,
            max_encoded_size=max_encoded
        )
    return size


def validate_candidate(
    candidate: CandidateTransaction,
    max_raw: int = MAX_RAW_TX_SIZE,
    max_encoded: int = MAX_BASE64_TX_SIZE
) -> TransactionSize:
    """
    Serialize a candidate with placeholder signatures and check its size.

    Signatures are fixed width, so the placeholder size equals the signed size.

    Raises:
        TransactionTooLarge
        CompilationFailed
    """
    message = compile_message(
        candidate.fee_payer,
        candidate.instructions.instructions,
        candidate.lookup_tables,
        candidate.recent_blockhash
    )
    size = check_wire_size(bytes(unsigned_transaction(message)), max_raw, max_encoded)
    logger.debug(
        f"Transaction size {colors['GREEN']}{size.raw}{colors['RESET']}/{colors['YELLOW']}{max_raw}{colors['RESET']} bytes, "
        f"base64 {size.encoded}/{max_encoded}"
    )
    return size


class TransactionSizeEstimator:
    """
    Serialized size of a transaction carrying a given instruction list.

    Used by the composer; the blockhash is a placeholder because its width is fixed.
    """

    def __init__(self, fee_payer: Pubkey, lookup_tables: Sequence[AddressLookupTableAccount]):
        self.fee_payer = fee_payer
        self.lookup_tables = list(lookup_tables)

    def __call__(self, instructions: Sequence[Instruction]) -> int:
        message = compile_message(self.fee_payer, instructions, self.lookup_tables, Hash.default())
        return len(bytes(unsigned_transaction(message)))
